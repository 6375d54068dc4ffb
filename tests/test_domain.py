# tests/test_domain.py
"""Tests for confirmation domain models"""
from dataclasses import FrozenInstanceError

import pytest

from app.core.confirmation.domain import (
    ChannelOutcome,
    ConfirmationChannel,
    DispatchResult,
    ErrorKind,
    SuccessPolicy,
)
from app.core.confirmation.errors import (
    ChannelProviderError,
    ChannelTimeout,
    ConfirmationError,
    JobNotFound,
)

from conftest import make_job


class TestConfirmationChannel:
    def test_order_is_voice_email_sms(self):
        assert ConfirmationChannel.ordered() == (
            ConfirmationChannel.VOICE,
            ConfirmationChannel.EMAIL,
            ConfirmationChannel.SMS,
        )

    def test_record_codes(self):
        assert ConfirmationChannel.VOICE.record_code == "CALL"
        assert ConfirmationChannel.EMAIL.record_code == "EMAIL"
        assert ConfirmationChannel.SMS.record_code == "SMS"

    def test_from_string(self):
        assert ConfirmationChannel("sms") is ConfirmationChannel.SMS


class TestJob:
    def test_contact_for_channels(self):
        job = make_job(phone=" +17185550123 ", email="ops@acme.example")
        assert job.contact_for(ConfirmationChannel.VOICE) == "+17185550123"
        assert job.contact_for(ConfirmationChannel.SMS) == "+17185550123"
        assert job.contact_for(ConfirmationChannel.EMAIL) == "ops@acme.example"

    def test_missing_contact(self):
        job = make_job(phone=None, email="  ")
        assert job.contact_for(ConfirmationChannel.VOICE) is None
        assert job.contact_for(ConfirmationChannel.EMAIL) is None

    def test_job_is_read_only(self):
        job = make_job()
        with pytest.raises(FrozenInstanceError):
            job.phone = "+10000000000"


class TestChannelOutcome:
    def test_sent(self):
        outcome = ChannelOutcome.sent(ConfirmationChannel.SMS, "SM123")
        assert outcome.succeeded
        assert outcome.provider_reference == "SM123"
        assert outcome.error_kind is None
        assert outcome.error_message is None
        assert outcome.summary() == "sms=sent"

    def test_failed(self):
        outcome = ChannelOutcome.failed(ConfirmationChannel.VOICE, ErrorKind.TIMEOUT, "too slow")
        assert not outcome.succeeded
        assert outcome.provider_reference is None
        assert outcome.summary() == "voice=failed(ChannelTimeout)"

    def test_failed_without_message_uses_kind(self):
        outcome = ChannelOutcome.failed(ConfirmationChannel.EMAIL, ErrorKind.PROVIDER_ERROR, "")
        assert outcome.error_message == "ChannelProviderError"

    def test_success_cannot_carry_error(self):
        with pytest.raises(ValueError):
            ChannelOutcome(
                channel=ConfirmationChannel.SMS, succeeded=True,
                error_kind=ErrorKind.TIMEOUT, error_message="x",
            )

    def test_failure_requires_kind(self):
        with pytest.raises(ValueError):
            ChannelOutcome(channel=ConfirmationChannel.SMS, succeeded=False, error_message="x")

    def test_failure_cannot_carry_reference(self):
        with pytest.raises(ValueError):
            ChannelOutcome(
                channel=ConfirmationChannel.SMS, succeeded=False, provider_reference="SM1",
                error_kind=ErrorKind.PROVIDER_ERROR, error_message="x",
            )

    def test_immutable(self):
        outcome = ChannelOutcome.sent(ConfirmationChannel.SMS, "SM123")
        with pytest.raises(FrozenInstanceError):
            outcome.succeeded = False

    def test_to_dict(self):
        outcome = ChannelOutcome.failed(ConfirmationChannel.VOICE, ErrorKind.TIMEOUT, "too slow")
        data = outcome.to_dict()
        assert data["channel"] == "voice"
        assert data["succeeded"] is False
        assert data["error_kind"] == "ChannelTimeout"
        assert data["timestamp"].endswith("+00:00")


class TestDispatchResult:
    def test_aggregate_orders_by_channel(self):
        outcomes = [
            ChannelOutcome.sent(ConfirmationChannel.SMS, "SM1"),
            ChannelOutcome.sent(ConfirmationChannel.VOICE, "CA1"),
        ]
        result = DispatchResult.aggregate("job-1", outcomes)
        assert result.attempted_channels == (ConfirmationChannel.VOICE, ConfirmationChannel.SMS)

    def test_duplicate_channels_rejected(self):
        outcomes = (
            ChannelOutcome.sent(ConfirmationChannel.SMS, "SM1"),
            ChannelOutcome.sent(ConfirmationChannel.SMS, "SM2"),
        )
        with pytest.raises(ValueError):
            DispatchResult(job_id="job-1", outcomes=outcomes, overall_succeeded=True)

    def test_failures_and_lookup(self):
        failed = ChannelOutcome.failed(ConfirmationChannel.EMAIL, ErrorKind.PROVIDER_ERROR, "bounced")
        result = DispatchResult.aggregate(
            "job-1", [failed, ChannelOutcome.sent(ConfirmationChannel.SMS, "SM1")],
        )
        assert result.failures == (failed,)
        assert result.outcome_for(ConfirmationChannel.EMAIL) is failed
        assert result.outcome_for(ConfirmationChannel.VOICE) is None

    def test_to_dict(self):
        result = DispatchResult.aggregate("job-1", [ChannelOutcome.sent(ConfirmationChannel.SMS, "SM1")])
        data = result.to_dict()
        assert data["job_id"] == "job-1"
        assert data["overall_succeeded"] is True
        assert [o["channel"] for o in data["outcomes"]] == ["sms"]


class TestSuccessPolicy:
    def _outcomes(self, *succeeded):
        channels = ConfirmationChannel.ordered()
        return tuple(
            ChannelOutcome.sent(channels[i], None) if ok
            else ChannelOutcome.failed(channels[i], ErrorKind.PROVIDER_ERROR, "no")
            for i, ok in enumerate(succeeded)
        )

    def test_any(self):
        assert SuccessPolicy.ANY.evaluate(self._outcomes(False, True, False)) is True
        assert SuccessPolicy.ANY.evaluate(self._outcomes(False, False)) is False

    def test_all(self):
        assert SuccessPolicy.ALL.evaluate(self._outcomes(True, True, True)) is True
        assert SuccessPolicy.ALL.evaluate(self._outcomes(True, False, True)) is False

    def test_empty_is_never_success(self):
        assert SuccessPolicy.ANY.evaluate(()) is False
        assert SuccessPolicy.ALL.evaluate(()) is False


class TestErrors:
    def test_job_not_found(self):
        exc = JobNotFound("J9")
        assert isinstance(exc, ConfirmationError)
        assert exc.job_id == "J9"
        assert str(exc) == "Job J9 not found"

    def test_channel_timeout_message(self):
        exc = ChannelTimeout("voice", 20.0)
        assert str(exc) == "voice provider did not respond within 20s"
        assert exc.channel == "voice"

    def test_provider_error_attributes(self):
        exc = ChannelProviderError("sms", "rate limited", status=429, code=20429, retryable=True)
        assert exc.status == 429
        assert exc.code == 20429
        assert exc.retryable is True
        assert str(exc) == "rate limited"
