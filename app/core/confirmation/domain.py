# app/core/confirmation/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class ConfirmationChannel(str, Enum):
    """
    Closed set of notification channels.

    Declaration order is the attempt order, and therefore the order of
    outcomes in every DispatchResult.
    """
    VOICE = "voice"
    EMAIL = "email"
    SMS = "sms"

    @property
    def record_code(self) -> str:
        """Channel code used in the confirmations table."""
        return _RECORD_CODES[self]

    @classmethod
    def ordered(cls) -> tuple["ConfirmationChannel", ...]:
        return tuple(cls)


_RECORD_CODES = {
    ConfirmationChannel.VOICE: "CALL",
    ConfirmationChannel.EMAIL: "EMAIL",
    ConfirmationChannel.SMS: "SMS",
}


class ErrorKind(str, Enum):
    """Why a channel attempt failed."""
    TIMEOUT = "ChannelTimeout"
    PROVIDER_ERROR = "ChannelProviderError"


class SuccessPolicy(str, Enum):
    """How per-channel outcomes roll up into overall success."""
    ANY = "any"  # confirmed if any single channel got through
    ALL = "all"  # every attempted channel must succeed

    def evaluate(self, outcomes: tuple["ChannelOutcome", ...]) -> bool:
        # No attempted channels never counts as confirmed
        if not outcomes:
            return False
        if self is SuccessPolicy.ALL:
            return all(o.succeeded for o in outcomes)
        return any(o.succeeded for o in outcomes)


# ============================================================================
# JOB (read-only view owned by the storage layer)
# ============================================================================

@dataclass(frozen=True)
class Job:
    """A scheduled carting job plus the customer contact details from intake."""
    id: str
    customer: str
    job_type: str
    address: str
    status: str = "SCHEDULED"
    date: Optional[date_type] = None
    time: Optional[str] = None  # "HH:MM"
    container_size: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    def contact_for(self, channel: ConfirmationChannel) -> Optional[str]:
        """Destination for a channel, or None when nothing is on file."""
        if channel is ConfirmationChannel.EMAIL:
            target = self.email
        else:
            target = self.phone
        if target is None:
            return None
        target = target.strip()
        return target or None


# ============================================================================
# OUTCOMES
# ============================================================================

@dataclass(frozen=True)
class ChannelOutcome:
    """Result of one channel attempt for one job. Never updated after creation."""
    channel: ConfirmationChannel
    succeeded: bool
    provider_reference: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.succeeded and (self.error_kind or self.error_message):
            raise ValueError("successful outcome cannot carry error details")
        if not self.succeeded and (self.error_kind is None or not self.error_message):
            raise ValueError("failed outcome requires error_kind and error_message")
        if not self.succeeded and self.provider_reference is not None:
            raise ValueError("failed outcome cannot carry a provider reference")

    @classmethod
    def sent(cls, channel: ConfirmationChannel, provider_reference: str | None) -> "ChannelOutcome":
        return cls(channel=channel, succeeded=True, provider_reference=provider_reference)

    @classmethod
    def failed(cls, channel: ConfirmationChannel, kind: ErrorKind, message: str) -> "ChannelOutcome":
        return cls(
            channel=channel,
            succeeded=False,
            error_kind=kind,
            error_message=message or kind.value,
        )

    def summary(self) -> str:
        """One-token summary used in audit details: ``sms=sent`` / ``voice=failed(ChannelTimeout)``."""
        if self.succeeded:
            return f"{self.channel.value}=sent"
        return f"{self.channel.value}=failed({self.error_kind.value})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "succeeded": self.succeeded,
            "provider_reference": self.provider_reference,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class DispatchResult:
    """All channel outcomes for one dispatch call, in channel order."""
    job_id: str
    outcomes: tuple[ChannelOutcome, ...]
    overall_succeeded: bool
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        channels = [o.channel for o in self.outcomes]
        if len(set(channels)) != len(channels):
            raise ValueError(f"duplicate channel outcomes for job {self.job_id}")

    @classmethod
    def aggregate(
        cls,
        job_id: str,
        outcomes: list[ChannelOutcome] | tuple[ChannelOutcome, ...],
        policy: SuccessPolicy = SuccessPolicy.ANY,
    ) -> "DispatchResult":
        """Order outcomes by channel and apply the success policy."""
        order = {c: i for i, c in enumerate(ConfirmationChannel.ordered())}
        ordered = tuple(sorted(outcomes, key=lambda o: order[o.channel]))
        return cls(
            job_id=job_id,
            outcomes=ordered,
            overall_succeeded=policy.evaluate(ordered),
        )

    @property
    def attempted_channels(self) -> tuple[ConfirmationChannel, ...]:
        return tuple(o.channel for o in self.outcomes)

    @property
    def failures(self) -> tuple[ChannelOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.succeeded)

    def outcome_for(self, channel: ConfirmationChannel) -> Optional[ChannelOutcome]:
        for outcome in self.outcomes:
            if outcome.channel is channel:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "overall_succeeded": self.overall_succeeded,
            "created_at": self.created_at.isoformat(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ============================================================================
# AUDIT
# ============================================================================

CONFIRMATION_MODULE = "confirmation"


@dataclass(frozen=True)
class ActivityLogEntry:
    """Append-only audit record for the admin activity log."""
    actor_id: str
    actor_name: str
    action: str
    module: str
    detail: str
    job_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
