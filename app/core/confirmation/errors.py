# app/core/confirmation/errors.py
"""
Confirmation error taxonomy.

Only ``JobNotFound`` ever escapes ``ConfirmationOrchestrator.dispatch``.
Channel-level problems are converted into failed ChannelOutcome values;
audit write problems are logged and swallowed by the ActivityLogger.
"""
from __future__ import annotations


class ConfirmationError(Exception):
    """Base class for confirmation dispatch errors."""


class JobNotFound(ConfirmationError):
    """The job id does not resolve to a job record."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class ChannelError(ConfirmationError):
    """Base class for errors scoped to a single channel."""

    def __init__(self, channel: str, message: str):
        self.channel = channel
        super().__init__(message)


class ChannelTimeout(ChannelError):
    """Provider call exceeded the per-channel bound."""

    def __init__(self, channel: str, timeout: float):
        self.timeout = timeout
        super().__init__(channel, f"{channel} provider did not respond within {timeout:g}s")


class ChannelProviderError(ChannelError):
    """Provider rejected or failed the request.

    Attributes:
        status:    provider / HTTP status code (0 for connection-level errors)
        code:      provider-specific error code, if any
        retryable: whether re-dispatching later could plausibly succeed
                   (rate limits, 5xx, network) as opposed to invalid
                   destinations or auth failures
    """

    def __init__(
        self,
        channel: str,
        message: str,
        *,
        status: int = 0,
        code: int | str | None = None,
        retryable: bool = False,
    ):
        self.status = status
        self.code = code
        self.retryable = retryable
        super().__init__(channel, message)


class ChannelConfigurationError(ChannelError):
    """Adapter cannot be built (e.g. missing credentials). Disables the channel for the process."""


class AuditWriteFailure(ConfirmationError):
    """The activity log could not persist a record. Never surfaced to callers."""
