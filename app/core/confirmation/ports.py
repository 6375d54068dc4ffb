# app/core/confirmation/ports.py
from __future__ import annotations
from typing import Any, Coroutine, Protocol, Optional
from app.core.confirmation.domain import (
    ActivityLogEntry,
    ChannelOutcome,
    ConfirmationChannel,
    DispatchResult,
    Job,
)


class AsyncJobReader(Protocol):
    async def get_job(self, job_id: str) -> Optional[Job]: ...


class ChannelAdapter(Protocol):
    channel: ConfirmationChannel

    async def attempt(self, job: Job, target: str) -> ChannelOutcome:
        """
        Deliver one confirmation.

        Ordinary provider failures come back as a failed outcome or as
        ChannelProviderError; anything else is treated as a provider error
        by the orchestrator.
        """
        ...


class AsyncActivitySink(Protocol):
    async def append(self, entry: ActivityLogEntry) -> None: ...


class AsyncConfirmationStore(Protocol):
    async def save_result(self, result: DispatchResult) -> None: ...


class ActivityRecorder(Protocol):
    def record(self, entry: ActivityLogEntry) -> None:
        """Fire-and-forget: must return immediately and never raise."""
        ...


class TaskSpawner(Protocol):
    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> Any:
        """Schedule work detached from the caller; failures are logged, never raised."""
        ...
