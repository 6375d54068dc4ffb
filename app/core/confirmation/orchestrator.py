# app/core/confirmation/orchestrator.py
"""
Confirmation orchestrator: scatter/gather across notification channels.

``dispatch(job_id)``:
1. Load the job once (``JobNotFound`` if missing; no attempts, no audit).
2. Pick applicable channels: an adapter must be enabled AND the job must
   have a destination for it (phone for voice/SMS, email for email).
3. Start every applicable adapter call as its own task, each bounded by
   the channel timeout, and join on all of them.
4. Aggregate in channel order (voice, email, sms) and apply the success
   policy.
5. Hand the result to the activity log and the confirmation store as
   detached work, then return it.

Channel failures never raise out of ``dispatch``; they are captured as
failed ChannelOutcome values.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Mapping

from app.core.confirmation.domain import (
    CONFIRMATION_MODULE,
    ActivityLogEntry,
    ChannelOutcome,
    ConfirmationChannel,
    DispatchResult,
    ErrorKind,
    Job,
    SuccessPolicy,
)
from app.core.confirmation.errors import (
    ChannelProviderError,
    ChannelTimeout,
    JobNotFound,
)
from app.core.confirmation.ports import (
    ActivityRecorder,
    AsyncConfirmationStore,
    AsyncJobReader,
    ChannelAdapter,
    TaskSpawner,
)
from app.infra.logging_config import LogContext, get_logger
from app.infra.metrics import ConfirmationMetrics

logger = get_logger(__name__)

DEFAULT_CHANNEL_TIMEOUT = 30.0

ACTION_SENT = "send_confirmations"
ACTION_FAILED = "confirmation_failed"
ACTION_CANCELLED = "confirmation_cancelled"


@dataclass(frozen=True)
class PlannedAttempt:
    channel: ConfirmationChannel
    adapter: ChannelAdapter
    target: str


class ConfirmationOrchestrator:
    """
    Usage:
        orchestrator = ConfirmationOrchestrator(
            jobs=reader,
            adapters={ConfirmationChannel.SMS: sms_adapter, ...},
            activity=activity_logger,
        )
        result = await orchestrator.dispatch("job-123")
    """

    def __init__(
        self,
        jobs: AsyncJobReader,
        adapters: Mapping[ConfirmationChannel, ChannelAdapter],
        activity: ActivityRecorder,
        *,
        timeouts: Mapping[ConfirmationChannel, float] | None = None,
        policy: SuccessPolicy = SuccessPolicy.ANY,
        store: AsyncConfirmationStore | None = None,
        tasks: TaskSpawner | None = None,
        actor_id: str = "system",
        actor_name: str = "System",
    ):
        self._jobs = jobs
        self._adapters = dict(adapters)
        self._activity = activity
        self._timeouts = dict(timeouts or {})
        self._policy = policy
        self._store = store
        self._tasks = tasks
        self._actor_id = actor_id
        self._actor_name = actor_name

    @property
    def enabled_channels(self) -> tuple[ConfirmationChannel, ...]:
        return tuple(c for c in ConfirmationChannel.ordered() if c in self._adapters)

    @property
    def policy(self) -> SuccessPolicy:
        return self._policy

    def timeout_for(self, channel: ConfirmationChannel) -> float:
        return self._timeouts.get(channel, DEFAULT_CHANNEL_TIMEOUT)

    def plan(self, job: Job) -> list[PlannedAttempt]:
        """Applicable channels for a job, in channel order."""
        planned: list[PlannedAttempt] = []
        for channel in ConfirmationChannel.ordered():
            adapter = self._adapters.get(channel)
            if adapter is None:
                continue
            target = job.contact_for(channel)
            if target is None:
                # No destination on file: skipped, not counted as a failure
                ConfirmationMetrics.channel_skipped(channel.value)
                continue
            planned.append(PlannedAttempt(channel, adapter, target))
        return planned

    async def dispatch(self, job_id: str) -> DispatchResult:
        log = LogContext(logger, job_id=job_id)

        job = await self._jobs.get_job(job_id)
        if job is None:
            ConfirmationMetrics.job_not_found()
            log.warning("Confirmation requested for unknown job")
            raise JobNotFound(job_id)

        planned = self.plan(job)
        log.info(
            "Dispatching confirmations: channels=%s",
            ",".join(p.channel.value for p in planned) or "none",
        )

        tasks = [
            asyncio.create_task(
                self._attempt(p, job),
                name=f"confirm-{p.channel.value}-{job.id}",
            )
            for p in planned
        ]

        try:
            outcomes = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Messages that already went out stay recorded
            finished = [
                task.result() for task in tasks
                if task.done() and not task.cancelled()
            ]
            log.warning(
                "Dispatch cancelled: %d/%d channel(s) finished", len(finished), len(tasks),
            )
            self._record_cancelled(job, finished)
            raise

        result = DispatchResult.aggregate(job.id, outcomes, self._policy)
        ConfirmationMetrics.dispatch_completed(result.overall_succeeded)
        log.info(
            "Confirmations dispatched: overall=%s %s",
            "confirmed" if result.overall_succeeded else "unconfirmed",
            " ".join(o.summary() for o in result.outcomes) or "(no channels)",
        )

        self._record(job, result)
        return result

    async def _attempt(self, planned: PlannedAttempt, job: Job) -> ChannelOutcome:
        """Run one adapter call. Never raises except on cancellation."""
        channel = planned.channel
        timeout = self.timeout_for(channel)
        log = LogContext(logger, job_id=job.id, channel=channel.value)

        try:
            with ConfirmationMetrics.track_channel_latency(channel.value):
                outcome = await asyncio.wait_for(
                    planned.adapter.attempt(job, planned.target),
                    timeout=timeout,
                )
        except asyncio.TimeoutError:
            outcome = ChannelOutcome.failed(
                channel, ErrorKind.TIMEOUT, str(ChannelTimeout(channel.value, timeout)),
            )
        except ChannelProviderError as exc:
            outcome = ChannelOutcome.failed(channel, ErrorKind.PROVIDER_ERROR, str(exc))
        except Exception as exc:
            log.error(
                "Channel adapter raised unexpectedly: %s", exc.__class__.__name__,
                exc_info=True,
            )
            outcome = ChannelOutcome.failed(
                channel, ErrorKind.PROVIDER_ERROR, f"{exc.__class__.__name__}: {exc}",
            )

        if outcome.channel is not channel:
            log.error("Adapter returned outcome for channel %s", outcome.channel.value)
            outcome = ChannelOutcome.failed(
                channel, ErrorKind.PROVIDER_ERROR,
                f"adapter returned outcome for {outcome.channel.value}",
            )

        ConfirmationMetrics.channel_attempted(
            channel.value,
            outcome.succeeded,
            outcome.error_kind.value if outcome.error_kind else None,
        )
        if outcome.succeeded:
            log.info("Confirmation sent: ref=%s", outcome.provider_reference or "-")
        else:
            log.warning(
                "Confirmation failed: %s: %s",
                outcome.error_kind.value, outcome.error_message,
            )
        return outcome

    # ------------------------------------------------------------------
    # Audit hand-off (detached)
    # ------------------------------------------------------------------

    def _record(self, job: Job, result: DispatchResult) -> None:
        action = ACTION_SENT if result.overall_succeeded else ACTION_FAILED
        self._emit(self._build_entry(job, result.outcomes, action))

        if self._store is not None and self._tasks is not None and result.outcomes:
            self._tasks.spawn(
                self._store.save_result(result),
                name=f"confirmation-store-{job.id}",
            )

    def _record_cancelled(self, job: Job, finished: list[ChannelOutcome]) -> None:
        partial = DispatchResult.aggregate(job.id, finished, self._policy)
        self._emit(self._build_entry(job, partial.outcomes, ACTION_CANCELLED))
        if self._store is not None and self._tasks is not None and partial.outcomes:
            self._tasks.spawn(
                self._store.save_result(partial),
                name=f"confirmation-store-{job.id}",
            )

    def _emit(self, entry: ActivityLogEntry) -> None:
        try:
            self._activity.record(entry)
        except Exception:
            # Never fails the dispatch
            logger.error(
                "Activity logger raised for job %s", entry.job_id,
                exc_info=True,
                extra={"job_id": entry.job_id},
            )
            ConfirmationMetrics.audit_write_failed("recorder")

    def _build_entry(
        self,
        job: Job,
        outcomes: tuple[ChannelOutcome, ...],
        action: str,
    ) -> ActivityLogEntry:
        attempted = {o.channel for o in outcomes}
        parts = [o.summary() for o in outcomes]
        for channel in ConfirmationChannel.ordered():
            if channel in attempted:
                continue
            if channel not in self._adapters:
                parts.append(f"{channel.value}=disabled")
            elif job.contact_for(channel) is None:
                parts.append(f"{channel.value}=skipped")
            else:
                parts.append(f"{channel.value}=cancelled")

        errors = [f"{o.channel.value}: {o.error_message}" for o in outcomes if not o.succeeded]
        if not outcomes and action != ACTION_CANCELLED:
            errors.append("no reachable contact on file")

        return ActivityLogEntry(
            actor_id=self._actor_id,
            actor_name=self._actor_name,
            action=action,
            module=CONFIRMATION_MODULE,
            detail=f"{job.customer or job.id} — {job.address}: {' '.join(parts)}",
            job_id=job.id,
            error="; ".join(errors) or None,
        )
