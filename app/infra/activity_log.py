# app/infra/activity_log.py
"""
Activity log for the admin monitoring screen.

Every confirmation dispatch produces one ActivityLogEntry.  Recording is
fire-and-forget: ``record()`` schedules the database write as a detached
task and returns immediately.  A failed write (AuditWriteFailure) is
logged and counted, never raised.

Each entry is also mirrored to a dedicated "audit" logger so it can be
routed to a separate sink via logging configuration even when the
database write fails.
"""
from __future__ import annotations

import logging

from app.core.confirmation.domain import ActivityLogEntry
from app.core.confirmation.errors import AuditWriteFailure
from app.core.confirmation.ports import AsyncActivitySink, TaskSpawner
from app.infra.metrics import ConfirmationMetrics

# Separate from the app logger
_audit_logger = logging.getLogger("audit")


def audit_event(entry: ActivityLogEntry) -> None:
    """Mirror an activity entry to the audit logger."""
    _audit_logger.info(
        f"AUDIT: {entry.module}.{entry.action} actor={entry.actor_id} "
        f"job={entry.job_id or '-'} {entry.detail}",
        extra={
            "audit_action": entry.action,
            "audit_module": entry.module,
            "actor_id": entry.actor_id,
            "job_id": entry.job_id or "",
        },
    )


class ActivityLogger:
    """
    Usage:
        activity = ActivityLogger(sink=AsyncPostgresActivityLog(db), tasks=runner)
        activity.record(entry)   # returns immediately
    """

    def __init__(self, sink: AsyncActivitySink, tasks: TaskSpawner, *, sink_name: str = "postgres"):
        self._sink = sink
        self._tasks = tasks
        self._sink_name = sink_name

    def record(self, entry: ActivityLogEntry) -> None:
        audit_event(entry)
        write = self._write(entry)
        try:
            self._tasks.spawn(write, name=f"activity-{entry.job_id or 'none'}")
        except Exception:
            # e.g. no running event loop
            write.close()
            _audit_logger.error("Could not schedule activity log write", exc_info=True)
            ConfirmationMetrics.audit_write_failed(self._sink_name)

    async def _write(self, entry: ActivityLogEntry) -> None:
        try:
            await self._sink.append(entry)
        except Exception as exc:
            failure = AuditWriteFailure(f"{exc.__class__.__name__}: {exc}")
            _audit_logger.error(
                "[ActivityLog] Failed to write log: %s", failure,
                extra={"job_id": entry.job_id or "", "audit_action": entry.action},
            )
            ConfirmationMetrics.audit_write_failed(self._sink_name)
