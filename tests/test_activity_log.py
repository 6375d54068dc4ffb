# tests/test_activity_log.py
"""Tests for the detached task runner and the fire-and-forget activity logger."""
from __future__ import annotations

import asyncio
import logging

import pytest

from app.core.confirmation.domain import ActivityLogEntry
from app.infra.activity_log import ActivityLogger, audit_event
from app.infra.background import DetachedTaskRunner
from app.infra.metrics import get_metrics_collector

from conftest import FailingSink, RecordingSink


def _entry(**overrides) -> ActivityLogEntry:
    fields = dict(
        actor_id="system",
        actor_name="System",
        action="send_confirmations",
        module="confirmation",
        detail="Acme — 12 Main St: sms=sent",
        job_id="job-1",
    )
    fields.update(overrides)
    return ActivityLogEntry(**fields)


class TestDetachedTaskRunner:
    @pytest.mark.asyncio
    async def test_spawn_returns_immediately(self):
        runner = DetachedTaskRunner()
        done = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            done.set()

        runner.spawn(slow(), name="slow-1")

        assert not done.is_set()
        assert runner.pending == 1
        assert await runner.drain(timeout=1) == 0
        assert done.is_set()
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_captured_and_counted(self):
        runner = DetachedTaskRunner()

        async def boom():
            raise RuntimeError("write failed")

        runner.spawn(boom(), name="confirmation-store-job-1")
        await runner.drain(timeout=1)

        assert runner.failed == 1
        collector = get_metrics_collector()
        assert collector.get_counter("detached_task_failures_total", task="confirmation") == 1

    @pytest.mark.asyncio
    async def test_drain_timeout_cancels_leftovers(self):
        runner = DetachedTaskRunner()
        runner.spawn(asyncio.sleep(10), name="stuck")

        remaining = await runner.drain(timeout=0.01)

        assert remaining == 1

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self):
        assert await DetachedTaskRunner().drain() == 0


class TestActivityLogger:
    @pytest.mark.asyncio
    async def test_record_writes_to_sink_in_background(self):
        runner = DetachedTaskRunner()
        sink = RecordingSink()
        activity = ActivityLogger(sink, runner)
        entry = _entry()

        result = activity.record(entry)

        assert result is None
        assert sink.entries == []  # not yet written
        await runner.drain(timeout=1)
        assert sink.entries == [entry]

    @pytest.mark.asyncio
    async def test_sink_failure_is_swallowed_and_counted(self, caplog):
        runner = DetachedTaskRunner()
        activity = ActivityLogger(FailingSink(), runner, sink_name="postgres")

        with caplog.at_level(logging.ERROR, logger="audit"):
            activity.record(_entry())
            await runner.drain(timeout=1)

        assert runner.failed == 0
        assert "[ActivityLog] Failed to write log" in caplog.text
        collector = get_metrics_collector()
        assert collector.get_counter("audit_write_failures_total", sink="postgres") == 1

    def test_record_without_event_loop_never_raises(self):
        activity = ActivityLogger(RecordingSink(), DetachedTaskRunner())

        # No running loop: scheduling fails, record() still returns
        activity.record(_entry())

        collector = get_metrics_collector()
        assert collector.get_counter("audit_write_failures_total", sink="postgres") == 1

    def test_audit_event_mirrors_to_audit_logger(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            audit_event(_entry(error="sms: bounced"))

        assert "AUDIT: confirmation.send_confirmations actor=system job=job-1" in caplog.text
