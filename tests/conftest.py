# tests/conftest.py
"""Pytest configuration, fixtures and in-memory fakes for the confirmation flow"""
from __future__ import annotations

import asyncio
from datetime import date

import pytest

from app.core.confirmation.domain import (
    ActivityLogEntry,
    ChannelOutcome,
    ConfirmationChannel,
    ErrorKind,
    Job,
)
from app.core.confirmation.errors import ChannelProviderError
from app.infra.metrics import get_metrics_collector


def make_job(**overrides) -> Job:
    fields = dict(
        id="job-1",
        customer="Acme Builders",
        job_type="DROP_OFF",
        address="12 Main St, Brooklyn",
        date=date(2025, 10, 19),
        time="14:30",
        container_size="20 yd",
        phone="+17185550123",
        email="ops@acme.example",
    )
    fields.update(overrides)
    return Job(**fields)


class FakeJobReader:
    def __init__(self, *jobs: Job):
        self.jobs = {job.id: job for job in jobs}
        self.calls: list[str] = []

    async def get_job(self, job_id: str):
        self.calls.append(job_id)
        return self.jobs.get(job_id)


class FakeAdapter:
    """
    Scriptable channel adapter.

    mode: "sent" | "failed" | "raise" | "crash" | "hang"
    """

    def __init__(self, channel: ConfirmationChannel, mode: str = "sent", delay: float = 0.0):
        self.channel = channel
        self.mode = mode
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.finished = False

    async def attempt(self, job: Job, target: str) -> ChannelOutcome:
        self.calls.append((job.id, target))
        if self.mode == "hang":
            await asyncio.sleep(3600)
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished = True
        if self.mode == "failed":
            return ChannelOutcome.failed(self.channel, ErrorKind.PROVIDER_ERROR, "number unreachable")
        if self.mode == "raise":
            raise ChannelProviderError(self.channel.value, "provider said no", status=400)
        if self.mode == "crash":
            raise RuntimeError("adapter bug")
        return ChannelOutcome.sent(self.channel, f"{self.channel.value}-ref-1")


class RecordingRecorder:
    """ActivityRecorder that keeps entries in memory."""

    def __init__(self):
        self.entries: list[ActivityLogEntry] = []

    def record(self, entry: ActivityLogEntry) -> None:
        self.entries.append(entry)


class ExplodingRecorder:
    def record(self, entry: ActivityLogEntry) -> None:
        raise RuntimeError("activity log is down")


class RecordingSink:
    """AsyncActivitySink / AsyncConfirmationStore that keeps writes in memory."""

    def __init__(self):
        self.entries: list[ActivityLogEntry] = []
        self.results = []

    async def append(self, entry: ActivityLogEntry) -> None:
        self.entries.append(entry)

    async def save_result(self, result) -> None:
        self.results.append(result)


class FailingSink:
    async def append(self, entry: ActivityLogEntry) -> None:
        raise ConnectionError("database unavailable")

    async def save_result(self, result) -> None:
        raise ConnectionError("database unavailable")


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def job() -> Job:
    return make_job()
