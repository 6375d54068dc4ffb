# tests/test_storage.py
"""Tests for the asyncpg-backed storage components (connection mocked)."""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.confirmation.domain import (
    ActivityLogEntry,
    ChannelOutcome,
    ConfirmationChannel,
    DispatchResult,
    ErrorKind,
)
from app.infra.db_async import Database
from app.infra.migrations_async import apply_migrations, pending_files
from app.infra.pg_activity_log_async import AsyncPostgresActivityLog
from app.infra.pg_confirmation_repo_async import AsyncPostgresConfirmationRepository
from app.infra.pg_job_reader_async import AsyncPostgresJobReader


class FakeDatabase:
    """Stands in for Database: hands out one mocked asyncpg connection."""

    def __init__(self):
        self.conn = AsyncMock()
        self.transactional: list[bool] = []

    @asynccontextmanager
    async def connection(self, autocommit: bool = True):
        self.transactional.append(not autocommit)
        yield self.conn


JOB_ROW = {
    "id": "job-1",
    "type": "SWAP",
    "status": "SCHEDULED",
    "customer": "Acme Builders",
    "address": "12 Main St",
    "date": date(2025, 10, 19),
    "time": " 07:30 ",
    "container_size": "",
    "phone": "+17185550123",
    "email": None,
}


class TestJobReader:
    @pytest.mark.asyncio
    async def test_row_mapped_to_job(self):
        db = FakeDatabase()
        db.conn.fetchrow.return_value = JOB_ROW

        job = await AsyncPostgresJobReader(db).get_job("job-1")

        assert job.id == "job-1"
        assert job.job_type == "SWAP"
        assert job.time == "07:30"
        assert job.container_size is None
        assert job.email is None
        assert db.conn.fetchrow.call_args.args[1] == "job-1"

    @pytest.mark.asyncio
    async def test_missing_job_returns_none(self):
        db = FakeDatabase()
        db.conn.fetchrow.return_value = None

        assert await AsyncPostgresJobReader(db).get_job("nope") is None

    @pytest.mark.asyncio
    async def test_transient_error_retried(self):
        db = FakeDatabase()
        db.conn.fetchrow.side_effect = [ConnectionResetError("connection reset by peer"), JOB_ROW]

        job = await AsyncPostgresJobReader(db).get_job("job-1")

        assert job is not None
        assert db.conn.fetchrow.await_count == 2


class TestActivityLogSink:
    @pytest.mark.asyncio
    async def test_append_inserts_row(self):
        db = FakeDatabase()
        entry = ActivityLogEntry(
            actor_id="system", actor_name="System", action="confirmation_failed",
            module="confirmation", detail="x", job_id="job-1", error="e" * 5000,
        )

        await AsyncPostgresActivityLog(db).append(entry)

        args = db.conn.execute.call_args.args
        assert "INSERT INTO activity_logs" in args[0]
        assert args[1:6] == ("system", "System", "confirmation_failed", "confirmation", "x")
        assert args[6] == "job-1"
        assert len(args[7]) == 2000


class TestConfirmationRepository:
    @pytest.mark.asyncio
    async def test_one_row_per_outcome(self):
        db = FakeDatabase()
        result = DispatchResult.aggregate("job-1", [
            ChannelOutcome.sent(ConfirmationChannel.VOICE, "CA1"),
            ChannelOutcome.failed(ConfirmationChannel.SMS, ErrorKind.TIMEOUT, "too slow"),
        ])

        await AsyncPostgresConfirmationRepository(db).save_result(result)

        assert db.transactional == [True]
        rows = db.conn.executemany.call_args.args[1]
        assert rows[0][:3] == ("job-1", "CALL", "SENT")
        assert rows[0][7] == "CA1"
        assert rows[1][:3] == ("job-1", "SMS", "FAILED")
        assert rows[1][3] is None
        assert rows[1][5:7] == ("too slow", "ChannelTimeout")

    @pytest.mark.asyncio
    async def test_empty_result_writes_nothing(self):
        db = FakeDatabase()

        await AsyncPostgresConfirmationRepository(db).save_result(
            DispatchResult.aggregate("job-1", [])
        )

        assert db.transactional == []

    @pytest.mark.asyncio
    async def test_list_for_job(self):
        db = FakeDatabase()
        db.conn.fetch.return_value = [{"channel": "SMS", "status": "SENT", "external_id": "SM1"}]

        rows = await AsyncPostgresConfirmationRepository(db).list_for_job("job-1")

        assert rows == [{"channel": "SMS", "status": "SENT", "external_id": "SM1"}]
        assert db.conn.fetch.call_args.args[1] == "job-1"


class TestMigrations:
    def test_schema_file_present(self):
        names = [p.name for p in pending_files()]
        assert "001_confirmation_schema.sql" in names

    @pytest.mark.asyncio
    async def test_applies_only_new_files(self, tmp_path):
        (tmp_path / "001_a.sql").write_text("SELECT 1;")
        (tmp_path / "002_b.sql").write_text("SELECT 2;")
        db = FakeDatabase()
        db.conn.fetch.return_value = [{"version": "001_a.sql"}]

        result = await apply_migrations(db, sql_dir=tmp_path)

        assert result == {"ok": True, "applied": ["002_b.sql"], "count": 1}
        assert db.transactional == [True]


class TestDatabase:
    @pytest.mark.asyncio
    async def test_connection_before_connect_raises(self):
        db = Database("postgresql://localhost/test")
        assert db.is_connected is False
        with pytest.raises(RuntimeError):
            async with db.connection():
                pass

    @pytest.mark.asyncio
    async def test_close_without_connect_is_noop(self):
        await Database("postgresql://localhost/test").close()

    @pytest.mark.asyncio
    async def test_from_settings_without_database_url(self):
        from app.config import Settings

        s = Settings(_env_file=None, database_url=None, pghost="127.0.0.1", pgport=6543, pguser="ops")
        conn = AsyncMock()
        conn.fetchval.return_value = 1
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = conn
        pool.close = AsyncMock()

        with patch("app.infra.db_async.asyncpg.create_pool", new=AsyncMock(return_value=pool)) as create_pool:
            db = Database.from_settings(s)
            await db.connect()

        kwargs = create_pool.call_args.kwargs
        assert kwargs["dsn"] is None
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 6543
        assert kwargs["user"] == "ops"
        assert kwargs["server_settings"]["statement_timeout"] == str(s.pg_statement_timeout_ms)
        assert kwargs["server_settings"]["application_name"] == "dispatchhub_confirmations"
        assert db.is_connected is True
        await db.close()

    @pytest.mark.asyncio
    async def test_from_settings_with_database_url(self):
        from app.config import Settings

        s = Settings(_env_file=None, database_url="postgresql://u:p@db/ops")
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = AsyncMock()

        with patch("app.infra.db_async.asyncpg.create_pool", new=AsyncMock(return_value=pool)) as create_pool:
            await Database.from_settings(s).connect()

        kwargs = create_pool.call_args.kwargs
        assert kwargs["dsn"] == "postgresql://u:p@db/ops"
        assert "host" not in kwargs
