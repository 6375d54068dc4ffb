# app/infra/pg_activity_log_async.py
"""
Async PostgreSQL activity log sink (asyncpg).

Append-only: rows are inserted, never updated or deleted here.
"""
from __future__ import annotations

from app.core.confirmation.domain import ActivityLogEntry
from app.infra.db_async import Database


class AsyncPostgresActivityLog:
    def __init__(self, db: Database):
        self._db = db

    async def append(self, entry: ActivityLogEntry) -> None:
        async with self._db.connection() as conn:
            await conn.execute(
                """
                INSERT INTO activity_logs
                  (user_id, user_name, action, module, detail, job_id, error, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                entry.actor_id,
                entry.actor_name,
                entry.action,
                entry.module,
                entry.detail,
                entry.job_id,
                entry.error[:2000] if entry.error else None,  # Truncate long errors
                entry.created_at,
            )
