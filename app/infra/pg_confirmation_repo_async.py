# app/infra/pg_confirmation_repo_async.py
"""
Async PostgreSQL confirmation records (asyncpg).

One row per channel outcome, so dispatchers can see per-channel
delivery status for a job ("SMS sent, call failed").
"""
from __future__ import annotations

from app.core.confirmation.domain import ChannelOutcome, DispatchResult
from app.infra.db_async import Database
from app.infra.logging_config import get_logger

logger = get_logger(__name__)


def _outcome_to_args(job_id: str, outcome: ChannelOutcome) -> tuple:
    """Row values for one outcome, in INSERT column order."""
    if outcome.succeeded:
        return (
            job_id, outcome.channel.record_code, "SENT",
            outcome.timestamp, None, None, None, outcome.provider_reference,
        )
    return (
        job_id, outcome.channel.record_code, "FAILED",
        None, outcome.timestamp, (outcome.error_message or "")[:2000],
        outcome.error_kind.value, None,
    )


class AsyncPostgresConfirmationRepository:
    def __init__(self, db: Database):
        self._db = db

    async def save_result(self, result: DispatchResult) -> None:
        if not result.outcomes:
            return

        rows = [_outcome_to_args(result.job_id, o) for o in result.outcomes]
        async with self._db.connection(autocommit=False) as conn:
            await conn.executemany(
                """
                INSERT INTO confirmations
                  (job_id, channel, status, sent_at, failed_at, fail_reason, error_kind, external_id)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                rows,
            )
        logger.debug(
            "Confirmation records saved: job=%s rows=%d", result.job_id, len(rows),
            extra={"job_id": result.job_id},
        )

    async def list_for_job(self, job_id: str) -> list[dict]:
        """Latest confirmation rows for a job, newest first."""
        async with self._db.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT channel, status, sent_at, failed_at, fail_reason, error_kind, external_id, created_at
                FROM confirmations
                WHERE job_id = $1
                ORDER BY created_at DESC
                LIMIT 50
                """,
                job_id,
            )
        return [dict(row) for row in rows]
