# app/infra/pg_job_reader_async.py
"""
Async PostgreSQL job reader (asyncpg).

Loads a carting job together with the customer contact parsed at intake.
Read-only: the confirmation flow never mutates jobs.
"""
from __future__ import annotations

from app.core.confirmation.domain import Job
from app.infra.db_async import Database
from app.infra.db_resilience_async import retry_on_transient_error
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

_JOB_QUERY = """
    SELECT j.id, j.type, j.status, j.customer, j.address,
           j.date, j.time, j.container_size,
           i.parsed_phone AS phone,
           i.parsed_email AS email
    FROM carting_jobs j
    LEFT JOIN intake_items i ON i.id = j.intake_item_id
    WHERE j.id = $1
"""


def _clean(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _row_to_job(row) -> Job:
    """Convert an asyncpg Record to a Job."""
    return Job(
        id=str(row["id"]),
        customer=row["customer"] or "",
        job_type=row["type"],
        address=row["address"] or "",
        status=row["status"],
        date=row["date"],
        time=_clean(row["time"]),
        container_size=_clean(row["container_size"]),
        phone=_clean(row["phone"]),
        email=_clean(row["email"]),
    )


class AsyncPostgresJobReader:
    def __init__(self, db: Database):
        self._db = db

    @retry_on_transient_error(max_retries=2)
    async def get_job(self, job_id: str) -> Job | None:
        async with self._db.connection() as conn:
            row = await conn.fetchrow(_JOB_QUERY, job_id)

        if row is None:
            logger.debug("Job not found: %s", job_id, extra={"job_id": job_id})
            return None
        return _row_to_job(row)
