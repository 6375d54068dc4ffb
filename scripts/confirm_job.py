#!/usr/bin/env python3
"""
Send confirmations for one job from the command line.

Uses the same settings, adapters and audit trail as POST /confirm.

Usage:
    python scripts/confirm_job.py JOB_ID
    python scripts/confirm_job.py JOB_ID --json
    python scripts/confirm_job.py JOB_ID --history   # stored per-channel records, no dispatch

Exit codes:
    0  at least one channel confirmed (per the configured success policy)
    1  dispatch ran but the job is not confirmed
    2  job not found (with --history: no stored records)
    3  unexpected error
"""
import argparse
import asyncio
import json
import sys

from app.config import settings
from app.core.confirmation.domain import DispatchResult
from app.core.confirmation.errors import JobNotFound
from app.infra.background import DetachedTaskRunner
from app.infra.confirmation_factory import build_orchestrator
from app.infra.db_async import Database
from app.infra.http_client import close_all_sessions
from app.infra.pg_confirmation_repo_async import AsyncPostgresConfirmationRepository
from app.infra.logging_config import setup_logging, get_logger

logger = get_logger("confirm_job")

EXIT_CONFIRMED = 0
EXIT_UNCONFIRMED = 1
EXIT_NOT_FOUND = 2
EXIT_ERROR = 3


def format_result(result: DispatchResult) -> str:
    lines = [
        f"Job {result.job_id}: {'CONFIRMED' if result.overall_succeeded else 'NOT CONFIRMED'}",
    ]
    if not result.outcomes:
        lines.append("  (no reachable contact on file)")
    for outcome in result.outcomes:
        if outcome.succeeded:
            lines.append(f"  {outcome.channel.value:<6} sent    ref={outcome.provider_reference or '-'}")
        else:
            lines.append(
                f"  {outcome.channel.value:<6} FAILED  {outcome.error_kind.value}: {outcome.error_message}"
            )
    return "\n".join(lines)


async def run_dispatch(orchestrator, job_id: str, as_json: bool = False, out=sys.stdout) -> int:
    try:
        result = await orchestrator.dispatch(job_id)
    except JobNotFound as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_NOT_FOUND

    if as_json:
        print(json.dumps(result.to_dict(), indent=2), file=out)
    else:
        print(format_result(result), file=out)

    return EXIT_CONFIRMED if result.overall_succeeded else EXIT_UNCONFIRMED


async def show_history(repo, job_id: str, out=sys.stdout) -> int:
    rows = await repo.list_for_job(job_id)
    if not rows:
        print(f"No confirmation records for job {job_id}", file=out)
        return EXIT_NOT_FOUND

    for row in rows:
        when = row.get("sent_at") or row.get("failed_at") or row.get("created_at")
        ref = row.get("external_id") or row.get("fail_reason") or "-"
        print(f"  {when}  {row['channel']:<5} {row['status']:<6} {ref}", file=out)
    return EXIT_CONFIRMED


async def main(job_id: str, as_json: bool, history: bool = False) -> int:
    db = Database.from_settings(settings)
    runner = DetachedTaskRunner()
    try:
        await db.connect()
        if history:
            return await show_history(AsyncPostgresConfirmationRepository(db), job_id)
        orchestrator = build_orchestrator(db, settings, runner)
        return await run_dispatch(orchestrator, job_id, as_json)
    except Exception as exc:
        logger.critical(f"Dispatch failed: {exc}", exc_info=True)
        return EXIT_ERROR
    finally:
        # Audit rows must be written before the pool closes
        await runner.drain(timeout=10)
        await close_all_sessions()
        await db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Send job confirmations (voice, email, SMS)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("job_id", help="Carting job id")
    parser.add_argument("--json", action="store_true", help="Print the dispatch result as JSON")
    parser.add_argument("--history", action="store_true", help="List stored confirmation records instead of dispatching")
    args = parser.parse_args()

    setup_logging(level=settings.log_level, use_json=False)
    sys.exit(asyncio.run(main(args.job_id.strip(), args.json, args.history)))
