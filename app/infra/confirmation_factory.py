# app/infra/confirmation_factory.py
"""
Wires a ConfirmationOrchestrator from settings.

Shared by the HTTP app lifespan and the operator CLI so both dispatch
through identical adapters, sinks and policy.
"""
from __future__ import annotations

from typing import Mapping

from app.config import Settings
from app.core.confirmation.domain import ConfirmationChannel, SuccessPolicy
from app.core.confirmation.orchestrator import ConfirmationOrchestrator
from app.core.confirmation.ports import ChannelAdapter
from app.infra.activity_log import ActivityLogger
from app.infra.background import DetachedTaskRunner
from app.infra.confirmation_channels import build_channel_adapters
from app.infra.db_async import Database
from app.infra.pg_activity_log_async import AsyncPostgresActivityLog
from app.infra.pg_confirmation_repo_async import AsyncPostgresConfirmationRepository
from app.infra.pg_job_reader_async import AsyncPostgresJobReader


def channel_timeouts(settings: Settings) -> dict[ConfirmationChannel, float]:
    return {c: settings.channel_timeout(c.value) for c in ConfirmationChannel.ordered()}


def build_orchestrator(
    db: Database,
    settings: Settings,
    runner: DetachedTaskRunner,
    adapters: Mapping[ConfirmationChannel, ChannelAdapter] | None = None,
) -> ConfirmationOrchestrator:
    if adapters is None:
        adapters = build_channel_adapters(settings)

    return ConfirmationOrchestrator(
        jobs=AsyncPostgresJobReader(db),
        adapters=adapters,
        activity=ActivityLogger(AsyncPostgresActivityLog(db), runner),
        timeouts=channel_timeouts(settings),
        policy=SuccessPolicy(settings.confirmation_success_policy),
        store=AsyncPostgresConfirmationRepository(db),
        tasks=runner,
        actor_id=settings.activity_actor_id,
        actor_name=settings.activity_actor_name,
    )
