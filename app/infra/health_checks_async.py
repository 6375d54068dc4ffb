# app/infra/health_checks_async.py
from __future__ import annotations
import time
from typing import Dict, Any, Iterable
from enum import Enum

from app.core.confirmation.domain import ConfirmationChannel
from app.infra.db_async import Database
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = ("carting_jobs", "intake_items", "confirmations", "activity_logs")


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class for async health checks"""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        """
        Perform health check.
        Returns dict with 'status', 'details', and optionally 'error'
        """
        raise NotImplementedError


class AsyncDatabaseHealthCheck(AsyncHealthCheck):
    """Check database connectivity and that the confirmation tables exist"""

    def __init__(self, db: Database):
        super().__init__("database", critical=True)
        self._db = db

    async def check(self) -> Dict[str, Any]:
        start = time.monotonic()

        try:
            async with self._db.connection() as conn:
                result = await conn.fetchval("SELECT 1")
                if result != 1:
                    return {
                        "status": HealthStatus.UNHEALTHY,
                        "details": "Unexpected query result",
                        "error": f"Expected 1, got {result}"
                    }

                missing_tables = []
                for table in REQUIRED_TABLES:
                    if await conn.fetchval("SELECT to_regclass($1)", table) is None:
                        missing_tables.append(table)

            if missing_tables:
                return {
                    "status": HealthStatus.UNHEALTHY,
                    "details": "Missing required tables",
                    "error": f"Missing: {', '.join(missing_tables)}"
                }

            duration = time.monotonic() - start
            if duration > 1.0:
                return {
                    "status": HealthStatus.DEGRADED,
                    "details": f"Slow database response: {duration:.3f}s",
                    "response_time": duration
                }

            return {
                "status": HealthStatus.HEALTHY,
                "details": "Database operational",
                "response_time": duration
            }

        except Exception as exc:
            logger.error("Database health check failed", exc_info=True)
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Database connection failed",
                "error": str(exc)[:200]
            }


class ChannelsHealthCheck(AsyncHealthCheck):
    """Report which confirmation channels resolved an adapter at startup"""

    def __init__(self, enabled: Iterable[ConfirmationChannel]):
        super().__init__("channels", critical=False)
        self._enabled = tuple(enabled)

    async def check(self) -> Dict[str, Any]:
        enabled = [c.value for c in self._enabled]
        disabled = [c.value for c in ConfirmationChannel.ordered() if c not in self._enabled]

        if not enabled:
            return {
                "status": HealthStatus.DEGRADED,
                "details": "No confirmation channels configured",
                "enabled": enabled,
                "disabled": disabled,
            }
        return {
            "status": HealthStatus.HEALTHY if not disabled else HealthStatus.DEGRADED,
            "details": f"{len(enabled)} channel(s) enabled",
            "enabled": enabled,
            "disabled": disabled,
        }


class AsyncHealthChecker:
    """Aggregate async health checks"""

    def __init__(self, checks: list[AsyncHealthCheck]):
        self.checks = checks

    async def run_checks(self, include_non_critical: bool = True) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            {
                "status": "healthy" | "degraded" | "unhealthy",
                "checks": {...},
                "timestamp": float
            }
        """
        results = {}
        overall_status = HealthStatus.HEALTHY

        for check in self.checks:
            if not include_non_critical and not check.critical:
                continue

            result = await check.check()
            results[check.name] = result

            if result["status"] == HealthStatus.UNHEALTHY and check.critical:
                overall_status = HealthStatus.UNHEALTHY
            elif result["status"] != HealthStatus.HEALTHY and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return {
            "status": overall_status.value,
            "checks": results,
            "timestamp": time.time()
        }
