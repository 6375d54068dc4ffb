# app/transport/http_app.py
"""
HTTP application for job confirmations.

Endpoints:
1. Public: POST /confirm, GET /health, GET /ready
2. Internal: GET /health/detailed, GET /metrics (metrics token or internal network)
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.core.confirmation.errors import JobNotFound
from app.core.confirmation.orchestrator import ConfirmationOrchestrator
from app.infra.background import DetachedTaskRunner
from app.infra.confirmation_factory import build_orchestrator
from app.infra.db_async import Database
from app.infra.health_checks_async import (
    AsyncDatabaseHealthCheck,
    AsyncHealthChecker,
    ChannelsHealthCheck,
)
from app.infra.http_client import close_all_sessions
from app.infra.logging_config import setup_logging, get_logger, LogContext
from app.infra.metrics import get_metrics_collector
from app.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from app.transport.schemas import ConfirmIn, ConfirmOut, DispatchOut
from app.transport.security import (
    require_metrics_auth,
    SecurityHeaders,
    sanitize_error_message,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)

# Upper bound on waiting for detached audit writes at shutdown
SHUTDOWN_DRAIN_TIMEOUT = 10.0


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_orchestrator(request: Request) -> ConfirmationOrchestrator:
    """Get orchestrator from app state"""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return orchestrator


def get_health_checker(request: Request) -> AsyncHealthChecker:
    checker = getattr(request.app.state, "health_checker", None)
    if checker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return checker


# ============================================================================
# MIDDLEWARE FOR SECURITY HEADERS
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production and settings.log_level.upper() == "DEBUG":
        logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
        raise RuntimeError("LOG_LEVEL=DEBUG in production")

    # Migrations are NOT run here: python -m app.infra.migrate
    db = Database.from_settings(settings)
    await db.connect()

    runner = DetachedTaskRunner()
    orchestrator = build_orchestrator(db, settings, runner)

    fastapi_app.state.db = db
    fastapi_app.state.task_runner = runner
    fastapi_app.state.orchestrator = orchestrator
    fastapi_app.state.health_checker = AsyncHealthChecker([
        AsyncDatabaseHealthCheck(db),
        ChannelsHealthCheck(orchestrator.enabled_channels),
    ])

    logger.info(
        "Application startup complete: channels=%s policy=%s",
        ",".join(c.value for c in orchestrator.enabled_channels) or "none",
        orchestrator.policy.value,
    )

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    # Let in-flight audit and confirmation writes land before the pool goes away
    abandoned = await runner.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT)
    if abandoned:
        logger.warning(f"Shutdown abandoned {abandoned} detached task(s)")

    await close_all_sessions()
    await db.close()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="DispatchHub Confirmations",
    description="Multi-channel job confirmation dispatch",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

# CORS - Restrictive in production
if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness probe. Returns minimal information."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(checker: AsyncHealthChecker = Depends(get_health_checker)):
    """Readiness probe: critical checks only (database)."""
    result = await checker.run_checks(include_non_critical=False)

    if result["status"] == "unhealthy":
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy"}
        )

    return {"status": "healthy"}


@app.post("/confirm")
async def confirm(
    request: Request,
    orchestrator: ConfirmationOrchestrator = Depends(get_orchestrator),
):
    """
    Send confirmations for a scheduled job on every applicable channel.

    200 is returned once dispatch completes, whatever the per-channel
    outcome; ``dispatch`` carries the detail.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    try:
        body = ConfirmIn.model_validate(payload if isinstance(payload, dict) else {})
    except ValidationError:
        body = ConfirmIn()

    job_id = (body.job_id or "").strip()
    if not job_id:
        return JSONResponse(status_code=400, content={"error": "jobId required"})

    log = LogContext(logger, job_id=job_id, request_id=getattr(request.state, "request_id", None))

    try:
        result = await orchestrator.dispatch(job_id)
    except JobNotFound as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})
    except Exception as exc:
        log.error(f"Confirmation dispatch failed: {exc.__class__.__name__}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": sanitize_error_message(exc, settings.is_production)},
        )

    return ConfirmOut(dispatch=DispatchOut.from_result(result)).model_dump(mode="json", by_alias=True)


# ============================================================================
# INTERNAL ENDPOINTS (metrics token or internal network)
# ============================================================================

@app.get("/health/detailed", dependencies=[Depends(require_metrics_auth)])
async def detailed_health(checker: AsyncHealthChecker = Depends(get_health_checker)):
    """Database and channel status, including disabled channels."""
    return await checker.run_checks(include_non_critical=True)


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """Operational counters and latency histograms."""
    collector = get_metrics_collector()
    return collector.get_metrics()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # RequestLoggingMiddleware covers prod
        server_header=False,
        date_header=False,
    )
