"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Point the SMS provider's inbound-message webhook at ``POST /sms/inbound``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Services ──
from backend.app.alerts.relay_service import RelayService, build_relay_service

# ── API routers ──
from backend.app.api.v1.contacts import router as contacts_router
from backend.app.api.v1.sms import router as sms_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the relay service on startup, release its resources on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    uses_postgres = settings.STORE_BACKEND.lower() == "postgres"
    if getattr(app.state, "relay", None) is None:
        if uses_postgres and not settings.is_production:
            from backend.app.core.database import init_db
            await init_db()
        app.state.relay = build_relay_service(settings)

    yield

    await app.state.relay.close()
    if uses_postgres:
        from backend.app.core.database import close_db
        await close_db()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

def create_app(relay: Optional[RelayService] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Passing ``relay`` skips building one from settings (used by tests and
    by embedders that wire their own store/gateway).
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Role-based SMS alert relay. Staff and admins broadcast alerts to "
            "subscribers; messages from subscribers and unknown numbers are "
            "escalated to admins."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.relay = relay

    # ── Middleware ──
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(sms_router)
    app.include_router(contacts_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(app.state.relay)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(app.state.relay)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
