"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 9001

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Services ──
from backend.app.services.container import ServiceContainer

# ── API routers ──
from backend.app.api.v1.disasters import router as disaster_router
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.simulate import router as simulate_router
from backend.app.realtime.websocket import router as realtime_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    ``services`` lets tests inject a pre-wired container (in-memory stores,
    fixed clock); by default one is built from settings at startup.
    """

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown events."""
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        container = services or ServiceContainer.build(settings)
        await container.start()
        app.state.services = container
        yield
        # Shutdown: close connections
        await container.stop()
        logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Disaster sensor ingestion and alert dispatch. "
            "Classifies earthquake, flood and fire readings into disaster "
            "events, matches them against alert configurations with "
            "per-configuration cooldown, and fans out real-time "
            "notifications to dashboard clients over WebSocket."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (order matters: outermost first) ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(simulate_router)
    app.include_router(disaster_router)
    app.include_router(alert_router)
    app.include_router(realtime_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "sensor-simulation",
                "disaster-events",
                "alert-configs",
                "alert-matching",
                "realtime-feed",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(request.app.state.services)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(request.app.state.services)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
