"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 5000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import Settings, get_settings
from backend.app.core.container import ServiceContainer, build_container
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware

# ── API routers ──
from backend.app.api.v1.contacts import router as contacts_router
from backend.app.api.v1.emergency import router as emergency_router
from backend.app.api.v1.live import router as live_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    settings: Settings = app.state.settings
    container: ServiceContainer = app.state.container
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if settings.DATABASE_CREATE_TABLES:
        await container.database.init_models()
    yield
    # Shutdown: close connections
    await container.close()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    container = container or build_container(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Personal safety emergency service. Stores trusted emergency "
            "contacts, activates panic alerts that notify every contact over "
            "SMS, email and push, tracks the alert lifecycle through "
            "resolution, and streams live alert events."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    # ── Middleware stack (order matters — outermost first) ──
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
    app.include_router(emergency_router)
    app.include_router(contacts_router)
    app.include_router(live_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "emergency-contacts",
                "panic-alerts",
                "notification-dispatch",
                "live-events",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(request.app.state.container)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(request.app.state.container)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
