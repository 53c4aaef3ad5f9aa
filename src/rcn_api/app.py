from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from rcn_api.core.settings import settings
from rcn_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import RedemptionSessionSweeper


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = RedemptionSessionSweeper(
        async_session,
        interval_seconds=settings.redemption_session_sweep_interval_seconds,
        limit=settings.redemption_session_sweep_limit,
    )
    app.state.redemption_session_sweeper = sweeper

    sweeper_enabled = settings.redemption_session_sweeper_enabled
    if sweeper_enabled:
        sweeper.start()
        logger.info(
            "Redemption session sweeper enabled",
            interval_seconds=sweeper.interval_seconds,
            limit=settings.redemption_session_sweep_limit,
        )
    else:
        logger.info(
            "Redemption session sweeper disabled",
            reason="redemption_session_sweeper_enabled is false",
        )

    try:
        yield
    finally:
        if sweeper_enabled and sweeper.is_running:
            await sweeper.stop()


def create_app() -> FastAPI:
    """Application factory for the RCN redemption service."""
    configure_logging(
        service_name="rcn-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="RCN Redemption API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="rcn-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
