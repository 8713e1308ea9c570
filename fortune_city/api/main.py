"""
Main FastAPI application for the Fortune City backend.
Configures the API server with routes, middleware, and error handling.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

import structlog

from fortune_city.api.middleware import add_middleware
from fortune_city.api.routes import (
    deposits, economy, fame, machines, notifications, referrals, settings as settings_routes,
    users, wheel, withdrawals
)
from fortune_city.api.schemas.common import (
    HealthCheckResponse, SuccessResponse, create_error_response
)
from fortune_city.core.config import settings
from fortune_city.core.database import (
    DatabaseManager, close_database, get_async_session, init_database
)
from fortune_city.core.exceptions import FortuneCityException
from fortune_city.core.logging import setup_logging
from fortune_city.scheduler.task_scheduler import get_task_scheduler, shutdown_task_scheduler
from fortune_city.services.settings_service import SettingsService
from fortune_city.services.solana_service import close_solana_service
from fortune_city.services.telegram_bot_service import close_telegram_bot_service
from fortune_city.services.wheel_service import WheelService


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Fortune City API server", environment=settings.environment)

    await init_database()
    async with get_async_session() as session:
        await SettingsService(session).ensure_settings_exist()
        await WheelService(session).ensure_jackpot_exists()

    if settings.scheduler_enabled:
        get_task_scheduler().start()
        logger.info("Background scheduler started")

    yield

    logger.info("Shutting down Fortune City API server")
    await shutdown_task_scheduler()
    await close_solana_service()
    await close_telegram_bot_service()
    await close_database()


async def fortune_city_exception_handler(request: Request, exc: FortuneCityException) -> JSONResponse:
    """Map service errors onto the error envelope."""
    if exc.status_code >= 500:
        logger.error("Request error", path=request.url.path, error=exc.message, code=exc.code)
    else:
        logger.info("Request rejected", path=request.url.path, error=exc.message, code=exc.code)

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.message, exc.code, exc.details).model_dump(mode="json"),
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="Fortune City API",
        description="""
        Backend API for Fortune City, an idle slot-machine economy played
        inside a Telegram Mini App.

        ## Authentication

        ```
        Authorization: tma <telegram-init-data>
        ```
        """,
        version=settings.app_version,
        lifespan=lifespan,
    )

    add_middleware(app)
    app.add_exception_handler(FortuneCityException, fortune_city_exception_handler)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
    )
    async def health_check():
        database_ok = await DatabaseManager.health_check()
        if not database_ok:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "unhealthy",
                    "services": {"database": "unhealthy", "api": "healthy"},
                },
            )

        return HealthCheckResponse(
            version=settings.app_version,
            services={
                "database": "healthy",
                "scheduler": "healthy" if get_task_scheduler().running else "stopped",
            },
        )

    @app.get("/", response_model=SuccessResponse, tags=["System"], summary="API Information")
    async def root():
        return SuccessResponse(
            message=f"Fortune City API v{settings.app_version}",
            data={"version": settings.app_version, "environment": settings.environment},
        )

    prefix = settings.api_v1_prefix
    app.include_router(users.router, prefix=f"{prefix}/users", tags=["Users"])
    app.include_router(machines.router, prefix=f"{prefix}/machines", tags=["Machines"])
    app.include_router(economy.router, prefix=f"{prefix}/economy", tags=["Economy"])
    app.include_router(fame.router, prefix=f"{prefix}/fame", tags=["Fame"])
    app.include_router(wheel.router, prefix=f"{prefix}/wheel", tags=["Wheel"])
    app.include_router(referrals.router, prefix=f"{prefix}/referrals", tags=["Referrals"])
    app.include_router(withdrawals.router, prefix=f"{prefix}/withdrawals", tags=["Withdrawals"])
    app.include_router(deposits.router, prefix=f"{prefix}/deposits", tags=["Deposits"])
    app.include_router(notifications.router, prefix=f"{prefix}/notifications", tags=["Notifications"])
    app.include_router(settings_routes.router, prefix=f"{prefix}/settings", tags=["Settings"])

    logger.info("FastAPI application created")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fortune_city.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
