"""
FastAPI application entry point.
Configures middleware, routers, and lifecycle events.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from home_inventory.core.config import get_settings
from home_inventory.core.errors import AuthSyncError
from home_inventory.core.logging import configure_logging, get_logger
from home_inventory.core.services import AppServices, Services, build_services
from home_inventory.modules.auth.router import router as auth_router
from home_inventory.modules.users.router import router as users_router
from home_inventory.modules.webhooks.router import router as webhooks_router

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the service container on startup unless one was installed
    already (tests do this), and closes what it built on shutdown.
    """
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
    )

    owned: AppServices | None = None
    if getattr(app.state, "services", None) is None:
        owned = build_services(settings)
        app.state.services = owned
        logger.info("services_initialized")

    yield

    if owned is not None:
        await owned.close()
    logger.info("application_shutdown_complete")


async def auth_sync_error_handler(_request: Request, exc: AuthSyncError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


def create_application(services: AppServices | None = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with all middleware,
    routers, and settings applied.
    """
    settings = services.settings if services is not None else get_settings()

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS middleware for frontend communication
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Request-ID"],
    )

    app.add_exception_handler(AuthSyncError, cast(Any, auth_sync_error_handler))

    # Health check endpoint (no auth required)
    @app.get("/health", tags=["Health"])
    async def health_check(services: Services) -> dict[str, object]:
        checks: dict[str, str] = {}

        # Probe PostgreSQL
        try:
            async with services.session_factory() as session:
                await session.execute(text("SELECT 1"))
            checks["db"] = "ok"
        except Exception:
            checks["db"] = "unavailable"

        # Probe Redis
        try:
            if services.redis is not None:
                await services.redis.ping()  # type: ignore[misc,unused-ignore]
                checks["redis"] = "ok"
            else:
                checks["redis"] = "unavailable"
        except Exception:
            checks["redis"] = "unavailable"

        overall = "healthy" if all(v == "ok" for v in checks.values()) else "degraded"
        return {"status": overall, "version": settings.version, "checks": checks}

    app.include_router(
        auth_router,
        prefix=f"{settings.api_v1_prefix}/auth",
        tags=["Auth"],
    )
    app.include_router(
        users_router,
        prefix=f"{settings.api_v1_prefix}/users",
        tags=["Users"],
    )
    # Clerk posts here directly; authenticity comes from the Svix signature.
    app.include_router(
        webhooks_router,
        prefix="/webhooks",
        tags=["Webhooks"],
    )

    return app


# Create application instance
app = create_application()
