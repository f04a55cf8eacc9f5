"""
Application service container.

Built once by the application lifespan and stored on ``app.state.services``;
request handlers reach it through ``get_services``. Tests build their own
container from fakes instead of patching module globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from home_inventory.core.config import Settings
from home_inventory.core.logging import get_logger
from home_inventory.core.reporting import ErrorReporter, LogReporter
from home_inventory.core.security.clerk_session import SessionVerifier
from home_inventory.db.session import create_engine_from_settings, create_session_factory
from home_inventory.modules.auth.clerk_client import ClerkClient
from home_inventory.modules.auth.service import UserSyncService
from home_inventory.modules.auth.upsert import IdentityUpsertEngine
from home_inventory.modules.webhooks.idempotency import IdempotencyStore, RedisIdempotencyStore

logger = get_logger(__name__)


@dataclass
class AppServices:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    reporter: ErrorReporter
    user_sync: UserSyncService
    session_verifier: SessionVerifier
    idempotency: IdempotencyStore
    engine: AsyncEngine | None = None
    redis: redis.Redis | None = None
    clerk: ClerkClient | None = None

    async def close(self) -> None:
        """Release network resources owned by the container."""
        if self.clerk is not None:
            await self.clerk.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("services_closed")


def build_services(settings: Settings) -> AppServices:
    """Wire the production service graph from settings."""
    engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(engine)
    redis_client = redis.from_url(str(settings.redis_url), decode_responses=True)  # type: ignore[no-untyped-call]
    clerk = ClerkClient.from_settings(settings)
    reporter = LogReporter()

    upsert_engine = IdentityUpsertEngine(
        session_factory,
        reporter,
        max_attempts=settings.user_sync_max_attempts,
    )

    return AppServices(
        settings=settings,
        session_factory=session_factory,
        reporter=reporter,
        user_sync=UserSyncService(upsert_engine, clerk, reporter),
        session_verifier=SessionVerifier.from_settings(settings),
        idempotency=RedisIdempotencyStore(redis_client),
        engine=engine,
        redis=redis_client,
        clerk=clerk,
    )


def get_services(request: Request) -> AppServices:
    """Dependency returning the container built by the lifespan."""
    services: AppServices = request.app.state.services
    return services


Services = Annotated[AppServices, Depends(get_services)]
