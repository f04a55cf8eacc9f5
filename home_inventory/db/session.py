"""
Async database engine and session construction using SQLAlchemy 2.0.

Nothing here is global: the application lifespan builds the engine and
session factory once and hands them to the services that need them.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from home_inventory.core.config import Settings

SERIALIZABLE = "SERIALIZABLE"


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create the pooled async engine described by ``settings``."""
    return create_async_engine(
        str(settings.database_url),
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_pre_ping=True,  # Verify connections before use
        echo=settings.debug,  # SQL logging in debug mode
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by request handlers and sync services."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Yields a session for the duration of the request and ensures
    proper cleanup regardless of success or failure.
    """
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.services.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Type alias for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
