"""Database engine and session management.

The engine is process-scoped but never module-global: the app lifespan and
the CLI build it from settings, pass the session factory into the store
provider, and dispose it on the way out.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from contact_identity.config import Settings, settings as default_settings
from contact_identity.models import Base


def create_engine(settings: Settings = default_settings) -> AsyncEngine:
    """Create the async engine with bounded connect and statement timeouts."""
    connect_args: dict[str, float] = {}
    if settings.database_url.startswith("postgresql+asyncpg"):
        connect_args = {
            "timeout": settings.database_connect_timeout,
            "command_timeout": settings.database_command_timeout,
        }
    return create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the SQL contact store."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
