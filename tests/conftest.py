"""Shared pytest fixtures for Contact Identity tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from contact_identity.config import settings
from contact_identity.models import Base, Contact, LinkPrecedence
from contact_identity.resolution import IdentityResolver
from contact_identity.store import InMemoryContactStoreProvider, SqlContactStoreProvider

# Use a separate test database to avoid polluting development data
TEST_DATABASE_URL = settings.database_url.replace(
    "/contact_identity", "/contact_identity_test"
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TickingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self._now = start

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


@pytest.fixture
def memory_provider() -> InMemoryContactStoreProvider:
    """Empty in-memory store with a deterministic clock."""
    return InMemoryContactStoreProvider(clock=TickingClock())


@pytest.fixture
def resolver(memory_provider: InMemoryContactStoreProvider) -> IdentityResolver:
    return IdentityResolver(memory_provider, max_attempts=3)


# Type alias for factory fixture
MakeContact = Callable[..., Contact]


@pytest.fixture
def make_contact() -> MakeContact:
    """Factory fixture for creating Contact rows to load into a store."""

    def _make(
        *,
        contact_id: int | None = None,
        email: str | None = None,
        phone_number: str | None = None,
        linked_id: int | None = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        created_at: datetime | None = None,
        deleted_at: datetime | None = None,
    ) -> Contact:
        return Contact(
            id=contact_id,
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=link_precedence,
            created_at=created_at,
            updated_at=created_at,
            deleted_at=deleted_at,
        )

    return _make


def assert_one_hop_to_primary(contacts: list[Contact]) -> None:
    """Every live contact reaches exactly one live primary in at most one hop."""
    by_id = {c.id: c for c in contacts if c.deleted_at is None}
    for contact in by_id.values():
        if contact.link_precedence == LinkPrecedence.PRIMARY:
            assert contact.linked_id is None, f"{contact} is primary but linked"
            continue
        target = by_id.get(contact.linked_id)
        assert target is not None, f"{contact} points at a missing contact"
        assert target.link_precedence == LinkPrecedence.PRIMARY, f"{contact} is chained"


# -----------------------------------------------------------------------------
# PostgreSQL fixtures (integration tests only)
# -----------------------------------------------------------------------------


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine.

    This creates all tables at the start and drops them at the end. Tests
    using it are skipped when the test database is unreachable.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
    )

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    except (OSError, SQLAlchemyError) as e:
        await engine.dispose()
        pytest.skip(f"Test database unavailable: {e}")

    yield engine

    # Cleanup: drop all tables after tests
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def sql_provider(session_factory: async_sessionmaker[AsyncSession]) -> SqlContactStoreProvider:
    return SqlContactStoreProvider(session_factory, isolation_level="SERIALIZABLE")


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for inspecting committed state after resolutions."""
    async with session_factory() as session:
        yield session
