"""SQLAlchemy-backed contact store."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from sqlalchemy import or_, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contact_identity.errors import StoreConflict
from contact_identity.models import Contact, LinkPrecedence

logger = logging.getLogger(__name__)

# unique_violation, serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = frozenset({"23505", "40001", "40P01"})


def _sqlstate(exc: DBAPIError) -> str | None:
    """Extract the SQLSTATE from a wrapped driver error (asyncpg or psycopg)."""
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_conflict(exc: DBAPIError) -> bool:
    """True when the error means "another transaction got there first"."""
    return _sqlstate(exc) in CONFLICT_SQLSTATES


class SqlContactStore:
    """Contact store bound to one ``AsyncSession`` transaction.

    Mutations go through ORM attributes and are flushed immediately, so later
    queries in the same transaction see them and server defaults come back
    via RETURNING.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_identity(
        self,
        *,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> list[Contact]:
        conditions = []
        if email is not None:
            conditions.append(Contact.email == email)
        if phone_number is not None:
            conditions.append(Contact.phone_number == phone_number)
        if not conditions:
            return []

        stmt = (
            select(Contact)
            .where(or_(*conditions))
            .where(Contact.deleted_at.is_(None))
            .order_by(Contact.created_at, Contact.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_id_or_linked_id(self, ids: Iterable[int]) -> list[Contact]:
        id_list = sorted(set(ids))
        if not id_list:
            return []

        stmt = (
            select(Contact)
            .where(or_(Contact.id.in_(id_list), Contact.linked_id.in_(id_list)))
            .where(Contact.deleted_at.is_(None))
            .order_by(Contact.created_at, Contact.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        *,
        email: str | None,
        phone_number: str | None,
        linked_id: int | None,
        link_precedence: LinkPrecedence,
    ) -> Contact:
        contact = Contact(
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=link_precedence,
        )
        self._session.add(contact)
        await self._session.flush()
        return contact

    async def update(
        self,
        contact_id: int,
        *,
        linked_id: int | None,
        link_precedence: LinkPrecedence,
    ) -> Contact:
        contact = await self._session.get(Contact, contact_id)
        if contact is None:
            raise ValueError(f"Contact {contact_id} not found")

        if contact.linked_id == linked_id and contact.link_precedence == link_precedence:
            return contact

        contact.linked_id = linked_id
        contact.link_precedence = link_precedence
        await self._session.flush()
        return contact


class SqlContactStoreProvider:
    """Opens one session and one transaction per resolution attempt.

    Usage:
        provider = SqlContactStoreProvider(create_session_factory(engine))
        async with provider.transaction() as store:
            matches = await store.find_by_identity(email="a@example.com")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        isolation_level: str | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            session_factory: Factory producing sessions bound to the engine.
            isolation_level: Per-transaction isolation (e.g. "SERIALIZABLE").
                None keeps the engine default.
        """
        self._session_factory = session_factory
        self._isolation_level = isolation_level

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlContactStore]:
        try:
            async with self._session_factory() as session, session.begin():
                if self._isolation_level:
                    # Must run before any statement so it applies to this transaction
                    await session.connection(
                        execution_options={"isolation_level": self._isolation_level}
                    )
                yield SqlContactStore(session)
        except DBAPIError as exc:
            if not is_conflict(exc):
                raise
            logger.debug("Contact store conflict (sqlstate=%s): %s", _sqlstate(exc), exc.orig)
            raise StoreConflict(
                "Contact write conflicted with a concurrent request"
            ) from exc
