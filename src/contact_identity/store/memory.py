"""In-memory contact store (no database).

Rows live in a dict keyed by id. Transactions are serialized with an
``asyncio.Lock`` and undone on error, which gives the same all-or-nothing
contract as the SQL store for a single process.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from contact_identity.errors import StoreConflict
from contact_identity.models import Contact, LinkPrecedence


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _creation_key(contact: Contact) -> tuple[datetime, int]:
    return (contact.created_at, contact.id)


class InMemoryContactStore:
    """Contact store view for one in-memory transaction.

    Keeps an undo journal: ids it created and the linkage it overwrote.
    """

    def __init__(self, provider: InMemoryContactStoreProvider) -> None:
        self._provider = provider
        self._created: list[int] = []
        self._overwritten: dict[int, tuple[int | None, LinkPrecedence, datetime]] = {}

    def _live(self) -> Iterable[Contact]:
        return (c for c in self._provider.rows.values() if c.deleted_at is None)

    async def find_by_identity(
        self,
        *,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> list[Contact]:
        matches = [
            c
            for c in self._live()
            if (email is not None and c.email == email)
            or (phone_number is not None and c.phone_number == phone_number)
        ]
        return sorted(matches, key=_creation_key)

    async def find_by_id_or_linked_id(self, ids: Iterable[int]) -> list[Contact]:
        wanted = set(ids)
        matches = [c for c in self._live() if c.id in wanted or c.linked_id in wanted]
        return sorted(matches, key=_creation_key)

    async def create(
        self,
        *,
        email: str | None,
        phone_number: str | None,
        linked_id: int | None,
        link_precedence: LinkPrecedence,
    ) -> Contact:
        # Mirrors the unique (email, phone) index over live rows
        for existing in self._live():
            if existing.email == email and existing.phone_number == phone_number:
                raise StoreConflict(
                    f"Contact with email={email!r} phone_number={phone_number!r} already exists"
                )

        now = self._provider.clock()
        contact = Contact(
            id=self._provider.next_id(),
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=link_precedence,
            created_at=now,
            updated_at=now,
            deleted_at=None,
        )
        self._provider.rows[contact.id] = contact
        self._created.append(contact.id)
        return contact

    async def update(
        self,
        contact_id: int,
        *,
        linked_id: int | None,
        link_precedence: LinkPrecedence,
    ) -> Contact:
        contact = self._provider.rows.get(contact_id)
        if contact is None:
            raise ValueError(f"Contact {contact_id} not found")

        if contact.linked_id == linked_id and contact.link_precedence == link_precedence:
            return contact

        self._overwritten.setdefault(
            contact_id, (contact.linked_id, contact.link_precedence, contact.updated_at)
        )
        contact.linked_id = linked_id
        contact.link_precedence = link_precedence
        contact.updated_at = self._provider.clock()
        return contact

    def rollback(self) -> None:
        for contact_id in self._created:
            self._provider.rows.pop(contact_id, None)
        for contact_id, (linked_id, precedence, updated_at) in self._overwritten.items():
            contact = self._provider.rows[contact_id]
            contact.linked_id = linked_id
            contact.link_precedence = precedence
            contact.updated_at = updated_at
        self._created.clear()
        self._overwritten.clear()


class InMemoryContactStoreProvider:
    """Process-local contact store provider.

    Usage:
        provider = InMemoryContactStoreProvider()
        resolver = IdentityResolver(provider)
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.rows: dict[int, Contact] = {}
        self.clock = clock
        self._last_id = 0
        self._lock = asyncio.Lock()

    def next_id(self) -> int:
        self._last_id += 1
        return self._last_id

    def load(self, contacts: Iterable[Contact]) -> list[Contact]:
        """Insert pre-existing rows as-is (ids and timestamps kept when set)."""
        loaded = []
        for contact in contacts:
            if contact.id is None:
                contact.id = self.next_id()
            else:
                self._last_id = max(self._last_id, contact.id)
            if contact.created_at is None:
                contact.created_at = self.clock()
            if contact.updated_at is None:
                contact.updated_at = contact.created_at
            self.rows[contact.id] = contact
            loaded.append(contact)
        return loaded

    def all_contacts(self) -> list[Contact]:
        """All rows, deleted included, in id order."""
        return [self.rows[contact_id] for contact_id in sorted(self.rows)]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryContactStore]:
        async with self._lock:
            store = InMemoryContactStore(self)
            try:
                yield store
            except BaseException:
                store.rollback()
                raise
