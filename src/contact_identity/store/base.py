"""Contact store ports.

The resolver depends only on these protocols. A provider hands out one
``ContactStore`` per transaction; everything the resolver reads and writes
inside ``async with provider.transaction() as store`` commits or rolls back
together.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from contact_identity.models import Contact, LinkPrecedence


class ContactStore(Protocol):
    """Reads and writes contact rows inside a single transaction."""

    async def find_by_identity(
        self,
        *,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> list[Contact]:
        """Return live contacts whose email or phone equals the given value.

        A missing field matches nothing. Ordered by creation time, then id.
        """
        ...

    async def find_by_id_or_linked_id(self, ids: Iterable[int]) -> list[Contact]:
        """Return live contacts whose id or linked_id is in ``ids``."""
        ...

    async def create(
        self,
        *,
        email: str | None,
        phone_number: str | None,
        linked_id: int | None,
        link_precedence: LinkPrecedence,
    ) -> Contact:
        """Insert a contact and return it with id and timestamps assigned."""
        ...

    async def update(
        self,
        contact_id: int,
        *,
        linked_id: int | None,
        link_precedence: LinkPrecedence,
    ) -> Contact:
        """Set linkage on an existing contact. Same values are a no-op."""
        ...


class ContactStoreProvider(Protocol):
    """Opens transactions against the contact store.

    Implementations raise ``StoreConflict`` when a concurrent writer makes
    the transaction unserializable or violates the identity-pair uniqueness.
    """

    def transaction(self) -> AbstractAsyncContextManager[ContactStore]: ...
