"""Contact store ports and adapters.

Submodules:
- base: ContactStore / ContactStoreProvider protocols used by the resolver
- sql: SQLAlchemy adapter (SERIALIZABLE transactions, conflict translation)
- memory: in-memory adapter with the same transactional contract
"""

from contact_identity.store.base import ContactStore, ContactStoreProvider
from contact_identity.store.memory import InMemoryContactStore, InMemoryContactStoreProvider
from contact_identity.store.sql import SqlContactStore, SqlContactStoreProvider

__all__ = [
    "ContactStore",
    "ContactStoreProvider",
    "InMemoryContactStore",
    "InMemoryContactStoreProvider",
    "SqlContactStore",
    "SqlContactStoreProvider",
]
