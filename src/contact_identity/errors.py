"""Error taxonomy for identity resolution.

IdentityError
├── InvalidInput       - caller supplied neither email nor phone number
├── InconsistentState  - a matched cluster has no reachable primary
└── StoreConflict      - uniqueness or serialization conflict in the store

Errors raised by the database driver that are not conflicts are never wrapped;
they propagate to the caller unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable


class IdentityError(Exception):
    """Base class for identity resolution errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(IdentityError):
    """Neither an email nor a phone number was supplied."""


class InconsistentState(IdentityError):
    """A cluster was found without any primary contact.

    This points at corrupted prior state, not at a bad request. It is
    reported and logged, never repaired automatically.
    """

    def __init__(self, message: str, *, contact_ids: Iterable[int] = ()) -> None:
        super().__init__(message)
        self.contact_ids = sorted(contact_ids)


class StoreConflict(IdentityError):
    """A concurrent writer touched the same identity; the transaction was rolled back."""
