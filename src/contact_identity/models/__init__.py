"""Database models for Contact Identity."""

from contact_identity.models.base import Base
from contact_identity.models.contact import Contact
from contact_identity.models.enums import LinkPrecedence

__all__ = [
    "Base",
    "Contact",
    "LinkPrecedence",
]
