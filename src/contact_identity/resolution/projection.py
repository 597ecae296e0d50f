"""Projection of a resolved cluster into the consolidated contact view."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from contact_identity.models import Contact, LinkPrecedence


@dataclass(frozen=True)
class ContactView:
    """Consolidated identity returned to callers."""

    primary_contact_id: int
    emails: list[str]
    phone_numbers: list[str]
    secondary_contact_ids: list[int]


def creation_order(contact: Contact) -> tuple[datetime, int]:
    """Sort key: oldest first, lowest id breaks ties."""
    return (contact.created_at, contact.id)


def _unique_values(first: str | None, rest: Iterable[str | None]) -> list[str]:
    values: list[str] = []
    for value in (first, *rest):
        if value and value not in values:
            values.append(value)
    return values


def project_cluster(primary: Contact, members: Iterable[Contact]) -> ContactView:
    """Build the view for a cluster.

    The primary's own email/phone come first, then the other members' values
    in creation order, each value once. Secondary ids are in creation order.
    """
    ordered = sorted(members, key=creation_order)
    return ContactView(
        primary_contact_id=primary.id,
        emails=_unique_values(primary.email, (c.email for c in ordered)),
        phone_numbers=_unique_values(primary.phone_number, (c.phone_number for c in ordered)),
        secondary_contact_ids=[
            c.id for c in ordered if c.link_precedence == LinkPrecedence.SECONDARY
        ],
    )
