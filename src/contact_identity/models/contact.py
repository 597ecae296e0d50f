"""Contact model: one stored sighting of a customer's email and/or phone."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from contact_identity.models.base import Base
from contact_identity.models.enums import LinkPrecedence


class Contact(Base):
    """A contact record belonging to exactly one identity cluster.

    Contacts are created as a fresh PRIMARY (nothing matched) or as a
    SECONDARY attached to an existing cluster. After creation only
    ``linked_id`` and ``link_precedence`` ever change.
    """

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    email: Mapped[str | None] = mapped_column(String(320), index=True)
    phone_number: Mapped[str | None] = mapped_column(String(64), index=True)

    linked_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id"), index=True)
    """Primary this contact belongs to. Set only when SECONDARY."""

    link_precedence: Mapped[LinkPrecedence] = mapped_column(
        Enum(
            LinkPrecedence,
            name="link_precedence",
            values_callable=lambda members: [m.value for m in members],
        ),
        default=LinkPrecedence.PRIMARY,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.clock_timestamp()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.clock_timestamp(),
        onupdate=func.clock_timestamp(),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    """Soft-delete marker. Deleted rows are invisible to resolution."""

    __table_args__ = (
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contacts_linkage",
        ),
        CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_contacts_identity_present",
        ),
    )

    # Server-generated columns come back via RETURNING, so no lazy load is
    # needed after flush under asyncio.
    __mapper_args__ = {"eager_defaults": True}

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    def __repr__(self) -> str:
        return (
            f"Contact(id={self.id!r}, email={self.email!r}, "
            f"phone_number={self.phone_number!r}, linked_id={self.linked_id!r}, "
            f"link_precedence={self.link_precedence!s})"
        )


# One live row per exact (email, phone) pair. Racing inserts of the same pair
# fail here instead of producing a second primary or a duplicate secondary.
Index(
    "uq_contacts_identity_pair",
    func.coalesce(Contact.email, ""),
    func.coalesce(Contact.phone_number, ""),
    unique=True,
    postgresql_where=Contact.deleted_at.is_(None),
)
