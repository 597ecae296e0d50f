"""Identity resolution algorithm.

Algorithm overview (one store transaction per attempt):
1. Exact-match lookup on the supplied email OR phone number
2. No match: create a new PRIMARY and return it as its own cluster
3. Match: expand to the connected cluster (matched ids, their primaries,
   and everything linked to those)
4. Collapse primaries: the oldest survives, every other primary is demoted
   and every secondary is re-pointed at the survivor (one hop, no chains)
5. Gap-fill: create one SECONDARY when the request carries information the
   cluster does not hold yet
6. Re-read the survivor's cluster and project it

A StoreConflict (racing insert or unserializable transaction) rolls the
attempt back and the whole resolution re-runs against the new state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from contact_identity.config import settings
from contact_identity.errors import InconsistentState, InvalidInput, StoreConflict
from contact_identity.models import Contact, LinkPrecedence
from contact_identity.resolution.projection import ContactView, creation_order, project_cluster
from contact_identity.store.base import ContactStore, ContactStoreProvider

logger = logging.getLogger(__name__)


def normalize_identity_value(value: str | None) -> str | None:
    """Strip surrounding whitespace; blank values count as absent."""
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class ResolutionResult:
    """Result of resolving one (email, phone) request."""

    contact: ContactView
    """Consolidated view of the resolved cluster."""

    created_ids: list[int] = field(default_factory=list)
    """Contacts inserted by this call (new primary or gap-fill secondary)."""

    demoted_ids: list[int] = field(default_factory=list)
    """Former primaries turned into secondaries by a merge."""

    repointed_ids: list[int] = field(default_factory=list)
    """Secondaries moved from a demoted primary to the survivor."""

    attempts: int = 1
    """Transactions needed, including ones rolled back on conflict."""

    @property
    def changed(self) -> bool:
        return bool(self.created_ids or self.demoted_ids or self.repointed_ids)


class IdentityResolver:
    """Resolves contact identity against a contact store.

    Holds no state between calls; all coordination between concurrent
    resolutions is left to the store's transactions.

    Usage:
        resolver = IdentityResolver(SqlContactStoreProvider(session_factory))
        result = await resolver.resolve(email="a@example.com", phone_number="111")
        result.contact.primary_contact_id
    """

    def __init__(
        self,
        provider: ContactStoreProvider,
        *,
        max_attempts: int | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            provider: Opens store transactions.
            max_attempts: Attempts per call on StoreConflict (default from config).
        """
        self._provider = provider
        self._max_attempts = (
            settings.identify_max_attempts if max_attempts is None else max_attempts
        )
        if self._max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    async def resolve(
        self,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> ResolutionResult:
        """Resolve an email and/or phone number to a consolidated contact.

        Raises:
            InvalidInput: Neither value was supplied. The store is not touched.
            InconsistentState: The matched cluster has no primary.
            StoreConflict: Conflicts persisted through every attempt.
        """
        email = normalize_identity_value(email)
        phone_number = normalize_identity_value(phone_number)
        if email is None and phone_number is None:
            raise InvalidInput("Email or phoneNumber is required")

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._provider.transaction() as store:
                    result = await self._resolve_in_transaction(store, email, phone_number)
            except StoreConflict:
                if attempt >= self._max_attempts:
                    logger.error(
                        "Giving up on email=%r phone=%r after %d conflicting attempts",
                        email,
                        phone_number,
                        attempt,
                    )
                    raise
                logger.warning(
                    "Conflict resolving email=%r phone=%r (attempt %d/%d), re-resolving",
                    email,
                    phone_number,
                    attempt,
                    self._max_attempts,
                )
                continue

            result.attempts = attempt
            return result

    async def _resolve_in_transaction(
        self,
        store: ContactStore,
        email: str | None,
        phone_number: str | None,
    ) -> ResolutionResult:
        matches = await store.find_by_identity(email=email, phone_number=phone_number)

        if not matches:
            contact = await store.create(
                email=email,
                phone_number=phone_number,
                linked_id=None,
                link_precedence=LinkPrecedence.PRIMARY,
            )
            logger.info(
                "Created primary contact %d (email=%r phone=%r)", contact.id, email, phone_number
            )
            return ResolutionResult(
                contact=project_cluster(contact, [contact]),
                created_ids=[contact.id],
            )

        cluster = await self._expand_cluster(store, matches)
        survivor, demoted_ids, repointed_ids = await self._collapse_primaries(store, cluster)

        created_ids: list[int] = []
        gap = await self._fill_gap(store, cluster, survivor, email, phone_number)
        if gap is not None:
            created_ids.append(gap.id)

        members = await store.find_by_id_or_linked_id({survivor.id})
        return ResolutionResult(
            contact=project_cluster(survivor, members),
            created_ids=created_ids,
            demoted_ids=demoted_ids,
            repointed_ids=repointed_ids,
        )

    async def _expand_cluster(
        self,
        store: ContactStore,
        matches: list[Contact],
    ) -> list[Contact]:
        """Expand exact matches to every contact connected to them.

        With one-hop linkage the first query is complete. Linkage left behind
        by older writers (a secondary pointing at a secondary) can reach
        further in either direction, so the query repeats until the id set
        stops growing.
        """
        ids = {c.id for c in matches} | {c.linked_id for c in matches if c.linked_id is not None}
        while True:
            cluster = await store.find_by_id_or_linked_id(ids)
            reached = {c.id for c in cluster} | {
                c.linked_id for c in cluster if c.linked_id is not None
            }
            if reached <= ids:
                return cluster
            ids |= reached

    async def _collapse_primaries(
        self,
        store: ContactStore,
        cluster: list[Contact],
    ) -> tuple[Contact, list[int], list[int]]:
        """Pick the surviving primary and link every other member directly to it.

        Returns:
            Tuple of (survivor, demoted_ids, repointed_ids).
        """
        primaries = sorted((c for c in cluster if c.is_primary), key=creation_order)
        if not primaries:
            contact_ids = [c.id for c in cluster]
            logger.error("Cluster %s has no primary contact", contact_ids)
            raise InconsistentState(
                f"No primary contact found for cluster {contact_ids}",
                contact_ids=contact_ids,
            )

        survivor = primaries[0]
        # Snapshot before demotion mutates the rows
        stale = [c for c in cluster if not c.is_primary and c.linked_id != survivor.id]

        demoted_ids: list[int] = []
        for contact in primaries[1:]:
            await store.update(
                contact.id,
                linked_id=survivor.id,
                link_precedence=LinkPrecedence.SECONDARY,
            )
            demoted_ids.append(contact.id)

        repointed_ids: list[int] = []
        for contact in stale:
            await store.update(
                contact.id,
                linked_id=survivor.id,
                link_precedence=LinkPrecedence.SECONDARY,
            )
            repointed_ids.append(contact.id)

        if demoted_ids:
            logger.info(
                "Merged primaries %s into %d (re-pointed %s)",
                demoted_ids,
                survivor.id,
                repointed_ids,
            )
        elif repointed_ids:
            logger.info("Re-pointed secondaries %s to primary %d", repointed_ids, survivor.id)

        return survivor, demoted_ids, repointed_ids

    async def _fill_gap(
        self,
        store: ContactStore,
        cluster: list[Contact],
        survivor: Contact,
        email: str | None,
        phone_number: str | None,
    ) -> Contact | None:
        """Create a secondary when the request adds something the cluster lacks.

        With both values supplied the exact pair must already exist on some
        member; with one value, that value must appear somewhere.
        """
        if email is not None and phone_number is not None:
            known = any(c.email == email and c.phone_number == phone_number for c in cluster)
        elif email is not None:
            known = any(c.email == email for c in cluster)
        else:
            known = any(c.phone_number == phone_number for c in cluster)

        if known:
            return None

        contact = await store.create(
            email=email,
            phone_number=phone_number,
            linked_id=survivor.id,
            link_precedence=LinkPrecedence.SECONDARY,
        )
        logger.info(
            "Created secondary contact %d under primary %d (email=%r phone=%r)",
            contact.id,
            survivor.id,
            email,
            phone_number,
        )
        return contact
