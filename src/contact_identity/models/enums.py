"""Enumerations for the Contact Identity data model."""

from enum import Enum


class LinkPrecedence(str, Enum):
    """Role of a contact inside its identity cluster.

    A cluster has exactly one PRIMARY (the oldest record) at rest. Every other
    member is SECONDARY and points directly at that primary, never at another
    secondary. A primary may be demoted on merge; a secondary is never promoted.
    """

    PRIMARY = "primary"
    SECONDARY = "secondary"
