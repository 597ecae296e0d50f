"""Identity resolution for Contact Identity.

Submodules:
- resolver: match, expand, merge, gap-fill (IdentityResolver)
- projection: consolidated ContactView of a cluster
"""

from contact_identity.resolution.projection import ContactView, creation_order, project_cluster
from contact_identity.resolution.resolver import (
    IdentityResolver,
    ResolutionResult,
    normalize_identity_value,
)

__all__ = [
    "ContactView",
    "IdentityResolver",
    "ResolutionResult",
    "creation_order",
    "normalize_identity_value",
    "project_cluster",
]
