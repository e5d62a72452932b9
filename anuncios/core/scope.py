"""Owner scope for a single Anuncios session.

Every collection is owned by exactly one principal: an individual user or an
organization.  Which one a session works against is decided outside this
package (login, organization switcher).  A single :class:`OwnerScope` instance
is created once per session and threaded through every layer (backend, store,
reconciler, serializer) so each layer can read the scope without needing the
raw settings.

personal
    ``org_id is None``.  Collections are listed and created for the logged-in
    user.  Full exports are tagged ``context: "personal"``.

organization
    ``org_id`` holds the organization id.  Collections are listed and created
    with ``orgId`` attached.  Full exports are tagged
    ``context: "organization"``.

    >>> OwnerScope().context
    <ExportContext.PERSONAL: 'personal'>

    >>> OwnerScope(org_id="org-1").query_params
    {'orgId': 'org-1'}

Typical usage::

    from anuncios.core.scope import OwnerScope

    scope = settings.owner_scope
    store = CollectionStore(backend, scope)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from anuncios.core.models import ExportContext

__all__ = ["OwnerScope"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerScope:
    """Immutable owner-scope selector.

    Attributes:
        org_id: Organization id, or ``None`` for the personal scope.
    """

    org_id: str | None = field(default=None)

    def __post_init__(self) -> None:
        if self.org_id is not None and not self.org_id.strip():
            # A blank id from an env var means "personal".
            object.__setattr__(self, "org_id", None)

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def is_organization(self) -> bool:
        """``True`` when the session works against an organization."""
        return self.org_id is not None

    @property
    def context(self) -> ExportContext:
        """Export discriminator matching this scope."""
        return ExportContext.ORGANIZATION if self.is_organization else ExportContext.PERSONAL

    @property
    def query_params(self) -> dict[str, str]:
        """Query-string parameters selecting this scope on list endpoints."""
        return {"orgId": self.org_id} if self.org_id is not None else {}

    def __str__(self) -> str:
        if self.org_id is None:
            return "OwnerScope(personal)"
        return f"OwnerScope(organization={self.org_id})"
