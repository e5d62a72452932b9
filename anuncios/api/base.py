"""Backend interface contract for collections and listings.

The client state store, the import reconciler and the export serializer never
talk HTTP or SQL themselves.  They consume a :class:`CollectionsBackend`, of
which there are two implementations:

* :class:`~anuncios.api.client.ApiBackend` — the web app's REST API.
* :class:`~anuncios.storage.repository.SqliteBackend` — a local single-file
  database, for offline use and integration tests.

Design decisions
----------------
* **Abstract base class** rather than a ``Protocol``: subclasses share the
  async context-manager lifecycle (``close``, ``__aenter__``/``__aexit__``)
  without duplication.
* **Models in, models out**: every method accepts and returns the pydantic
  models of :mod:`anuncios.core.models`, never raw wire dicts.
* **Errors**: every failed remote call raises
  :class:`~anuncios.core.exceptions.RemoteOperationError` (or a subclass).
  Nothing is swallowed here; partial-failure policy belongs to the callers.

Typical usage::

    async with ApiBackend(settings) as backend:
        collections = await backend.list_collections(scope)
        listings = await backend.list_listings(collections[0].id)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import TracebackType

from anuncios.core.models import (
    Collection,
    CollectionUpdate,
    Listing,
    ListingData,
    ListingUpdate,
)
from anuncios.core.scope import OwnerScope

__all__ = ["CollectionsBackend", "ShareInfo", "SharedCollection"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShareInfo:
    """Share status of one collection.

    Attributes:
        is_shared: Whether an anonymous read-only link currently exists.
        share_token: Token of that link, or ``None``.
        share_url: Absolute link, when the backend can build one.
    """

    is_shared: bool
    share_token: str | None = None
    share_url: str | None = None


@dataclass(frozen=True)
class SharedCollection:
    """Read-only view of a collection fetched through its share token."""

    collection: Collection
    listings: list[Listing]


class CollectionsBackend(ABC):
    """Abstract base for every collections/listings backend."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by this backend.

        The default implementation is a no-op.
        """

    async def __aenter__(self) -> CollectionsBackend:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_collections(self, scope: OwnerScope) -> list[Collection]:
        """Return every collection of *scope*, in backend order."""

    @abstractmethod
    async def create_collection(
        self,
        name: str,
        *,
        scope: OwnerScope,
        is_default: bool = False,
    ) -> Collection:
        """Create a collection owned by *scope* and return it."""

    @abstractmethod
    async def update_collection(
        self,
        collection_id: str,
        updates: CollectionUpdate,
    ) -> Collection:
        """Apply a partial update and return the full updated collection."""

    @abstractmethod
    async def delete_collection(self, collection_id: str) -> None:
        """Delete a collection and, with it, all its listings."""

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_listings(self, collection_id: str) -> list[Listing]:
        """Return every listing of a collection."""

    @abstractmethod
    async def create_listing(self, collection_id: str, data: ListingData) -> Listing:
        """Create a listing inside a collection and return it."""

    @abstractmethod
    async def update_listing(
        self,
        collection_id: str,
        listing_id: str,
        patch: ListingUpdate,
    ) -> Listing:
        """Apply a partial patch and return the full updated listing."""

    @abstractmethod
    async def delete_listing(self, collection_id: str, listing_id: str) -> None:
        """Delete one listing."""

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_share_status(self, collection_id: str) -> ShareInfo:
        """Return whether *collection_id* currently has a public link."""

    @abstractmethod
    async def create_share_link(self, collection_id: str) -> tuple[Collection, ShareInfo]:
        """Publish a collection and return it together with its link."""

    @abstractmethod
    async def revoke_share_link(self, collection_id: str) -> Collection:
        """Remove the public link of a collection and return it as stored."""

    @abstractmethod
    async def fetch_shared_collection(self, token: str) -> SharedCollection:
        """Read a collection anonymously through its share token."""

    # ------------------------------------------------------------------
    # AI parse
    # ------------------------------------------------------------------

    @abstractmethod
    async def parse_listing(self, raw_text: str) -> ListingData:
        """Turn free text into listing fields.

        Raises:
            :class:`~anuncios.core.exceptions.ListingParseError`: one of its
            typed subclasses (unauthorized, service unavailable, rate limited,
            malformed response).
        """
