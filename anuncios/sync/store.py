"""Client state store: the session's single source of collection/listing truth.

One :class:`CollectionStore` is constructed per session and passed to every
consumer.  It owns three caches (collections, active collection, listings of
the active collection); nothing else writes to them.

State machine
-------------
::

    UNINITIALIZED ──initialize()──► LOADING_COLLECTIONS ──ok──► READY
          ▲                                │                    │
          └────────── failure (error set) ─┘      select / delete / reload
                                                        │
                                          is_loading_listings (nested)

Mutation contract
-----------------
* The remote call is issued first; the cache changes only after it succeeds,
  by merging the server's returned object.  A failed call leaves the cache
  exactly as it was and propagates the error.
* A collection the server returns as default clears every other cached
  default in the same step.
* Every successful mutation increments :attr:`CollectionStore.refresh_counter`.

Staleness
---------
Every listings fetch is stamped with the active collection id at dispatch
time and a request number.  The result is applied only if that collection
is still active and no newer fetch was dispatched since; otherwise it is
discarded and logged (``event=LISTINGS_STALE_DISCARDED``).

Typical usage::

    store = CollectionStore(backend, settings.owner_scope)
    await store.initialize()
    await store.add_listing(ListingData(titulo="Casa", endereco="Rua A, 1"))
    summary = await store.import_document(text)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any

from anuncios.api.base import CollectionsBackend, ShareInfo
from anuncios.core import events
from anuncios.core.exceptions import (
    EmptyImportError,
    NoActiveCollectionError,
    RemoteOperationError,
    StoreError,
    UnknownCollectionError,
)
from anuncios.core.logging_config import operation_scope
from anuncios.core.models import (
    Collection,
    CollectionUpdate,
    Listing,
    ListingData,
    ListingUpdate,
)
from anuncios.core.scope import OwnerScope
from anuncios.core.settings import DEFAULT_IMPORT_LABEL
from anuncios.interchange import serializer
from anuncios.interchange.normalizer import normalize_document, parse_document
from anuncios.sync.reconciler import (
    DEFAULT_MAX_CONCURRENCY,
    ImportSummary,
    import_groups,
    import_into_collection,
)

__all__ = ["CollectionStore", "StoreState"]

logger = logging.getLogger(__name__)


class StoreState(StrEnum):
    """Top-level lifecycle state of a :class:`CollectionStore`."""

    UNINITIALIZED = "uninitialized"
    LOADING_COLLECTIONS = "loading-collections"
    READY = "ready"


def _pick_fallback(collections: Iterable[Collection]) -> Collection | None:
    """Return the default collection, else the first, else ``None``."""
    candidates = list(collections)
    for collection in candidates:
        if collection.is_default:
            return collection
    return candidates[0] if candidates else None


def _clear_other_defaults(collections: list[Collection], keep_id: str) -> list[Collection]:
    return [
        c.model_copy(update={"is_default": False}) if c.is_default and c.id != keep_id else c
        for c in collections
    ]


class CollectionStore:
    """In-memory cache of one owner scope's collections, kept in sync with a backend.

    Args:
        backend: Backend every remote call goes through.
        scope: Owner scope of the session (default: personal).
        default_label: Label for imported collections that carry none.
        max_concurrency: Concurrent listing creates per imported collection.
    """

    def __init__(
        self,
        backend: CollectionsBackend,
        scope: OwnerScope | None = None,
        *,
        default_label: str = DEFAULT_IMPORT_LABEL,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self._backend = backend
        self._scope = scope or OwnerScope()
        self._default_label = default_label
        self._max_concurrency = max_concurrency

        self._state = StoreState.UNINITIALIZED
        self._error: str | None = None
        self._collections: list[Collection] = []
        self._active: Collection | None = None
        self._listings: list[Listing] = []
        self._loading_listings = False
        self._listings_seq = 0
        self._refresh_counter = 0
        self._disposed = False

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def scope(self) -> OwnerScope:
        return self._scope

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def error(self) -> str | None:
        """Message of the last failed collections load, cleared on retry."""
        return self._error

    @property
    def is_loading_listings(self) -> bool:
        return self._loading_listings

    @property
    def collections(self) -> tuple[Collection, ...]:
        return tuple(self._collections)

    @property
    def active_collection(self) -> Collection | None:
        return self._active

    @property
    def listings(self) -> tuple[Listing, ...]:
        """Listings of the active collection."""
        return tuple(self._listings)

    @property
    def refresh_counter(self) -> int:
        """Monotonic counter bumped by every successful mutation."""
        return self._refresh_counter

    def get_collection(self, collection_id: str) -> Collection:
        """Return the cached collection *collection_id*.

        Raises:
            UnknownCollectionError: If it is not in the cache.
        """
        for collection in self._collections:
            if collection.id == collection_id:
                return collection
        raise UnknownCollectionError(collection_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load collections and activate the default (or first) one.

        Never raises on a remote failure: :attr:`error` is set instead and the
        call can simply be repeated.
        """
        self._ensure_usable()
        with operation_scope():
            await self.load_collections()
            logger.info(
                "Store initialized for %s: state=%s collections=%d",
                self._scope,
                self._state,
                len(self._collections),
                extra={"event": events.STORE_INITIALIZED},
            )

    async def dispose(self) -> None:
        """Drop every cache and refuse further use."""
        self._disposed = True
        self._listings_seq += 1
        self._collections = []
        self._active = None
        self._listings = []
        self._loading_listings = False
        self._state = StoreState.UNINITIALIZED
        logger.debug("Store disposed.", extra={"event": events.STORE_DISPOSED})

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def load_collections(self) -> None:
        """Fetch every collection of the scope and re-resolve the active one.

        The active collection is kept (as the refreshed server object) while
        it still exists; otherwise the default-else-first collection becomes
        active and its listings are fetched.
        """
        self._ensure_usable()
        previous_state = self._state
        self._state = StoreState.LOADING_COLLECTIONS
        self._error = None

        with operation_scope():
            try:
                fetched = await self._backend.list_collections(self._scope)
            except RemoteOperationError as exc:
                self._error = str(exc)
                self._state = previous_state
                logger.error(
                    "Failed to load collections: %s",
                    exc,
                    extra={"event": events.COLLECTIONS_LOAD_ERROR},
                )
                return

            if self._disposed:
                return

            self._collections = list(fetched)
            self._state = StoreState.READY
            logger.info(
                "Loaded %d collection(s)",
                len(fetched),
                extra={"event": events.COLLECTIONS_LOADED},
            )

            target: Collection | None = None
            if self._active is not None:
                target = next((c for c in fetched if c.id == self._active.id), None)
            if target is None:
                target = _pick_fallback(fetched)
            await self._activate(target)

    async def select_collection(self, collection_id: str | None) -> None:
        """Make *collection_id* active (``None`` clears the selection).

        Selecting a different collection fetches its listings; re-selecting
        the active one is a no-op.

        Raises:
            UnknownCollectionError: If *collection_id* is not cached.
        """
        self._ensure_usable()
        target = None if collection_id is None else self.get_collection(collection_id)
        with operation_scope():
            await self._activate(target)

    async def create_collection(self, name: str, is_default: bool = False) -> Collection:
        """Create a collection in the store's scope and cache it."""
        self._ensure_usable()
        with operation_scope():
            created = await self._backend.create_collection(
                name, scope=self._scope, is_default=is_default
            )
            collections = [*self._collections, created]
            if created.is_default:
                collections = _clear_other_defaults(collections, created.id)
            self._replace_collections(collections)
            self._bump()
            logger.info(
                "Collection %r created (%s)",
                created.label,
                created.id,
                extra={"event": events.COLLECTION_CREATED},
            )
            return created

    async def update_collection(
        self,
        collection_id: str,
        *,
        name: str | None = None,
        is_default: bool | None = None,
        is_public: bool | None = None,
    ) -> Collection:
        """Apply a partial update and merge the server's full object.

        Only arguments that are not ``None`` are sent.

        Raises:
            ValueError: If no field is given.
        """
        self._ensure_usable()
        fields: dict[str, Any] = {
            key: value
            for key, value in (("name", name), ("is_default", is_default), ("is_public", is_public))
            if value is not None
        }
        if not fields:
            raise ValueError("update_collection needs at least one field to change")
        updates = CollectionUpdate.model_validate(fields)

        with operation_scope():
            updated = await self._backend.update_collection(collection_id, updates)
            self._merge_collection(updated)
            self._bump()
            logger.info(
                "Collection %s updated: %s",
                collection_id,
                updates.to_payload(),
                extra={"event": events.COLLECTION_UPDATED},
            )
            return updated

    async def set_default_collection(self, collection_id: str) -> Collection:
        """Mark *collection_id* as the scope's only default collection."""
        return await self.update_collection(collection_id, is_default=True)

    async def delete_collection(self, collection_id: str) -> None:
        """Delete a collection; failing over when it was the active one.

        The fallback (default, else first remaining) is chosen in the same
        step that removes the collection from the cache, then its listings
        are fetched.  With nothing left the active collection becomes ``None``.
        """
        self._ensure_usable()
        with operation_scope():
            await self._backend.delete_collection(collection_id)
            remaining = [c for c in self._collections if c.id != collection_id]
            was_active = self._active is not None and self._active.id == collection_id
            self._collections = remaining
            self._bump()
            logger.info(
                "Collection %s deleted",
                collection_id,
                extra={"event": events.COLLECTION_DELETED},
            )
            if was_active:
                await self._activate(_pick_fallback(remaining))

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def share_collection(self, collection_id: str) -> ShareInfo:
        """Publish a collection and cache its public flag and token."""
        self._ensure_usable()
        with operation_scope():
            collection, info = await self._backend.create_share_link(collection_id)
            self._merge_collection(collection)
            self._bump()
            return info

    async def unshare_collection(self, collection_id: str) -> None:
        """Revoke a collection's public link."""
        self._ensure_usable()
        with operation_scope():
            collection = await self._backend.revoke_share_link(collection_id)
            self._merge_collection(collection)
            self._bump()

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def load_listings(self, collection_id: str | None = None) -> None:
        """Replace the listing cache with a fresh fetch.

        Args:
            collection_id: Collection to fetch; must be the active one.
                Defaults to it.

        A failed fetch empties the cache and is logged, never raised.  A
        result that arrives after the active collection changed, or after a
        newer fetch was dispatched, is discarded.

        Raises:
            StoreError: If *collection_id* is not the active collection.
        """
        self._ensure_usable()
        target = self._active.id if self._active is not None else None
        if collection_id is not None and collection_id != target:
            raise StoreError(
                f"Cannot load listings of {collection_id}: it is not the active collection"
            )
        self._listings_seq += 1
        seq = self._listings_seq

        if target is None:
            self._listings = []
            self._loading_listings = False
            return

        self._loading_listings = True
        try:
            fetched = await self._backend.list_listings(target)
        except RemoteOperationError as exc:
            if self._is_current(target, seq):
                self._listings = []
                self._loading_listings = False
                logger.error(
                    "Failed to load listings of %s: %s",
                    target,
                    exc,
                    extra={"event": events.LISTINGS_LOAD_ERROR},
                )
            return

        if not self._is_current(target, seq):
            logger.info(
                "Discarding stale listings of %s (%d item(s))",
                target,
                len(fetched),
                extra={"event": events.LISTINGS_STALE_DISCARDED},
            )
            return

        self._listings = list(fetched)
        self._loading_listings = False
        logger.debug(
            "Loaded %d listing(s) of %s",
            len(fetched),
            target,
            extra={"event": events.LISTINGS_LOADED},
        )

    async def add_listing(self, data: ListingData) -> Listing:
        """Create a listing in the active collection; it is shown first.

        Raises:
            NoActiveCollectionError: If no collection is active.
        """
        active = self._require_active()
        with operation_scope():
            created = await self._backend.create_listing(active.id, data)
            if self._is_active(active.id):
                self._listings = [created, *self._listings]
            self._bump()
            logger.info(
                "Listing %r added to %s",
                created.titulo,
                active.id,
                extra={"event": events.LISTING_CREATED},
            )
            return created

    async def update_listing(
        self,
        listing_id: str,
        patch: ListingUpdate | Mapping[str, Any],
    ) -> Listing:
        """Apply a partial patch to a listing of the active collection.

        Args:
            listing_id: Listing to change.
            patch: A :class:`ListingUpdate`, or a mapping of wire/attribute
                names to new values.

        Raises:
            NoActiveCollectionError: If no collection is active.
        """
        active = self._require_active()
        if not isinstance(patch, ListingUpdate):
            patch = ListingUpdate.model_validate(dict(patch))
        with operation_scope():
            updated = await self._backend.update_listing(active.id, listing_id, patch)
            if self._is_active(active.id):
                self._listings = [
                    updated if item.id == listing_id else item for item in self._listings
                ]
            self._bump()
            logger.info(
                "Listing %s updated: %s",
                listing_id,
                sorted(patch.to_payload()),
                extra={"event": events.LISTING_UPDATED},
            )
            return updated

    async def remove_listing(self, listing_id: str) -> None:
        """Delete a listing of the active collection.

        Raises:
            NoActiveCollectionError: If no collection is active.
        """
        active = self._require_active()
        with operation_scope():
            await self._backend.delete_listing(active.id, listing_id)
            if self._is_active(active.id):
                self._listings = [item for item in self._listings if item.id != listing_id]
            self._bump()
            logger.info(
                "Listing %s removed from %s",
                listing_id,
                active.id,
                extra={"event": events.LISTING_DELETED},
            )

    async def parse_listing(self, raw_text: str) -> ListingData:
        """Turn free text into listing fields with the backend's AI parser.

        Raises:
            ListingParseError: One of its typed subclasses.
        """
        self._ensure_usable()
        return await self._backend.parse_listing(raw_text)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    async def import_document(
        self,
        document: Any,
        label_hint: str | None = None,
        into: str | None = None,
    ) -> ImportSummary:
        """Import a document (raw JSON text or an already decoded value).

        Without *into*, one collection is created per group (labels made
        unique against the cache), collections are reloaded and the last
        created collection becomes active.  With *into*, every listing is
        added to that existing collection instead.

        Raises:
            FormatError: If the document shape is not recognised.
            EmptyImportError: If it holds no valid listing (nothing created).
            UnknownCollectionError: If *into* is not cached.
        """
        self._ensure_usable()
        with operation_scope():
            value = parse_document(document) if isinstance(document, str) else document
            normalized = normalize_document(
                value, label_hint, default_label=self._default_label
            )
            if normalized.is_empty:
                raise EmptyImportError(normalized.total_dropped)

            groups = [g for g in normalized.groups if not g.is_empty]
            logger.info(
                "Importing %s document: %d group(s), %d listing(s), %d dropped",
                normalized.format,
                len(groups),
                normalized.total_listings,
                normalized.total_dropped,
                extra={"event": events.IMPORT_START},
            )

            if into is not None:
                self.get_collection(into)
                summary = await import_into_collection(
                    self._backend, into, groups, self._max_concurrency
                )
                if summary.listings_created:
                    self._bump()
                if self._is_active(into):
                    await self.load_listings(into)
                return summary

            summary = await import_groups(
                self._backend,
                groups,
                existing_labels=[c.label for c in self._collections],
                scope=self._scope,
                max_concurrency=self._max_concurrency,
            )
            if summary.groups_created:
                self._bump()
            await self.load_collections()
            created = summary.created_collections
            if created and any(c.id == created[-1].id for c in self._collections):
                await self.select_collection(created[-1].id)
            return summary

    async def export_active(self, exported_at: datetime | None = None) -> dict[str, Any]:
        """Export the active collection with a fresh fetch of its listings.

        The listing cache is never read for an export.

        Raises:
            NoActiveCollectionError: If no collection is active.
            RemoteOperationError: If the listings fetch fails.
        """
        active = self._require_active()
        with operation_scope():
            listings = await self._backend.list_listings(active.id)
            return serializer.export_collection(
                active, listings, self._scope.context, exported_at
            )

    async def export_all(self, exported_at: datetime | None = None) -> dict[str, Any]:
        """Export every cached collection, fetching their listings."""
        self._ensure_usable()
        with operation_scope():
            return await serializer.export_all(
                self._backend, self._collections, self._scope.context, exported_at
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_usable(self) -> None:
        if self._disposed:
            raise StoreError("Store has been disposed")

    def _require_active(self) -> Collection:
        self._ensure_usable()
        if self._active is None:
            raise NoActiveCollectionError()
        return self._active

    def _is_active(self, collection_id: str | None) -> bool:
        current = self._active.id if self._active is not None else None
        return current == collection_id

    def _is_current(self, stamp: str | None, seq: int) -> bool:
        return not self._disposed and seq == self._listings_seq and self._is_active(stamp)

    def _bump(self) -> None:
        self._refresh_counter += 1

    def _replace_collections(self, collections: list[Collection]) -> None:
        """Swap the collections cache and re-point the active collection."""
        self._collections = collections
        if self._active is not None:
            active_id = self._active.id
            self._active = next((c for c in collections if c.id == active_id), self._active)

    def _merge_collection(self, updated: Collection) -> None:
        collections = [updated if c.id == updated.id else c for c in self._collections]
        if updated.is_default:
            collections = _clear_other_defaults(collections, updated.id)
        self._replace_collections(collections)

    async def _activate(self, collection: Collection | None) -> None:
        """Set the active collection, fetching listings when the id changes."""
        previous_id = self._active.id if self._active is not None else None
        self._active = collection
        new_id = collection.id if collection is not None else None
        if new_id == previous_id:
            return

        logger.info(
            "Active collection: %s",
            collection.label if collection is not None else None,
            extra={"event": events.COLLECTION_ACTIVATED},
        )
        await self.load_listings()
