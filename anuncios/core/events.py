"""Structured log event name constants for Anuncios.

Every key transition in the store, the import reconciler and the export
serializer emits a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  Using named constants instead of raw strings
keeps the observable events greppable and documented in one place.  In
``LOG_FORMAT=json`` mode ``event`` appears under the ``extra`` key of each
emitted JSON object.

Usage example::

    import logging
    from anuncios.core import events

    logger = logging.getLogger(__name__)

    logger.info("Import finished", extra={"event": events.IMPORT_COMPLETE})
"""

from __future__ import annotations

__all__ = [
    # Store lifecycle
    "STORE_INITIALIZED",
    "STORE_DISPOSED",
    # Collections
    "COLLECTIONS_LOADED",
    "COLLECTIONS_LOAD_ERROR",
    "COLLECTION_ACTIVATED",
    "COLLECTION_CREATED",
    "COLLECTION_UPDATED",
    "COLLECTION_DELETED",
    # Listings
    "LISTINGS_LOADED",
    "LISTINGS_LOAD_ERROR",
    "LISTINGS_STALE_DISCARDED",
    "LISTING_CREATED",
    "LISTING_UPDATED",
    "LISTING_DELETED",
    # Import
    "IMPORT_START",
    "IMPORT_NORMALIZED",
    "IMPORT_GROUP_FAILED",
    "IMPORT_LISTING_FAILED",
    "IMPORT_COMPLETE",
    # Export
    "EXPORT_COMPLETE",
]

# ---------------------------------------------------------------------------
# Store lifecycle
# ---------------------------------------------------------------------------

#: :meth:`~anuncios.sync.store.CollectionStore.initialize` reached ``READY``.
STORE_INITIALIZED: str = "STORE_INITIALIZED"

#: :meth:`~anuncios.sync.store.CollectionStore.dispose` dropped all caches.
STORE_DISPOSED: str = "STORE_DISPOSED"

# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

#: The collection list for the owner scope was fetched and cached.
COLLECTIONS_LOADED: str = "COLLECTIONS_LOADED"

#: Fetching the collection list failed; the error is recorded on the store.
COLLECTIONS_LOAD_ERROR: str = "COLLECTIONS_LOAD_ERROR"

#: The active collection changed (explicit selection or fallback).
COLLECTION_ACTIVATED: str = "COLLECTION_ACTIVATED"

#: A collection create was confirmed by the backend and merged.
COLLECTION_CREATED: str = "COLLECTION_CREATED"

#: A collection update was confirmed by the backend and merged.
COLLECTION_UPDATED: str = "COLLECTION_UPDATED"

#: A collection delete was confirmed by the backend.
COLLECTION_DELETED: str = "COLLECTION_DELETED"

# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

#: The listing cache was replaced with a fresh fetch for the active collection.
LISTINGS_LOADED: str = "LISTINGS_LOADED"

#: A listings fetch failed; the listing cache was emptied.
LISTINGS_LOAD_ERROR: str = "LISTINGS_LOAD_ERROR"

#: A listings response arrived for a collection that is no longer active.
LISTINGS_STALE_DISCARDED: str = "LISTINGS_STALE_DISCARDED"

#: A listing create was confirmed by the backend.
LISTING_CREATED: str = "LISTING_CREATED"

#: A listing update was confirmed by the backend.
LISTING_UPDATED: str = "LISTING_UPDATED"

#: A listing delete was confirmed by the backend.
LISTING_DELETED: str = "LISTING_DELETED"

# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

#: An import batch is about to create collections and listings.
IMPORT_START: str = "IMPORT_START"

#: An import document was decoded into groups.
IMPORT_NORMALIZED: str = "IMPORT_NORMALIZED"

#: A group's collection create failed; its listings were skipped.
IMPORT_GROUP_FAILED: str = "IMPORT_GROUP_FAILED"

#: A single listing create failed inside an otherwise successful group.
IMPORT_LISTING_FAILED: str = "IMPORT_LISTING_FAILED"

#: An import batch settled; the summary is attached to the record.
IMPORT_COMPLETE: str = "IMPORT_COMPLETE"

# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

#: An export document was produced.
EXPORT_COMPLETE: str = "EXPORT_COMPLETE"
