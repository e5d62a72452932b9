"""Export serializer: collections and listings to the versioned JSON envelope.

Read-only projection of backend data.  Two document shapes are produced,
always tagged with :data:`EXPORT_VERSION`:

single::

    {"version": "1.0", "exportedAt": "...", "context": "personal",
     "collection": {...}, "listings": [...]}

full::

    {"version": "1.0", "exportedAt": "...", "context": "organization",
     "collections": [{"collection": {...}, "listings": [...]}, ...]}

The legacy bare-array shape is accepted on import but never written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from anuncios.api.base import CollectionsBackend
from anuncios.core import events
from anuncios.core.models import (
    LISTING_FIELD_ALIASES,
    LISTING_FIELD_NAMES,
    Collection,
    ExportContext,
    Listing,
)

__all__ = [
    "EXPORT_VERSION",
    "export_collection",
    "export_all",
    "dump_document",
    "export_filename",
    "collection_entry",
    "listing_entry",
]

logger = logging.getLogger(__name__)

#: Version tag written into every export document.
EXPORT_VERSION: str = "1.0"

_UNSAFE_FILENAME_RE: re.Pattern[str] = re.compile(r"[^\w\-. ]+")


# ---------------------------------------------------------------------------
# Entry projections
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def collection_entry(collection: Collection) -> dict[str, Any]:
    """Project collection metadata for export."""
    return {
        "id": collection.id,
        "label": collection.label,
        "createdAt": _iso(collection.created_at),
        "updatedAt": _iso(collection.updated_at),
        "isDefault": collection.is_default,
    }


def listing_entry(listing: Listing) -> dict[str, Any]:
    """Project one listing for export, every field written explicitly."""
    payload = listing.model_dump(include=set(LISTING_FIELD_NAMES), mode="json")
    entry: dict[str, Any] = {"id": listing.id}
    for name in LISTING_FIELD_NAMES:
        entry[LISTING_FIELD_ALIASES[name]] = payload.get(name)
    entry["createdAt"] = _iso(listing.created_at)
    return entry


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def export_collection(
    collection: Collection,
    listings: Sequence[Listing],
    context: ExportContext,
    exported_at: datetime | None = None,
) -> dict[str, Any]:
    """Build a single-collection export document.

    Args:
        collection: The collection to export.
        listings: Its listings, in display order.
        context: Owner-scope discriminator of the exporting session.
        exported_at: Export timestamp; defaults to now (UTC).
    """
    document = {
        "version": EXPORT_VERSION,
        "exportedAt": _iso(exported_at or datetime.now(UTC)),
        "context": str(context),
        "collection": collection_entry(collection),
        "listings": [listing_entry(listing) for listing in listings],
    }
    logger.info(
        "Exported collection %r (%d listing(s))",
        collection.label,
        len(listings),
        extra={"event": events.EXPORT_COMPLETE},
    )
    return document


async def export_all(
    backend: CollectionsBackend,
    collections: Sequence[Collection],
    context: ExportContext,
    exported_at: datetime | None = None,
) -> dict[str, Any]:
    """Fetch every collection's listings and build a full export document.

    Listings are fetched concurrently; the output keeps the order of
    *collections*.

    Raises:
        RemoteOperationError: If any listings fetch fails.  No partial
            document is produced.
    """
    stamp = _iso(exported_at or datetime.now(UTC))
    fetched = await asyncio.gather(*(backend.list_listings(c.id) for c in collections))

    document = {
        "version": EXPORT_VERSION,
        "exportedAt": stamp,
        "context": str(context),
        "collections": [
            {
                "collection": collection_entry(collection),
                "listings": [listing_entry(listing) for listing in listings],
            }
            for collection, listings in zip(collections, fetched, strict=True)
        ],
    }
    logger.info(
        "Exported %d collection(s), %d listing(s) [%s]",
        len(collections),
        sum(len(listings) for listings in fetched),
        context,
        extra={"event": events.EXPORT_COMPLETE},
    )
    return document


def dump_document(document: dict[str, Any]) -> str:
    """Render an export document as pretty-printed JSON text."""
    return json.dumps(document, ensure_ascii=False, indent=2)


def export_filename(label: str, exported_at: datetime | None = None) -> str:
    """Return the download name ``anuncios-<label>-<YYYY-MM-DD>.json``.

    Characters that are unsafe in file names are replaced by ``-``.

    Examples::

        export_filename("Centro", datetime(2025, 3, 1))  # → "anuncios-Centro-2025-03-01.json"
    """
    stamp = (exported_at or datetime.now(UTC)).strftime("%Y-%m-%d")
    safe = _UNSAFE_FILENAME_RE.sub("-", label).strip() or "colecao"
    return f"anuncios-{safe}-{stamp}.json"
