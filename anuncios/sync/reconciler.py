"""Import reconciler: normalized groups → persisted collections and listings.

Turns the output of :func:`~anuncios.interchange.normalizer.normalize_document`
into backend state:

1. **Label** — pick a collision-free label for the group
   (:class:`~anuncios.sync.labels.LabelRegistry`), checked against the
   store's existing labels *and* every label chosen earlier in the batch.
2. **Create collection** — one create call per group, strictly sequential
   across groups so the label registry is always current.
3. **Create listings** — concurrent creates for that group, bounded by an
   ``asyncio.Semaphore``; the reconciler waits for all of them before moving
   on to the next group.

Partial failure
---------------
* A failed collection create skips the whole group (its listings are never
  sent) and releases its label; later groups still run.
* A failed listing create drops that listing only; its siblings commit.
* Only :class:`~anuncios.core.exceptions.RemoteOperationError` counts as a
  per-item failure.  Any other exception is a bug and propagates.

The reconciler never touches a store cache; refreshing it afterwards is the
caller's job.

Typical usage::

    summary = await import_groups(
        backend,
        normalized.groups,
        existing_labels=[c.label for c in store.collections],
        scope=store.scope,
    )
    print(summary.groups_created, summary.listings_created, summary.listings_failed)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from anuncios.api.base import CollectionsBackend
from anuncios.core import events
from anuncios.core.exceptions import RemoteOperationError
from anuncios.core.models import Collection, Listing, ListingData
from anuncios.core.scope import OwnerScope
from anuncios.interchange.normalizer import ImportGroup
from anuncios.sync.labels import LabelRegistry

__all__ = [
    "DEFAULT_MAX_CONCURRENCY",
    "GroupImportStats",
    "ImportSummary",
    "import_groups",
    "import_into_collection",
]

logger = logging.getLogger(__name__)

#: Default bound on concurrent listing creates within one group.
DEFAULT_MAX_CONCURRENCY: int = 8


# ---------------------------------------------------------------------------
# Stats data classes
# ---------------------------------------------------------------------------


@dataclass
class GroupImportStats:
    """Outcome of importing one normalized group.

    Attributes:
        desired_label: Label the document asked for.
        label: Label actually used (suffixed on collision).  Empty when the
            group was merged into an existing collection.
        collection: The created collection; ``None`` if the create failed
            or the group was merged into an existing collection.
        listings_created: Listings persisted for this group.
        listings_failed: Listing creates that failed.
        failed: ``True`` if the collection create failed (group skipped).
        error: Message of the collection-create failure.
        listing_errors: Messages of the failed listing creates.
    """

    desired_label: str
    label: str = ""
    collection: Collection | None = None
    listings_created: int = 0
    listings_failed: int = 0
    failed: bool = False
    error: str | None = None
    listing_errors: list[str] = field(default_factory=list)


@dataclass
class ImportSummary:
    """Aggregated result of one import batch.

    Attributes:
        group_stats: One entry per input group, in input order.
    """

    group_stats: list[GroupImportStats] = field(default_factory=list)

    @property
    def groups_created(self) -> int:
        """Collections created by this batch."""
        return sum(1 for g in self.group_stats if not g.failed and g.label)

    @property
    def groups_failed(self) -> int:
        """Groups skipped because their collection create failed."""
        return sum(1 for g in self.group_stats if g.failed)

    @property
    def listings_created(self) -> int:
        return sum(g.listings_created for g in self.group_stats)

    @property
    def listings_failed(self) -> int:
        return sum(g.listings_failed for g in self.group_stats)

    @property
    def created_collections(self) -> list[Collection]:
        """Newly created collections, in creation order."""
        return [
            g.collection
            for g in self.group_stats
            if g.collection is not None and g.label and not g.failed
        ]

    @property
    def failures(self) -> list[str]:
        """Every collection- and listing-level failure message."""
        messages: list[str] = []
        for g in self.group_stats:
            if g.error is not None:
                messages.append(f"{g.desired_label}: {g.error}")
            messages.extend(f"{g.label or g.desired_label}: {e}" for e in g.listing_errors)
        return messages


# ---------------------------------------------------------------------------
# Listing creation
# ---------------------------------------------------------------------------


async def _create_listings(
    backend: CollectionsBackend,
    collection_id: str,
    listings: Sequence[ListingData],
    stats: GroupImportStats,
    max_concurrency: int,
) -> None:
    """Create *listings* concurrently and count outcomes into *stats*."""
    if not listings:
        return

    semaphore = asyncio.Semaphore(max_concurrency)

    async def _create_one(data: ListingData) -> Listing:
        async with semaphore:
            return await backend.create_listing(collection_id, data)

    results = await asyncio.gather(
        *(_create_one(data) for data in listings),
        return_exceptions=True,
    )

    for data, result in zip(listings, results, strict=True):
        if isinstance(result, RemoteOperationError):
            stats.listings_failed += 1
            stats.listing_errors.append(str(result))
            logger.warning(
                "Listing %r not imported into %s: %s",
                data.titulo,
                collection_id,
                result,
                extra={"event": events.IMPORT_LISTING_FAILED},
            )
        elif isinstance(result, BaseException):
            raise result
        else:
            stats.listings_created += 1


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def import_groups(
    backend: CollectionsBackend,
    groups: Iterable[ImportGroup],
    existing_labels: Iterable[str] = (),
    scope: OwnerScope | None = None,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> ImportSummary:
    """Create one collection per group and import its listings.

    Args:
        backend: Backend receiving the creates.
        groups: Normalized groups, in input order.
        existing_labels: Labels already present for *scope*.
        scope: Owner scope of the new collections (default: personal).
        max_concurrency: Concurrent listing creates per group (≥ 1).

    Returns:
        An :class:`ImportSummary`; partial failures are reported, not raised.
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be ≥ 1, got {max_concurrency!r}.")

    scope = scope or OwnerScope()
    registry = LabelRegistry(existing_labels)
    summary = ImportSummary()

    for group in groups:
        stats = GroupImportStats(desired_label=group.label)
        summary.group_stats.append(stats)

        label = registry.reserve(group.label)
        try:
            collection = await backend.create_collection(label, scope=scope)
        except RemoteOperationError as exc:
            registry.release(label)
            stats.failed = True
            stats.error = str(exc)
            logger.error(
                "Collection %r not created; %d listing(s) skipped: %s",
                label,
                len(group.listings),
                exc,
                extra={"event": events.IMPORT_GROUP_FAILED},
            )
            continue

        stats.label = label
        stats.collection = collection
        if label != group.label:
            logger.info("Label %r taken; importing as %r", group.label, label)

        await _create_listings(backend, collection.id, group.listings, stats, max_concurrency)
        logger.debug(
            "Group %r → %s: created=%d failed=%d",
            label,
            collection.id,
            stats.listings_created,
            stats.listings_failed,
        )

    _log_summary(summary)
    return summary


async def import_into_collection(
    backend: CollectionsBackend,
    collection_id: str,
    groups: Iterable[ImportGroup],
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> ImportSummary:
    """Add every group's listings to one existing collection.

    No collection is created, so group labels are ignored and
    :attr:`ImportSummary.groups_created` stays 0.

    Args:
        backend: Backend receiving the creates.
        collection_id: Target collection id.
        groups: Normalized groups, in input order.
        max_concurrency: Concurrent listing creates per group (≥ 1).
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be ≥ 1, got {max_concurrency!r}.")

    summary = ImportSummary()
    for group in groups:
        stats = GroupImportStats(desired_label=group.label)
        summary.group_stats.append(stats)
        await _create_listings(backend, collection_id, group.listings, stats, max_concurrency)

    _log_summary(summary, into=collection_id)
    return summary


def _log_summary(summary: ImportSummary, *, into: str | None = None) -> None:
    logger.info(
        "Import finished%s: collections=%d failed_collections=%d listings=%d failed_listings=%d",
        f" into {into!r}" if into else "",
        summary.groups_created,
        summary.groups_failed,
        summary.listings_created,
        summary.listings_failed,
        extra={"event": events.IMPORT_COMPLETE},
    )
