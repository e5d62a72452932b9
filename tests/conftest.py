"""Shared pytest fixtures and configuration for the Anuncios test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests,
including :class:`FakeBackend`, an in-memory
:class:`~anuncios.api.base.CollectionsBackend` with failure injection.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
from datetime import UTC, datetime, timedelta

import pytest
from pydantic_settings import SettingsConfigDict

from anuncios.api.base import CollectionsBackend, SharedCollection, ShareInfo
from anuncios.core import configure_logging
from anuncios.core.exceptions import (
    ListingParseError,
    RemoteNotFoundError,
    RemoteOperationError,
)
from anuncios.core.models import (
    Collection,
    CollectionUpdate,
    Listing,
    ListingData,
    ListingUpdate,
)
from anuncios.core.scope import OwnerScope
from anuncios.core.settings import Settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    Using ``force=True`` ensures the configuration is applied even when
    pytest's own ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every Anuncios env var for the duration of a test.

    Also disables pydantic-settings ``.env`` file loading so that values in a
    developer's local ``.env`` do not leak into Settings isolation tests.
    """
    prefixes = (
        "ANUNCIOS_",
        "API_",
        "ORG_ID",
        "HTTP_",
        "IMPORT_",
        "DATABASE_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)


class FakeBackend(CollectionsBackend):
    """Dict-backed backend that behaves like the REST API.

    Failure injection knobs (all empty by default):

    * ``fail_list_collections`` — ``list_collections`` raises.
    * ``fail_collection_labels`` — ``create_collection`` raises for these names.
    * ``fail_listing_titles`` — ``create_listing`` raises for these titles.
    * ``fail_list_listings`` — ``list_listings`` raises for these collection ids.
    * ``fail_updates`` — every update/delete raises.
    * ``listing_gates`` — ``list_listings(cid)`` waits on the event first.
    """

    def __init__(self) -> None:
        self.collections: dict[str, Collection] = {}
        self.listings: dict[str, list[Listing]] = {}
        self.calls: list[tuple[str, ...]] = []
        self.fail_list_collections = False
        self.fail_collection_labels: set[str] = set()
        self.fail_listing_titles: set[str] = set()
        self.fail_list_listings: set[str] = set()
        self.fail_updates = False
        self.listing_gates: dict[str, asyncio.Event] = {}
        self.parse_result: ListingData | None = None
        self.parse_error: ListingParseError | None = None
        self.closed = False
        self._ids = itertools.count(1)
        self._collection_ids = itertools.count(1)

    # -- helpers -----------------------------------------------------------

    def _stamp(self) -> datetime:
        return _EPOCH + timedelta(seconds=next(self._ids))

    def seed_collection(
        self,
        label: str,
        *,
        is_default: bool = False,
        org_id: str | None = None,
        listings: tuple[ListingData, ...] = (),
    ) -> Collection:
        """Insert a collection (and listings) without recording a call."""
        stamp = self._stamp()
        collection = Collection(
            id=f"c{next(self._collection_ids)}",
            label=label,
            is_default=is_default,
            org_id=org_id,
            user_id=None if org_id else "u1",
            created_at=stamp,
            updated_at=stamp,
        )
        self.collections[collection.id] = collection
        self.listings[collection.id] = [self._make_listing(collection.id, d) for d in listings]
        return collection

    def _make_listing(self, collection_id: str, data: ListingData) -> Listing:
        stamp = self._stamp()
        return Listing(
            **data.model_dump(),
            id=f"l{next(self._ids)}",
            collection_id=collection_id,
            created_at=stamp,
            updated_at=stamp,
        )

    def _require(self, collection_id: str, op: str) -> Collection:
        if collection_id not in self.collections:
            raise RemoteNotFoundError(op, f"Collection {collection_id} not found", 404)
        return self.collections[collection_id]

    def _clear_defaults(self, keep_id: str) -> None:
        for cid, c in self.collections.items():
            if cid != keep_id and c.is_default:
                self.collections[cid] = c.model_copy(update={"is_default": False})

    # -- lifecycle -----------------------------------------------------------

    async def close(self) -> None:
        self.closed = True

    # -- collections -----------------------------------------------------------

    async def list_collections(self, scope: OwnerScope) -> list[Collection]:
        self.calls.append(("list_collections", str(scope)))
        if self.fail_list_collections:
            raise RemoteOperationError("list_collections", "boom", status_code=500)
        return [c for c in self.collections.values() if c.org_id == scope.org_id]

    async def create_collection(
        self,
        name: str,
        *,
        scope: OwnerScope,
        is_default: bool = False,
    ) -> Collection:
        self.calls.append(("create_collection", name))
        if name in self.fail_collection_labels:
            raise RemoteOperationError("create_collection", f"cannot create {name!r}", 500)
        stamp = self._stamp()
        collection = Collection(
            id=f"c{next(self._collection_ids)}",
            label=name,
            is_default=is_default,
            org_id=scope.org_id,
            user_id=None if scope.org_id else "u1",
            created_at=stamp,
            updated_at=stamp,
        )
        if is_default:
            self._clear_defaults(collection.id)
        self.collections[collection.id] = collection
        self.listings[collection.id] = []
        return collection

    async def update_collection(
        self,
        collection_id: str,
        updates: CollectionUpdate,
    ) -> Collection:
        self.calls.append(("update_collection", collection_id))
        if self.fail_updates:
            raise RemoteOperationError("update_collection", "boom", status_code=500)
        current = self._require(collection_id, "update_collection")
        changes = updates.model_dump(exclude_unset=True)
        if "name" in changes:
            changes["label"] = changes.pop("name")
        if changes.get("is_default"):
            self._clear_defaults(collection_id)
        updated = current.model_copy(update={**changes, "updated_at": self._stamp()})
        self.collections[collection_id] = updated
        return updated

    async def delete_collection(self, collection_id: str) -> None:
        self.calls.append(("delete_collection", collection_id))
        if self.fail_updates:
            raise RemoteOperationError("delete_collection", "boom", status_code=500)
        self._require(collection_id, "delete_collection")
        del self.collections[collection_id]
        self.listings.pop(collection_id, None)

    # -- listings ----------------------------------------------------------------

    async def list_listings(self, collection_id: str) -> list[Listing]:
        self.calls.append(("list_listings", collection_id))
        gate = self.listing_gates.get(collection_id)
        if gate is not None:
            await gate.wait()
        if collection_id in self.fail_list_listings:
            raise RemoteOperationError("list_listings", "boom", status_code=500)
        self._require(collection_id, "list_listings")
        return list(self.listings[collection_id])

    async def create_listing(self, collection_id: str, data: ListingData) -> Listing:
        self.calls.append(("create_listing", collection_id, data.titulo))
        if data.titulo in self.fail_listing_titles:
            raise RemoteOperationError("create_listing", f"cannot create {data.titulo!r}", 500)
        self._require(collection_id, "create_listing")
        listing = self._make_listing(collection_id, data)
        self.listings[collection_id].append(listing)
        return listing

    async def update_listing(
        self,
        collection_id: str,
        listing_id: str,
        patch: ListingUpdate,
    ) -> Listing:
        self.calls.append(("update_listing", collection_id, listing_id))
        if self.fail_updates:
            raise RemoteOperationError("update_listing", "boom", status_code=500)
        items = self.listings[collection_id]
        for index, item in enumerate(items):
            if item.id == listing_id:
                changes = patch.model_dump(exclude_unset=True)
                updated = item.model_copy(update={**changes, "updated_at": self._stamp()})
                items[index] = updated
                return updated
        raise RemoteNotFoundError("update_listing", f"Listing {listing_id} not found", 404)

    async def delete_listing(self, collection_id: str, listing_id: str) -> None:
        self.calls.append(("delete_listing", collection_id, listing_id))
        if self.fail_updates:
            raise RemoteOperationError("delete_listing", "boom", status_code=500)
        self.listings[collection_id] = [
            item for item in self.listings[collection_id] if item.id != listing_id
        ]

    # -- sharing -----------------------------------------------------------------

    async def get_share_status(self, collection_id: str) -> ShareInfo:
        collection = self._require(collection_id, "get_share_status")
        return ShareInfo(is_shared=collection.is_shared, share_token=collection.share_token)

    async def create_share_link(self, collection_id: str) -> tuple[Collection, ShareInfo]:
        self.calls.append(("create_share_link", collection_id))
        current = self._require(collection_id, "create_share_link")
        token = current.share_token or f"tok{collection_id:0>9}"
        updated = current.model_copy(update={"is_public": True, "share_token": token})
        self.collections[collection_id] = updated
        return updated, ShareInfo(
            is_shared=True, share_token=token, share_url=f"https://app.test/shared/{token}"
        )

    async def revoke_share_link(self, collection_id: str) -> Collection:
        self.calls.append(("revoke_share_link", collection_id))
        current = self._require(collection_id, "revoke_share_link")
        updated = current.model_copy(
            update={"is_public": False, "share_token": None, "updated_at": self._stamp()}
        )
        self.collections[collection_id] = updated
        return updated

    async def fetch_shared_collection(self, token: str) -> SharedCollection:
        for collection in self.collections.values():
            if collection.share_token == token and collection.is_public:
                return SharedCollection(
                    collection=collection, listings=list(self.listings[collection.id])
                )
        raise RemoteNotFoundError("fetch_shared_collection", "not found", 404)

    # -- AI parse ----------------------------------------------------------------

    async def parse_listing(self, raw_text: str) -> ListingData:
        self.calls.append(("parse_listing", raw_text))
        if self.parse_error is not None:
            raise self.parse_error
        assert self.parse_result is not None, "set backend.parse_result first"
        return self.parse_result


@pytest.fixture()
def backend() -> FakeBackend:
    """Return an empty :class:`FakeBackend`."""
    return FakeBackend()


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
