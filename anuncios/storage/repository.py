"""Local collections backend over SQLite.

Provides :class:`SqliteBackend`, a :class:`~anuncios.api.base.CollectionsBackend`
that keeps collections and listings in a single SQLite file instead of the
web app's REST API.  It mirrors the server's behaviour where the store and
reconciler can observe it:

* ids are ``uuid4`` strings, timestamps ISO-8601 UTC set by the application;
* at most one default collection per owner, enforced on every write, and an
  owner's first collection becomes its default;
* deleting a collection deletes its listings (``ON DELETE CASCADE``);
* collections and listings are returned oldest first;
* share tokens are 12 random alphanumeric characters.

There is no AI parser in local mode: :meth:`SqliteBackend.parse_listing`
raises :class:`~anuncios.core.exceptions.ParseServiceUnavailableError`.

Typical usage::

    conn = await open_db(settings.database_path_resolved)
    async with SqliteBackend(conn, owns_connection=True) as backend:
        store = CollectionStore(backend, settings.owner_scope)
        await store.initialize()
"""

from __future__ import annotations

import json
import logging
import secrets
import string
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import aiosqlite
from pydantic import ValidationError

from anuncios.api.base import CollectionsBackend, SharedCollection, ShareInfo
from anuncios.core.exceptions import (
    ParseServiceUnavailableError,
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

__all__ = ["LOCAL_USER_ID", "SHARE_TOKEN_LENGTH", "SqliteBackend", "generate_share_token"]

logger = logging.getLogger(__name__)

#: Owner id of personal collections in local mode (there is no login).
LOCAL_USER_ID: str = "local"

SHARE_TOKEN_LENGTH: int = 12
_TOKEN_ALPHABET = string.ascii_letters + string.digits

_COLLECTION_COLUMNS = (
    "id, name, user_id, org_id, is_default, is_public, share_token, created_at, updated_at"
)


def generate_share_token(length: int = SHARE_TOKEN_LENGTH) -> str:
    """Return a random alphanumeric share token."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _scope_clause(scope: OwnerScope) -> tuple[str, str]:
    if scope.org_id is not None:
        return "org_id = ?", scope.org_id
    return "user_id = ?", LOCAL_USER_ID


@contextmanager
def _db_errors(operation: str) -> Iterator[None]:
    """Re-raise SQLite and validation failures as :class:`RemoteOperationError`."""
    try:
        yield
    except aiosqlite.Error as exc:
        raise RemoteOperationError(operation, f"SQLite error: {exc}") from exc
    except ValidationError as exc:
        raise RemoteOperationError(operation, f"Invalid data: {exc}", status_code=400) from exc


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _row_to_collection(row: aiosqlite.Row) -> Collection:
    return Collection(
        id=row["id"],
        label=row["name"],
        user_id=row["user_id"],
        org_id=row["org_id"],
        is_default=bool(row["is_default"]),
        is_public=bool(row["is_public"]),
        share_token=row["share_token"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_listing(row: aiosqlite.Row) -> Listing:
    payload: dict[str, Any] = json.loads(row["data"])
    payload.update(
        id=row["id"],
        collectionId=row["collection_id"],
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )
    return Listing.model_validate(payload)


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class SqliteBackend(CollectionsBackend):
    """Collections backend persisting to an open :mod:`aiosqlite` connection.

    Args:
        conn: Open connection with the schema of
            :mod:`anuncios.storage.database` in place.
        owns_connection: Close *conn* in :meth:`close`.
        share_base_url: Prefix for share links (``<base>/shared/<token>``);
            ``None`` leaves :attr:`ShareInfo.share_url` unset.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        *,
        owns_connection: bool = False,
        share_base_url: str | None = None,
    ) -> None:
        self._conn = conn
        self._owns_connection = owns_connection
        self._share_base_url = share_base_url.rstrip("/") if share_base_url else None

    async def close(self) -> None:
        if self._owns_connection:
            await self._conn.close()
            logger.debug("SqliteBackend connection closed.")

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def _get_collection_row(self, collection_id: str, operation: str) -> aiosqlite.Row:
        cursor = await self._conn.execute(
            f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE id = ?",
            (collection_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise RemoteNotFoundError(operation, f"Collection {collection_id} not found", 404)
        return row

    async def _get_collection(self, collection_id: str, operation: str) -> Collection:
        return _row_to_collection(await self._get_collection_row(collection_id, operation))

    async def _get_listing_row(
        self, collection_id: str, listing_id: str, operation: str
    ) -> aiosqlite.Row:
        cursor = await self._conn.execute(
            "SELECT id, collection_id, data, created_at, updated_at "
            "FROM listings WHERE id = ? AND collection_id = ?",
            (listing_id, collection_id),
        )
        row = await cursor.fetchone()
        if row is None:
            raise RemoteNotFoundError(operation, f"Listing {listing_id} not found", 404)
        return row

    def _share_url(self, token: str | None) -> str | None:
        if token is None or self._share_base_url is None:
            return None
        return f"{self._share_base_url}/shared/{token}"

    async def _clear_defaults(self, collection: Collection, keep_id: str) -> None:
        """Unset ``is_default`` on every other collection of the same owner."""
        if collection.org_id is not None:
            owner_clause, owner_value = "org_id = ?", collection.org_id
        else:
            owner_clause, owner_value = "user_id = ?", collection.user_id
        await self._conn.execute(
            f"UPDATE collections SET is_default = 0, updated_at = ? "
            f"WHERE {owner_clause} AND id != ? AND is_default = 1",
            (_now(), owner_value, keep_id),
        )

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def list_collections(self, scope: OwnerScope) -> list[Collection]:
        with _db_errors("list_collections"):
            where, value = _scope_clause(scope)
            cursor = await self._conn.execute(
                f"SELECT {_COLLECTION_COLUMNS} FROM collections "
                f"WHERE {where} ORDER BY created_at, rowid",
                (value,),
            )
            rows = await cursor.fetchall()
            return [_row_to_collection(row) for row in rows]

    async def create_collection(
        self,
        name: str,
        *,
        scope: OwnerScope,
        is_default: bool = False,
    ) -> Collection:
        op = "create_collection"
        if not name.strip():
            raise RemoteOperationError(op, "Collection name is required", status_code=400)
        with _db_errors(op):
            where, value = _scope_clause(scope)
            cursor = await self._conn.execute(
                f"SELECT 1 FROM collections WHERE {where} LIMIT 1", (value,)
            )
            # A scope's first collection is always its default.
            is_default = is_default or await cursor.fetchone() is None
            now = _now()
            collection = Collection(
                id=str(uuid.uuid4()),
                label=name,
                user_id=None if scope.is_organization else LOCAL_USER_ID,
                org_id=scope.org_id,
                is_default=is_default,
                created_at=now,
                updated_at=now,
            )
            if is_default:
                await self._clear_defaults(collection, collection.id)
            await self._conn.execute(
                f"INSERT INTO collections ({_COLLECTION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, 0, NULL, ?, ?)",
                (
                    collection.id,
                    name,
                    collection.user_id,
                    collection.org_id,
                    int(is_default),
                    now,
                    now,
                ),
            )
            await self._conn.commit()
            logger.debug("Created collection %s (%r) for %s", collection.id, name, scope)
            return collection

    async def update_collection(
        self,
        collection_id: str,
        updates: CollectionUpdate,
    ) -> Collection:
        op = "update_collection"
        with _db_errors(op):
            current = await self._get_collection(collection_id, op)
            changes = updates.model_dump(exclude_unset=True)
            if changes.get("is_default"):
                await self._clear_defaults(current, collection_id)

            assignments: list[str] = []
            values: list[Any] = []
            for field_name, column in (
                ("name", "name"),
                ("is_default", "is_default"),
                ("is_public", "is_public"),
            ):
                if field_name in changes and changes[field_name] is not None:
                    assignments.append(f"{column} = ?")
                    value = changes[field_name]
                    values.append(int(value) if isinstance(value, bool) else value)
            assignments.append("updated_at = ?")
            values.extend([_now(), collection_id])

            await self._conn.execute(
                f"UPDATE collections SET {', '.join(assignments)} WHERE id = ?",
                values,
            )
            await self._conn.commit()
            return await self._get_collection(collection_id, op)

    async def delete_collection(self, collection_id: str) -> None:
        op = "delete_collection"
        with _db_errors(op):
            await self._get_collection_row(collection_id, op)
            await self._conn.execute("DELETE FROM collections WHERE id = ?", (collection_id,))
            await self._conn.commit()
            logger.debug("Deleted collection %s", collection_id)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_listings(self, collection_id: str) -> list[Listing]:
        op = "list_listings"
        with _db_errors(op):
            await self._get_collection_row(collection_id, op)
            cursor = await self._conn.execute(
                "SELECT id, collection_id, data, created_at, updated_at FROM listings "
                "WHERE collection_id = ? ORDER BY created_at, rowid",
                (collection_id,),
            )
            rows = await cursor.fetchall()
            return [_row_to_listing(row) for row in rows]

    async def create_listing(self, collection_id: str, data: ListingData) -> Listing:
        op = "create_listing"
        with _db_errors(op):
            await self._get_collection_row(collection_id, op)
            now = _now()
            if data.added_at is None:
                data = data.model_copy(update={"added_at": now})
            listing_id = str(uuid.uuid4())
            await self._conn.execute(
                "INSERT INTO listings (id, collection_id, data, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (listing_id, collection_id, data.model_dump_json(by_alias=True), now, now),
            )
            await self._conn.commit()
            return _row_to_listing(
                await self._get_listing_row(collection_id, listing_id, op)
            )

    async def update_listing(
        self,
        collection_id: str,
        listing_id: str,
        patch: ListingUpdate,
    ) -> Listing:
        op = "update_listing"
        with _db_errors(op):
            row = await self._get_listing_row(collection_id, listing_id, op)
            merged: dict[str, Any] = json.loads(row["data"])
            merged.update(patch.to_payload())
            data = ListingData.model_validate(merged)
            await self._conn.execute(
                "UPDATE listings SET data = ?, updated_at = ? WHERE id = ?",
                (data.model_dump_json(by_alias=True), _now(), listing_id),
            )
            await self._conn.commit()
            return _row_to_listing(
                await self._get_listing_row(collection_id, listing_id, op)
            )

    async def delete_listing(self, collection_id: str, listing_id: str) -> None:
        op = "delete_listing"
        with _db_errors(op):
            await self._get_listing_row(collection_id, listing_id, op)
            await self._conn.execute("DELETE FROM listings WHERE id = ?", (listing_id,))
            await self._conn.commit()

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def get_share_status(self, collection_id: str) -> ShareInfo:
        with _db_errors("get_share_status"):
            collection = await self._get_collection(collection_id, "get_share_status")
            shared = collection.is_public and collection.share_token is not None
            token = collection.share_token if shared else None
            return ShareInfo(is_shared=shared, share_token=token, share_url=self._share_url(token))

    async def create_share_link(self, collection_id: str) -> tuple[Collection, ShareInfo]:
        op = "create_share_link"
        with _db_errors(op):
            current = await self._get_collection(collection_id, op)
            token = current.share_token or generate_share_token()
            await self._conn.execute(
                "UPDATE collections SET is_public = 1, share_token = ?, updated_at = ? "
                "WHERE id = ?",
                (token, _now(), collection_id),
            )
            await self._conn.commit()
            collection = await self._get_collection(collection_id, op)
            logger.info("Collection %s shared (token=%s).", collection_id, token)
            return collection, ShareInfo(
                is_shared=True, share_token=token, share_url=self._share_url(token)
            )

    async def revoke_share_link(self, collection_id: str) -> Collection:
        op = "revoke_share_link"
        with _db_errors(op):
            await self._get_collection_row(collection_id, op)
            await self._conn.execute(
                "UPDATE collections SET is_public = 0, share_token = NULL, updated_at = ? "
                "WHERE id = ?",
                (_now(), collection_id),
            )
            await self._conn.commit()
            logger.info("Collection %s share link revoked.", collection_id)
            return await self._get_collection(collection_id, op)

    async def fetch_shared_collection(self, token: str) -> SharedCollection:
        op = "fetch_shared_collection"
        with _db_errors(op):
            cursor = await self._conn.execute(
                f"SELECT {_COLLECTION_COLUMNS} FROM collections "
                "WHERE share_token = ? AND is_public = 1",
                (token,),
            )
            row = await cursor.fetchone()
            if row is None:
                raise RemoteNotFoundError(op, "Shared collection not found", 404)
            collection = _row_to_collection(row)
        listings = await self.list_listings(collection.id)
        return SharedCollection(collection=collection, listings=listings)

    # ------------------------------------------------------------------
    # AI parse
    # ------------------------------------------------------------------

    async def parse_listing(self, raw_text: str) -> ListingData:
        raise ParseServiceUnavailableError("AI parsing is not available in local mode.")
