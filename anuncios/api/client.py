"""REST implementation of :class:`~anuncios.api.base.CollectionsBackend`.

Talks to the web app's JSON API through :class:`ApiHttpClient`.  Every
response is wrapped (``{"collections": [...]}``, ``{"collection": {...}}``,
``{"listings": [...]}``, ``{"listing": {...}}``); this module unwraps the
envelope and converts the payload into the pydantic models of
:mod:`anuncios.core.models`.

Listings travel with their attributes nested under ``data``::

    {"id": "l1", "collectionId": "c1", "data": {"titulo": "…", …},
     "createdAt": "…", "updatedAt": "…"}

:func:`to_listing` flattens that shape into a :class:`~anuncios.core.models.Listing`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from anuncios.api.base import CollectionsBackend, SharedCollection, ShareInfo
from anuncios.api.http_client import ApiHttpClient
from anuncios.core.exceptions import (
    ConfigError,
    ParseMalformedResponseError,
    ParseRateLimitedError,
    ParseServiceUnavailableError,
    ParseUnauthorizedError,
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

__all__ = ["ApiBackend", "to_collection", "to_listing"]

logger = logging.getLogger(__name__)

_COLLECTIONS_PATH = "/api/collections"
_PARSE_PATH = "/api/parse"
_SHARED_PATH = "/api/shared"


# ---------------------------------------------------------------------------
# Wire conversions
# ---------------------------------------------------------------------------


def to_collection(raw: Any, *, operation: str = "collection") -> Collection:
    """Convert an API collection object into a :class:`Collection`.

    Raises:
        RemoteOperationError: If *raw* does not validate as a collection.
    """
    try:
        return Collection.model_validate(raw)
    except ValidationError as exc:
        raise RemoteOperationError(operation, f"Unexpected collection shape: {exc}") from exc


def to_listing(raw: Any, *, operation: str = "listing") -> Listing:
    """Flatten an API listing object (attributes under ``data``) into a :class:`Listing`.

    Raises:
        RemoteOperationError: If *raw* does not validate as a listing.
    """
    if not isinstance(raw, dict):
        raise RemoteOperationError(operation, f"Unexpected listing shape: {type(raw).__name__}")
    data = raw.get("data")
    flat: dict[str, Any] = dict(data) if isinstance(data, dict) else {}
    for key in ("id", "collectionId", "createdAt", "updatedAt"):
        if key in raw:
            flat[key] = raw[key]
    try:
        return Listing.model_validate(flat)
    except ValidationError as exc:
        raise RemoteOperationError(operation, f"Unexpected listing shape: {exc}") from exc


def _unwrap(response: httpx.Response, key: str, operation: str) -> Any:
    """Return ``body[key]`` or raise :class:`RemoteOperationError`."""
    try:
        body = response.json()
    except ValueError as exc:
        raise RemoteOperationError(operation, "Response is not valid JSON") from exc
    if not isinstance(body, dict) or key not in body:
        raise RemoteOperationError(operation, f"Response has no {key!r} field")
    return body[key]


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class ApiBackend(CollectionsBackend):
    """Collections backend over the web app's REST API.

    Args:
        settings: Source of base URL, token, timeouts and retry budget.
        http_client: Pre-built client (tests inject one); when omitted a
            client is built from *settings*.

    Raises:
        ConfigError: If neither a configured base URL nor a client is given.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: ApiHttpClient | None = None,
    ) -> None:
        if http_client is None:
            if settings is None or not settings.api_configured:
                raise ConfigError("API_BASE_URL must be set to use the 'api' backend.")
            http_client = ApiHttpClient(
                base_url=settings.api_base_url,
                token=settings.api_token,
                connect_timeout=settings.http_connect_timeout,
                read_timeout=settings.http_read_timeout,
                max_attempts=settings.http_max_attempts,
            )
        self._http = http_client

    async def close(self) -> None:
        await self._http.close()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def list_collections(self, scope: OwnerScope) -> list[Collection]:
        op = "list_collections"
        response = await self._http.get(_COLLECTIONS_PATH, params=scope.query_params or None)
        items = _unwrap(response, "collections", op)
        if not isinstance(items, list):
            raise RemoteOperationError(op, "'collections' is not a list")
        collections = [to_collection(item, operation=op) for item in items]
        logger.debug("Fetched %d collection(s) for %s.", len(collections), scope)
        return collections

    async def create_collection(
        self,
        name: str,
        *,
        scope: OwnerScope,
        is_default: bool = False,
    ) -> Collection:
        op = "create_collection"
        body: dict[str, Any] = {"name": name, "isDefault": is_default}
        if scope.org_id is not None:
            body["orgId"] = scope.org_id
        response = await self._http.post(_COLLECTIONS_PATH, json=body)
        return to_collection(_unwrap(response, "collection", op), operation=op)

    async def update_collection(
        self,
        collection_id: str,
        updates: CollectionUpdate,
    ) -> Collection:
        op = "update_collection"
        response = await self._http.put(
            f"{_COLLECTIONS_PATH}/{collection_id}", json=updates.to_payload()
        )
        return to_collection(_unwrap(response, "collection", op), operation=op)

    async def delete_collection(self, collection_id: str) -> None:
        await self._http.delete(f"{_COLLECTIONS_PATH}/{collection_id}")

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_listings(self, collection_id: str) -> list[Listing]:
        op = "list_listings"
        response = await self._http.get(f"{_COLLECTIONS_PATH}/{collection_id}/listings")
        items = _unwrap(response, "listings", op)
        if not isinstance(items, list):
            raise RemoteOperationError(op, "'listings' is not a list")
        return [to_listing(item, operation=op) for item in items]

    async def create_listing(self, collection_id: str, data: ListingData) -> Listing:
        op = "create_listing"
        payload = data.model_dump(by_alias=True, mode="json")
        response = await self._http.post(
            f"{_COLLECTIONS_PATH}/{collection_id}/listings", json={"data": payload}
        )
        return to_listing(_unwrap(response, "listing", op), operation=op)

    async def update_listing(
        self,
        collection_id: str,
        listing_id: str,
        patch: ListingUpdate,
    ) -> Listing:
        op = "update_listing"
        response = await self._http.put(
            f"{_COLLECTIONS_PATH}/{collection_id}/listings/{listing_id}",
            json={"data": patch.to_payload()},
        )
        return to_listing(_unwrap(response, "listing", op), operation=op)

    async def delete_listing(self, collection_id: str, listing_id: str) -> None:
        await self._http.delete(f"{_COLLECTIONS_PATH}/{collection_id}/listings/{listing_id}")

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def get_share_status(self, collection_id: str) -> ShareInfo:
        op = "get_share_status"
        response = await self._http.get(f"{_COLLECTIONS_PATH}/{collection_id}/share")
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteOperationError(op, "Response is not valid JSON") from exc
        if not isinstance(body, dict):
            raise RemoteOperationError(op, "Unexpected share status shape")
        return ShareInfo(
            is_shared=bool(body.get("isShared")),
            share_token=body.get("shareToken"),
            share_url=body.get("shareUrl"),
        )

    async def create_share_link(self, collection_id: str) -> tuple[Collection, ShareInfo]:
        op = "create_share_link"
        response = await self._http.post(f"{_COLLECTIONS_PATH}/{collection_id}/share")
        collection = to_collection(_unwrap(response, "collection", op), operation=op)
        share_url = response.json().get("shareUrl")
        info = ShareInfo(
            is_shared=True,
            share_token=collection.share_token,
            share_url=share_url,
        )
        logger.info("Collection %s shared (token=%s).", collection_id, collection.share_token)
        return collection, info

    async def revoke_share_link(self, collection_id: str) -> Collection:
        op = "revoke_share_link"
        response = await self._http.delete(f"{_COLLECTIONS_PATH}/{collection_id}/share")
        logger.info("Collection %s share link revoked.", collection_id)
        return to_collection(_unwrap(response, "collection", op), operation=op)

    async def fetch_shared_collection(self, token: str) -> SharedCollection:
        op = "fetch_shared_collection"
        response = await self._http.get(f"{_SHARED_PATH}/{token}")
        collection = to_collection(_unwrap(response, "collection", op), operation=op)
        items = _unwrap(response, "listings", op)
        if not isinstance(items, list):
            raise RemoteOperationError(op, "'listings' is not a list")
        listings = [to_listing(item, operation=op) for item in items]
        return SharedCollection(collection=collection, listings=listings)

    # ------------------------------------------------------------------
    # AI parse
    # ------------------------------------------------------------------

    async def parse_listing(self, raw_text: str) -> ListingData:
        try:
            response = await self._http.post(_PARSE_PATH, json={"rawText": raw_text})
        except RemoteOperationError as exc:
            if exc.status_code == 401:
                raise ParseUnauthorizedError(
                    "You must be logged in to use the AI parser."
                ) from exc
            if exc.status_code == 503:
                raise ParseServiceUnavailableError(
                    "The AI parsing service is not available right now."
                ) from exc
            if exc.status_code == 429:
                raise ParseRateLimitedError(
                    "Too many parse requests. Try again later."
                ) from exc
            raise

        try:
            body = response.json()
        except ValueError as exc:
            raise ParseMalformedResponseError("Parser response is not valid JSON") from exc

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ParseMalformedResponseError("Parser response carries no listing data")
        try:
            return ListingData.model_validate(data)
        except ValidationError as exc:
            raise ParseMalformedResponseError(
                f"Parser returned invalid listing data: {exc}"
            ) from exc
