"""Anuncios exception taxonomy.

Every custom exception inherits from :class:`AnunciosError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    AnunciosError
    ├── ConfigError
    ├── FormatError
    │   └── EmptyImportError
    ├── RemoteOperationError
    │   ├── RemoteNotFoundError
    │   └── RemoteRateLimitError
    ├── ListingParseError
    │   ├── ParseUnauthorizedError
    │   ├── ParseServiceUnavailableError
    │   ├── ParseRateLimitedError
    │   └── ParseMalformedResponseError
    └── StoreError
        ├── NoActiveCollectionError
        └── UnknownCollectionError

Two outcomes are deliberately *not* exceptions: a listing dropped by the
normalizer for missing required text (counted in
:attr:`~anuncios.interchange.normalizer.ImportGroup.dropped`) and a listings
response discarded because the active collection changed while it was in
flight (logged with ``event=LISTINGS_STALE_DISCARDED``).

Usage:

    from anuncios.core.exceptions import RemoteOperationError

    raise RemoteOperationError("create_collection", "Connection refused") from exc
"""

from __future__ import annotations

import logging

__all__ = [
    "AnunciosError",
    # Config
    "ConfigError",
    # Import format
    "FormatError",
    "EmptyImportError",
    # Remote API
    "RemoteOperationError",
    "RemoteNotFoundError",
    "RemoteRateLimitError",
    # AI parse
    "ListingParseError",
    "ParseUnauthorizedError",
    "ParseServiceUnavailableError",
    "ParseRateLimitedError",
    "ParseMalformedResponseError",
    # Client state store
    "StoreError",
    "NoActiveCollectionError",
    "UnknownCollectionError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class AnunciosError(Exception):
    """Root exception for all Anuncios errors.

    Catch this to report any application-level failure to the user uniformly.
    Prefer the layer-specific subclasses wherever the caller can react to the
    failure more precisely.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(AnunciosError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``API_BASE_URL`` is missing while the HTTP backend is selected.
        - An unknown backend name was configured.
    """


# ---------------------------------------------------------------------------
# Import format layer
# ---------------------------------------------------------------------------


class FormatError(AnunciosError):
    """Raised when an import document matches none of the recognised shapes.

    Fatal to the import attempt: nothing has been created when this is
    raised.  The message is meant to be shown to the user verbatim.
    """


class EmptyImportError(FormatError):
    """Raised when a recognised document yields no valid listing at all.

    Args:
        dropped: Number of listing objects dropped for missing required text.
    """

    def __init__(self, dropped: int = 0) -> None:
        self.dropped = dropped
        detail = f" ({dropped} dropped)" if dropped else ""
        super().__init__(f"No valid listings found{detail}")


# ---------------------------------------------------------------------------
# Remote API layer
# ---------------------------------------------------------------------------


class RemoteOperationError(AnunciosError):
    """Raised when a Collection/Listing API call fails.

    Covers network failures, timeouts and every non-success HTTP status.

    Args:
        operation: Short name of the failed operation (e.g.
            ``"create_collection"``) or the request line.
        message: Human-readable error description.
        status_code: HTTP status code, when the server answered at all.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"[{operation}] {message}{detail}")


class RemoteNotFoundError(RemoteOperationError):
    """Raised when the API answers HTTP 404 for the addressed entity."""


class RemoteRateLimitError(RemoteOperationError):
    """Raised when the API answers HTTP 429 (Too Many Requests).

    Args:
        operation: Short name of the failed operation.
        retry_after: Recommended back-off interval in seconds, if known.
    """

    def __init__(self, operation: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        detail = f"retry after {retry_after}s" if retry_after is not None else "no retry hint"
        super().__init__(operation, f"Rate limited, {detail}", status_code=429)


# ---------------------------------------------------------------------------
# AI parse layer
# ---------------------------------------------------------------------------


class ListingParseError(AnunciosError):
    """Base class for the typed failures of the AI text-to-listing parser."""


class ParseUnauthorizedError(ListingParseError):
    """The caller must be logged in to use the AI parser (HTTP 401)."""


class ParseServiceUnavailableError(ListingParseError):
    """The AI parsing service is not available right now (HTTP 503)."""


class ParseRateLimitedError(ListingParseError):
    """Too many parse requests; try again later (HTTP 429)."""


class ParseMalformedResponseError(ListingParseError):
    """The parser answered, but without usable listing fields."""


# ---------------------------------------------------------------------------
# Client state store layer
# ---------------------------------------------------------------------------


class StoreError(AnunciosError):
    """Raised for misuse of the client state store.

    Examples:
        - A mutation is issued after :meth:`~anuncios.sync.store.CollectionStore.dispose`.
    """


class NoActiveCollectionError(StoreError):
    """Raised when a listing mutation is issued with no active collection."""

    def __init__(self) -> None:
        super().__init__("No active collection")


class UnknownCollectionError(StoreError):
    """Raised when a collection id is not present in the local cache.

    Args:
        collection_id: The id that could not be resolved.
    """

    def __init__(self, collection_id: str) -> None:
        self.collection_id = collection_id
        super().__init__(f"Unknown collection: {collection_id!r}")
