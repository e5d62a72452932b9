"""Core domain models, settings, logging configuration, and shared utilities."""

from anuncios.core.exceptions import (
    AnunciosError,
    ConfigError,
    EmptyImportError,
    FormatError,
    ListingParseError,
    NoActiveCollectionError,
    ParseMalformedResponseError,
    ParseRateLimitedError,
    ParseServiceUnavailableError,
    ParseUnauthorizedError,
    RemoteNotFoundError,
    RemoteOperationError,
    RemoteRateLimitError,
    StoreError,
    UnknownCollectionError,
)
from anuncios.core.logging_config import JsonFormatter, configure_logging, operation_scope
from anuncios.core.models import (
    Collection,
    CollectionUpdate,
    ExportContext,
    Listing,
    ListingData,
    ListingUpdate,
    PropertyType,
    price_per_area,
)
from anuncios.core.scope import OwnerScope
from anuncios.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "operation_scope",
    "JsonFormatter",
    # Domain models
    "Collection",
    "CollectionUpdate",
    "ExportContext",
    "Listing",
    "ListingData",
    "ListingUpdate",
    "PropertyType",
    "price_per_area",
    "OwnerScope",
    # Settings
    "Settings",
    # Exceptions: base
    "AnunciosError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: import format
    "FormatError",
    "EmptyImportError",
    # Exceptions: remote API
    "RemoteOperationError",
    "RemoteNotFoundError",
    "RemoteRateLimitError",
    # Exceptions: AI parse
    "ListingParseError",
    "ParseUnauthorizedError",
    "ParseServiceUnavailableError",
    "ParseRateLimitedError",
    "ParseMalformedResponseError",
    # Exceptions: store
    "StoreError",
    "NoActiveCollectionError",
    "UnknownCollectionError",
]
