"""Session wiring: build a backend from settings and run one store command.

This module provides the async entry-points invoked by :mod:`anuncios.__main__`.
Each call:

1. Builds the backend selected by ``ANUNCIOS_BACKEND`` via
   :func:`open_backend` (REST client, or SQLite file for local mode).
2. Opens a :class:`~anuncios.sync.store.CollectionStore` session for the
   configured owner scope (:func:`open_session`).
3. Runs one command against the store: list, import or export.
4. Tears every resource down on exit, including on exceptions.

Typical usage::

    import asyncio
    from anuncios.runner import run_import

    summary = asyncio.run(run_import(Path("export.json"), settings=Settings()))
    print(summary.listings_created)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

from anuncios.api.base import CollectionsBackend
from anuncios.api.client import ApiBackend
from anuncios.core.exceptions import ConfigError, FormatError, RemoteOperationError
from anuncios.core.logging_config import operation_scope
from anuncios.core.models import Collection
from anuncios.core.settings import Settings
from anuncios.interchange.serializer import dump_document, export_filename
from anuncios.storage.database import open_db
from anuncios.storage.repository import SqliteBackend
from anuncios.sync.reconciler import ImportSummary
from anuncios.sync.store import CollectionStore

__all__ = ["open_backend", "open_session", "run_list", "run_import", "run_export"]

logger = logging.getLogger(__name__)

#: File-name label of full (all collections) exports.
_FULL_EXPORT_LABEL = "imoveis"


# ---------------------------------------------------------------------------
# Resource wiring
# ---------------------------------------------------------------------------


@asynccontextmanager
async def open_backend(settings: Settings) -> AsyncIterator[CollectionsBackend]:
    """Yield the backend selected by ``settings.anuncios_backend``.

    Raises:
        ConfigError: If the API backend is selected without ``API_BASE_URL``.
    """
    if settings.anuncios_backend == "sqlite":
        conn = await open_db(settings.database_path_resolved)
        backend: CollectionsBackend = SqliteBackend(conn, owns_connection=True)
        logger.debug("Using SQLite backend at %s", settings.database_path_resolved)
    else:
        if not settings.api_configured:
            raise ConfigError(
                "API backend selected but API_BASE_URL is not set. "
                "Set it in .env, or use ANUNCIOS_BACKEND=sqlite."
            )
        backend = ApiBackend(settings)
        logger.debug("Using REST backend at %s", settings.api_base_url)

    async with backend:
        yield backend


@asynccontextmanager
async def open_session(settings: Settings) -> AsyncIterator[CollectionStore]:
    """Yield an initialized :class:`CollectionStore`; dispose it on exit.

    Raises:
        RemoteOperationError: If the initial collections load fails.
    """
    async with open_backend(settings) as backend:
        store = CollectionStore(
            backend,
            settings.owner_scope,
            default_label=settings.import_default_label,
            max_concurrency=settings.import_max_concurrency,
        )
        await store.initialize()
        if store.error is not None:
            raise RemoteOperationError("load_collections", store.error)
        try:
            yield store
        finally:
            await store.dispose()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def run_list(settings: Settings | None = None) -> list[Collection]:
    """Return every collection of the configured owner scope."""
    settings = settings or Settings()
    with operation_scope():
        async with open_session(settings) as store:
            return list(store.collections)


async def run_import(
    path: Path,
    *,
    label: str | None = None,
    into: str | None = None,
    settings: Settings | None = None,
) -> ImportSummary:
    """Import the JSON document at *path*.

    Args:
        path: Import file (any recognised export shape).
        label: Label for a document that carries none.
        into: Add every listing to this existing collection instead of
            creating collections.

    Raises:
        FormatError: If the file cannot be read or has no valid listing.
    """
    settings = settings or Settings()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise FormatError(f"Cannot read {path}: {exc}") from exc

    with operation_scope():
        async with open_session(settings) as store:
            return await store.import_document(text, label_hint=label, into=into)


async def run_export(
    *,
    all_collections: bool = False,
    collection_id: str | None = None,
    output: Path | None = None,
    settings: Settings | None = None,
) -> Path:
    """Write an export file and return its path.

    Exports the active collection (``collection_id``, else the default) or,
    with *all_collections*, every collection of the scope.  Without *output*
    the historical download name is used in the working directory.

    Raises:
        NoActiveCollectionError: If a single export finds no collection.
    """
    settings = settings or Settings()
    exported_at = datetime.now(UTC)

    with operation_scope():
        async with open_session(settings) as store:
            if all_collections:
                document = await store.export_all(exported_at)
                label = _FULL_EXPORT_LABEL
            else:
                if collection_id is not None:
                    await store.select_collection(collection_id)
                document = await store.export_active(exported_at)
                active = store.active_collection
                label = active.label if active is not None else ""

    target = output or Path(export_filename(label, exported_at))
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dump_document(document) + "\n", encoding="utf-8")
    logger.info("Export written to %s", target)
    return target
