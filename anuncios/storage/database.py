"""SQLite database initialisation for the local Anuncios backend.

This module is responsible for:

* Opening (or creating) the SQLite file, or an in-memory database.
* Configuring low-level PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS`` — safe to
  call on every startup because the statements are idempotent.

Callers open one connection with :func:`open_db`, hand it to
:class:`~anuncios.storage.repository.SqliteBackend` and close it when done.

Typical usage::

    from anuncios.storage.database import open_db

    async def main() -> None:
        conn = await open_db(Path("data/anuncios.db"))
        # ... pass conn to SqliteBackend ...
        await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "MEMORY_DB",
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("data/anuncios.db")

#: Special path selecting a private in-memory database.
MEMORY_DB: str = ":memory:"

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: ``collections`` holds one row per collection.
#:
#: Column notes
#: ------------
#: user_id / org_id  Owner; exactly one is set.  Personal collections of the
#:                   local backend use a fixed local user id.
#: is_default        Boolean (0/1).  At most one row per owner has 1; the
#:                   repository clears the others in the same transaction.
#: share_token       12-char alphanumeric token of the public link, or NULL.
#: created_at        ISO-8601 UTC, set by the application on INSERT.
_DDL_COLLECTIONS = """\
CREATE TABLE IF NOT EXISTS collections (
    id          TEXT     NOT NULL,
    name        TEXT     NOT NULL,
    user_id     TEXT,
    org_id      TEXT,
    is_default  INTEGER  NOT NULL DEFAULT 0,
    is_public   INTEGER  NOT NULL DEFAULT 0,
    share_token TEXT     UNIQUE,
    created_at  TEXT     NOT NULL,
    updated_at  TEXT     NOT NULL,
    PRIMARY KEY (id),
    CHECK ((user_id IS NULL) <> (org_id IS NULL))
)"""

#: ``listings`` stores the listing payload as JSON (wire field names) so the
#: attribute set can grow without migrations.  Rows are removed together with
#: their collection.
_DDL_LISTINGS = """\
CREATE TABLE IF NOT EXISTS listings (
    id            TEXT  NOT NULL,
    collection_id TEXT  NOT NULL REFERENCES collections (id) ON DELETE CASCADE,
    data          TEXT  NOT NULL,
    created_at    TEXT  NOT NULL,
    updated_at    TEXT  NOT NULL,
    PRIMARY KEY (id)
)"""

_DDL_LISTINGS_INDEX = """\
CREATE INDEX IF NOT EXISTS idx_listings_collection
    ON listings (collection_id, created_at)"""

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and bootstrap the schema.

    Args:
        path: Filesystem path for the SQLite file, or :data:`MEMORY_DB`.
            Defaults to :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened or
            created (e.g. permission denied on the parent directory).
    """
    target = str(path) if path is not None else str(DEFAULT_DB_PATH)
    if target != MEMORY_DB:
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", target)

    conn: aiosqlite.Connection = await aiosqlite.connect(target)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn, in_memory=target == MEMORY_DB)
    await create_schema(conn)

    logger.info("SQLite database ready at %s", target)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all required tables if they do not already exist.

    Idempotent; existing data is untouched.
    """
    await conn.execute(_DDL_COLLECTIONS)
    await conn.execute(_DDL_LISTINGS)
    await conn.execute(_DDL_LISTINGS_INDEX)
    await conn.commit()
    logger.debug("Schema bootstrap complete (collections, listings)")


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection, *, in_memory: bool) -> None:
    """Apply PRAGMA settings that must be set immediately after opening.

    * ``journal_mode=WAL`` for file databases (in-memory ones report
      ``memory`` and are left alone).
    * ``foreign_keys=ON`` so deleting a collection cascades to its listings.
    """
    if not in_memory:
        result = await conn.execute("PRAGMA journal_mode=WAL")
        row = await result.fetchone()
        mode = row[0] if row else "unknown"
        if mode != "wal":
            logger.warning("Requested WAL journal mode but SQLite reported: %r.", mode)
        else:
            logger.debug("SQLite journal_mode set to WAL")

    await conn.execute("PRAGMA foreign_keys=ON")
    logger.debug("SQLite foreign_keys enforcement enabled")
