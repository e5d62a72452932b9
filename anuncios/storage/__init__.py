"""Local SQLite persistence: schema bootstrap and the SQLite backend."""

from anuncios.storage.database import MEMORY_DB, open_db
from anuncios.storage.repository import SqliteBackend, generate_share_token

__all__ = ["MEMORY_DB", "SqliteBackend", "generate_share_token", "open_db"]
