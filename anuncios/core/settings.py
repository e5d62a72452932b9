"""Anuncios application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The field name is the
**lowercase** version of the env-var name (e.g. ``API_BASE_URL`` →
``api_base_url``).

Typical usage::

    from anuncios.core.settings import Settings

    settings = Settings()              # loads from env + .env
    scope = settings.owner_scope       # OwnerScope(personal) / (organization=…)
    print(settings.api_configured)     # True / False
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from anuncios.core.scope import OwnerScope

__all__ = ["Settings", "DEFAULT_IMPORT_LABEL"]

logger = logging.getLogger(__name__)

#: Label given to imported collections whose document carries none.
DEFAULT_IMPORT_LABEL: str = "Imported Collection"


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Backend selection
    # ------------------------------------------------------------------
    anuncios_backend: str = Field(
        default="api",
        description="Collections backend: 'api' (REST) or 'sqlite' (local file).",
    )

    # ------------------------------------------------------------------
    # REST API
    # ------------------------------------------------------------------
    api_base_url: str = Field(
        default="",
        description="Base URL of the web app, e.g. https://app.example.com.",
    )
    api_token: str = Field(
        default="",
        description="Bearer token sent with every API request.",
    )
    org_id: str = Field(
        default="",
        description="Organization id; empty selects the personal scope.",
    )
    http_connect_timeout: float = Field(default=10.0, gt=0.0)
    http_read_timeout: float = Field(default=30.0, gt=0.0)
    http_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts for idempotent requests (1 = no retries).",
    )

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------
    import_default_label: str = Field(
        default=DEFAULT_IMPORT_LABEL,
        min_length=1,
        description="Label for imported collections that carry none.",
    )
    import_max_concurrency: int = Field(
        default=8,
        ge=1,
        description="Concurrent listing creates per imported collection.",
    )

    # ------------------------------------------------------------------
    # Local storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/anuncios.db",
        description="SQLite file used by the 'sqlite' backend.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("anuncios_backend")
    @classmethod
    def _validate_backend(cls, v: str) -> str:
        allowed = {"api", "sqlite"}
        v_lower = v.strip().lower()
        if v_lower not in allowed:
            raise ValueError(f"anuncios_backend must be one of {allowed}, got {v!r}")
        return v_lower

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def owner_scope(self) -> OwnerScope:
        """Owner scope selected by ``ORG_ID`` (blank = personal)."""
        return OwnerScope(org_id=self.org_id or None)

    @property
    def api_configured(self) -> bool:
        """``True`` if the REST API base URL is set."""
        return bool(self.api_base_url)

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()
