"""Anuncios logging configuration.

Call ``configure_logging()`` once at process startup (e.g. in ``__main__``).
Every other module must define its own logger at module scope:

    import logging
    logger = logging.getLogger(__name__)

Supported environment variables (read at call time):
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR   (default: INFO)
    LOG_FORMAT  text | json                      (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "configure_logging",
    "JsonFormatter",
    "OPERATION_ID_CTX",
    "OperationContextFilter",
    "operation_scope",
]

# ---------------------------------------------------------------------------
# Operation-scoped context variable
# ---------------------------------------------------------------------------

#: Async-safe context variable holding the current operation identifier.
#: Set to a short hex string by :func:`operation_scope` around every import,
#: export and store transition; inherited by child tasks spawned via
#: ``asyncio.gather``.  Defaults to ``"-"`` outside of any operation.
OPERATION_ID_CTX: ContextVar[str] = ContextVar("operation_id", default="-")

logger = logging.getLogger(__name__)

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_FORMATS = {"text", "json"}
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite")

# ``%(op_id)s`` is injected by :class:`OperationContextFilter`.
_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(op_id)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@contextmanager
def operation_scope(op_id: str | None = None) -> Iterator[str]:
    """Bind an operation id to every log record emitted inside the block.

    Nested scopes keep the outermost id so one user action (e.g. an import
    that reloads collections afterwards) stays a single correlation group.

    Args:
        op_id: Explicit id to bind.  Defaults to ``uuid4().hex[:8]``.

    Yields:
        The id in effect inside the block.
    """
    current = OPERATION_ID_CTX.get()
    if current != "-" and op_id is None:
        yield current
        return
    token = OPERATION_ID_CTX.set(op_id or uuid.uuid4().hex[:8])
    try:
        yield OPERATION_ID_CTX.get()
    finally:
        OPERATION_ID_CTX.reset(token)


class OperationContextFilter(logging.Filter):
    """Inject the current operation ID into every log record.

    Reads :data:`OPERATION_ID_CTX` and sets ``record.op_id`` before the record
    reaches any formatter.  In text mode it fills the ``%(op_id)s`` token; in
    JSON mode it appears under ``"extra"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.op_id = OPERATION_ID_CTX.get("-")
        return True


def _pick(
    value: str | None, env_var: str, default: str, allowed: set[str], *, upper: bool = False
) -> str:
    """Resolve one logging option from an argument, the environment, or *default*.

    Raises:
        ValueError: If the resolved value is not in *allowed*.
    """
    raw = value or os.environ.get(env_var) or default
    resolved = raw.upper() if upper else raw.lower()
    if resolved not in allowed:
        raise ValueError(
            f"Unknown {env_var} {raw!r}. Must be one of: {', '.join(sorted(allowed))}"
        )
    return resolved


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install one stderr handler on the root logger.

    Args:
        level: DEBUG/INFO/WARNING/ERROR/CRITICAL.  Falls back to ``$LOG_LEVEL``,
            then ``INFO``.
        fmt: ``text`` or ``json``.  Falls back to ``$LOG_FORMAT``, then ``text``.
        force: Replace existing root handlers.  Without it an already
            configured root logger (pytest, an embedding app) only gets its
            level updated.

    Raises:
        ValueError: If *level* or *fmt* is not recognised.
    """
    resolved_level = _pick(level, "LOG_LEVEL", "INFO", _VALID_LEVELS, upper=True)
    resolved_fmt = _pick(fmt, "LOG_FORMAT", "text", _VALID_FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    for existing in list(root.handlers):
        root.removeHandler(existing)

    formatter: logging.Formatter = (
        JsonFormatter()
        if resolved_fmt == "json"
        else logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT)
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(OperationContextFilter())
    handler.setFormatter(formatter)
    root.addHandler(handler)

    quiet = logging.NOTSET if resolved_level == "DEBUG" else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

#: Attributes every :class:`logging.LogRecord` carries; anything else was
#: passed through ``extra=`` (or set by a filter) and goes under ``"extra"``.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON line.

    Shape::

        {
            "ts":      "2026-02-28T12:34:56.789Z",
            "level":   "INFO",
            "logger":  "anuncios.sync.reconciler",
            "message": "Import finished: 2 collection(s), 14 listing(s)",
            "extra":   {"event": "IMPORT_COMPLETE", "op_id": "a3f2b1c0"}
        }

    ``exc_info`` and ``stack_info`` keys are added only when present.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "extra": {
                key: value
                for key, value in vars(record).items()
                if key not in _STANDARD_ATTRS
            },
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)

        # default=str covers datetimes, enums and models passed via extra=.
        return json.dumps(payload, default=str, ensure_ascii=False)
