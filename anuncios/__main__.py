"""Anuncios process entry-point.

Usage:
    python -m anuncios [--log-level L] [--log-format F] collections
    python -m anuncios import FILE [--label LABEL] [--into COLLECTION_ID]
    python -m anuncios export [--all] [--collection COLLECTION_ID] [-o FILE]

The session logic lives in :mod:`anuncios.runner`.  This module is thin: it
calls ``configure_logging()`` first, loads :class:`Settings`, runs one command
and prints a one-line summary.  Exit status is 1 on configuration, format or
remote errors.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from anuncios.core import configure_logging
from anuncios.core.exceptions import (
    ConfigError,
    FormatError,
    RemoteOperationError,
    StoreError,
)
from anuncios.core.settings import Settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anuncios",
        description="Manage real-estate listing collections: list, import and export.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("collections", help="List the collections of the configured scope.")

    p_import = sub.add_parser("import", help="Import a JSON export file.")
    p_import.add_argument("file", type=Path, help="File to import.")
    p_import.add_argument(
        "--label",
        default=None,
        help="Collection label for documents that carry none.",
    )
    p_import.add_argument(
        "--into",
        default=None,
        metavar="COLLECTION_ID",
        help="Add listings to this existing collection instead of creating new ones.",
    )

    p_export = sub.add_parser("export", help="Write a JSON export file.")
    p_export.add_argument(
        "--all",
        dest="all_collections",
        action="store_true",
        help="Export every collection instead of the active one.",
    )
    p_export.add_argument(
        "--collection",
        default=None,
        metavar="COLLECTION_ID",
        help="Collection to export (default: the default collection).",
    )
    p_export.add_argument("-o", "--output", type=Path, default=None, help="Output file.")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"anuncios: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    # Lazy import keeps startup fast when module is imported without running.
    from anuncios.runner import run_export, run_import, run_list  # noqa: PLC0415

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    try:
        if args.command == "collections":
            collections = asyncio.run(run_list(settings))
            for collection in collections:
                marker = "*" if collection.is_default else " "
                print(f"{marker} {collection.id}  {collection.label}")  # noqa: T201
            print(f"{len(collections)} collection(s)")  # noqa: T201
        elif args.command == "import":
            summary = asyncio.run(
                run_import(args.file, label=args.label, into=args.into, settings=settings)
            )
            print(  # noqa: T201
                f"Imported {summary.listings_created} listing(s) into "
                f"{summary.groups_created} new collection(s); "
                f"{summary.listings_failed} listing(s) and "
                f"{summary.groups_failed} collection(s) failed."
            )
        elif args.command == "export":
            path = asyncio.run(
                run_export(
                    all_collections=args.all_collections,
                    collection_id=args.collection,
                    output=args.output,
                    settings=settings,
                )
            )
            print(f"Exported to {path}")  # noqa: T201
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except (FormatError, RemoteOperationError, StoreError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted — exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
