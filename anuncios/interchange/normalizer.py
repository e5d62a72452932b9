"""Import document normalisation for Anuncios.

Turns a decoded import document of unknown shape into ordered
``(label, listings)`` groups ready for the import reconciler.  Pure
functions, no I/O.

Recognised shapes, tried in this order (first structural match wins):

+-----------+------------------------------------------------------------+
| Format    | Shape                                                      |
+===========+============================================================+
| legacy    | ``[listing, ...]``  (bare array, no version)               |
+-----------+------------------------------------------------------------+
| full      | ``{version, exportedAt, context,``                         |
|           | ``collections: [{collection, listings}, ...]}``            |
+-----------+------------------------------------------------------------+
| single    | ``{collection: {label, ...}, listings: [...]}``            |
+-----------+------------------------------------------------------------+

Anything else raises :class:`~anuncios.core.exceptions.FormatError`.

Every raw listing goes through :func:`coerce_listing`:

* ``titulo`` / ``endereco`` must be non-blank strings, else the listing is
  dropped and counted (never an error).
* Numeric fields keep finite numbers only; booleans keep strict booleans only.
  JSON ``true`` is not ``1`` and ``1`` is not ``true``.
* ``tipoImovel`` keeps exactly ``"casa"`` / ``"apartamento"``, else ``None``.
* A lone ``customLat`` or ``customLng`` clears both.
* Unknown keys are ignored.

Typical usage::

    from anuncios.interchange.normalizer import normalize_document, parse_document

    result = normalize_document(parse_document(text), label_hint="Centro")
    for group in result.groups:
        print(group.label, len(group.listings), group.dropped)
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from anuncios.core import events
from anuncios.core.exceptions import FormatError
from anuncios.core.models import LISTING_FIELD_ALIASES, ListingData, PropertyType
from anuncios.core.settings import DEFAULT_IMPORT_LABEL

__all__ = [
    "DocumentFormat",
    "ImportGroup",
    "NormalizedImport",
    "parse_document",
    "normalize_document",
    "coerce_number",
    "coerce_bool",
    "coerce_text",
    "coerce_property_type",
    "coerce_listing",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Field kinds
# ---------------------------------------------------------------------------

_NUMBER_FIELDS: tuple[str, ...] = (
    "m2_totais",
    "m2_privado",
    "quartos",
    "suites",
    "banheiros",
    "garagem",
    "preco",
    "preco_m2",
    "andar",
)

_BOOL_FIELDS: tuple[str, ...] = (
    "piscina",
    "porteiro_24h",
    "academia",
    "vista_livre",
    "piscina_termica",
    "starred",
    "visited",
    "strikethrough",
)

_TEXT_FIELDS: tuple[str, ...] = (
    "link",
    "image_url",
    "contact_name",
    "contact_number",
    "discarded_reason",
    "added_at",
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class DocumentFormat(StrEnum):
    """Which of the recognised top-level shapes a document matched."""

    LEGACY = "legacy"
    SINGLE = "single"
    FULL = "full"


@dataclass(frozen=True)
class ImportGroup:
    """One collection-to-be: a label plus its valid listings.

    Attributes:
        label: Desired collection label (not yet de-duplicated).
        listings: Valid listings, in input order.
        dropped: Raw listings rejected for missing required text.
    """

    label: str
    listings: tuple[ListingData, ...]
    dropped: int = 0

    @property
    def is_empty(self) -> bool:
        """``True`` when every listing of the group was dropped (or none existed)."""
        return not self.listings


@dataclass(frozen=True)
class NormalizedImport:
    """Outcome of :func:`normalize_document`.

    Attributes:
        groups: Groups in input order.
        format: Detected top-level shape.
        version: Document version tag, ``None`` for legacy/unversioned data.
    """

    groups: tuple[ImportGroup, ...]
    format: DocumentFormat
    version: str | None = None

    @property
    def total_listings(self) -> int:
        return sum(len(g.listings) for g in self.groups)

    @property
    def total_dropped(self) -> int:
        return sum(g.dropped for g in self.groups)

    @property
    def is_empty(self) -> bool:
        """``True`` when no group holds a single valid listing."""
        return all(g.is_empty for g in self.groups)


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------


def coerce_number(value: Any) -> int | float | None:
    """Keep finite ``int`` / ``float`` values, map everything else to ``None``.

    Examples::

        coerce_number(3)             # → 3
        coerce_number(2.5)           # → 2.5
        coerce_number("3")           # → None
        coerce_number(True)          # → None
        coerce_number(float("nan"))  # → None
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    return None


def coerce_bool(value: Any) -> bool | None:
    """Keep strict booleans, map everything else to ``None``."""
    return value if isinstance(value, bool) else None


def coerce_text(value: Any) -> str | None:
    """Keep strings unchanged, map everything else to ``None``."""
    return value if isinstance(value, str) else None


def coerce_property_type(value: Any) -> PropertyType | None:
    """Return the :class:`PropertyType` for an exact wire value, else ``None``.

    Examples::

        coerce_property_type("casa")        # → PropertyType.CASA
        coerce_property_type("Casa")        # → None
        coerce_property_type("terreno")     # → None
    """
    if not isinstance(value, str):
        return None
    try:
        return PropertyType(value)
    except ValueError:
        return None


def _required_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


# ---------------------------------------------------------------------------
# Listing coercion
# ---------------------------------------------------------------------------


def coerce_listing(raw: Any) -> ListingData | None:
    """Coerce one raw listing object, or return ``None`` if it must be dropped.

    *raw* is read by wire name (``m2Totais``, ``customLat``, …).  Feeding
    ``result.model_dump(by_alias=True)`` back in returns an equal
    :class:`ListingData`.

    Args:
        raw: Decoded JSON value claimed to be a listing.

    Returns:
        A valid :class:`ListingData`, or ``None`` when *raw* is not an object
        or lacks a non-blank ``titulo`` / ``endereco``.
    """
    if not isinstance(raw, Mapping):
        return None

    titulo = _required_text(raw.get("titulo"))
    endereco = _required_text(raw.get("endereco"))
    if titulo is None or endereco is None:
        return None

    fields: dict[str, Any] = {"titulo": titulo, "endereco": endereco}
    for name in _NUMBER_FIELDS:
        fields[name] = coerce_number(raw.get(LISTING_FIELD_ALIASES[name]))
    for name in _BOOL_FIELDS:
        fields[name] = coerce_bool(raw.get(LISTING_FIELD_ALIASES[name]))
    for name in _TEXT_FIELDS:
        fields[name] = coerce_text(raw.get(LISTING_FIELD_ALIASES[name]))
    fields["tipo_imovel"] = coerce_property_type(raw.get("tipoImovel"))

    lat = coerce_number(raw.get("customLat"))
    lng = coerce_number(raw.get("customLng"))
    if lat is None or lng is None:
        lat = lng = None
    fields["custom_lat"] = lat
    fields["custom_lng"] = lng

    try:
        return ListingData.model_validate(fields)
    except ValidationError:
        logger.debug("coerce_listing: dropping listing %r", titulo, exc_info=True)
        return None


# ---------------------------------------------------------------------------
# Document decoding
# ---------------------------------------------------------------------------


def parse_document(text: str) -> Any:
    """Decode raw import text into a JSON value.

    Raises:
        FormatError: If *text* is blank or not valid JSON.
    """
    if not text or not text.strip():
        raise FormatError("Nothing to import: the document is empty")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise FormatError(
            f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})"
        ) from exc


def _label_of(collection: Any) -> str | None:
    if not isinstance(collection, Mapping):
        return None
    for key in ("label", "name"):
        label = _required_text(collection.get(key))
        if label is not None:
            return label
    return None


def _build_group(label: str, raw_listings: list[Any]) -> ImportGroup:
    valid: list[ListingData] = []
    dropped = 0
    for raw in raw_listings:
        listing = coerce_listing(raw)
        if listing is None:
            dropped += 1
        else:
            valid.append(listing)
    return ImportGroup(label=label, listings=tuple(valid), dropped=dropped)


def normalize_document(
    value: Any,
    label_hint: str | None = None,
    *,
    default_label: str = DEFAULT_IMPORT_LABEL,
) -> NormalizedImport:
    """Detect the document shape and produce ordered import groups.

    Args:
        value: Decoded JSON value (see :func:`parse_document`).
        label_hint: Label for groups whose document carries none.
        default_label: Label used when neither the document nor the hint
            provides one.

    Returns:
        A :class:`NormalizedImport`; empty groups are kept and flagged.

    Raises:
        FormatError: If *value* matches none of the recognised shapes.
    """
    fallback = _required_text(label_hint) or default_label

    if isinstance(value, list):
        result = NormalizedImport(
            groups=(_build_group(fallback, value),),
            format=DocumentFormat.LEGACY,
        )
    elif isinstance(value, Mapping) and isinstance(value.get("collections"), list):
        groups: list[ImportGroup] = []
        for index, entry in enumerate(value["collections"]):
            if not isinstance(entry, Mapping):
                raise FormatError(
                    f"Unrecognized import format: collection #{index + 1} is not an object"
                )
            raw_listings = entry.get("listings", [])
            if not isinstance(raw_listings, list):
                raise FormatError(
                    f"Unrecognized import format: listings of collection #{index + 1} is not a list"
                )
            label = _label_of(entry.get("collection")) or fallback
            groups.append(_build_group(label, raw_listings))
        result = NormalizedImport(
            groups=tuple(groups),
            format=DocumentFormat.FULL,
            version=_version_of(value),
        )
    elif isinstance(value, Mapping) and "listings" in value:
        raw_listings = value["listings"]
        if not isinstance(raw_listings, list):
            raise FormatError("Unrecognized import format: 'listings' is not a list")
        label = _label_of(value.get("collection")) or fallback
        result = NormalizedImport(
            groups=(_build_group(label, raw_listings),),
            format=DocumentFormat.SINGLE,
            version=_version_of(value),
        )
    else:
        raise FormatError("Unrecognized import format")

    logger.debug(
        "Normalized %s document (version=%s): %d group(s), %d listing(s), %d dropped",
        result.format,
        result.version or "-",
        len(result.groups),
        result.total_listings,
        result.total_dropped,
        extra={"event": events.IMPORT_NORMALIZED},
    )
    return result


def _version_of(document: Mapping[str, Any]) -> str | None:
    version = document.get("version")
    return version if isinstance(version, str) else None
