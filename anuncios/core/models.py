"""Anuncios core domain models.

This module defines the canonical :class:`Listing` and :class:`Collection`
records shared by the normalizer, the import reconciler, the client state
store, the export serializer and every backend.

Python attributes are snake_case; the JSON wire names used by the REST API and
by every historical export file (``titulo``, ``m2Totais``, ``customLat``, ...)
are declared as explicit aliases.  Always dump with ``by_alias=True`` when the
result leaves the process.

Typical usage::

    from anuncios.core.models import ListingData, PropertyType

    data = ListingData(
        titulo="Apartamento 3 quartos",
        endereco="Rua das Flores, 100",
        preco=750000,
        m2_privado=98,
        tipo_imovel=PropertyType.APARTAMENTO,
    )
    payload = data.model_dump(by_alias=True)
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

__all__ = [
    "PropertyType",
    "ExportContext",
    "ListingData",
    "Listing",
    "ListingUpdate",
    "Collection",
    "CollectionUpdate",
    "LISTING_FIELD_NAMES",
    "LISTING_FIELD_ALIASES",
    "price_per_area",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PropertyType(StrEnum):
    """Property type recognised on a listing.

    Serialises as the plain Portuguese string used on the wire.
    """

    CASA = "casa"
    APARTAMENTO = "apartamento"


class ExportContext(StrEnum):
    """Owner-scope discriminator written into full exports."""

    PERSONAL = "personal"
    ORGANIZATION = "organization"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def price_per_area(price: float | None, area: float | None) -> float | None:
    """Return ``price / area`` for display, or ``None`` when undefined.

    Either operand missing, or an area of zero, yields ``None``.

    Examples::

        price_per_area(500000, 100)  # → 5000.0
        price_per_area(None, 100)    # → None
        price_per_area(500000, 0)    # → None
    """
    if price is None or area is None or area == 0:
        return None
    return price / area


_MODEL_CONFIG = ConfigDict(populate_by_name=True, extra="ignore")

Number = int | float


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class _ListingFields(BaseModel):
    """Every user-editable listing attribute except the required text pair.

    Shared by :class:`ListingData` (create payload) and
    :class:`ListingUpdate` (partial patch).
    """

    model_config = _MODEL_CONFIG

    m2_totais: Number | None = Field(None, alias="m2Totais", description="Total area in m².")
    m2_privado: Number | None = Field(None, alias="m2Privado", description="Private area in m².")
    quartos: Number | None = Field(None, description="Bedrooms.")
    suites: Number | None = Field(None, description="Suites.")
    banheiros: Number | None = Field(None, description="Bathrooms.")
    garagem: Number | None = Field(None, description="Garage spots.")
    preco: Number | None = Field(None, description="Asking price.")
    preco_m2: Number | None = Field(None, alias="precoM2", description="Price per m².")
    andar: Number | None = Field(None, description="Floor.")

    piscina: bool | None = Field(None, description="Pool.")
    porteiro_24h: bool | None = Field(None, alias="porteiro24h", description="24h concierge.")
    academia: bool | None = Field(None, description="Gym.")
    vista_livre: bool | None = Field(None, alias="vistaLivre", description="Unobstructed view.")
    piscina_termica: bool | None = Field(None, alias="piscinaTermica", description="Heated pool.")

    tipo_imovel: PropertyType | None = Field(None, alias="tipoImovel")

    link: str | None = None
    image_url: str | None = Field(None, alias="imageUrl")
    contact_name: str | None = Field(None, alias="contactName")
    contact_number: str | None = Field(None, alias="contactNumber")

    starred: bool | None = None
    visited: bool | None = None
    strikethrough: bool | None = None
    discarded_reason: str | None = Field(None, alias="discardedReason")

    custom_lat: Number | None = Field(None, alias="customLat")
    custom_lng: Number | None = Field(None, alias="customLng")

    added_at: str | None = Field(None, alias="addedAt", description="User-facing date added.")

    @property
    def has_custom_location(self) -> bool:
        """``True`` when the listing carries a manual map position."""
        return self.custom_lat is not None and self.custom_lng is not None

    @property
    def computed_price_per_area(self) -> float | None:
        """Price divided by private area (falling back to total area)."""
        area = self.m2_privado if self.m2_privado else self.m2_totais
        return price_per_area(self.preco, area)


class ListingData(_ListingFields):
    """Listing payload without server-assigned identity.

    This is what the normalizer produces, what the AI parser returns and what
    a listing-create call sends.

    Attributes:
        titulo: Listing headline (required, non-blank).
        endereco: Street address (required, non-blank).
    """

    titulo: str = Field(..., min_length=1)
    endereco: str = Field(..., min_length=1)

    @field_validator("titulo", "endereco", mode="before")
    @classmethod
    def _strip_required_text(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip()
        return v

    @model_validator(mode="after")
    def _custom_location_paired(self) -> ListingData:
        if (self.custom_lat is None) != (self.custom_lng is None):
            raise ValueError("customLat and customLng must be set together")
        return self


class Listing(ListingData):
    """A persisted listing as returned by a backend.

    Attributes:
        id: Opaque unique id, assigned at creation.
        collection_id: Owning collection; a listing belongs to exactly one.
        created_at: Server-assigned creation timestamp (immutable).
        updated_at: Last server-side modification, when reported.
    """

    id: str = Field(..., min_length=1)
    collection_id: str = Field(..., alias="collectionId", min_length=1)
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")

    def to_data(self) -> ListingData:
        """Return the payload part of this listing (identity stripped)."""
        return ListingData.model_validate(self.model_dump(include=set(LISTING_FIELD_NAMES)))


class ListingUpdate(_ListingFields):
    """Partial listing patch: only explicitly supplied fields are sent.

    Serialise with :meth:`to_payload`, which drops every field the caller did
    not set.  Setting a field to ``None`` explicitly clears it.
    """

    titulo: str | None = Field(None, min_length=1)
    endereco: str | None = Field(None, min_length=1)

    @model_validator(mode="after")
    def _custom_location_paired(self) -> ListingUpdate:
        lat_set = "custom_lat" in self.model_fields_set
        lng_set = "custom_lng" in self.model_fields_set
        if lat_set != lng_set or (self.custom_lat is None) != (self.custom_lng is None):
            raise ValueError("customLat and customLng must be updated together")
        return self

    def to_payload(self) -> dict[str, Any]:
        """Return the wire-format dict of the supplied fields only."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


#: Python attribute names of every listing payload field, in export order.
LISTING_FIELD_NAMES: tuple[str, ...] = (
    "titulo",
    "endereco",
    "m2_totais",
    "m2_privado",
    "quartos",
    "suites",
    "banheiros",
    "garagem",
    "preco",
    "preco_m2",
    "piscina",
    "porteiro_24h",
    "academia",
    "vista_livre",
    "piscina_termica",
    "andar",
    "tipo_imovel",
    "link",
    "image_url",
    "contact_name",
    "contact_number",
    "starred",
    "visited",
    "strikethrough",
    "discarded_reason",
    "custom_lat",
    "custom_lng",
    "added_at",
)

#: Wire name for every payload field, keyed by Python attribute name.
LISTING_FIELD_ALIASES: dict[str, str] = {
    name: (ListingData.model_fields[name].alias or name) for name in LISTING_FIELD_NAMES
}


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class Collection(BaseModel):
    """A named, owned grouping of listings.

    The REST API calls the display name ``name``; exports and the UI call it
    ``label``.  Both are accepted on input.

    Attributes:
        id: Opaque unique id.
        label: Display name; not required to be unique.
        is_default: At most one collection per owner scope is the default.
        is_public: Whether an anonymous read-only share link exists.
        share_token: Token of the public share link, if any.
        user_id: Owning user (personal scope).
        org_id: Owning organization.  Never set together with ``user_id``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = Field(..., min_length=1)
    label: str
    is_default: bool = Field(False, alias="isDefault")
    is_public: bool = Field(False, alias="isPublic")
    share_token: str | None = Field(None, alias="shareToken")
    user_id: str | None = Field(None, alias="userId")
    org_id: str | None = Field(None, alias="orgId")
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")

    @model_validator(mode="before")
    @classmethod
    def _name_as_label(cls, data: Any) -> Any:
        """Accept the REST API's ``name`` as the display label."""
        if isinstance(data, dict) and "label" not in data and "name" in data:
            data = {**data, "label": data["name"]}
        return data

    @model_validator(mode="after")
    def _single_owner(self) -> Collection:
        if self.user_id is not None and self.org_id is not None:
            raise ValueError("a collection is owned by a user or an organization, not both")
        return self

    @property
    def is_shared(self) -> bool:
        """``True`` if an anonymous read-only link exists."""
        return self.is_public or self.share_token is not None


class CollectionUpdate(BaseModel):
    """Partial collection patch ``{name?, isDefault?, isPublic?}``."""

    model_config = _MODEL_CONFIG

    name: str | None = Field(None, min_length=1)
    is_default: bool | None = Field(None, alias="isDefault")
    is_public: bool | None = Field(None, alias="isPublic")

    def to_payload(self) -> dict[str, Any]:
        """Return the wire-format dict of the supplied fields only."""
        return self.model_dump(by_alias=True, exclude_unset=True)
