"""Unit tests for :mod:`anuncios.interchange.serializer`.

Covers the single and full export envelopes, explicit field enumeration,
timestamp formatting, download names, and the export → import round trip
through :func:`~anuncios.interchange.normalizer.normalize_document`.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from anuncios.core.exceptions import RemoteOperationError
from anuncios.core.models import (
    LISTING_FIELD_ALIASES,
    Collection,
    ExportContext,
    Listing,
    ListingData,
    PropertyType,
)
from anuncios.interchange.normalizer import DocumentFormat, normalize_document
from anuncios.interchange.serializer import (
    EXPORT_VERSION,
    dump_document,
    export_all,
    export_collection,
    export_filename,
    listing_entry,
)

if TYPE_CHECKING:
    from conftest import FakeBackend

_EXPORTED_AT = datetime(2025, 3, 1, 12, 30, 5, 123000, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_collection(**overrides: object) -> Collection:
    fields: dict[str, object] = {
        "id": "c1",
        "label": "Centro",
        "is_default": True,
        "created_at": datetime(2025, 1, 2, 8, 0, tzinfo=UTC),
        "updated_at": datetime(2025, 1, 3, 9, 0, tzinfo=UTC),
    }
    fields.update(overrides)
    return Collection(**fields)


def _make_listing(titulo: str = "Cobertura", **overrides: object) -> Listing:
    fields: dict[str, object] = {
        "id": f"id-{titulo}",
        "collection_id": "c1",
        "titulo": titulo,
        "endereco": "Av. Atlântica, 500",
        "m2_totais": 320,
        "m2_privado": 280.5,
        "quartos": 4,
        "suites": 2,
        "preco": 4500000,
        "piscina": True,
        "porteiro_24h": True,
        "vista_livre": False,
        "tipo_imovel": PropertyType.APARTAMENTO,
        "link": "https://example.com/cobertura",
        "contact_number": "+55 21 99999-0000",
        "starred": True,
        "strikethrough": False,
        "custom_lat": -22.97,
        "custom_lng": -43.18,
        "added_at": "2025-01-10",
        "created_at": datetime(2025, 1, 10, 14, 0, tzinfo=UTC),
    }
    fields.update(overrides)
    return Listing(**fields)


# ---------------------------------------------------------------------------
# Single export
# ---------------------------------------------------------------------------


class TestExportCollection:
    def test_envelope_shape(self) -> None:
        document = export_collection(
            _make_collection(), [_make_listing()], ExportContext.PERSONAL, _EXPORTED_AT
        )

        assert document["version"] == EXPORT_VERSION == "1.0"
        assert document["exportedAt"] == "2025-03-01T12:30:05.123Z"
        assert document["context"] == "personal"
        assert document["collection"] == {
            "id": "c1",
            "label": "Centro",
            "createdAt": "2025-01-02T08:00:00.000Z",
            "updatedAt": "2025-01-03T09:00:00.000Z",
            "isDefault": True,
        }
        assert len(document["listings"]) == 1

    def test_every_listing_field_is_written_including_nulls(self) -> None:
        entry = listing_entry(_make_listing())

        expected_keys = {"id", "createdAt", *LISTING_FIELD_ALIASES.values()}
        assert set(entry) == expected_keys
        assert entry["academia"] is None
        assert entry["tipoImovel"] == "apartamento"
        assert entry["porteiro24h"] is True
        assert entry["createdAt"] == "2025-01-10T14:00:00.000Z"

    def test_listing_order_is_preserved(self) -> None:
        listings = [_make_listing("b"), _make_listing("a"), _make_listing("c")]
        document = export_collection(_make_collection(), listings, ExportContext.PERSONAL)
        assert [item["titulo"] for item in document["listings"]] == ["b", "a", "c"]

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        document = export_collection(
            _make_collection(created_at=datetime(2025, 1, 2, 8, 0)),
            [],
            ExportContext.PERSONAL,
            datetime(2025, 3, 1),
        )
        assert document["collection"]["createdAt"] == "2025-01-02T08:00:00.000Z"
        assert document["exportedAt"] == "2025-03-01T00:00:00.000Z"

    def test_export_does_not_mutate_inputs(self) -> None:
        listing = _make_listing()
        before = listing.model_dump()
        export_collection(_make_collection(), [listing], ExportContext.PERSONAL)
        assert listing.model_dump() == before


# ---------------------------------------------------------------------------
# Full export
# ---------------------------------------------------------------------------


class TestExportAll:
    async def test_groups_follow_collection_order(self, backend: FakeBackend) -> None:
        a = backend.seed_collection("A", listings=(ListingData(titulo="a1", endereco="x"),))
        b = backend.seed_collection("B")

        document = await export_all(backend, [b, a], ExportContext.ORGANIZATION, _EXPORTED_AT)

        assert document["version"] == "1.0"
        assert document["context"] == "organization"
        assert [g["collection"]["label"] for g in document["collections"]] == ["B", "A"]
        assert [len(g["listings"]) for g in document["collections"]] == [0, 1]

    async def test_failed_fetch_produces_no_document(self, backend: FakeBackend) -> None:
        a = backend.seed_collection("A")
        b = backend.seed_collection("B")
        backend.fail_list_listings = {b.id}

        with pytest.raises(RemoteOperationError):
            await export_all(backend, [a, b], ExportContext.PERSONAL)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestRendering:
    def test_dump_keeps_non_ascii(self) -> None:
        text = dump_document({"label": "Área nobre"})
        assert "Área nobre" in text
        assert json.loads(text) == {"label": "Área nobre"}

    def test_filename(self) -> None:
        assert export_filename("Centro", _EXPORTED_AT) == "anuncios-Centro-2025-03-01.json"

    def test_filename_replaces_unsafe_characters(self) -> None:
        assert export_filename("a/b:c", _EXPORTED_AT) == "anuncios-a-b-c-2025-03-01.json"

    def test_filename_fallback_label(self) -> None:
        assert export_filename("", _EXPORTED_AT) == "anuncios-colecao-2025-03-01.json"


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_single_export_reimports_equivalent_group(self) -> None:
        listings = [
            _make_listing("Cobertura"),
            _make_listing("Studio", custom_lat=None, custom_lng=None, tipo_imovel=None),
        ]
        text = dump_document(
            export_collection(_make_collection(), listings, ExportContext.PERSONAL)
        )

        result = normalize_document(json.loads(text))

        assert result.format is DocumentFormat.SINGLE
        group = result.groups[0]
        assert group.label == "Centro"
        assert group.dropped == 0
        assert [item.model_dump() for item in group.listings] == [
            listing.to_data().model_dump() for listing in listings
        ]

    async def test_full_export_reimports_every_group(self, backend: FakeBackend) -> None:
        a = backend.seed_collection("A", listings=(ListingData(titulo="a1", endereco="x"),))
        b = backend.seed_collection(
            "B",
            listings=(
                ListingData(titulo="b1", endereco="y", quartos=2),
                ListingData(titulo="b2", endereco="z", visited=True),
            ),
        )
        document = await export_all(backend, [a, b], ExportContext.PERSONAL)

        result = normalize_document(json.loads(dump_document(document)))

        assert result.format is DocumentFormat.FULL
        assert [g.label for g in result.groups] == ["A", "B"]
        originals = [backend.listings[a.id], backend.listings[b.id]]
        for group, stored in zip(result.groups, originals, strict=True):
            assert [item.model_dump() for item in group.listings] == [
                listing.to_data().model_dump() for listing in stored
            ]
