"""Unit tests for :class:`~anuncios.sync.store.CollectionStore`.

All tests run the store against the in-memory ``FakeBackend`` from
``conftest.py``, so every remote call is observable and can be made to fail.

Covers:
- Initialization: default-else-first activation, zero collections, failure.
- Active-collection failover when the active collection is deleted.
- Stale listings responses discarded after the selection moved on.
- At most one cached default after any create/update sequence.
- Cache left untouched by a failed mutation; refresh counter semantics.
- Import and export through the store.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from anuncios.core.exceptions import (
    EmptyImportError,
    FormatError,
    NoActiveCollectionError,
    ParseRateLimitedError,
    RemoteOperationError,
    StoreError,
    UnknownCollectionError,
)
from anuncios.core.models import ListingData, ListingUpdate
from anuncios.core.scope import OwnerScope
from anuncios.sync.store import CollectionStore, StoreState

if TYPE_CHECKING:
    from conftest import FakeBackend

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_data(titulo: str = "Apartamento", endereco: str = "Rua A, 1") -> ListingData:
    return ListingData(titulo=titulo, endereco=endereco)


async def _ready_store(backend: FakeBackend, **kwargs: object) -> CollectionStore:
    store = CollectionStore(backend, **kwargs)  # type: ignore[arg-type]
    await store.initialize()
    return store


def _defaults(store: CollectionStore) -> list[str]:
    return [c.id for c in store.collections if c.is_default]


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestInitialize:
    async def test_selects_default_collection(self, backend: FakeBackend) -> None:
        backend.seed_collection("Primeira")
        default = backend.seed_collection(
            "Favoritos", is_default=True, listings=(_make_data("fav"),)
        )

        store = await _ready_store(backend)

        assert store.state is StoreState.READY
        assert store.active_collection is not None
        assert store.active_collection.id == default.id
        assert [item.titulo for item in store.listings] == ["fav"]
        assert store.is_loading_listings is False

    async def test_selects_first_without_default(self, backend: FakeBackend) -> None:
        first = backend.seed_collection("Primeira")
        backend.seed_collection("Segunda")

        store = await _ready_store(backend)

        assert store.active_collection is not None
        assert store.active_collection.id == first.id

    async def test_zero_collections_is_ready_without_active(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)

        assert store.state is StoreState.READY
        assert store.active_collection is None
        assert store.listings == ()
        assert not any(call[0] == "list_listings" for call in backend.calls)

    async def test_failure_records_error_and_can_be_retried(self, backend: FakeBackend) -> None:
        backend.seed_collection("Única")
        backend.fail_list_collections = True

        store = await _ready_store(backend)

        assert store.error is not None
        assert store.state is StoreState.UNINITIALIZED
        assert store.collections == ()

        backend.fail_list_collections = False
        await store.load_collections()

        assert store.error is None
        assert store.state is StoreState.READY
        assert len(store.collections) == 1

    async def test_only_scope_collections_are_loaded(self, backend: FakeBackend) -> None:
        backend.seed_collection("Pessoal")
        org = backend.seed_collection("Empresa", org_id="org-1")

        store = await _ready_store(backend, scope=OwnerScope(org_id="org-1"))

        assert [c.id for c in store.collections] == [org.id]

    async def test_reload_keeps_active_collection(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", is_default=True)
        second = backend.seed_collection("B")
        store = await _ready_store(backend)
        await store.select_collection(second.id)

        await store.load_collections()

        assert store.active_collection is not None
        assert store.active_collection.id == second.id


# ---------------------------------------------------------------------------
# Selection and failover
# ---------------------------------------------------------------------------


class TestSelectAndDelete:
    async def test_select_fetches_listings_of_new_collection(
        self, backend: FakeBackend
    ) -> None:
        backend.seed_collection("A", listings=(_make_data("a1"),))
        b = backend.seed_collection("B", listings=(_make_data("b1"), _make_data("b2")))
        store = await _ready_store(backend)

        await store.select_collection(b.id)

        assert [item.titulo for item in store.listings] == ["b1", "b2"]

    async def test_select_unknown_collection_raises(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)
        with pytest.raises(UnknownCollectionError):
            await store.select_collection("missing")

    async def test_select_none_clears_listings(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", listings=(_make_data("a1"),))
        store = await _ready_store(backend)

        await store.select_collection(None)

        assert store.active_collection is None
        assert store.listings == ()

    async def test_deleting_active_fails_over_to_default(self, backend: FakeBackend) -> None:
        """Deleting the active collection activates the default and refetches it."""
        active = backend.seed_collection("Ativa")
        backend.seed_collection("Outra")
        default = backend.seed_collection(
            "Padrão", is_default=True, listings=(_make_data("p1"),)
        )
        store = await _ready_store(backend)
        await store.select_collection(active.id)
        backend.calls.clear()

        await store.delete_collection(active.id)

        assert store.active_collection is not None
        assert store.active_collection.id == default.id
        assert ("list_listings", default.id) in backend.calls
        assert [item.titulo for item in store.listings] == ["p1"]
        assert active.id not in [c.id for c in store.collections]

    async def test_deleting_active_without_default_picks_first(
        self, backend: FakeBackend
    ) -> None:
        first = backend.seed_collection("Primeira")
        last = backend.seed_collection("Última")
        store = await _ready_store(backend)
        await store.select_collection(last.id)

        await store.delete_collection(last.id)

        assert store.active_collection is not None
        assert store.active_collection.id == first.id

    async def test_deleting_last_collection_clears_active(self, backend: FakeBackend) -> None:
        only = backend.seed_collection("Só", listings=(_make_data("x"),))
        store = await _ready_store(backend)

        await store.delete_collection(only.id)

        assert store.active_collection is None
        assert store.listings == ()
        assert store.collections == ()

    async def test_deleting_inactive_keeps_selection(self, backend: FakeBackend) -> None:
        active = backend.seed_collection("Ativa", is_default=True)
        other = backend.seed_collection("Outra")
        store = await _ready_store(backend)
        backend.calls.clear()

        await store.delete_collection(other.id)

        assert store.active_collection is not None
        assert store.active_collection.id == active.id
        assert not any(call[0] == "list_listings" for call in backend.calls)

    async def test_failed_listings_fetch_empties_cache(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", listings=(_make_data("a1"),))
        b = backend.seed_collection("B", listings=(_make_data("b1"),))
        backend.fail_list_listings = {b.id}
        store = await _ready_store(backend)

        await store.select_collection(b.id)

        assert store.listings == ()
        assert store.is_loading_listings is False
        assert store.active_collection is not None
        assert store.active_collection.id == b.id


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------


class TestStaleListings:
    async def test_slow_response_for_previous_selection_is_discarded(
        self, backend: FakeBackend
    ) -> None:
        home = backend.seed_collection("Home")
        slow = backend.seed_collection("Lenta", listings=(_make_data("slow"),))
        fast = backend.seed_collection("Rápida", listings=(_make_data("fast"),))
        store = await _ready_store(backend)
        assert store.active_collection is not None
        assert store.active_collection.id == home.id

        gate = asyncio.Event()
        backend.listing_gates[slow.id] = gate

        pending = asyncio.create_task(store.select_collection(slow.id))
        await asyncio.sleep(0)
        assert store.is_loading_listings is True

        await store.select_collection(fast.id)
        gate.set()
        await pending

        assert store.active_collection is not None
        assert store.active_collection.id == fast.id
        assert [item.titulo for item in store.listings] == ["fast"]

    async def test_superseded_fetch_of_same_collection_is_discarded(
        self, backend: FakeBackend
    ) -> None:
        target = backend.seed_collection("Alvo", listings=(_make_data("v1"),))
        store = await _ready_store(backend)

        gate = asyncio.Event()
        backend.listing_gates[target.id] = gate
        first = asyncio.create_task(store.load_listings())
        await asyncio.sleep(0)

        # A newer fetch is dispatched and sees an extra listing.
        del backend.listing_gates[target.id]
        await backend.create_listing(target.id, _make_data("v2"))
        await store.load_listings()
        assert [item.titulo for item in store.listings] == ["v1", "v2"]

        # The first response now reads different data; it must not win.
        backend.listings[target.id] = []
        gate.set()
        await first

        assert [item.titulo for item in store.listings] == ["v1", "v2"]

    async def test_loading_another_collection_is_refused(self, backend: FakeBackend) -> None:
        home = backend.seed_collection("Home", listings=(_make_data("home"),))
        other = backend.seed_collection("Outra", listings=(_make_data("other"),))
        store = await _ready_store(backend)
        backend.calls.clear()

        with pytest.raises(StoreError):
            await store.load_listings(other.id)

        assert store.active_collection is not None
        assert store.active_collection.id == home.id
        assert [item.titulo for item in store.listings] == ["home"]
        assert all(item.collection_id == home.id for item in store.listings)
        assert backend.calls == []

    async def test_loading_active_collection_by_id(self, backend: FakeBackend) -> None:
        home = backend.seed_collection("Home")
        store = await _ready_store(backend)
        await backend.create_listing(home.id, _make_data("novo"))

        await store.load_listings(home.id)

        assert [item.titulo for item in store.listings] == ["novo"]

    async def test_response_after_dispose_is_dropped(self, backend: FakeBackend) -> None:
        backend.seed_collection("A")
        slow = backend.seed_collection("B", listings=(_make_data("b1"),))
        store = await _ready_store(backend)

        gate = asyncio.Event()
        backend.listing_gates[slow.id] = gate
        pending = asyncio.create_task(store.select_collection(slow.id))
        await asyncio.sleep(0)

        await store.dispose()
        gate.set()
        await pending

        assert store.listings == ()
        assert store.collections == ()


# ---------------------------------------------------------------------------
# Collection mutations
# ---------------------------------------------------------------------------


class TestCollectionMutations:
    async def test_create_appends_and_bumps_counter(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)
        before = store.refresh_counter

        created = await store.create_collection("Nova")

        assert store.collections[-1].id == created.id
        assert store.refresh_counter == before + 1

    async def test_create_default_clears_other_defaults(self, backend: FakeBackend) -> None:
        backend.seed_collection("Antiga", is_default=True)
        store = await _ready_store(backend)

        created = await store.create_collection("Nova", is_default=True)

        assert _defaults(store) == [created.id]

    async def test_default_request_ignored_by_server_keeps_old_default(
        self, backend: FakeBackend, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        old = backend.seed_collection("Antiga", is_default=True)
        store = await _ready_store(backend)
        create = backend.create_collection

        async def create_without_default(
            name: str, *, scope: OwnerScope, is_default: bool = False
        ) -> object:
            return await create(name, scope=scope)

        monkeypatch.setattr(backend, "create_collection", create_without_default)

        created = await store.create_collection("Nova", is_default=True)

        assert created.is_default is False
        assert _defaults(store) == [old.id]

    async def test_set_default_keeps_single_default(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", is_default=True)
        b = backend.seed_collection("B")
        c = backend.seed_collection("C")
        store = await _ready_store(backend)

        await store.set_default_collection(b.id)
        assert _defaults(store) == [b.id]
        await store.create_collection("D", is_default=True)
        await store.set_default_collection(c.id)
        await store.update_collection(b.id, name="B renomeada")

        assert _defaults(store) == [c.id]

    async def test_update_merges_server_object(self, backend: FakeBackend) -> None:
        a = backend.seed_collection("A")
        store = await _ready_store(backend)
        old_updated_at = store.get_collection(a.id).updated_at

        updated = await store.update_collection(a.id, name="Renomeada")

        cached = store.get_collection(a.id)
        assert cached.label == "Renomeada"
        assert cached.updated_at == updated.updated_at != old_updated_at
        assert store.active_collection is not None
        assert store.active_collection.label == "Renomeada"

    async def test_update_without_fields_is_rejected(self, backend: FakeBackend) -> None:
        a = backend.seed_collection("A")
        store = await _ready_store(backend)
        with pytest.raises(ValueError):
            await store.update_collection(a.id)

    async def test_failed_update_leaves_cache_unchanged(self, backend: FakeBackend) -> None:
        a = backend.seed_collection("A", is_default=True)
        backend.seed_collection("B")
        store = await _ready_store(backend)
        snapshot = store.collections
        counter = store.refresh_counter
        backend.fail_updates = True

        with pytest.raises(RemoteOperationError):
            await store.update_collection(a.id, name="X", is_default=False)
        with pytest.raises(RemoteOperationError):
            await store.delete_collection(a.id)

        assert store.collections == snapshot
        assert store.refresh_counter == counter
        assert store.active_collection is not None
        assert store.active_collection.id == a.id

    async def test_failed_create_is_not_cached(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)
        backend.fail_collection_labels = {"Ruim"}

        with pytest.raises(RemoteOperationError):
            await store.create_collection("Ruim")

        assert store.collections == ()
        assert store.refresh_counter == 0


class TestSharing:
    async def test_share_and_unshare(self, backend: FakeBackend) -> None:
        a = backend.seed_collection("A")
        store = await _ready_store(backend)

        info = await store.share_collection(a.id)

        assert info.is_shared is True
        assert info.share_token is not None
        assert store.get_collection(a.id).is_public is True
        assert store.get_collection(a.id).share_token == info.share_token

        shared_at = store.get_collection(a.id).updated_at
        await store.unshare_collection(a.id)

        cached = store.get_collection(a.id)
        assert cached.is_public is False
        assert cached.share_token is None
        assert cached == backend.collections[a.id]
        assert cached.updated_at > shared_at
        assert store.refresh_counter == 2


# ---------------------------------------------------------------------------
# Listing mutations
# ---------------------------------------------------------------------------


class TestListingMutations:
    async def test_add_listing_prepends(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", listings=(_make_data("velho"),))
        store = await _ready_store(backend)

        created = await store.add_listing(_make_data("novo"))

        assert [item.titulo for item in store.listings] == ["novo", "velho"]
        assert created.collection_id == store.active_collection.id  # type: ignore[union-attr]
        assert store.refresh_counter == 1

    async def test_listing_mutation_without_active_collection(
        self, backend: FakeBackend
    ) -> None:
        store = await _ready_store(backend)
        with pytest.raises(NoActiveCollectionError):
            await store.add_listing(_make_data())
        with pytest.raises(NoActiveCollectionError):
            await store.remove_listing("l1")

    async def test_update_listing_replaces_with_server_object(
        self, backend: FakeBackend
    ) -> None:
        backend.seed_collection("A", listings=(_make_data("um"), _make_data("dois")))
        store = await _ready_store(backend)
        target = store.listings[1]

        updated = await store.update_listing(target.id, {"starred": True, "discardedReason": "x"})

        assert store.listings[1] == updated
        assert updated.starred is True
        assert updated.discarded_reason == "x"
        assert store.listings[0].starred is None

    async def test_update_listing_accepts_model_patch(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", listings=(_make_data("um"),))
        store = await _ready_store(backend)

        await store.update_listing(store.listings[0].id, ListingUpdate(visited=True))

        assert store.listings[0].visited is True

    async def test_remove_listing(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", listings=(_make_data("um"), _make_data("dois")))
        store = await _ready_store(backend)

        await store.remove_listing(store.listings[0].id)

        assert [item.titulo for item in store.listings] == ["dois"]

    async def test_failed_listing_update_leaves_cache_unchanged(
        self, backend: FakeBackend
    ) -> None:
        backend.seed_collection("A", listings=(_make_data("um"),))
        store = await _ready_store(backend)
        snapshot = store.listings
        backend.fail_updates = True

        with pytest.raises(RemoteOperationError):
            await store.update_listing(snapshot[0].id, {"starred": True})
        with pytest.raises(RemoteOperationError):
            await store.remove_listing(snapshot[0].id)

        assert store.listings == snapshot
        assert store.refresh_counter == 0

    async def test_parse_listing_delegates_and_propagates(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)
        backend.parse_result = _make_data("Do texto")

        assert (await store.parse_listing("texto livre")).titulo == "Do texto"

        backend.parse_error = ParseRateLimitedError("slow down")
        with pytest.raises(ParseRateLimitedError):
            await store.parse_listing("outra vez")


# ---------------------------------------------------------------------------
# Import / export
# ---------------------------------------------------------------------------


class TestImportDocument:
    async def test_full_document_creates_suffixed_collections(
        self, backend: FakeBackend
    ) -> None:
        document = {
            "version": "1.0",
            "collections": [
                {
                    "collection": {"label": "Imported"},
                    "listings": [{"titulo": "a", "endereco": "x"}],
                },
                {
                    "collection": {"label": "Imported"},
                    "listings": [{"titulo": "b", "endereco": "y"}],
                },
            ],
        }
        store = await _ready_store(backend)

        summary = await store.import_document(json.dumps(document))

        assert sorted(c.label for c in store.collections) == ["Imported", "Imported (2)"]
        assert summary.groups_created == 2
        assert store.active_collection is not None
        assert store.active_collection.label == "Imported (2)"
        assert [item.titulo for item in store.listings] == ["b"]
        assert store.refresh_counter == 1

    async def test_labels_avoid_existing_collections(self, backend: FakeBackend) -> None:
        backend.seed_collection("Imported Collection")
        store = await _ready_store(backend)

        await store.import_document([{"titulo": "a", "endereco": "x"}])

        assert [c.label for c in store.collections] == [
            "Imported Collection",
            "Imported Collection (2)",
        ]

    async def test_empty_groups_are_skipped(self, backend: FakeBackend) -> None:
        document = {
            "collections": [
                {"collection": {"label": "Vazia"}, "listings": [{"titulo": "sem endereço"}]},
                {"collection": {"label": "Cheia"}, "listings": [{"titulo": "a", "endereco": "x"}]},
            ]
        }
        store = await _ready_store(backend)

        summary = await store.import_document(document)

        assert [c.label for c in store.collections] == ["Cheia"]
        assert summary.groups_created == 1

    async def test_no_valid_listing_creates_nothing(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)

        with pytest.raises(EmptyImportError) as exc_info:
            await store.import_document('[{"titulo": "A"}, {"endereco": "B"}]')

        assert exc_info.value.dropped == 2
        assert not any(call[0].startswith("create") for call in backend.calls)

    async def test_unrecognised_document_creates_nothing(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)

        with pytest.raises(FormatError):
            await store.import_document('{"foo": 1}')

        assert store.collections == ()

    async def test_import_into_existing_collection(self, backend: FakeBackend) -> None:
        target = backend.seed_collection("Destino", listings=(_make_data("antigo"),))
        store = await _ready_store(backend)

        summary = await store.import_document(
            [{"titulo": "novo", "endereco": "x"}], into=target.id
        )

        assert summary.listings_created == 1
        assert len(store.collections) == 1
        assert sorted(item.titulo for item in store.listings) == ["antigo", "novo"]

    async def test_import_into_unknown_collection_raises(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)
        with pytest.raises(UnknownCollectionError):
            await store.import_document([{"titulo": "a", "endereco": "x"}], into="nope")


class TestExport:
    async def test_export_active_fetches_listings(self, backend: FakeBackend) -> None:
        centro = backend.seed_collection("Centro", listings=(_make_data("a"), _make_data("b")))
        store = await _ready_store(backend, scope=None)
        backend.calls.clear()

        document = await store.export_active(datetime(2025, 3, 1, tzinfo=UTC))

        assert document["collection"]["label"] == "Centro"
        assert [item["titulo"] for item in document["listings"]] == ["a", "b"]
        assert document["context"] == "personal"
        assert backend.calls == [("list_listings", centro.id)]

    async def test_export_during_selection_uses_new_collection_listings(
        self, backend: FakeBackend
    ) -> None:
        backend.seed_collection("Home", listings=(_make_data("home"),))
        slow = backend.seed_collection("Lenta", listings=(_make_data("slow"),))
        store = await _ready_store(backend)

        gate = asyncio.Event()
        backend.listing_gates[slow.id] = gate
        pending = asyncio.create_task(store.select_collection(slow.id))
        await asyncio.sleep(0)
        assert store.is_loading_listings is True

        export = asyncio.create_task(store.export_active())
        await asyncio.sleep(0)
        gate.set()
        document = await export
        await pending

        assert document["collection"]["label"] == "Lenta"
        assert [item["titulo"] for item in document["listings"]] == ["slow"]

    async def test_export_after_failed_fetch_raises(self, backend: FakeBackend) -> None:
        backend.seed_collection("Home", listings=(_make_data("home"),))
        other = backend.seed_collection("Outra", listings=(_make_data("other"),))
        backend.fail_list_listings = {other.id}
        store = await _ready_store(backend)
        await store.select_collection(other.id)
        assert store.listings == ()

        with pytest.raises(RemoteOperationError):
            await store.export_active()

    async def test_export_active_requires_collection(self, backend: FakeBackend) -> None:
        store = await _ready_store(backend)
        with pytest.raises(NoActiveCollectionError):
            await store.export_active()

    async def test_export_all_covers_every_collection(self, backend: FakeBackend) -> None:
        backend.seed_collection("A", org_id="o1", listings=(_make_data("a"),))
        backend.seed_collection("B", org_id="o1", listings=(_make_data("b1"), _make_data("b2")))
        store = await _ready_store(backend, scope=OwnerScope(org_id="o1"))

        document = await store.export_all()

        assert document["context"] == "organization"
        assert [g["collection"]["label"] for g in document["collections"]] == ["A", "B"]
        assert [len(g["listings"]) for g in document["collections"]] == [1, 2]


# ---------------------------------------------------------------------------
# Dispose
# ---------------------------------------------------------------------------


class TestDispose:
    async def test_disposed_store_refuses_use(self, backend: FakeBackend) -> None:
        backend.seed_collection("A")
        store = await _ready_store(backend)

        await store.dispose()

        assert store.state is StoreState.UNINITIALIZED
        assert store.active_collection is None
        with pytest.raises(StoreError):
            await store.create_collection("X")
        with pytest.raises(StoreError):
            await store.load_collections()
