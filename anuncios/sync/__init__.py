"""Synchronisation layer: import reconciler and client state store."""

from anuncios.sync.labels import LabelRegistry, unique_label
from anuncios.sync.reconciler import (
    GroupImportStats,
    ImportSummary,
    import_groups,
    import_into_collection,
)
from anuncios.sync.store import CollectionStore, StoreState

__all__ = [
    "CollectionStore",
    "GroupImportStats",
    "ImportSummary",
    "LabelRegistry",
    "StoreState",
    "import_groups",
    "import_into_collection",
    "unique_label",
]
