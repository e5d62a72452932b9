"""Collections backends: abstract contract and the REST implementation."""

from anuncios.api.base import CollectionsBackend, SharedCollection, ShareInfo
from anuncios.api.client import ApiBackend
from anuncios.api.http_client import ApiHttpClient

__all__ = [
    "ApiBackend",
    "ApiHttpClient",
    "CollectionsBackend",
    "SharedCollection",
    "ShareInfo",
]
