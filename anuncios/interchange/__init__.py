"""Import/export document handling: normalizer and serializer."""

from anuncios.interchange.normalizer import (
    DocumentFormat,
    ImportGroup,
    NormalizedImport,
    coerce_listing,
    normalize_document,
    parse_document,
)
from anuncios.interchange.serializer import (
    EXPORT_VERSION,
    dump_document,
    export_all,
    export_collection,
    export_filename,
)

__all__ = [
    "DocumentFormat",
    "ImportGroup",
    "NormalizedImport",
    "coerce_listing",
    "normalize_document",
    "parse_document",
    "EXPORT_VERSION",
    "dump_document",
    "export_all",
    "export_collection",
    "export_filename",
]
