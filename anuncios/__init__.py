"""Anuncios: real-estate listing collections, import/export and client state."""

__version__ = "0.1.0"
