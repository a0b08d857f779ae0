"""Storefront catalog service: product store, search index, cache and image storage."""

__version__ = "1.0.0"
