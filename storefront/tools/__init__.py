"""Adapters for the external systems the catalog talks to."""
