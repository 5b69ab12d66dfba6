"""Shared helpers (logging, upstream identifiers)."""
