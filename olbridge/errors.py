"""Error kinds raised by the catalog integration layer.

Request-path callers (handlers invoking the mirror resolver) receive these
and translate them into user-visible responses. Background work logs them
and moves on to the next book, author or recipient.
"""
from __future__ import annotations

from typing import Optional


class CatalogError(RuntimeError):
    """Base class for catalog integration failures."""


class UpstreamError(CatalogError):
    """Any failure talking to the upstream catalog."""

    def __init__(self, message: str, *, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class UpstreamTransportError(UpstreamError):
    """DNS, connect, TLS, read or timeout failure reaching the upstream."""


class UpstreamStatusError(UpstreamError):
    """Upstream answered with a status other than 200."""

    def __init__(self, status: int, *, url: Optional[str] = None):
        super().__init__(f"upstream returned {status}", url=url)
        self.status = status


class UpstreamDecodeError(UpstreamError):
    """Body is not a JSON object or a required field is absent."""


class StoreError(CatalogError):
    """The record store refused a read or write."""


class NotFoundError(CatalogError):
    """A work key, ISBN or author key yielded no useful data."""


__all__ = [
    "CatalogError",
    "UpstreamError",
    "UpstreamTransportError",
    "UpstreamStatusError",
    "UpstreamDecodeError",
    "StoreError",
    "NotFoundError",
]
