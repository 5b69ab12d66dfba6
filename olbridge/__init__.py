"""Catalog integration layer for the book-tracking backend.

Sits between user-facing handlers and the Open Library upstream: a cached
HTTP client, the local ``books`` mirror, book stats recomputation,
activity/notification fan-out and the followed-author publication poller.
Hosts wire it in through ``olbridge.startup.wiring.init_app``.
"""

__all__ = [
]
