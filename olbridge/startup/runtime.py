"""Process-level component graph for the catalog integration layer.

``CatalogRuntime`` builds the upstream client, cache, resolver, stats
recomputer, background supervisor and poller from ``CatalogSettings`` and
exposes the surface the rest of the process uses. Fire-and-forget calls
return immediately; their failures are logged, never raised.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Mapping, Optional, Tuple

from olbridge.config import CatalogSettings
from olbridge.db.models import Book, utcnow
from olbridge.services import activity_service, notifications_service
from olbridge.services.background import BackgroundSupervisor
from olbridge.services.book_stats_service import StatsRecomputer
from olbridge.services.import_matching import ImportMatch, ImportMatcher
from olbridge.services.mirror_service import MirrorResolver
from olbridge.services.publication_poller import PublicationPoller
from olbridge.services.response_cache import CachedCatalogClient, CacheSweeper, ResponseCache
from olbridge.services.upstream_client import UpstreamClient
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.runtime")


class CatalogRuntime:
    def __init__(
        self,
        settings: Optional[CatalogSettings] = None,
        *,
        http_session: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or CatalogSettings()
        s = self.settings
        self.cancel = threading.Event()
        self.client = UpstreamClient.from_settings(s, session=http_session)
        self.cache = ResponseCache(s.cache_ttl, clock=clock)
        self.catalog = CachedCatalogClient(self.client, self.cache)
        self.mirror = MirrorResolver(self.catalog)
        self.importer = ImportMatcher(self.catalog)
        self.stats = StatsRecomputer(s.stats_worker_cap)
        self.background = BackgroundSupervisor()
        self.sweeper = CacheSweeper(self.cache, s.cache_sweep_interval)
        self.poller = PublicationPoller(
            self.catalog,
            interval=s.poll_interval,
            initial_delay=s.poll_initial_delay,
            chunk_size=s.fanout_chunk_size,
        )
        self._started = False
        self._stopped = False

    # -- request path -------------------------------------------------------

    def upsert_book(self, work_key: str, fields: Optional[Mapping[str, Any]] = None) -> Book:
        return self.mirror.upsert_book(work_key, fields)

    def resolve_by_isbn(self, isbn: str, *, local_fallback: bool = False) -> Tuple[Optional[str], Optional[Book]]:
        return self.mirror.resolve_by_isbn(isbn, local_fallback=local_fallback)

    def should_notify(self, user_id: str, notif_type: str) -> bool:
        return notifications_service.should_notify(user_id, notif_type)

    def match_import_row(self, title: str, author: str, isbn: Optional[str] = None) -> ImportMatch:
        return self.importer.match(title, author, isbn)

    # -- fire-and-forget ------------------------------------------------------

    def refresh_stats(self, book_id: int) -> None:
        self.stats.refresh(book_id)

    def record_activity(
        self,
        user_id: str,
        activity_type: str,
        refs: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Future]:
        created_at = utcnow()
        return self.background.submit(
            activity_service.record_activity_now,
            user_id,
            activity_type,
            refs,
            metadata,
            created_at,
            label=f"activity {activity_type}",
        )

    def notify_book_followers(
        self,
        book_id: int,
        actor: Optional[str],
        notif_type: str,
        title: str,
        body: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Future]:
        return self.background.submit(
            notifications_service.notify_book_followers_now,
            book_id,
            actor,
            notif_type,
            title,
            body,
            metadata,
            chunk_size=self.settings.fanout_chunk_size,
            label=f"{notif_type} fan-out for book {book_id}",
        )

    # -- workers -------------------------------------------------------------

    def start_publication_poller(self, cancel: Optional[threading.Event] = None) -> threading.Thread:
        return self.poller.start(cancel or self.cancel)

    def start_cache_sweeper(self, cancel: Optional[threading.Event] = None) -> threading.Thread:
        return self.sweeper.start(cancel or self.cancel)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.start_cache_sweeper()
        self.start_publication_poller()
        LOG.info(
            "catalog workers started (sweep every %ss, poll every %ss after %ss)",
            self.settings.cache_sweep_interval,
            self.settings.poll_interval,
            self.settings.poll_initial_delay,
        )

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued background and stats work (used by tests and batch jobs)."""
        background_idle = self.background.wait_idle(timeout)
        return self.stats.wait_idle(timeout) and background_idle

    def shutdown(self, grace: Optional[float] = None) -> bool:
        """Cancel workers, give in-flight work ``grace`` seconds, abandon the rest."""
        if self._stopped:
            return True
        self._stopped = True
        grace = self.settings.shutdown_grace if grace is None else grace
        self.cancel.set()
        clean = self.background.shutdown(grace)
        clean = self.stats.shutdown(grace) and clean
        self.poller.join(grace)
        self.sweeper.join(grace)
        LOG.info("catalog runtime stopped (clean=%s)", clean)
        return clean


__all__ = ["CatalogRuntime"]
