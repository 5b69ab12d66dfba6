"""In-memory TTL cache in front of the upstream client.

Entries are keyed by full upstream URL and live for ``ttl`` seconds of the
monotonic clock. Readers never take a lock: a lookup is a single dict read
and an expired entry is treated as absent. Writers (store, eviction, the
hourly sweep) serialize on a short write lock and only remove an entry if it
is still the one they inspected, so a fresh insert is never clobbered.

Failed upstream calls are not cached. Two concurrent misses for one URL may
both reach the upstream; there is no request coalescing.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from olbridge.services.upstream_client import UpstreamClient, decode_object
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.upstream_cache")

HIT = "hit"
MISS = "miss"


@dataclass(frozen=True)
class CacheEntry:
    body: bytes
    expires_at: float


class ResponseCache:
    def __init__(self, ttl: float = 24 * 3600.0, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0:
            raise ValueError("ttl_positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._write_lock = threading.Lock()
        self._counter_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() < entry.expires_at:
            return entry.body
        self._discard(key, entry)
        return None

    def store(self, key: str, body: bytes) -> None:
        entry = CacheEntry(body=body, expires_at=self._clock() + self.ttl)
        with self._write_lock:
            self._entries[key] = entry

    def invalidate(self, key: str) -> bool:
        with self._write_lock:
            return self._entries.pop(key, None) is not None

    def _discard(self, key: str, entry: CacheEntry) -> bool:
        with self._write_lock:
            if self._entries.get(key) is entry:
                del self._entries[key]
                return True
        return False

    def evict_expired(self) -> int:
        """Remove every expired entry; returns how many were dropped."""
        now = self._clock()
        removed = 0
        for key, entry in list(self._entries.items()):
            if now >= entry.expires_at and self._discard(key, entry):
                removed += 1
        return removed

    def record_hit(self) -> None:
        with self._counter_lock:
            self._hits += 1

    def record_miss(self) -> None:
        with self._counter_lock:
            self._misses += 1

    def counters(self) -> Tuple[int, int]:
        with self._counter_lock:
            return self._hits, self._misses

    def take_counters(self) -> Tuple[int, int]:
        """Read and reset hit/miss counters as one step."""
        with self._counter_lock:
            hits, misses = self._hits, self._misses
            self._hits = 0
            self._misses = 0
        return hits, misses

    def sweep(self) -> Dict[str, Any]:
        evicted = self.evict_expired()
        hits, misses = self.take_counters()
        total = hits + misses
        hit_rate = (hits * 100.0 / total) if total else 0.0
        LOG.info(
            "[upstream cache] hits=%d misses=%d total=%d hit_rate=%.1f%% evicted=%d entries=%d",
            hits,
            misses,
            total,
            hit_rate,
            evicted,
            len(self._entries),
        )
        return {
            "hits": hits,
            "misses": misses,
            "total": total,
            "hit_rate": hit_rate,
            "evicted": evicted,
        }


class CachedCatalogClient:
    """Upstream client with every GET routed through a ``ResponseCache``."""

    def __init__(self, client: UpstreamClient, cache: ResponseCache) -> None:
        self.client = client
        self.cache = cache

    def url_for(self, path: str) -> str:
        return self.client.url_for(path)

    def get(self, path: str, *, refresh: bool = False) -> Tuple[bytes, str]:
        """Cached GET. ``refresh`` drops any stored entry first and always fetches."""
        key = self.client.url_for(path)
        if refresh:
            self.cache.invalidate(key)
        body = self.cache.lookup(key)
        if body is not None:
            self.cache.record_hit()
            return body, HIT
        body = self.client.fetch_raw(path)
        self.cache.store(key, body)
        self.cache.record_miss()
        return body, MISS

    def fetch_raw(self, path: str) -> bytes:
        return self.get(path)[0]

    def fetch_json(self, path: str, *, refresh: bool = False) -> Dict[str, Any]:
        body, _source = self.get(path, refresh=refresh)
        return decode_object(body, url=self.client.url_for(path))


class CacheSweeper:
    """Background thread that sweeps the cache every ``interval`` seconds."""

    def __init__(self, cache: ResponseCache, interval: float = 3600.0) -> None:
        self.cache = cache
        self.interval = interval
        self._thread: Optional[threading.Thread] = None

    def start(self, cancel: threading.Event) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(
            target=self.run,
            args=(cancel,),
            name="olbridge-cache-sweeper",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def run(self, cancel: threading.Event) -> None:
        LOG.debug("cache sweeper started interval=%ss", self.interval)
        while not cancel.wait(self.interval):
            try:
                self.cache.sweep()
            except Exception:
                LOG.warning("cache sweep failed", exc_info=True)
        LOG.debug("cache sweeper stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


__all__ = [
    "HIT",
    "MISS",
    "CacheEntry",
    "ResponseCache",
    "CachedCatalogClient",
    "CacheSweeper",
]
