"""Per-book aggregate counters.

``StatsRecomputer.refresh`` is fire-and-forget. At most one recomputation
per book runs at a time; requests that arrive while it runs collapse into a
single re-run. A fixed pool caps concurrent recomputations process-wide.
"""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from olbridge.db.models import BookStats
from olbridge.db.repositories import book_stats_repo, books_repo
from olbridge.errors import StoreError
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.book_stats")

_EMPTY_COUNTERS = {
    "reads_count": 0,
    "want_to_read_count": 0,
    "rating_sum": 0.0,
    "rating_count": 0,
    "review_count": 0,
}


class StatsRecomputer:
    def __init__(self, worker_cap: int = 4) -> None:
        if worker_cap < 1:
            raise ValueError("worker_cap_positive")
        self.worker_cap = worker_cap
        self._executor = ThreadPoolExecutor(max_workers=worker_cap, thread_name_prefix="olbridge-stats")
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight: Set[int] = set()
        self._pending: Set[int] = set()
        self._closed = False
        self.runs = 0

    def refresh(self, book_id: int) -> None:
        """Schedule a recomputation for ``book_id`` and return immediately."""
        book_id = int(book_id)
        with self._lock:
            if self._closed:
                LOG.debug("stats refresh for book %s ignored after shutdown", book_id)
                return
            if book_id in self._in_flight:
                self._pending.add(book_id)
                return
            self._in_flight.add(book_id)
        self._submit(book_id)

    def _submit(self, book_id: int) -> None:
        try:
            self._executor.submit(self._run, book_id)
        except RuntimeError:
            # Executor already shut down.
            with self._lock:
                self._in_flight.discard(book_id)
                self._pending.discard(book_id)
                self._idle.notify_all()

    def _run(self, book_id: int) -> None:
        try:
            self.recompute_now(book_id)
        except Exception:
            LOG.warning("stats recompute failed for book %s", book_id, exc_info=True)
        finally:
            with self._lock:
                self.runs += 1
                rerun = book_id in self._pending and not self._closed
                self._pending.discard(book_id)
                if not rerun:
                    self._in_flight.discard(book_id)
                    self._idle.notify_all()
            if rerun:
                self._submit(book_id)

    def recompute_now(self, book_id: int) -> Optional[BookStats]:
        """Recompute synchronously on the calling thread."""
        try:
            return book_stats_repo.recompute_stats(book_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"stats recompute for book {book_id} failed: {exc}") from exc

    def backfill_all(self) -> int:
        """Schedule a refresh for every mirrored book."""
        ids = books_repo.list_book_ids()
        for book_id in ids:
            self.refresh(book_id)
        LOG.info("stats backfill scheduled for %d books", len(ids))
        return len(ids)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: not self._in_flight, timeout=timeout)

    def shutdown(self, grace: float = 5.0) -> bool:
        with self._lock:
            self._closed = True
            self._pending.clear()
        idle = self.wait_idle(grace)
        if not idle:
            LOG.warning("Abandoning %d stats recompute(s) after %.1fs grace", self.in_flight(), grace)
        self._executor.shutdown(wait=False, cancel_futures=True)
        return idle


def get_book_stats(book_id: int) -> Dict[str, Any]:
    """Counters for ``book_id`` with the derived average (zeros when never computed)."""
    stats = book_stats_repo.get_stats(book_id)
    if stats is None:
        return {"book_id": book_id, **_EMPTY_COUNTERS, "average_rating": None}
    return {"book_id": book_id, **stats.counters(), "average_rating": stats.average_rating()}


__all__ = ["StatsRecomputer", "get_book_stats"]
