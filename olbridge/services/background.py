"""Supervisor for fire-and-forget work (activity writes, notification fan-out).

Tasks run on a small thread pool and are tracked until they finish so that
shutdown can wait a bounded grace period before abandoning the rest.
Failures are logged here and never reach the code that scheduled them.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.background")


class BackgroundSupervisor:
    def __init__(self, max_workers: int = 4, name: str = "olbridge-bg") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._futures: Set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, fn: Callable[..., Any], *args: Any, label: str = "task", **kwargs: Any) -> Optional[Future]:
        with self._lock:
            if self._closed:
                LOG.warning("Dropping background %s: supervisor is shut down", label)
                return None
            future = self._executor.submit(self._guard, label, fn, args, kwargs)
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    @staticmethod
    def _guard(label: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception:
            LOG.warning("Background %s failed", label, exc_info=True)
            return None

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def pending(self) -> int:
        with self._lock:
            return len(self._futures)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every task scheduled so far has finished."""
        with self._lock:
            snapshot = list(self._futures)
        if not snapshot:
            return True
        _done, not_done = wait(snapshot, timeout=timeout)
        return not not_done

    def shutdown(self, grace: float = 5.0) -> bool:
        """Stop accepting work, wait up to ``grace`` seconds, abandon the rest."""
        with self._lock:
            self._closed = True
            snapshot = list(self._futures)
        finished = True
        if snapshot:
            _done, not_done = wait(snapshot, timeout=grace)
            if not_done:
                finished = False
                LOG.warning("Abandoning %d background task(s) after %.1fs grace", len(not_done), grace)
        self._executor.shutdown(wait=False, cancel_futures=True)
        return finished


__all__ = ["BackgroundSupervisor"]
