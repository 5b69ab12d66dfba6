"""HTTP client for the upstream Open Library JSON API.

Every call is a GET against ``base_url + path`` with a per-call deadline.
Only status 200 bodies are returned; everything else is raised as one of the
``UpstreamError`` kinds. No retries happen here, callers decide.
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Dict, Optional

import requests

from olbridge import config as app_config
from olbridge.errors import (
    UpstreamDecodeError,
    UpstreamStatusError,
    UpstreamTransportError,
)
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.upstream")

_USER_AGENT = f"{app_config.APP_NAME}/{app_config.APP_VERSION}"


class TokenBucket:
    """Process-wide pacing for upstream requests."""

    def __init__(self, rate_per_sec: float, capacity: Optional[float] = None) -> None:
        self.rate = rate_per_sec
        self.capacity = capacity or rate_per_sec
        self.tokens = float(self.capacity)
        self.timestamp = time.monotonic()
        self.lock = threading.Lock()

    def consume(self, tokens: float = 1.0) -> None:
        """Take ``tokens``, sleeping until the bucket has refilled enough."""
        while True:
            with self.lock:
                now = time.monotonic()
                delta = now - self.timestamp
                self.timestamp = now
                self.tokens = min(self.capacity, self.tokens + delta * self.rate)
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                needed = tokens - self.tokens
            time.sleep(max(needed / self.rate, 0.0))


class UpstreamClient:
    def __init__(
        self,
        base_url: str = app_config.DEFAULT_UPSTREAM_BASE_URL,
        *,
        timeout: float = 10.0,
        session: Optional[Any] = None,
        rate_per_sec: Optional[float] = 5.0,
        burst: int = 15,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("base_url_required")
        self.timeout = timeout
        self._session = session if session is not None else requests.Session()
        self._bucket = TokenBucket(rate_per_sec, burst) if rate_per_sec else None

    @classmethod
    def from_settings(cls, settings: app_config.CatalogSettings, session: Optional[Any] = None) -> "UpstreamClient":
        return cls(
            settings.upstream_base_url,
            timeout=settings.upstream_timeout,
            session=session,
            rate_per_sec=settings.upstream_rate_per_sec,
            burst=settings.upstream_burst,
        )

    def url_for(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    def fetch_raw(self, path: str) -> bytes:
        url = self.url_for(path)
        if self._bucket is not None:
            self._bucket.consume()
        started = time.monotonic()
        try:
            resp = self._session.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
            )
        except requests.RequestException as exc:
            LOG.debug("upstream GET %s failed: %s", url, exc)
            raise UpstreamTransportError(str(exc), url=url) from exc
        elapsed_ms = (time.monotonic() - started) * 1000.0
        if resp.status_code != 200:
            LOG.debug("upstream GET %s -> %s (%.0f ms)", url, resp.status_code, elapsed_ms)
            raise UpstreamStatusError(resp.status_code, url=url)
        LOG.debug("upstream GET %s -> 200 (%.0f ms)", url, elapsed_ms)
        return resp.content

    def fetch_json(self, path: str) -> Dict[str, Any]:
        return decode_object(self.fetch_raw(path), url=self.url_for(path))


def decode_object(body: bytes, *, url: Optional[str] = None) -> Dict[str, Any]:
    """Decode an upstream body that must be a JSON object."""
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise UpstreamDecodeError(f"invalid JSON: {exc}", url=url) from exc
    if not isinstance(data, dict):
        raise UpstreamDecodeError("expected a JSON object", url=url)
    return data


__all__ = ["TokenBucket", "UpstreamClient", "decode_object"]
