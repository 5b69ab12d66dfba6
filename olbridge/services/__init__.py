"""Service exports."""

from .upstream_client import UpstreamClient, TokenBucket
from .response_cache import ResponseCache, CachedCatalogClient, CacheSweeper, HIT, MISS
from .mirror_service import MirrorResolver
from .book_stats_service import StatsRecomputer, get_book_stats
from .background import BackgroundSupervisor
from .publication_poller import PublicationPoller
from .import_matching import ImportMatch, ImportMatcher
from . import activity_service, follows_service, notifications_service

__all__ = [
    "UpstreamClient",
    "TokenBucket",
    "ResponseCache",
    "CachedCatalogClient",
    "CacheSweeper",
    "HIT",
    "MISS",
    "MirrorResolver",
    "StatsRecomputer",
    "get_book_stats",
    "BackgroundSupervisor",
    "PublicationPoller",
    "ImportMatch",
    "ImportMatcher",
    "activity_service",
    "follows_service",
    "notifications_service",
]
