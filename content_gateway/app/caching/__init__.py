"""
Gateway caching package.

Provides the in-memory response cache used by the Content Gateway to shield
the content engine. Prefer idempotent, short-lived caches and explicit
invalidation.
"""

from .cache_manager import (
    CONTENT_STATS_CACHE_KEY,
    FEATURED_CACHE_KEY,
    CacheManager,
)
from .response_cache import CacheEntry, ResponseCache

__all__ = [
    "CONTENT_STATS_CACHE_KEY",
    "FEATURED_CACHE_KEY",
    "CacheEntry",
    "CacheManager",
    "ResponseCache",
]
