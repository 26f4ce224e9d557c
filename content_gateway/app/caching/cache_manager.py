"""
Gateway cache manager: key derivation, TTL policy and JSON payload storage.
"""

import json
from typing import Any, Dict, Iterable, Optional, Set
from urllib.parse import unquote

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .response_cache import ResponseCache


DEFAULT_PASSTHROUGH_TTL = 300
DEFAULT_FEATURED_TTL = 600
DEFAULT_SEARCH_TTL = 300
DEFAULT_STATS_TTL = 300

CACHE_MISS = object()

FEATURED_CACHE_KEY = "featured_content"
CONTENT_STATS_CACHE_KEY = "content_stats"


class CacheManager:
    """Manager for the Gateway response cache."""

    CACHE_TYPES = ("engine-proxy", "content-proxy", "featured", "search", "stats")

    def __init__(
        self,
        cache: Optional[ResponseCache] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
        default_ttl: int = DEFAULT_PASSTHROUGH_TTL,
        featured_ttl: int = DEFAULT_FEATURED_TTL,
        search_ttl: int = DEFAULT_SEARCH_TTL,
        stats_ttl: int = DEFAULT_STATS_TTL,
    ):
        self.cache = cache or ResponseCache()
        self.metrics = metrics
        self.logger = get_logger("gateway.cache_manager")
        self._ttls = {
            "engine-proxy": default_ttl,
            "content-proxy": default_ttl,
            "featured": featured_ttl,
            "search": search_ttl,
            "stats": stats_ttl,
        }

    @classmethod
    def from_config(cls, config, metrics: Optional[MetricsCollector] = None) -> "CacheManager":
        return cls(
            ResponseCache(),
            metrics=metrics,
            default_ttl=config.cache_default_ttl,
            featured_ttl=config.cache_featured_ttl,
            search_ttl=config.cache_search_ttl,
            stats_ttl=config.cache_stats_ttl,
        )

    @staticmethod
    def make_key(namespace: str, method: str, path: str, query: str = "") -> str:
        """Derive the cache key for one logical request (method + path + query)."""
        key = f"{namespace}_{method.upper()}_{path}"
        if query:
            key = f"{key}?{query}"
        return key

    @staticmethod
    def search_key(query: str, content_type: str, limit: int) -> str:
        """Key for one search; the parameters are JSON-encoded so no two tuples collide."""
        return "search_" + json.dumps([query, content_type, limit], separators=(",", ":"))

    @staticmethod
    def tags_for_path(path: str) -> Set[str]:
        """Path segments of an engine path, used as explicit invalidation tags."""
        bare_path = path.split("?", 1)[0]
        return {unquote(segment) for segment in bare_path.split("/") if segment}

    def ttl_for(self, cache_type: str) -> int:
        return self._ttls.get(cache_type, self._ttls["engine-proxy"])

    def get_json(self, key: str, cache_type: str) -> Any:
        """Return the cached payload for ``key``, or ``CACHE_MISS``.

        A stored JSON ``null`` comes back as ``None`` and counts as a hit.
        """
        cached = self.cache.get(key, CACHE_MISS)
        payload = CACHE_MISS if cached is CACHE_MISS else self._deserialize_json(key, cached)
        metric = "cache_misses_total" if payload is CACHE_MISS else "cache_hits_total"
        if self.metrics:
            self.metrics.increment_counter(metric, cache_type=cache_type)
        return payload

    def set_json(
        self,
        key: str,
        payload: Any,
        cache_type: str,
        *,
        ttl: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> bool:
        """Store ``payload`` as JSON text so later readers never share a live object."""
        cache_ttl = self.ttl_for(cache_type) if ttl is None else ttl
        stored = self.cache.set(key, json.dumps(payload), cache_ttl, tags=tags)
        self._update_size_gauge()
        return stored

    def invalidate_entity(self, entity_type: str, entity_id: str) -> int:
        """Evict every entry whose key mentions the entity type or id, or that is tagged with either."""
        removed = self.cache.delete_entity(str(entity_type), str(entity_id))
        self._update_size_gauge()
        self.logger.info(
            "Invalidated cache entries",
            entity_type=entity_type,
            entity_id=entity_id,
            invalidated=removed,
        )
        return removed

    def flush(self) -> int:
        removed = self.cache.flush()
        self._update_size_gauge()
        self.logger.info("Flushed response cache", cleared=removed)
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get comprehensive cache statistics."""
        self.cache.purge_expired()
        stats = self.cache.stats()
        self._update_size_gauge(stats["count"])
        return {
            "keys": stats["count"],
            "stats": stats,
            "cache_types": list(self.CACHE_TYPES),
            "ttl_seconds": dict(self._ttls),
        }

    def _update_size_gauge(self, count: Optional[int] = None) -> None:
        if not self.metrics:
            return
        if count is None:
            count = self.cache.stats()["count"]
        self.metrics.set_gauge("cache_entries", count)

    def _deserialize_json(self, key: str, value: Any) -> Any:
        """Deserialize a cached JSON payload; unreadable entries are evicted."""
        try:
            return json.loads(value)
        except (TypeError, json.JSONDecodeError):
            self.logger.warning("Failed to deserialize cached payload", key=key)
            self.cache.delete(key)
            return CACHE_MISS
