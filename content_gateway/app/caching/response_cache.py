"""
In-memory TTL response cache for the Gateway.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload and its expiry bookkeeping."""

    key: str
    value: Any
    created_at: float
    ttl: float
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResponseCache:
    """Process-local cache with per-entry TTL, tag and substring invalidation.

    Entries are replaced whole under a lock, so a reader observes either the
    previous entry or the new one. Expired entries are dropped lazily on
    ``get`` and eagerly by ``purge_expired``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self.logger = get_logger("gateway.response_cache")

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key``, or ``default`` on a miss."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(now):
                del self._entries[key]
                entry = None

            if entry is None:
                self._misses += 1
                return default

            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float, tags: Optional[Iterable[str]] = None) -> bool:
        """Store ``value`` under ``key`` for ``ttl_seconds``, replacing any previous entry."""
        if ttl_seconds <= 0:
            return False

        entry = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            ttl=float(ttl_seconds),
            tags=frozenset(str(tag) for tag in (tags or ()) if tag),
        )
        with self._lock:
            self._entries[key] = entry

        self.logger.debug("Cached value", key=key, ttl=ttl_seconds, tags=sorted(entry.tags))
        return True

    def delete(self, key: str) -> bool:
        """Remove ``key``; absent keys are a no-op."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_matching(self, substring: str) -> int:
        """Remove every entry whose key contains ``substring``."""
        if not substring:
            return 0
        return self._delete_where(lambda entry: substring in entry.key)

    def delete_tagged(self, *tags: str) -> int:
        """Remove every entry carrying any of ``tags``."""
        wanted = {str(tag) for tag in tags if tag}
        if not wanted:
            return 0
        return self._delete_where(lambda entry: not wanted.isdisjoint(entry.tags))

    def delete_entity(self, entity_type: str, entity_id: str) -> int:
        """Remove entries related to an entity by key substring or by tag."""
        type_tag, id_tag = str(entity_type), str(entity_id)
        tags = {type_tag, id_tag} - {""}
        return self._delete_where(
            lambda entry: (
                (bool(type_tag) and type_tag in entry.key)
                or (bool(id_tag) and id_tag in entry.key)
                or not tags.isdisjoint(entry.tags)
            )
        )

    def flush(self) -> int:
        """Remove all entries."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        return removed

    def purge_expired(self) -> int:
        """Drop every entry whose TTL has elapsed."""
        now = self._clock()
        return self._delete_where(lambda entry: entry.is_expired(now))

    def keys(self) -> list:
        """Keys of entries that are still live."""
        now = self._clock()
        with self._lock:
            return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def stats(self) -> Dict[str, Any]:
        """Live entry count and hit/miss accounting."""
        now = self._clock()
        with self._lock:
            count = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
            hits, misses = self._hits, self._misses

        total = hits + misses
        return {
            "count": count,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / total, 4) if total else 0.0,
        }

    def _delete_where(self, predicate: Callable[[CacheEntry], bool]) -> int:
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if predicate(entry)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)
