"""
Unit tests for the in-memory response cache.
"""

import threading

import pytest

from content_gateway.app.caching.response_cache import CacheEntry, ResponseCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestResponseCache:
    """Test cases for ResponseCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return ResponseCache(clock=clock)

    def test_get_returns_value_until_ttl_elapses(self, cache, clock):
        cache.set("content-proxy_GET_/node/article", "payload", 300)

        clock.advance(299)
        assert cache.get("content-proxy_GET_/node/article") == "payload"

        clock.advance(1)
        assert cache.get("content-proxy_GET_/node/article") is None

    def test_get_returns_default_on_miss(self, cache):
        marker = object()
        cache.set("null", None, 60)

        assert cache.get("missing", marker) is marker
        assert cache.get("null", marker) is None

    def test_expired_entry_is_evicted_on_read(self, cache, clock):
        cache.set("k", "v", 10)
        clock.advance(11)

        assert cache.get("k") is None
        assert cache.keys() == []
        assert cache.stats()["count"] == 0

    def test_set_overwrites_and_resets_ttl(self, cache, clock):
        cache.set("k", "old", 10)
        clock.advance(8)
        cache.set("k", "new", 10)
        clock.advance(8)

        assert cache.get("k") == "new"

    def test_non_positive_ttl_stores_nothing(self, cache):
        assert cache.set("k", "v", 0) is False
        assert cache.set("k", "v", -5) is False
        assert cache.get("k") is None

    def test_delete_is_noop_when_absent(self, cache):
        cache.set("k", "v", 10)

        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_delete_matching_removes_only_matching_keys(self, cache):
        cache.set("content-proxy_GET_/node/article/42", 1, 60)
        cache.set("content-proxy_GET_/node/article/7", 2, 60)
        cache.set("content-proxy_GET_/node/page/3", 3, 60)

        removed = cache.delete_matching("article")

        assert removed == 2
        assert cache.keys() == ["content-proxy_GET_/node/page/3"]

    def test_delete_matching_with_empty_substring_removes_nothing(self, cache):
        cache.set("k", "v", 10)

        assert cache.delete_matching("") == 0
        assert cache.get("k") == "v"

    def test_delete_tagged(self, cache):
        cache.set("featured_content", "f", 600, tags=["article", "page"])
        cache.set("search_drupal_article_10", "s", 300, tags=["article"])
        cache.set("search_drupal_page_10", "p", 300, tags=["page"])

        assert cache.delete_tagged("article") == 2
        assert cache.keys() == ["search_drupal_page_10"]
        assert cache.delete_tagged() == 0

    def test_delete_entity_counts_each_entry_once(self, cache):
        # key mentions both the type and the id, and carries both as tags
        cache.set("content-proxy_GET_/node/article/42", "doc", 300, tags=["node", "article", "42"])
        cache.set("featured_content", "f", 600, tags=["article", "page"])
        cache.set("content-proxy_GET_/node/page/1", "page", 300, tags=["node", "page", "1"])

        removed = cache.delete_entity("article", "42")

        assert removed == 2
        assert cache.keys() == ["content-proxy_GET_/node/page/1"]

    def test_delete_entity_missing_returns_zero(self, cache):
        assert cache.delete_entity("article", "999") == 0

    def test_flush(self, cache):
        cache.set("a", 1, 10)
        cache.set("b", 2, 10)

        assert cache.flush() == 2
        assert cache.keys() == []

    def test_purge_expired(self, cache, clock):
        cache.set("short", 1, 5)
        cache.set("long", 2, 50)
        clock.advance(10)

        assert cache.purge_expired() == 1
        assert cache.keys() == ["long"]

    def test_stats_track_hits_and_misses(self, cache):
        cache.set("k", "v", 10)
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        stats = cache.stats()

        assert stats == {"count": 1, "hits": 2, "misses": 1, "hit_rate": 0.6667}

    def test_stats_hit_rate_without_reads(self, cache):
        assert cache.stats()["hit_rate"] == 0.0

    def test_tags_are_normalized_to_strings(self, cache):
        cache.set("k", "v", 10, tags=["article", 42, None, ""])

        assert cache.delete_tagged("42") == 1

    def test_concurrent_writers_never_tear(self, cache):
        payloads = [("a" * 50, 1), ("b" * 50, 2)]
        errors = []

        def writer(value):
            for _ in range(500):
                cache.set("shared", value, 60)

        def reader():
            for _ in range(500):
                value = cache.get("shared")
                if value is not None and value not in [p for p, _ in payloads]:
                    errors.append(value)

        threads = [threading.Thread(target=writer, args=(payload,)) for payload, _ in payloads]
        threads.append(threading.Thread(target=reader))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []


class TestCacheEntry:
    """Test cases for CacheEntry."""

    def test_is_expired_boundary(self):
        entry = CacheEntry(key="k", value="v", created_at=100.0, ttl=10.0)

        assert entry.is_expired(109.9) is False
        assert entry.is_expired(110.0) is True
