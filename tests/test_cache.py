"""Tests for the feed cache: TTL, invalidation and refresh signals."""

import pytest

from nippo_feed.engine.cache import MISS, FeedCache, feed_key
from nippo_feed.store.local import FORCE_REFRESH_KEY
from nippo_feed.timeline.base import Post


def post(id, ts=1):
    return Post(id=id, partition_id="g1", author_id="u1", timestamp_ms=ts)


@pytest.fixture
def cache(local, clock):
    return FeedCache(local, ttl_ms=30_000, write_grace_ms=3_000, clock=clock)


class TestTtl:
    def test_hit_just_inside_ttl(self, cache, clock):
        cache.put("k", [post("a")])
        clock.advance(29_999)
        assert [i.id for i in cache.get("k")] == ["a"]

    def test_miss_just_after_ttl(self, cache, clock):
        cache.put("k", [post("a")])
        clock.advance(30_001)
        assert cache.get("k") is MISS

    def test_miss_exactly_at_ttl(self, cache, clock):
        cache.put("k", [post("a")])
        clock.advance(30_000)
        assert cache.get("k") is MISS

    def test_empty_key_misses(self, cache):
        assert cache.get("nothing") is MISS
        assert not MISS

    def test_append_keeps_first_fetch_time(self, cache, clock):
        cache.put("k", [post("a")], cursor="c1")
        clock.advance(20_000)
        cache.append("k", [post("a"), post("b")], cursor="c2", has_more=False)
        clock.advance(10_001)

        assert cache.get("k") is MISS
        entry = cache.peek("k")
        assert [i.id for i in entry.items] == ["a", "b"]
        assert entry.cursor == "c2"
        assert entry.has_more is False


class TestInvalidation:
    def test_invalidate_forces_miss(self, cache):
        cache.put("k", [post("a")])
        cache.invalidate("k", "test")
        assert cache.get("k") is MISS
        assert cache.peek("k").invalidated

    def test_invalidate_unknown_key_is_noop(self, cache):
        cache.invalidate("missing", "test")
        assert cache.peek("missing") is None

    def test_entries_are_replaced_not_mutated(self, cache):
        cache.put("k", [post("a")])
        before = cache.peek("k")
        cache.invalidate("k", "test")
        assert before.invalidated is False
        assert cache.peek("k") is not before

    def test_clear(self, cache):
        cache.put("k", [post("a")])
        cache.clear()
        assert cache.peek("k") is None


class TestLocalWrites:
    def test_write_window_misses_then_recovers(self, cache, clock):
        cache.put("k", [post("a")])
        cache.note_local_write()
        assert cache.get("k") is MISS

        # refetched while the store may still be catching up
        clock.advance(1_000)
        cache.put("k", [post("a")])
        assert cache.get("k") is MISS

        clock.advance(2_500)
        cache.put("k", [post("a"), post("b")])
        assert [i.id for i in cache.get("k")] == ["a", "b"]

    def test_force_refresh_flag_consumed_once(self, cache, local):
        cache.put("k", [post("a")])
        local.set(FORCE_REFRESH_KEY, 1)

        assert cache.get("k") is MISS
        assert not local.has(FORCE_REFRESH_KEY)

        cache.put("k", [post("a")])
        assert cache.get("k") != MISS

    def test_request_refresh_sets_flag(self, cache, local):
        cache.request_refresh()
        assert local.has(FORCE_REFRESH_KEY)

    def test_cache_without_local_store(self, clock):
        cache = FeedCache(None, clock=clock)
        cache.put("k", [post("a")])
        cache.request_refresh()
        assert cache.get("k") is not MISS


def test_feed_key_ignores_partition_order():
    assert feed_key("u1", ["b", "a", "a"]) == feed_key("u1", ["a", "b"])
    assert feed_key("u1", ["a"]) != feed_key("u2", ["a"])


class TestNeedsReload:
    def test_empty_and_invalidated(self, cache):
        assert cache.needs_reload("k")
        cache.put("k", [post("a")])
        assert not cache.needs_reload("k")
        cache.invalidate("k", "test")
        assert cache.needs_reload("k")

    def test_age_alone_does_not_reload(self, cache, clock):
        cache.put("k", [post("a")])
        clock.advance(60_000)
        assert not cache.needs_reload("k")

    def test_entry_older_than_local_write(self, cache, clock):
        cache.put("k", [post("a")])
        cache.append("k", [post("a"), post("b")])
        cache.note_local_write()
        assert cache.needs_reload("k")

        cache.put("k", [post("a")])
        assert not cache.needs_reload("k")

    def test_consumes_force_refresh_flag(self, cache, local):
        cache.put("k", [post("a")])
        local.set(FORCE_REFRESH_KEY, 1)
        assert cache.needs_reload("k")
        assert not local.has(FORCE_REFRESH_KEY)
