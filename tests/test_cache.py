"""
Tests for the tag-invalidated resolution cache.
"""
import pytest

from app.core.cache import CacheKeys, ResolutionCache


def computes(value, *tags, calls=None):
    async def compute():
        if calls is not None:
            calls.append(value)
        return value, tags
    return compute


@pytest.fixture
def cache(clear_resolution_cache):
    return ResolutionCache(clear_resolution_cache, ttl=60, prefix="test")


class TestResolutionCache:

    async def test_hit_after_miss(self, cache):
        calls = []

        first = await cache.get_or_compute("effective:1", computes(frozenset({1}), "user:1", calls=calls))
        second = await cache.get_or_compute("effective:1", computes(frozenset({2}), "user:1", calls=calls))

        assert first == second == frozenset({1})
        assert calls == [frozenset({1})]

    async def test_entries_expire_with_ttl(self, cache, clear_resolution_cache):
        await cache.get_or_compute("effective:1", computes(frozenset({1}), "user:1"))

        assert 0 < await clear_resolution_cache.ttl("test:entry:effective:1") <= 60

    async def test_invalidate_by_tag(self, cache):
        await cache.get_or_compute("effective:1", computes(frozenset({1}), "user:1", "role:4"))
        await cache.get_or_compute("effective:2", computes(frozenset({2}), "user:2", "role:5"))

        dropped = await cache.invalidate(CacheKeys.format(CacheKeys.ROLE, role_id=4))

        assert dropped == 1
        assert await cache.get("effective:1") is None
        assert await cache.get("effective:2") == frozenset({2})

    async def test_invalidation_during_compute_is_not_stored(self, cache):
        """A result computed across an invalidation is returned but not cached."""
        async def racing_compute():
            await cache.invalidate("role:4")
            return frozenset({1}), {"role:4"}

        value = await cache.get_or_compute("effective:1", racing_compute)

        assert value == frozenset({1})
        assert await cache.size() == 0

    async def test_invalidation_is_shared_between_workers(self, clear_resolution_cache):
        """Two processes on one Redis see each other's invalidations."""
        worker_a = ResolutionCache(clear_resolution_cache, ttl=60, prefix="test")
        worker_b = ResolutionCache(clear_resolution_cache, ttl=60, prefix="test")
        await worker_a.get_or_compute("effective:7", computes(frozenset({1, 2}), "user:7", "role:3"))

        await worker_b.invalidate("role:3")

        assert await worker_a.get("effective:7") is None

    async def test_zero_ttl_disables_storage(self, clear_resolution_cache):
        cache = ResolutionCache(clear_resolution_cache, ttl=0, prefix="test")
        calls = []

        await cache.get_or_compute("effective:1", computes(frozenset({1}), "user:1", calls=calls))
        await cache.get_or_compute("effective:1", computes(frozenset({1}), "user:1", calls=calls))

        assert await cache.size() == 0
        assert len(calls) == 2

    async def test_invalidate_all(self, cache):
        await cache.get_or_compute(CacheKeys.GLOBAL_PERMISSIONS, computes(frozenset({3}), CacheKeys.GLOBAL))
        generation = await cache.generation()

        await cache.invalidate_all()

        assert await cache.size() == 0
        assert await cache.generation() == generation + 1
