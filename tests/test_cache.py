"""
In-memory cache fallback tests.
"""
import pytest

from outreach.utils.cache import CacheManager


class TestMemoryCache:
    """Test the in-memory fallback used when Redis is unavailable."""

    @pytest.mark.asyncio
    async def test_export_round_trip(self):
        cache = CacheManager()

        await cache.cache_export("result-1", "csv", "hcpId\n")

        assert await cache.get_export("result-1", "csv") == "hcpId\n"
        assert await cache.get_export("result-1", "json") is None

    @pytest.mark.asyncio
    async def test_size_cap_evicts_oldest(self):
        """Rendering more exports than the cap keeps only the newest ones."""
        cache = CacheManager(max_memory_entries=2)

        for result_id in ("result-1", "result-2", "result-3"):
            await cache.cache_export(result_id, "csv", f"plan {result_id}")

        assert len(cache.memory_cache) == 2
        assert await cache.get_export("result-1", "csv") is None
        assert await cache.get_export("result-2", "csv") == "plan result-2"
        assert await cache.get_export("result-3", "csv") == "plan result-3"

    @pytest.mark.asyncio
    async def test_rewrite_refreshes_position(self):
        """Re-caching a key moves it to the back of the eviction order."""
        cache = CacheManager(max_memory_entries=2)
        await cache.cache_export("result-1", "csv", "old")
        await cache.cache_export("result-2", "csv", "plan")

        await cache.cache_export("result-1", "csv", "new")
        await cache.cache_export("result-3", "csv", "plan")

        assert await cache.get_export("result-1", "csv") == "new"
        assert await cache.get_export("result-2", "csv") is None

    @pytest.mark.asyncio
    async def test_expired_entries_are_dropped(self):
        cache = CacheManager()
        await cache.cache_export("result-1", "json", "[]")
        key = cache._export_key("result-1", "json")

        _, value = cache.memory_cache[key]
        cache.memory_cache[key] = (0.0, value)

        assert await cache.get_export("result-1", "json") is None
        assert key not in cache.memory_cache

    @pytest.mark.asyncio
    async def test_invalidate_exports(self):
        cache = CacheManager()
        await cache.cache_export("result-1", "csv", "a")
        await cache.cache_export("result-1", "json", "b")

        deleted = await cache.invalidate_exports(["result-1"])

        assert deleted == 2
        assert cache.memory_cache == {}
