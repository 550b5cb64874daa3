"""
Caching utilities for Redis integration.
"""
import json
import hashlib
import time
from typing import Any, Optional, Dict, Iterable, Tuple
import structlog
import redis.asyncio as redis

from outreach.config.settings import settings

logger = structlog.get_logger()


class CacheManager:
    """Manages caching operations with Redis fallback to in-memory."""

    def __init__(self, max_memory_entries: Optional[int] = None):
        self.redis_client = None
        # key -> (expires_at, value), oldest insertion first
        self.memory_cache: Dict[str, Tuple[float, Any]] = {}
        self.max_memory_entries = max_memory_entries or settings.database.memory_cache_max_entries

    async def initialize(self, redis_client: Optional[redis.Redis] = None):
        """Initialize cache manager with Redis client."""
        self.redis_client = redis_client
        if self.redis_client:
            logger.info("Cache manager initialized with Redis")
        else:
            logger.warning("Cache manager using in-memory fallback")

    def _generate_cache_key(self, prefix: str, **kwargs) -> str:
        """Generate a consistent cache key."""
        # Sort kwargs for consistent key generation
        sorted_kwargs = sorted(kwargs.items())
        key_data = f"{prefix}:{':'.join(f'{k}={v}' for k, v in sorted_kwargs)}"

        # Hash long keys to avoid Redis key length limits
        if len(key_data) > 250:
            key_hash = hashlib.md5(key_data.encode()).hexdigest()
            return f"{prefix}:hash:{key_hash}"

        return key_data

    async def get(self, cache_key: str) -> Optional[Any]:
        """Get value from cache."""
        try:
            if self.redis_client:
                cached_value = await self.redis_client.get(cache_key)
                if cached_value:
                    return json.loads(cached_value)
            else:
                return self._memory_get(cache_key)
        except Exception as e:
            logger.warning("Cache get failed", key=cache_key, error=str(e))

        return None

    async def set(self, cache_key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with optional TTL."""
        try:
            ttl = ttl or settings.database.cache_ttl
            serialized_value = json.dumps(value, default=str)

            if self.redis_client:
                await self.redis_client.setex(cache_key, ttl, serialized_value)
            else:
                self._memory_set(cache_key, value, ttl)

            return True
        except Exception as e:
            logger.warning("Cache set failed", key=cache_key, error=str(e))
            return False

    def _memory_get(self, cache_key: str) -> Optional[Any]:
        entry = self.memory_cache.get(cache_key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            del self.memory_cache[cache_key]
            return None
        return value

    def _memory_set(self, cache_key: str, value: Any, ttl: int):
        self.memory_cache.pop(cache_key, None)
        while len(self.memory_cache) >= self.max_memory_entries:
            self.memory_cache.pop(next(iter(self.memory_cache)))
        self.memory_cache[cache_key] = (time.monotonic() + ttl, value)

    async def delete(self, cache_key: str) -> bool:
        """Delete value from cache."""
        try:
            if self.redis_client:
                await self.redis_client.delete(cache_key)
            else:
                self.memory_cache.pop(cache_key, None)

            return True
        except Exception as e:
            logger.warning("Cache delete failed", key=cache_key, error=str(e))
            return False

    # Plan exports. Results never change once stored, so entries only
    # disappear on TTL expiry or when the owning problem is deleted.

    def _export_key(self, result_id: str, export_format: str) -> str:
        return self._generate_cache_key("plan_export", result_id=result_id, format=export_format)

    async def get_export(self, result_id: str, export_format: str) -> Optional[str]:
        """Get a cached plan export."""
        return await self.get(self._export_key(result_id, export_format))

    async def cache_export(self, result_id: str, export_format: str, content: str) -> bool:
        """Cache a rendered plan export."""
        return await self.set(
            self._export_key(result_id, export_format),
            content,
            ttl=settings.database.export_cache_ttl
        )

    async def invalidate_exports(self, result_ids: Iterable[str],
                                 formats: Iterable[str] = ("csv", "json")) -> int:
        """Drop cached exports for the given results."""
        formats = tuple(formats)
        deleted = 0
        for result_id in result_ids:
            for export_format in formats:
                if await self.delete(self._export_key(result_id, export_format)):
                    deleted += 1

        logger.info("Export cache invalidated", deleted_keys=deleted)
        return deleted


# Global cache manager instance
cache_manager = CacheManager()
