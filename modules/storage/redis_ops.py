from __future__ import annotations

from redis.asyncio.client import Redis

from modules.common import log_event

DELETE_CHUNK_SIZE = 500


class RedisStorageOps:
    async def _delete_matching(self, pattern: str) -> int:
        redis_client = self._require_redis()
        deleted = 0
        pending: list[str] = []
        async for key in redis_client.scan_iter(match=pattern, count=self.settings.cache_scan_count):
            pending.append(key)
            if len(pending) >= DELETE_CHUNK_SIZE:
                deleted += int(await redis_client.delete(*pending))
                pending.clear()
        if pending:
            deleted += int(await redis_client.delete(*pending))
        return deleted

    async def invalidate_cache(self) -> None:
        redis_client = self._require_redis()
        deleted = 0
        for pattern in self.settings.cache_patterns:
            deleted += await self._delete_matching(pattern)
        if self.settings.cache_keys:
            deleted += int(await redis_client.delete(*self.settings.cache_keys))
        log_event(
            self._logger,
            level="info",
            event="cache_invalidated",
            message="Cached vault views invalidated",
            patterns=list(self.settings.cache_patterns),
            deleted=deleted,
        )

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis
