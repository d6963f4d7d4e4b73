from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ccna_api.core.config import settings

CacheValue = dict | list | str


def cache_key(namespace: str, model: str, prompt: str) -> str:
    digest = hashlib.sha256(f"{model}\n{prompt}".encode("utf-8")).hexdigest()
    return f"{namespace}:{digest}"


class TutorCache(Protocol):
    async def get(self, key: str) -> CacheValue | None: ...

    async def set(self, key: str, value: CacheValue, ttl_seconds: int) -> None: ...


class MemoryTTLCache:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._store: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> CacheValue | None:
        entry = self._store.get(key)
        if not entry:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._store.pop(key, None)
            return None
        return json.loads(value)

    async def set(self, key: str, value: CacheValue, ttl_seconds: int) -> None:
        self._store[key] = (self._clock() + ttl_seconds, json.dumps(value))

    def __len__(self) -> int:
        return len(self._store)


class NullCache:
    async def get(self, key: str) -> CacheValue | None:
        return None

    async def set(self, key: str, value: CacheValue, ttl_seconds: int) -> None:
        return None


class CacheClient:
    """Process-wide cache: Redis when configured and reachable, memory otherwise."""

    def __init__(self, memory: MemoryTTLCache | None = None) -> None:
        self._memory = memory or MemoryTTLCache()
        self._redis: Redis | None = None

    @property
    def backend(self) -> str:
        return "redis" if self._redis else "memory"

    async def connect(self, redis_url: str | None = None) -> None:
        url = redis_url or settings.redis_url
        if not url:
            return
        client = Redis.from_url(url, decode_responses=True)
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            logger.warning("Redis unavailable ({}), tutor cache stays in memory", exc)
            await client.aclose()
            self._redis = None
            return
        self._redis = client
        logger.info("Tutor cache using Redis at {}", url)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def get(self, key: str) -> CacheValue | None:
        if self._redis:
            try:
                value = await self._redis.get(key)
                return json.loads(value) if value else None
            except RedisError as exc:
                logger.warning("Redis get failed for {}: {}", key, exc)
        return await self._memory.get(key)

    async def set(self, key: str, value: CacheValue, ttl_seconds: int = 1800) -> None:
        serialized = json.dumps(value)
        if self._redis:
            try:
                await self._redis.set(name=key, value=serialized, ex=ttl_seconds)
                return
            except RedisError as exc:
                logger.warning("Redis set failed for {}: {}", key, exc)
        await self._memory.set(key, value, ttl_seconds)

    async def remember(
        self,
        key: str,
        producer: Callable[[], Awaitable[CacheValue]],
        ttl_seconds: int = 1800,
    ) -> CacheValue:
        cached = await self.get(key)
        if cached is not None:
            return cached
        fresh = await producer()
        await self.set(key, fresh, ttl_seconds)
        return fresh


cache = CacheClient()
