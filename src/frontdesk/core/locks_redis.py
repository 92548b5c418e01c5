"""Redis host locks so several engine processes can share one calendar store."""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from typing import Optional

from redis.asyncio import Redis

from .locks import AsyncLock, LockManager


_RETRY_DELAY = 0.05


class _RedisLock:
    """`SET NX PX` lock polled until `wait_ms` runs out; released only by its own token."""

    def __init__(self, redis: Redis, key: str, ttl_ms: int, wait_ms: int) -> None:
        self._redis = redis
        self._key = f"lock:{key}"
        self._ttl_ms = ttl_ms
        self._wait_ms = wait_ms
        self._token = str(uuid.uuid4())
        self._acquired = False

    async def _try_acquire(self) -> bool:
        return bool(await self._redis.set(self._key, self._token, px=self._ttl_ms, nx=True))

    async def __aenter__(self) -> bool:
        deadline = time.monotonic() + self._wait_ms / 1000
        self._acquired = await self._try_acquire()
        while not self._acquired and time.monotonic() < deadline:
            await asyncio.sleep(_RETRY_DELAY)
            self._acquired = await self._try_acquire()
        return self._acquired

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self._acquired:
            return
        # An expired lock may already belong to another holder.
        lua = """
        if redis.call('get', KEYS[1]) == ARGV[1] then
            return redis.call('del', KEYS[1])
        else
            return 0
        end
        """
        try:
            await self._redis.eval(lua, 1, self._key, self._token)
        finally:
            self._acquired = False


class RedisLockManager(LockManager):
    """Lock manager used with `FRONTDESK_BUS=redis`."""

    def __init__(self, url: Optional[str] = None) -> None:
        self._redis = Redis.from_url(url or os.getenv("REDIS_URL", "redis://localhost:6379/0"))

    def lock(self, key: str, ttl_ms: int = 30000, wait_ms: int = 0) -> AsyncLock:
        return _RedisLock(self._redis, key, ttl_ms, wait_ms)

    async def close(self) -> None:
        await self._redis.aclose()
