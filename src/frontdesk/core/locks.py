"""Per-key locks used to serialize booking check and commit."""

from __future__ import annotations

import abc
import asyncio
from collections import defaultdict
from typing import Dict, Protocol


class AsyncLock(Protocol):
    async def __aenter__(self) -> bool: ...
    async def __aexit__(self, exc_type, exc, tb) -> None: ...


class LockManager(abc.ABC):
    @abc.abstractmethod
    def lock(self, key: str, ttl_ms: int = 30000, wait_ms: int = 0) -> AsyncLock:  # pragma: no cover - interface
        """Return an async context manager that attempts to acquire a lock.

        Entering yields True when the lock was obtained within ``wait_ms``.
        """
        raise NotImplementedError


class _LocalLock:
    def __init__(self, lock: asyncio.Lock, wait_ms: int) -> None:
        self._lock = lock
        self._wait_ms = wait_ms
        self._acquired = False

    async def __aenter__(self) -> bool:
        if self._wait_ms <= 0:
            if self._lock.locked():
                return False
            await self._lock.acquire()
        else:
            try:
                await asyncio.wait_for(self._lock.acquire(), timeout=self._wait_ms / 1000)
            except asyncio.TimeoutError:
                return False
        self._acquired = True
        return True

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._acquired:
            self._acquired = False
            self._lock.release()


class InMemoryLockManager(LockManager):
    """Process-local locks; enough when a single engine process serves all bookings."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, key: str, ttl_ms: int = 30000, wait_ms: int = 0) -> AsyncLock:
        # ttl only matters for locks that can outlive their holder's process.
        return _LocalLock(self._locks[key], wait_ms)
