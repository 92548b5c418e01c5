"""Read-through cache for the single-row application settings."""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from frontdesk.core.models import AppSettings
from frontdesk.data.record_store import RecordStore
from frontdesk.utils.logging import get_logger


class SettingsCache:
    """Serves ``AppSettings`` from memory and reloads on demand.

    ``refresh()`` is the explicit reload contract; with ``ttl_seconds`` set the
    cache also reloads lazily once the cached copy is older than the ttl.
    """

    def __init__(self, store: RecordStore, *, ttl_seconds: Optional[float] = None) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._cached: Optional[AppSettings] = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()
        self.logger = get_logger("SettingsCache")

    def _fresh(self) -> bool:
        if self._cached is None:
            return False
        if self._ttl is None:
            return True
        return time.monotonic() - self._loaded_at < self._ttl

    async def get(self) -> AppSettings:
        if self._fresh():
            assert self._cached is not None
            return self._cached
        return await self.refresh()

    async def refresh(self) -> AppSettings:
        async with self._lock:
            self._cached = await self._store.get_settings()
            self._loaded_at = time.monotonic()
            self.logger.debug("Settings reloaded (webhook configured: %s)", bool(self._cached.webhook_url))
            return self._cached

    async def update(self, settings: AppSettings) -> AppSettings:
        async with self._lock:
            saved = await self._store.update_settings(settings)
            self._cached = saved
            self._loaded_at = time.monotonic()
            return saved

    def invalidate(self) -> None:
        self._cached = None
