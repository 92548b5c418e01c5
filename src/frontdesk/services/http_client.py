"""HTTP client wrapper to share connection pools."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx


class HttpClient:
    """Shared HTTP clients keyed by purpose (e.g. ``"webhook"``)."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}
        self._lock = asyncio.Lock()

    async def _ensure_client(self, name: str) -> httpx.AsyncClient:
        async with self._lock:
            if name not in self._clients:
                self._clients[name] = httpx.AsyncClient(
                    timeout=self.timeout,
                    follow_redirects=True,
                    transport=self._transport,
                )
            return self._clients[name]

    @asynccontextmanager
    async def session(self, name: str) -> AsyncIterator[httpx.AsyncClient]:
        client = await self._ensure_client(name)
        try:
            yield client
        finally:
            # Keep client open for reuse; teardown occurs in close_all()
            pass

    async def close_all(self) -> None:
        async with self._lock:
            for client in self._clients.values():
                await client.aclose()
            self._clients.clear()
