"""In-process presence channel with join/track/leave semantics."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from frontdesk.core.models import EventEnvelope, EventType, utcnow


class PresenceChannel:
    """Keeps the current set of tracked sessions and broadcasts a snapshot on every change.

    There is no history: subscribers only ever see the latest snapshot.
    """

    def __init__(self, bus) -> None:
        self._bus = bus
        self._members: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def track(self, presence_key: str, actor_id: str, meta: Optional[Dict[str, Any]] = None) -> None:
        async with self._lock:
            self._members[presence_key] = {
                **(meta or {}),
                "user_id": actor_id,
                "online_at": utcnow().isoformat(),
            }
        await self._broadcast()

    async def leave(self, presence_key: str) -> None:
        async with self._lock:
            removed = self._members.pop(presence_key, None)
        if removed is not None:
            await self._broadcast()

    def snapshot(self) -> List[Dict[str, Any]]:
        return [dict(member) for member in self._members.values()]

    async def _broadcast(self) -> None:
        if self._bus.closed:
            return
        await self._bus.publish(
            EventEnvelope(type=EventType.PRESENCE_SYNC, payload={"members": self.snapshot()})
        )
