"""Presence tracker annotating contacts as online/offline."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Set

from frontdesk.agents.base import BaseAgent
from frontdesk.core.errors import SubscriptionDropped
from frontdesk.core.models import AgentConfig, EventType
from frontdesk.core.presence import PresenceChannel


class PresenceTracker(BaseAgent):
    """Joins the presence channel once per session and mirrors the latest snapshot."""

    def __init__(
        self,
        config: AgentConfig,
        *,
        bus,
        channel: PresenceChannel,
        actor_id: str,
    ) -> None:
        super().__init__(config)
        self.bus = bus
        self.channel = channel
        self.actor_id = actor_id
        self.online: Set[str] = set()
        self._joined = False
        self.ready = asyncio.Event()

    def is_online(self, actor_id: str) -> bool:
        return actor_id in self.online

    def _apply(self, members) -> None:
        self.online = {m["user_id"] for m in members if m.get("user_id")}

    async def run(self) -> None:
        while not self.should_stop():
            subscription = await self.bus.subscribe(EventType.PRESENCE_SYNC)
            try:
                if not self._joined:
                    await self.channel.track(self.config.session_id, self.actor_id)
                    self._joined = True
                self._apply(self.channel.snapshot())
                self.ready.set()
                async for envelope in subscription:
                    self._apply(envelope.payload.get("members", []))
                return
            except SubscriptionDropped:
                self.logger.warning("Presence feed dropped for session %s; re-subscribing", self.config.session_id)
            finally:
                await subscription.close()

    async def teardown(self) -> None:
        if self._joined:
            self._joined = False
            await self.channel.leave(self.config.session_id)
        self.online = set()

    async def _interrupt(self, task: "asyncio.Task[None]") -> None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
