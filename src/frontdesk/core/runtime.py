"""Runtime orchestration for per-session and background agents."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from frontdesk.agents.base import Clock
from frontdesk.agents.lifecycle import LifecycleWatcher
from frontdesk.agents.presence import PresenceTracker
from frontdesk.agents.reminder import ReminderDelivery, ReminderDispatcher
from frontdesk.agents.router import AlertHandler, LiveEventRouter
from frontdesk.core.errors import AccountInactive
from frontdesk.core.models import AccountStatus, Actor, AgentConfig, Surface, UserRole
from frontdesk.core.presence import PresenceChannel
from frontdesk.core.settings import RuntimeSettings
from frontdesk.data.record_store import RecordStore
from frontdesk.utils.logging import get_logger


@dataclass(slots=True)
class SessionBundle:
    session_id: str
    actor: Actor
    router: LiveEventRouter
    presence: PresenceTracker


class EngineRuntime:
    """Spins up router/presence agents per signed-in actor.

    The lifecycle watcher and reminder dispatcher are single process-wide
    agents that run only while at least one receptionist session is open.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        bus,
        delivery: ReminderDelivery,
        settings: Optional[RuntimeSettings] = None,
        presence_channel: Optional[PresenceChannel] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.settings = settings or RuntimeSettings()
        self.presence_channel = presence_channel or PresenceChannel(bus)
        self.logger = get_logger("EngineRuntime")
        self._sessions: Dict[str, SessionBundle] = {}
        self._lock = asyncio.Lock()
        self.watcher = LifecycleWatcher(
            AgentConfig(session_id="engine", poll_interval_seconds=self.settings.lifecycle.interval_seconds),
            store=store,
            settings=self.settings.lifecycle,
            recipients=self._receptionist_recipients,
            bus=bus,
            clock=clock,
        )
        self.dispatcher = ReminderDispatcher(
            AgentConfig(session_id="engine", poll_interval_seconds=self.settings.reminder.interval_seconds),
            store=store,
            delivery=delivery,
            settings=self.settings.reminder,
            bus=bus,
            clock=clock,
        )

    @property
    def sessions(self) -> List[SessionBundle]:
        return list(self._sessions.values())

    def get_session(self, actor_id: str) -> Optional[SessionBundle]:
        return self._sessions.get(actor_id)

    async def open_session(
        self,
        actor: Actor,
        *,
        on_alert: Optional[AlertHandler] = None,
        surface: Surface = Surface.DASHBOARD,
    ) -> SessionBundle:
        """Start the live agents for ``actor``; an already open session is returned as is."""
        if actor.account_status is not AccountStatus.ACTIVE:
            raise AccountInactive(actor.id, actor.account_status.value)
        async with self._lock:
            existing = self._sessions.get(actor.id)
            if existing is not None:
                return existing
            session_id = f"{actor.id}:{uuid.uuid4().hex[:8]}"
            config = AgentConfig(session_id=session_id, actor_id=actor.id)
            presence = PresenceTracker(config, bus=self.bus, channel=self.presence_channel, actor_id=actor.id)
            router = LiveEventRouter(
                config,
                actor=actor,
                store=self.store,
                bus=self.bus,
                settings=self.settings.live,
                presence=presence,
                on_alert=on_alert,
                surface=surface,
            )
            await presence.start()
            await router.start()
            bundle = SessionBundle(session_id=session_id, actor=actor, router=router, presence=presence)
            self._sessions[actor.id] = bundle
            self.logger.info("Opened session %s (%s)", session_id, actor.role.value)
            await self._sync_background()
        return bundle

    async def close_session(self, actor_id: str) -> bool:
        async with self._lock:
            bundle = self._sessions.pop(actor_id, None)
            if bundle is None:
                return False
            await asyncio.gather(bundle.router.stop(), bundle.presence.stop(), return_exceptions=True)
            self.logger.info("Closed session %s", bundle.session_id)
            await self._sync_background()
        return True

    async def _sync_background(self) -> None:
        needed = any(b.actor.role is UserRole.RECEPTIONIST for b in self._sessions.values())
        if needed and not self.watcher.running:
            await self.watcher.start()
            await self.dispatcher.start()
        elif not needed and self.watcher.running:
            await asyncio.gather(self.watcher.stop(), self.dispatcher.stop(), return_exceptions=True)

    async def _receptionist_recipients(self) -> List[str]:
        employees = await self.store.list_employees(role=UserRole.RECEPTIONIST, status=AccountStatus.ACTIVE)
        recipients = [e.id for e in employees]
        for bundle in self._sessions.values():
            if bundle.actor.role is UserRole.RECEPTIONIST and bundle.actor.id not in recipients:
                recipients.append(bundle.actor.id)
        return recipients

    async def stop(self) -> None:
        for actor_id in list(self._sessions):
            await self.close_session(actor_id)
        if self.watcher.running:
            await asyncio.gather(self.watcher.stop(), self.dispatcher.stop(), return_exceptions=True)

    async def run_forever(self) -> None:
        """Convenience helper for long-running processes."""
        self.logger.info("Runtime is now running. Press Ctrl+C to exit.")
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            raise
        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal")
        finally:
            await self.stop()
            await self.bus.close()
