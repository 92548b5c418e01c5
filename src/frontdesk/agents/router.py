"""Live event router: change feed + optimistic echo merged into one view per actor."""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import inspect
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from frontdesk.agents.base import BaseAgent
from frontdesk.agents.presence import PresenceTracker
from frontdesk.core.errors import InvalidRequest, StoreUnavailable, SubscriptionDropped
from frontdesk.core.live_view import LiveView
from frontdesk.core.models import (
    Actor,
    AgentConfig,
    Alert,
    Appointment,
    EventEnvelope,
    EventType,
    Message,
    Notification,
    Surface,
)
from frontdesk.core.settings import LiveSettings
from frontdesk.data.record_store import RecordStore


AlertHandler = Callable[[Alert], Union[None, Awaitable[None]]]

FEED_EVENTS = (EventType.MESSAGE_CREATED, EventType.NOTIFICATION_CREATED)


class ContactStatus(BaseModel):
    contact_id: str
    online: bool
    current_appointment: Optional[Appointment] = None

    @property
    def in_meeting(self) -> bool:
        return self.current_appointment is not None


class LiveEventRouter(BaseAgent):
    """Keeps the actor's ``LiveView`` in sync and raises alerts for new messages.

    On every (re)connect the router registers its subscription first and then
    re-reads recent history from the store, so events published while it was
    disconnected are recovered and duplicates are dropped by the view.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        actor: Actor,
        store: RecordStore,
        bus,
        settings: Optional[LiveSettings] = None,
        presence: Optional[PresenceTracker] = None,
        on_alert: Optional[AlertHandler] = None,
        surface: Surface = Surface.DASHBOARD,
    ) -> None:
        super().__init__(config)
        self.actor = actor
        self.store = store
        self.bus = bus
        self.settings = settings or LiveSettings()
        self.presence = presence
        self.view = LiveView()
        self.alerts: Deque[Alert] = deque(maxlen=50)
        self.surface = surface
        self.open_contact_id: Optional[str] = None
        self.connected = asyncio.Event()
        self._on_alert = on_alert
        self._names: Dict[str, str] = {}

    # Session surface

    def set_surface(self, surface: Surface) -> None:
        self.surface = surface

    async def open_conversation(self, contact_id: str) -> List[Message]:
        history = await self.store.conversation(self.actor.id, contact_id)
        for message in history:
            self.view.add(message)
        self.open_contact_id = contact_id
        return self.open_messages()

    def close_conversation(self) -> None:
        self.open_contact_id = None

    def open_messages(self) -> List[Message]:
        if self.open_contact_id is None:
            return []
        return self.view.conversation(self.actor.id, self.open_contact_id)

    def notifications(self) -> List[Notification]:
        return self.view.notifications()

    # Outbound

    async def send_message(self, recipient_id: str, content: str) -> Message:
        """Show the message immediately, then persist it; the stored id replaces the local key."""
        text = content.strip()
        if not text:
            raise InvalidRequest("Message content is empty")
        draft = Message(sender_id=self.actor.id, recipient_id=recipient_id, content=text)
        pending_key = self.view.add_pending(draft)
        try:
            stored = await self.store.insert_message(draft)
        except Exception:
            self.view.discard(pending_key)
            raise
        self.view.confirm(pending_key, stored)
        return stored

    async def mark_notification_read(self, notification_id: str) -> Notification:
        updated = await self.store.mark_notification_read(notification_id, recipient_id=self.actor.id)
        self.view.replace(updated)
        return updated

    async def contact_status(self, contact_id: str, at: Optional[dt.datetime] = None) -> ContactStatus:
        online = self.presence.is_online(contact_id) if self.presence else False
        current = await self.store.appointment_at(contact_id, at or dt.datetime.now(dt.timezone.utc))
        return ContactStatus(contact_id=contact_id, online=online, current_appointment=current)

    # Inbound

    async def handle_envelope(self, envelope: EventEnvelope) -> bool:
        """Apply one change-feed event; returns True if it added a view entry."""
        if envelope.recipient_id not in (None, self.actor.id):
            return False
        if envelope.type is EventType.MESSAGE_CREATED:
            message = Message.model_validate(envelope.payload)
            if not self.view.add(message):
                return False
            if message.sender_id != self.actor.id:
                await self._maybe_alert(message)
            return True
        if envelope.type is EventType.NOTIFICATION_CREATED:
            return self.view.add(Notification.model_validate(envelope.payload))
        return False

    async def _maybe_alert(self, message: Message) -> None:
        if self.surface is Surface.LIVE_CHAT:
            return
        name = await self._sender_name(message.sender_id)
        alert = Alert(
            title=f"New message from {name}",
            body=message.content,
            related_id=message.id,
            sender_id=message.sender_id,
        )
        self.alerts.append(alert)
        if self._on_alert is None:
            return
        try:
            result: Any = self._on_alert(alert)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.logger.warning("Alert handler failed", exc_info=True)

    async def _sender_name(self, sender_id: str) -> str:
        if sender_id not in self._names:
            try:
                employee = await self.store.get_employee(sender_id)
            except StoreUnavailable:
                employee = None
            if employee is None:
                return "Someone"
            self._names[sender_id] = employee.full_name
        return self._names[sender_id]

    async def backfill(self) -> int:
        """Re-read messages and notifications created since the last seen one."""
        since = self.view.latest_created_at()
        if since is not None:
            since -= dt.timedelta(seconds=self.settings.backfill_overlap_seconds)
        limit = self.settings.backfill_limit
        messages = await self.store.messages_since(self.actor.id, since, limit=limit)
        notifications = await self.store.notifications_since(self.actor.id, since, limit=limit)
        records: List[Union[Message, Notification]] = [*messages, *notifications]
        records.sort(key=lambda r: r.created_at)
        added = sum(1 for record in records if self.view.add(record))
        if added:
            self.logger.info("Recovered %d event(s) from history for %s", added, self.actor.id)
        return added

    async def _connect(self):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.resubscribe_attempts),
            wait=wait_exponential_jitter(initial=0.5, max=self.settings.resubscribe_max_wait_seconds),
            retry=retry_if_exception_type((SubscriptionDropped, StoreUnavailable)),
            reraise=True,
        ):
            with attempt:
                subscription = await self.bus.subscribe(
                    *FEED_EVENTS, recipient_id=self.actor.id, max_queue=self.settings.max_queue
                )
                try:
                    await self.backfill()
                except BaseException:
                    await subscription.close()
                    raise
        self.connected.set()
        return subscription

    async def run(self) -> None:
        while not self.should_stop():
            try:
                subscription = await self._connect()
            except (SubscriptionDropped, StoreUnavailable) as exc:
                self.logger.error("Could not connect change feed for %s: %s", self.actor.id, exc)
                if await self.wait_or_stop(self.settings.resubscribe_max_wait_seconds):
                    return
                continue
            try:
                async for envelope in subscription:
                    await self.handle_envelope(envelope)
                # Feed closed: the bus is shutting down.
                return
            except SubscriptionDropped as exc:
                self.connected.clear()
                self.logger.warning("Change feed dropped for %s, re-subscribing: %s", self.actor.id, exc)
            finally:
                await subscription.close()

    async def teardown(self) -> None:
        self.connected.clear()

    async def _interrupt(self, task: "asyncio.Task[None]") -> None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
