"""In-memory asynchronous change feed."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Set

from frontdesk.core.errors import SubscriptionDropped
from frontdesk.core.models import EventEnvelope, EventType


_CLOSED_MARKER = "__bus_closed__"


@dataclass(slots=True, eq=False)
class _Registration:
    queue: "asyncio.Queue[EventEnvelope]"
    event_types: FrozenSet[EventType]
    recipient_filter: Optional[str]
    overflowed: bool = field(default=False)

    def accepts(self, envelope: EventEnvelope) -> bool:
        if envelope.type not in self.event_types:
            return False
        # Envelopes without a recipient are broadcasts.
        if self.recipient_filter and envelope.recipient_id not in (None, self.recipient_filter):
            return False
        return True


class Subscription:
    """A registered subscription; iterate it to receive envelopes.

    Registration happens when the subscription is created, so callers can
    safely backfill history afterwards without a gap. A consumer that falls
    more than ``max_queue`` events behind gets ``SubscriptionDropped`` and is
    expected to re-subscribe and re-sync.
    """

    def __init__(self, bus: "MessageBus", registration: _Registration) -> None:
        self._bus = bus
        self._registration = registration
        self._closed = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> EventEnvelope:
        if self._closed:
            raise StopAsyncIteration
        envelope = await self._registration.queue.get()
        if self._registration.overflowed:
            await self.close()
            raise SubscriptionDropped("Subscriber fell behind the change feed")
        if envelope.payload.get(_CLOSED_MARKER):
            await self.close()
            raise StopAsyncIteration
        return envelope

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._bus._unregister(self._registration)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class MessageBus:
    """Pub/sub bus with optional recipient filtering."""

    def __init__(self) -> None:
        self._registrations: Set[_Registration] = set()
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, envelope: EventEnvelope) -> None:
        """Publish an event to subscribers."""
        if self._closed:
            raise RuntimeError("MessageBus is closed")

        async with self._lock:
            registrations = [r for r in self._registrations if r.accepts(envelope)]

        for registration in registrations:
            try:
                registration.queue.put_nowait(envelope)
            except asyncio.QueueFull:
                # Backpressure: keep the queue bounded and let the consumer re-sync.
                registration.overflowed = True
                try:
                    registration.queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                registration.queue.put_nowait(envelope)

    async def subscribe(
        self,
        *event_types: EventType,
        recipient_id: Optional[str] = None,
        max_queue: int = 100,
    ) -> Subscription:
        """Register a subscription for the given event types, optionally scoped to a recipient."""
        if self._closed:
            raise RuntimeError("MessageBus is closed")
        if not event_types:
            raise ValueError("At least one event type is required")

        registration = _Registration(
            queue=asyncio.Queue(max_queue),
            event_types=frozenset(event_types),
            recipient_filter=recipient_id,
        )
        async with self._lock:
            self._registrations.add(registration)
        return Subscription(self, registration)

    async def _unregister(self, registration: _Registration) -> None:
        async with self._lock:
            self._registrations.discard(registration)

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is None:
            return len(self._registrations)
        return sum(1 for r in self._registrations if event_type in r.event_types)

    async def close(self) -> None:
        """Stop accepting new events and unblock subscribers."""
        self._closed = True
        async with self._lock:
            registrations = list(self._registrations)
            self._registrations.clear()
        for registration in registrations:
            sentinel = EventEnvelope(
                type=next(iter(registration.event_types)),
                payload={"message": "MessageBus closed", _CLOSED_MARKER: True},
            )
            try:
                registration.queue.put_nowait(sentinel)
            except asyncio.QueueFull:
                try:
                    registration.queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                registration.queue.put_nowait(sentinel)
