"""Redis-backed change feed using Streams."""

from __future__ import annotations

import json
from collections import deque
from typing import Deque, FrozenSet, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from frontdesk.core.errors import SubscriptionDropped
from frontdesk.core.models import EventEnvelope, EventType


class RedisSubscription:
    """Reads the stream from the position recorded at subscribe time.

    Every subscriber reads the whole stream (plain XREAD, no consumer group),
    so each session sees every event addressed to it.
    """

    def __init__(
        self,
        bus: "RedisMessageBus",
        *,
        event_types: FrozenSet[EventType],
        recipient_id: Optional[str],
        last_id: str,
        batch: int,
    ) -> None:
        self._bus = bus
        self._event_types = event_types
        self._recipient_id = recipient_id
        self._last_id = last_id
        self._batch = batch
        self._buffer: Deque[EventEnvelope] = deque()
        self._closed = False

    def __aiter__(self) -> "RedisSubscription":
        return self

    async def __anext__(self) -> EventEnvelope:
        while not self._buffer:
            if self._closed or self._bus.closed:
                raise StopAsyncIteration
            await self._fill()
        return self._buffer.popleft()

    async def _fill(self) -> None:
        try:
            res = await self._bus.redis.xread(
                {self._bus.stream: self._last_id}, count=self._batch, block=5000
            )
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise SubscriptionDropped(f"Redis stream read failed: {exc}") from exc
        if not res:
            return
        _, entries = res[0]
        for entry_id, fields in entries:
            self._last_id = entry_id
            raw = fields.get("event")
            if not raw:
                continue
            envelope = EventEnvelope.model_validate_json(raw)
            if envelope.type not in self._event_types:
                continue
            if self._recipient_id and envelope.recipient_id not in (None, self._recipient_id):
                continue
            self._buffer.append(envelope)

    async def close(self) -> None:
        self._closed = True

    async def __aenter__(self) -> "RedisSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class RedisMessageBus:
    def __init__(self, url: str, *, stream: str = "frontdesk.changes", maxlen: int = 10000) -> None:
        self.redis = Redis.from_url(url, decode_responses=True)
        self.stream = stream
        self._maxlen = maxlen
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, envelope: EventEnvelope) -> None:
        if self._closed:
            raise RuntimeError("RedisMessageBus is closed")
        payload = json.dumps(envelope.model_dump(mode="json"))
        await self.redis.xadd(self.stream, {"event": payload}, maxlen=self._maxlen, approximate=True)

    async def subscribe(
        self,
        *event_types: EventType,
        recipient_id: Optional[str] = None,
        max_queue: int = 100,
    ) -> RedisSubscription:
        if self._closed:
            raise RuntimeError("RedisMessageBus is closed")
        if not event_types:
            raise ValueError("At least one event type is required")
        try:
            latest = await self.redis.xrevrange(self.stream, count=1)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise SubscriptionDropped(f"Redis unavailable: {exc}") from exc
        last_id = latest[0][0] if latest else "0-0"
        return RedisSubscription(
            self,
            event_types=frozenset(event_types),
            recipient_id=recipient_id,
            last_id=last_id,
            batch=max_queue,
        )

    async def close(self) -> None:
        self._closed = True
        await self.redis.aclose()
