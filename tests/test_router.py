from __future__ import annotations

import datetime as dt

import pytest

from frontdesk.agents.router import LiveEventRouter
from frontdesk.core.errors import InvalidRequest, PermissionDenied, StoreUnavailable
from frontdesk.core.models import (
    AgentConfig,
    Appointment,
    EventEnvelope,
    EventType,
    Message,
    Notification,
    NotificationType,
    Surface,
)
from frontdesk.core.settings import LiveSettings


def _router(store, bus, actor, **kwargs) -> LiveEventRouter:
    return LiveEventRouter(
        AgentConfig(session_id=f"{actor.id}:test", actor_id=actor.id),
        actor=actor,
        store=store,
        bus=bus,
        **kwargs,
    )


def _message_event(message: Message, recipient_id: str) -> EventEnvelope:
    return EventEnvelope(type=EventType.MESSAGE_CREATED, recipient_id=recipient_id, payload=message.model_dump(mode="json"))


@pytest.mark.asyncio
async def test_sent_message_is_not_duplicated_by_feed_echo(store, bus, actor_for):
    router = _router(store, bus, actor_for("emp-1"))
    await router.open_conversation("emp-2")

    stored = await router.send_message("emp-2", "  hello  ")
    assert stored.content == "hello"
    assert not await router.handle_envelope(_message_event(stored, "emp-1"))

    assert [m.id for m in router.open_messages()] == [stored.id]
    assert not router.alerts


@pytest.mark.asyncio
async def test_empty_message_is_rejected(store, bus, actor_for):
    router = _router(store, bus, actor_for("emp-1"))
    with pytest.raises(InvalidRequest):
        await router.send_message("emp-2", "   ")
    assert len(router.view) == 0


class BrokenMessages:
    def __init__(self, inner) -> None:
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def insert_message(self, message):
        raise StoreUnavailable("write failed")


@pytest.mark.asyncio
async def test_failed_send_removes_optimistic_entry(store, bus, actor_for):
    router = _router(BrokenMessages(store), bus, actor_for("emp-1"))
    with pytest.raises(StoreUnavailable):
        await router.send_message("emp-2", "hello")
    assert len(router.view) == 0


@pytest.mark.asyncio
async def test_alerts_are_suppressed_on_live_chat(store, bus, actor_for):
    alerts = []
    router = _router(store, bus, actor_for("emp-1"), surface=Surface.LIVE_CHAT, on_alert=alerts.append)

    first = Message(sender_id="emp-2", recipient_id="emp-1", content="are you there?")
    assert await router.handle_envelope(_message_event(first, "emp-1"))
    assert alerts == []

    router.set_surface(Surface.CALENDAR)
    second = Message(sender_id="emp-2", recipient_id="emp-1", content="ping")
    assert await router.handle_envelope(_message_event(second, "emp-1"))
    # Redelivery of the same id is dropped without a second alert.
    assert not await router.handle_envelope(_message_event(second, "emp-1"))

    [alert] = alerts
    assert alert.title == "New message from Bruno Lima"
    assert alert.body == "ping"
    assert alert.related_id == second.id
    assert len(router.view) == 2


@pytest.mark.asyncio
async def test_unknown_sender_and_foreign_events(store, bus, actor_for):
    router = _router(store, bus, actor_for("emp-1"))
    stranger = Message(sender_id="ghost", recipient_id="emp-1", content="boo")
    await router.handle_envelope(_message_event(stranger, "emp-1"))
    assert router.alerts[-1].title == "New message from Someone"

    elsewhere = Message(sender_id="emp-2", recipient_id="rec-1", content="not for you")
    assert not await router.handle_envelope(_message_event(elsewhere, "rec-1"))


@pytest.mark.asyncio
async def test_notifications_flow_into_view_without_alerts(store, bus, actor_for):
    router = _router(store, bus, actor_for("rec-1"))
    notification = Notification(recipient_id="rec-1", type=NotificationType.SYSTEM, title="t", content="c")
    [stored] = await store.insert_notifications([notification])
    envelope = EventEnvelope(
        type=EventType.NOTIFICATION_CREATED, recipient_id="rec-1", payload=stored.model_dump(mode="json")
    )

    assert await router.handle_envelope(envelope)
    assert not router.alerts

    read = await router.mark_notification_read(stored.id)
    assert read.read
    assert router.notifications()[0].read


@pytest.mark.asyncio
async def test_cannot_mark_someone_elses_notification_read(store, bus, actor_for):
    router = _router(store, bus, actor_for("rec-1"))
    theirs = Notification(recipient_id="emp-1", type=NotificationType.SYSTEM, title="t", content="c")
    [stored] = await store.insert_notifications([theirs])

    with pytest.raises(PermissionDenied):
        await router.mark_notification_read(stored.id)
    assert not (await store.list_notifications("emp-1"))[0].read


@pytest.mark.asyncio
async def test_reconnects_after_overflow_and_backfills(store, bus, actor_for, eventually):
    router = _router(store, bus, actor_for("emp-1"), settings=LiveSettings(max_queue=1))
    await router.start()
    await eventually(router.connected.is_set)

    sent = [
        await store.insert_message(Message(sender_id="emp-2", recipient_id="emp-1", content=f"#{i}"))
        for i in range(5)
    ]

    await eventually(lambda: len(router.view.conversation("emp-1", "emp-2")) == 5)
    await eventually(router.connected.is_set)
    assert [m.id for m in router.view.conversation("emp-1", "emp-2")] == [m.id for m in sent]

    await router.stop()
    assert bus.subscriber_count() == 0


@pytest.mark.asyncio
async def test_initial_connect_loads_history(store, bus, actor_for, eventually):
    earlier = await store.insert_message(Message(sender_id="emp-2", recipient_id="emp-1", content="before login"))
    router = _router(store, bus, actor_for("emp-1"))
    await router.start()
    await eventually(router.connected.is_set)

    assert earlier.id in router.view
    # History is not alerted.
    assert not router.alerts
    await router.stop()


@pytest.mark.asyncio
async def test_contact_status_reports_current_meeting(store, bus, actor_for):
    now = dt.datetime.now(dt.timezone.utc)
    meeting = await store.insert_appointment(
        Appointment(
            host_id="emp-2",
            created_by="emp-2",
            title="1:1",
            start_time=now - dt.timedelta(minutes=5),
            end_time=now + dt.timedelta(minutes=25),
        )
    )
    router = _router(store, bus, actor_for("emp-1"))

    status = await router.contact_status("emp-2")
    assert status.in_meeting
    assert status.current_appointment.id == meeting.id
    assert not status.online

    free = await router.contact_status("rec-1")
    assert not free.in_meeting
