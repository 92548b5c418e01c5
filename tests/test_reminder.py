from __future__ import annotations

import datetime as dt

import pytest

from frontdesk.agents.reminder import ReminderDispatcher
from frontdesk.core.errors import DeliveryFailed
from frontdesk.core.ledger import DedupSet
from frontdesk.core.models import AgentConfig, Appointment
from frontdesk.services.webhook import DeliveryReport, DeliveryStatus


class RecordingDelivery:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls = []
        self.fail = fail

    async def deliver(self, appointment_id: str) -> DeliveryReport:
        self.calls.append(appointment_id)
        if self.fail:
            raise DeliveryFailed(appointment_id, "HTTP 500", status_code=500)
        return DeliveryReport(appointment_id=appointment_id, status=DeliveryStatus.SENT, status_code=200)


def _dispatcher(store, delivery) -> ReminderDispatcher:
    return ReminderDispatcher(
        AgentConfig(session_id="engine", poll_interval_seconds=300), store=store, delivery=delivery
    )


async def _book(store, start: dt.datetime) -> Appointment:
    return await store.insert_appointment(
        Appointment(
            host_id="emp-1",
            created_by="emp-1",
            title="Client visit",
            start_time=start,
            end_time=start + dt.timedelta(minutes=30),
        )
    )


@pytest.mark.asyncio
async def test_reminder_sent_once_across_sweeps(store, t0):
    appointment = await _book(store, t0 + dt.timedelta(minutes=30))
    delivery = RecordingDelivery()
    dispatcher = _dispatcher(store, delivery)

    for minutes in (-10, -5, 0, 5, 10):
        await dispatcher.sweep(t0 + dt.timedelta(minutes=minutes))

    assert delivery.calls == [appointment.id]
    stored = await store.get_appointment(appointment.id)
    assert stored.reminded_at == t0 - dt.timedelta(minutes=5)


@pytest.mark.asyncio
async def test_window_bounds(store, t0):
    too_soon = await _book(store, t0 + dt.timedelta(minutes=20))
    too_late = await _book(store, t0 + dt.timedelta(minutes=40))
    edge = await _book(store, t0 + dt.timedelta(minutes=35))
    delivery = RecordingDelivery()

    assert await _dispatcher(store, delivery).sweep(t0) == 1
    assert delivery.calls == [edge.id]
    assert too_soon.id not in delivery.calls and too_late.id not in delivery.calls


@pytest.mark.asyncio
async def test_failed_delivery_is_not_retried(store, t0):
    appointment = await _book(store, t0 + dt.timedelta(minutes=30))
    delivery = RecordingDelivery(fail=True)
    dispatcher = _dispatcher(store, delivery)

    assert await dispatcher.sweep(t0) == 1
    assert await dispatcher.sweep(t0 + dt.timedelta(minutes=5)) == 0

    assert delivery.calls == [appointment.id]
    assert (await store.get_appointment(appointment.id)).reminded_at is not None


@pytest.mark.asyncio
async def test_restarted_dispatcher_skips_reminded(store, t0):
    await _book(store, t0 + dt.timedelta(minutes=30))
    await _dispatcher(store, RecordingDelivery()).sweep(t0)

    fresh = RecordingDelivery()
    assert await _dispatcher(store, fresh).sweep(t0 + dt.timedelta(minutes=1)) == 0
    assert fresh.calls == []


@pytest.mark.asyncio
async def test_rescheduled_appointment_is_reminded_again(store, t0):
    appointment = await _book(store, t0 + dt.timedelta(minutes=30))
    delivery = RecordingDelivery()
    dispatcher = _dispatcher(store, delivery)
    assert await dispatcher.sweep(t0) == 1

    await store.edit_appointment(appointment.id, title="Client visit (renamed)")
    assert await dispatcher.sweep(t0 + dt.timedelta(minutes=1)) == 0

    moved = await store.edit_appointment(
        appointment.id,
        start_time=t0 + dt.timedelta(minutes=120),
        end_time=t0 + dt.timedelta(minutes=150),
    )
    assert moved.reminded_at is None
    assert await dispatcher.sweep(t0 + dt.timedelta(minutes=90)) == 1
    assert delivery.calls == [appointment.id, appointment.id]


class UnmarkableStore:
    def __init__(self, inner) -> None:
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def mark_appointment(self, appointment_id, **watermarks):
        raise OSError("disk full")


@pytest.mark.asyncio
async def test_ledger_covers_a_failed_reminder_mark(store, t0):
    appointment = await _book(store, t0 + dt.timedelta(minutes=30))
    delivery = RecordingDelivery()
    dispatcher = _dispatcher(UnmarkableStore(store), delivery)

    assert await dispatcher.sweep(t0) == 1
    assert await dispatcher.sweep(t0 + dt.timedelta(minutes=1)) == 0
    assert delivery.calls == [appointment.id]
    assert (await store.get_appointment(appointment.id)).reminded_at is None


def test_dedup_set_clears_when_over_limit():
    keys = DedupSet(limit=2)
    keys.update(["a", "b"])
    assert not keys.trim()
    keys.add("c")
    assert keys.trim()
    assert len(keys) == 0
    with pytest.raises(ValueError):
        DedupSet(limit=0)
