from __future__ import annotations

import datetime as dt

import pytest

from frontdesk.agents.lifecycle import LifecycleWatcher
from frontdesk.core.errors import StoreUnavailable
from frontdesk.core.ledger import LifecycleLedger
from frontdesk.core.models import AgentConfig, Appointment, BookingRequest
from frontdesk.core.settings import LifecycleSettings
from frontdesk.services import BookingService


def _watcher(store, **kwargs) -> LifecycleWatcher:
    return LifecycleWatcher(AgentConfig(session_id="engine", poll_interval_seconds=60), store=store, **kwargs)


async def _book(store, t0, start_min: int, end_min: int, title: str = "Sync", host_id: str = "emp-1") -> Appointment:
    appointment = Appointment(
        host_id=host_id,
        created_by=host_id,
        title=title,
        start_time=t0 + dt.timedelta(minutes=start_min),
        end_time=t0 + dt.timedelta(minutes=end_min),
    )
    return await store.insert_appointment(appointment)


@pytest.mark.asyncio
async def test_start_is_announced_once_across_ticks(store, t0):
    appointment = await _book(store, t0, 0, 30)
    watcher = _watcher(store)

    assert await watcher.sweep(t0 + dt.timedelta(minutes=1)) == 1
    assert await watcher.sweep(t0 + dt.timedelta(minutes=2)) == 0
    assert await watcher.sweep(t0 + dt.timedelta(minutes=4)) == 0
    assert await watcher.sweep(t0 + dt.timedelta(minutes=7)) == 0

    [notification] = await store.list_notifications("rec-1")
    assert notification.title == "Meeting started"
    assert notification.content == '"Sync" with Ana Souza started at 10:00'
    assert notification.related_id == appointment.id
    # Blocked receptionists are not recipients.
    assert await store.list_notifications("rec-2") == []

    stored = await store.get_appointment(appointment.id)
    assert stored.started_notified_at == t0 + dt.timedelta(minutes=1)
    assert watcher.ledger.start_handled(stored)
    assert not watcher.ledger.end_handled(stored)


@pytest.mark.asyncio
async def test_end_is_announced_separately(store, t0):
    appointment = await _book(store, t0, -30, 0, title="Review")
    watcher = _watcher(store)

    assert await watcher.sweep(t0 + dt.timedelta(seconds=30)) == 1
    [notification] = await store.list_notifications("rec-1")
    assert notification.title == "Meeting ended"
    assert notification.content == '"Review" with Ana Souza ended at 10:00'
    stored = await store.get_appointment(appointment.id)
    assert stored.ended_notified_at == t0 + dt.timedelta(seconds=30)
    assert watcher.ledger.end_handled(stored)


@pytest.mark.asyncio
async def test_boundaries_outside_lookback_are_ignored(store, t0):
    await _book(store, t0, 0, 30)
    watcher = _watcher(store)

    assert await watcher.sweep(t0 - dt.timedelta(minutes=1)) == 0
    assert await watcher.sweep(t0 + dt.timedelta(minutes=6)) == 0
    assert await store.list_notifications("rec-1") == []


@pytest.mark.asyncio
async def test_watermarks_cover_cleared_ledger_and_restart(store, t0):
    await _book(store, t0, 0, 30, title="A")
    await _book(store, t0, 1, 30, title="B", host_id="emp-2")
    watcher = _watcher(store, settings=LifecycleSettings(dedup_limit=1))

    assert await watcher.sweep(t0 + dt.timedelta(minutes=2)) == 2
    # Two keys exceed the limit of one, so the set was cleared.
    assert len(watcher.ledger.starts) == 0
    assert await watcher.sweep(t0 + dt.timedelta(minutes=3)) == 0

    restarted = _watcher(store)
    assert await restarted.sweep(t0 + dt.timedelta(minutes=4)) == 0
    assert len(await store.list_notifications("rec-1")) == 2


@pytest.mark.asyncio
async def test_custom_recipients(store, t0):
    await _book(store, t0, 0, 30)

    async def recipients():
        return ["rec-1", "adm-1"]

    watcher = _watcher(store, recipients=recipients)
    assert await watcher.sweep(t0 + dt.timedelta(minutes=1)) == 1
    assert len(await store.list_notifications("adm-1")) == 1


class FailingStore:
    def __init__(self, inner) -> None:
        self._inner = inner
        self.fail = True

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def appointments_starting_between(self, lower, upper):
        if self.fail:
            raise StoreUnavailable("database is down")
        return await self._inner.appointments_starting_between(lower, upper)


@pytest.mark.asyncio
async def test_store_failure_is_logged_and_retried_next_tick(store, t0):
    await _book(store, t0, 0, 30)
    flaky = FailingStore(store)
    now = t0 + dt.timedelta(minutes=1)
    watcher = _watcher(flaky, clock=lambda: now)

    assert await watcher.tick() == "error"
    assert await store.list_notifications("rec-1") == []

    flaky.fail = False
    assert await watcher.tick() == "ok"
    assert len(await store.list_notifications("rec-1")) == 1


@pytest.mark.asyncio
async def test_rescheduled_start_is_announced_again(store, t0, actor_for):
    appointment = await _book(store, t0, 0, 30)
    watcher = _watcher(store)
    assert await watcher.sweep(t0 + dt.timedelta(minutes=1)) == 1

    outcome = await BookingService(store).edit(
        actor_for("emp-1"),
        appointment.id,
        BookingRequest(
            title="Sync",
            start_time=t0 + dt.timedelta(minutes=60),
            end_time=t0 + dt.timedelta(minutes=90),
        ),
    )
    assert outcome.success
    assert outcome.appointment.started_notified_at is None

    assert await watcher.sweep(t0 + dt.timedelta(minutes=61)) == 1
    assert await watcher.sweep(t0 + dt.timedelta(minutes=62)) == 0
    started = [n for n in await store.list_notifications("rec-1") if n.title == "Meeting started"]
    assert sorted(n.content for n in started) == [
        '"Sync" with Ana Souza started at 10:00',
        '"Sync" with Ana Souza started at 11:00',
    ]


def test_ledger_keys_follow_the_boundary_time():
    ledger = LifecycleLedger(limit=10)
    appointment = Appointment(
        id="a-1",
        host_id="emp-1",
        created_by="emp-1",
        title="x",
        start_time=dt.datetime(2026, 3, 2, 10, tzinfo=dt.timezone.utc),
        end_time=dt.datetime(2026, 3, 2, 11, tzinfo=dt.timezone.utc),
    )
    assert not ledger.start_handled(appointment)
    ledger.mark_started(appointment)
    ledger.mark_ended(appointment)
    assert "start-a-1@2026-03-02T10:00:00+00:00" in ledger.starts
    assert "end-a-1@2026-03-02T11:00:00+00:00" in ledger.ends
    assert ledger.start_handled(appointment)
    assert ledger.end_handled(appointment)

    moved = appointment.model_copy(
        update={
            "start_time": dt.datetime(2026, 3, 2, 12, tzinfo=dt.timezone.utc),
            "end_time": dt.datetime(2026, 3, 2, 13, tzinfo=dt.timezone.utc),
        }
    )
    assert not ledger.start_handled(moved)
    assert not ledger.end_handled(moved)
    # A persisted watermark counts even without a key in this process.
    assert ledger.start_handled(moved.model_copy(update={"started_notified_at": moved.start_time}))
