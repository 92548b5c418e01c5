from __future__ import annotations

import datetime as dt

from frontdesk.core.live_view import PENDING_PREFIX, EntryKind, LiveView
from frontdesk.core.models import Message, Notification, NotificationType


def _message(**kwargs) -> Message:
    kwargs.setdefault("sender_id", "emp-1")
    kwargs.setdefault("recipient_id", "emp-2")
    return Message(content="hi", **kwargs)


def test_confirm_then_feed_keeps_one_entry():
    view = LiveView()
    draft = _message()
    key = view.add_pending(draft)
    assert key.startswith(PENDING_PREFIX)
    assert view.get(key).pending

    stored = draft.model_copy(update={"id": "msg-1"})
    assert view.confirm(key, stored)
    assert not view.add(stored)

    [entry] = view.entries()
    assert entry.key == "msg-1"
    assert not entry.pending
    assert key not in view


def test_feed_then_confirm_keeps_one_entry():
    view = LiveView()
    draft = _message()
    key = view.add_pending(draft)
    stored = draft.model_copy(update={"id": "msg-1"})

    assert view.add(stored)
    assert not view.confirm(key, stored)

    [entry] = view.entries()
    assert entry.key == "msg-1"
    assert not entry.pending


def test_discard_removes_pending_entry():
    view = LiveView()
    key = view.add_pending(_message())
    view.discard(key)
    assert len(view) == 0


def test_conversation_is_ordered_by_created_at_and_scoped_to_pair():
    view = LiveView()
    base = dt.datetime(2026, 3, 2, 10, tzinfo=dt.timezone.utc)
    later = _message(id="m-2", created_at=base + dt.timedelta(minutes=5))
    earlier = _message(id="m-1", sender_id="emp-2", recipient_id="emp-1", created_at=base)
    other = _message(id="m-3", recipient_id="rec-1", created_at=base)
    for message in (later, earlier, other):
        view.add(message)

    assert [m.id for m in view.conversation("emp-1", "emp-2")] == ["m-1", "m-2"]
    assert [e.key for e in view.entries()] == ["m-2", "m-1", "m-3"]


def test_notifications_and_latest_timestamp():
    view = LiveView()
    base = dt.datetime(2026, 3, 2, 10, tzinfo=dt.timezone.utc)
    notification = Notification(
        id="n-1", recipient_id="rec-1", type=NotificationType.SYSTEM, title="t", content="c", created_at=base
    )
    view.add(notification)
    view.add_pending(_message(created_at=base + dt.timedelta(hours=1)))

    assert view.get("n-1").kind is EntryKind.NOTIFICATION
    assert view.notifications() == [notification]
    # Pending entries do not move the backfill cursor.
    assert view.latest_created_at() == base

    read = notification.model_copy(update={"read": True})
    assert view.replace(read)
    assert view.notifications()[0].read
