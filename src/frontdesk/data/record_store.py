"""Record store for appointments, notifications, messages and settings.

``JsonRecordStore`` keeps every table in memory, persists to a JSON file (optionally
Fernet-encrypted) and publishes a change event on the bus after each write.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from pydantic import ValidationError

from frontdesk.core.errors import NotFound, PermissionDenied, StoreUnavailable
from frontdesk.core.models import (
    AccountStatus,
    AppSettings,
    Appointment,
    Employee,
    EventEnvelope,
    EventType,
    Message,
    Notification,
    UserRole,
)
from frontdesk.utils.logging import get_logger


class ChangeFeed(Protocol):
    closed: bool

    async def publish(self, envelope: EventEnvelope) -> None: ...


class RecordStore(Protocol):
    """Operations the engine needs from the record store."""

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]: ...
    async def insert_appointment(self, appointment: Appointment) -> Appointment: ...
    async def edit_appointment(self, appointment_id: str, **fields: Any) -> Appointment: ...
    async def delete_appointment(self, appointment_id: str) -> bool: ...
    async def find_overlapping(
        self, host_id: str, start: dt.datetime, end: dt.datetime, exclude_id: Optional[str] = None
    ) -> List[Appointment]: ...
    async def appointments_starting_between(self, lower: dt.datetime, upper: dt.datetime) -> List[Appointment]: ...
    async def appointments_ending_between(self, lower: dt.datetime, upper: dt.datetime) -> List[Appointment]: ...
    async def appointment_at(self, host_id: str, at: dt.datetime) -> Optional[Appointment]: ...
    async def mark_appointment(self, appointment_id: str, **watermarks: dt.datetime) -> Optional[Appointment]: ...
    async def insert_notifications(self, notifications: Iterable[Notification]) -> List[Notification]: ...
    async def mark_notification_read(
        self, notification_id: str, *, recipient_id: Optional[str] = None
    ) -> Notification: ...
    async def list_notifications(self, recipient_id: str, *, limit: int = 20) -> List[Notification]: ...
    async def notifications_since(
        self, recipient_id: str, since: Optional[dt.datetime], *, limit: int = 200
    ) -> List[Notification]: ...
    async def insert_message(self, message: Message) -> Message: ...
    async def conversation(self, actor_id: str, contact_id: str) -> List[Message]: ...
    async def messages_since(
        self, actor_id: str, since: Optional[dt.datetime], *, limit: int = 200
    ) -> List[Message]: ...
    async def get_employee(self, employee_id: str) -> Optional[Employee]: ...
    async def list_employees(
        self, *, role: Optional[UserRole] = None, status: Optional[AccountStatus] = None
    ) -> List[Employee]: ...
    async def get_settings(self) -> AppSettings: ...
    async def update_settings(self, settings: AppSettings) -> AppSettings: ...


_WATERMARKS = {"started_notified_at", "ended_notified_at", "reminded_at"}


class JsonRecordStore:
    """Minimal JSON file record store with async-friendly API."""

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        change_feed: Optional[ChangeFeed] = None,
        encryption_key: Optional[str] = None,
    ) -> None:
        self._path = path
        self._feed = change_feed
        self._lock = asyncio.Lock()
        self.logger = get_logger("RecordStore")
        self._appointments: Dict[str, Appointment] = {}
        self._notifications: Dict[str, Notification] = {}
        self._messages: Dict[str, Message] = {}
        self._employees: Dict[str, Employee] = {}
        self._settings = AppSettings()
        self._fernet = self._init_fernet(encryption_key)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.exists():
                self._load()

    def _init_fernet(self, key: Optional[str]) -> Optional["Fernet"]:
        key = key or os.getenv("FRONTDESK_STORE_KEY")
        if not key:
            return None
        from cryptography.fernet import Fernet

        key_bytes = key.encode("utf-8") if isinstance(key, str) else key
        try:
            return Fernet(key_bytes)
        except Exception as exc:
            raise ValueError("Invalid FRONTDESK_STORE_KEY provided for record store encryption") from exc

    def _load(self) -> None:
        assert self._path is not None
        raw = self._path.read_bytes()
        if self._fernet:
            from cryptography.fernet import InvalidToken

            try:
                raw = self._fernet.decrypt(raw)
            except InvalidToken as exc:
                raise ValueError("Unable to decrypt record store with provided key") from exc
        data: Dict[str, Any] = json.loads(raw.decode("utf-8"))
        try:
            self._appointments = {a["id"]: Appointment(**a) for a in data.get("appointments", [])}
            self._notifications = {n["id"]: Notification(**n) for n in data.get("notifications", [])}
            self._messages = {m["id"]: Message(**m) for m in data.get("messages", [])}
            self._employees = {e["id"]: Employee(**e) for e in data.get("employees", [])}
            self._settings = AppSettings(**(data.get("settings") or {}))
        except ValidationError as exc:
            raise ValueError(f"Invalid record in store: {exc}") from exc

    def _dump(self) -> None:
        if self._path is None:
            return
        data = {
            "appointments": [a.model_dump(mode="json") for a in self._appointments.values()],
            "notifications": [n.model_dump(mode="json") for n in self._notifications.values()],
            "messages": [m.model_dump(mode="json") for m in self._messages.values()],
            "employees": [e.model_dump(mode="json") for e in self._employees.values()],
            "settings": self._settings.model_dump(mode="json"),
        }
        payload = json.dumps(data, indent=2).encode("utf-8")
        if self._fernet:
            payload = self._fernet.encrypt(payload)
        try:
            self._path.write_bytes(payload)
        except OSError as exc:
            raise StoreUnavailable(f"Unable to persist record store: {exc}") from exc

    def _commit(self, undo: Callable[[], None]) -> None:
        """Persist, reverting the in-memory change when the file cannot be written."""
        try:
            self._dump()
        except StoreUnavailable:
            undo()
            raise

    async def _publish(self, event_type: EventType, recipient_id: Optional[str], record: Any) -> None:
        if self._feed is None or self._feed.closed:
            return
        envelope = EventEnvelope(
            type=event_type,
            recipient_id=recipient_id,
            payload=record.model_dump(mode="json"),
        )
        try:
            await self._feed.publish(envelope)
        except Exception:
            # The write is committed; subscribers re-sync from history after a gap.
            self.logger.warning("Failed to publish %s for %s", event_type.value, getattr(record, "id", "?"), exc_info=True)

    # Appointments

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        async with self._lock:
            return self._appointments.get(appointment_id)

    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        async with self._lock:
            self._appointments[appointment.id] = appointment
            self._commit(lambda: self._appointments.pop(appointment.id, None))
        await self._publish(EventType.APPOINTMENT_CREATED, appointment.host_id, appointment)
        return appointment

    async def edit_appointment(self, appointment_id: str, **fields: Any) -> Appointment:
        """Apply edited fields to the stored record.

        Watermarks are kept as stored, except those of a boundary the edit moves.
        """
        if set(fields) & _WATERMARKS:
            raise ValueError("Watermarks are set through mark_appointment")
        async with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                raise NotFound("appointments", appointment_id)
            changes = dict(fields)
            if "start_time" in fields and fields["start_time"] != current.start_time:
                changes.update(started_notified_at=None, reminded_at=None)
            if "end_time" in fields and fields["end_time"] != current.end_time:
                changes["ended_notified_at"] = None
            updated = Appointment.model_validate(current.model_dump() | changes)
            self._appointments[appointment_id] = updated
            self._commit(lambda: self._appointments.__setitem__(appointment_id, current))
        await self._publish(EventType.APPOINTMENT_UPDATED, updated.host_id, updated)
        return updated

    async def delete_appointment(self, appointment_id: str) -> bool:
        async with self._lock:
            removed = self._appointments.pop(appointment_id, None)
            if removed is not None:
                self._commit(lambda: self._appointments.__setitem__(appointment_id, removed))
        if removed is None:
            return False
        await self._publish(EventType.APPOINTMENT_DELETED, removed.host_id, removed)
        return True

    def _sorted(self, appointments: Iterable[Appointment]) -> List[Appointment]:
        return sorted(appointments, key=lambda a: (a.start_time, a.id))

    async def find_overlapping(
        self, host_id: str, start: dt.datetime, end: dt.datetime, exclude_id: Optional[str] = None
    ) -> List[Appointment]:
        async with self._lock:
            return self._sorted(
                a
                for a in self._appointments.values()
                if a.host_id == host_id and a.id != exclude_id and a.overlaps(start, end)
            )

    async def appointments_starting_between(self, lower: dt.datetime, upper: dt.datetime) -> List[Appointment]:
        async with self._lock:
            return self._sorted(a for a in self._appointments.values() if lower <= a.start_time <= upper)

    async def appointments_ending_between(self, lower: dt.datetime, upper: dt.datetime) -> List[Appointment]:
        async with self._lock:
            return self._sorted(a for a in self._appointments.values() if lower <= a.end_time <= upper)

    async def appointment_at(self, host_id: str, at: dt.datetime) -> Optional[Appointment]:
        async with self._lock:
            current = [
                a for a in self._appointments.values() if a.host_id == host_id and a.start_time <= at < a.end_time
            ]
        return self._sorted(current)[0] if current else None

    async def mark_appointment(self, appointment_id: str, **watermarks: dt.datetime) -> Optional[Appointment]:
        """Set lifecycle/reminder watermarks; returns None when the appointment is gone."""
        unknown = set(watermarks) - _WATERMARKS
        if unknown:
            raise ValueError(f"Unknown appointment watermarks: {sorted(unknown)}")
        async with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                return None
            updated = current.model_copy(update=watermarks)
            self._appointments[appointment_id] = updated
            self._commit(lambda: self._appointments.__setitem__(appointment_id, current))
        return updated

    # Notifications

    async def insert_notifications(self, notifications: Iterable[Notification]) -> List[Notification]:
        batch = list(notifications)
        if not batch:
            return []
        async with self._lock:
            for notification in batch:
                self._notifications[notification.id] = notification
            self._commit(lambda: [self._notifications.pop(n.id, None) for n in batch])
        for notification in batch:
            await self._publish(EventType.NOTIFICATION_CREATED, notification.recipient_id, notification)
        return batch

    async def mark_notification_read(
        self, notification_id: str, *, recipient_id: Optional[str] = None
    ) -> Notification:
        """Mark a notification read; with ``recipient_id`` only its own recipient may."""
        async with self._lock:
            current = self._notifications.get(notification_id)
            if current is None:
                raise NotFound("notifications", notification_id)
            if recipient_id is not None and current.recipient_id != recipient_id:
                raise PermissionDenied(f"{recipient_id} cannot mark notification {notification_id} read")
            updated = current.model_copy(update={"read": True})
            self._notifications[notification_id] = updated
            self._commit(lambda: self._notifications.__setitem__(notification_id, current))
        await self._publish(EventType.NOTIFICATION_UPDATED, updated.recipient_id, updated)
        return updated

    async def list_notifications(self, recipient_id: str, *, limit: int = 20) -> List[Notification]:
        async with self._lock:
            items = [n for n in self._notifications.values() if n.recipient_id == recipient_id]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[:limit]

    async def notifications_since(
        self, recipient_id: str, since: Optional[dt.datetime], *, limit: int = 200
    ) -> List[Notification]:
        async with self._lock:
            items = [
                n
                for n in self._notifications.values()
                if n.recipient_id == recipient_id and (since is None or n.created_at >= since)
            ]
        items.sort(key=lambda n: n.created_at)
        return items[-limit:]

    # Messages

    async def insert_message(self, message: Message) -> Message:
        async with self._lock:
            self._messages[message.id] = message
            self._commit(lambda: self._messages.pop(message.id, None))
        # Both participants follow the conversation live.
        for participant in sorted(message.participants()):
            await self._publish(EventType.MESSAGE_CREATED, participant, message)
        return message

    async def conversation(self, actor_id: str, contact_id: str) -> List[Message]:
        pair = frozenset((actor_id, contact_id))
        async with self._lock:
            items = [m for m in self._messages.values() if m.participants() == pair]
        items.sort(key=lambda m: m.created_at)
        return items

    async def messages_since(
        self, actor_id: str, since: Optional[dt.datetime], *, limit: int = 200
    ) -> List[Message]:
        """Messages sent or received by ``actor_id`` since ``since``, oldest first."""
        async with self._lock:
            items = [
                m
                for m in self._messages.values()
                if actor_id in m.participants() and (since is None or m.created_at >= since)
            ]
        items.sort(key=lambda m: m.created_at)
        return items[-limit:]

    # Directory

    async def upsert_employee(self, employee: Employee) -> Employee:
        async with self._lock:
            self._employees[employee.id] = employee
            self._dump()
        return employee

    async def get_employee(self, employee_id: str) -> Optional[Employee]:
        async with self._lock:
            return self._employees.get(employee_id)

    async def list_employees(
        self, *, role: Optional[UserRole] = None, status: Optional[AccountStatus] = None
    ) -> List[Employee]:
        async with self._lock:
            items = list(self._employees.values())
        if role is not None:
            items = [e for e in items if e.role is role]
        if status is not None:
            items = [e for e in items if e.account_status is status]
        return sorted(items, key=lambda e: e.full_name)

    # Settings

    async def get_settings(self) -> AppSettings:
        async with self._lock:
            return self._settings.model_copy()

    async def update_settings(self, settings: AppSettings) -> AppSettings:
        async with self._lock:
            self._settings = settings.model_copy()
            self._dump()
        return settings
