"""Data models shared across the FrontDesk engine."""

from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator

from frontdesk.core.errors import ConflictError, StaleBookingError


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


UtcDateTime = Annotated[dt.datetime, AfterValidator(as_utc)]


class UserRole(str, Enum):
    EMPLOYEE = "employee"
    RECEPTIONIST = "receptionist"
    ADMIN = "admin"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    PAUSED = "paused"


class AppointmentType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    PERSONAL = "personal"


class NotificationType(str, Enum):
    APPOINTMENT = "appointment"
    MESSAGE = "message"
    SYSTEM = "system"


class Surface(str, Enum):
    """UI area the actor currently has in front of them."""

    LIVE_CHAT = "live_chat"
    DASHBOARD = "dashboard"
    NOTIFICATIONS = "notifications"
    CALENDAR = "calendar"
    OTHER = "other"


class EventType(str, Enum):
    """Change-feed and presence events flowing through the bus."""

    MESSAGE_CREATED = "message.created"
    NOTIFICATION_CREATED = "notification.created"
    NOTIFICATION_UPDATED = "notification.updated"
    APPOINTMENT_CREATED = "appointment.created"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_DELETED = "appointment.deleted"
    PRESENCE_SYNC = "presence.sync"
    HEARTBEAT = "agent.heartbeat"


class Actor(BaseModel):
    """Signed-in user as supplied by the auth collaborator."""

    id: str
    role: UserRole = UserRole.EMPLOYEE
    account_status: AccountStatus = AccountStatus.ACTIVE
    full_name: Optional[str] = None

    @property
    def is_receptionist(self) -> bool:
        return self.role is UserRole.RECEPTIONIST

    @property
    def can_book_for_others(self) -> bool:
        return self.role in (UserRole.RECEPTIONIST, UserRole.ADMIN)


class Employee(BaseModel):
    id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    role: UserRole = UserRole.EMPLOYEE
    account_status: AccountStatus = AccountStatus.ACTIVE


class Appointment(BaseModel):
    id: str = Field(default_factory=new_id)
    host_id: str
    created_by: str
    title: str
    description: Optional[str] = None
    start_time: UtcDateTime
    end_time: UtcDateTime
    type: AppointmentType = AppointmentType.INTERNAL
    guest_name: Optional[str] = None
    # Persisted watermarks so lifecycle/reminder dedup survives restarts.
    started_notified_at: Optional[UtcDateTime] = None
    ended_notified_at: Optional[UtcDateTime] = None
    reminded_at: Optional[UtcDateTime] = None

    @model_validator(mode="after")
    def _check_interval(self) -> "Appointment":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def overlaps(self, start: dt.datetime, end: dt.datetime) -> bool:
        return self.start_time < end and self.end_time > start


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    recipient_id: str
    type: NotificationType
    title: str
    content: str
    related_id: Optional[str] = None
    read: bool = False
    created_at: UtcDateTime = Field(default_factory=utcnow)


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    sender_id: str
    recipient_id: str
    content: str
    created_at: UtcDateTime = Field(default_factory=utcnow)
    read: bool = False

    def participants(self) -> frozenset[str]:
        return frozenset((self.sender_id, self.recipient_id))


class AppSettings(BaseModel):
    logo_url: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_fields: List[str] = Field(default_factory=list)


class BookingRequest(BaseModel):
    """Input for book/edit; the interval is validated by the booking service."""

    title: str
    start_time: UtcDateTime
    end_time: UtcDateTime
    host_id: Optional[str] = None
    type: AppointmentType = AppointmentType.INTERNAL
    guest_name: Optional[str] = None
    description: Optional[str] = None


class ConflictResult(BaseModel):
    conflicting_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.conflicting_id is None


class BookingStatus(str, Enum):
    BOOKED = "booked"
    CONFLICT = "conflict"
    STALE = "stale"


class BookingOutcome(BaseModel):
    """Tagged result of a book/edit attempt."""

    status: BookingStatus
    appointment: Optional[Appointment] = None
    conflicting_id: Optional[str] = None
    host_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def booked(cls, appointment: Appointment) -> "BookingOutcome":
        return cls(status=BookingStatus.BOOKED, appointment=appointment)

    @classmethod
    def conflict(cls, host_id: str, conflicting_id: str) -> "BookingOutcome":
        return cls(status=BookingStatus.CONFLICT, host_id=host_id, conflicting_id=conflicting_id)

    @classmethod
    def stale(cls, reason: str) -> "BookingOutcome":
        return cls(status=BookingStatus.STALE, reason=reason)

    @property
    def success(self) -> bool:
        return self.status is BookingStatus.BOOKED

    def raise_for_status(self) -> Appointment:
        """Return the booked appointment or raise the matching error."""
        if self.status is BookingStatus.CONFLICT:
            raise ConflictError(self.host_id or "", self.conflicting_id or "")
        if self.status is BookingStatus.STALE:
            raise StaleBookingError(self.reason or "Booking is stale")
        assert self.appointment is not None
        return self.appointment


class Alert(BaseModel):
    """Interrupting UI alert produced by the live event router."""

    title: str
    body: str
    related_id: Optional[str] = None
    sender_id: Optional[str] = None
    created_at: UtcDateTime = Field(default_factory=utcnow)


class AgentConfig(BaseModel):
    """Configuration for a single agent instance."""

    session_id: str
    actor_id: Optional[str] = None
    poll_interval_seconds: float = Field(default=60, gt=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EventEnvelope(BaseModel):
    """Wrapper to transport events safely through the message bus."""

    id: str = Field(default_factory=new_id)
    created_at: UtcDateTime = Field(default_factory=utcnow)
    type: EventType
    recipient_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
