"""Core primitives for the FrontDesk engine."""

from .message_bus import MessageBus
from .models import (
    Actor,
    AgentConfig,
    Appointment,
    BookingOutcome,
    BookingRequest,
    EventEnvelope,
    EventType,
    Message,
    Notification,
)

__all__ = [
    "MessageBus",
    "Actor",
    "AgentConfig",
    "Appointment",
    "BookingOutcome",
    "BookingRequest",
    "EventEnvelope",
    "EventType",
    "Message",
    "Notification",
]
