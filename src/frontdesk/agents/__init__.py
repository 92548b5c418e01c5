"""Agents running the periodic sweeps and live subscriptions."""

from .base import BaseAgent, PeriodicAgent
from .lifecycle import LifecycleWatcher
from .presence import PresenceTracker
from .reminder import ReminderDispatcher
from .router import LiveEventRouter

__all__ = [
    "BaseAgent",
    "PeriodicAgent",
    "LifecycleWatcher",
    "PresenceTracker",
    "ReminderDispatcher",
    "LiveEventRouter",
]
