"""Service providers used by agents and the HTTP surface."""

from .booking import BookingService
from .conflicts import ConflictChecker
from .http_client import HttpClient
from .settings_cache import SettingsCache
from .webhook import WebhookDelivery

__all__ = [
    "BookingService",
    "ConflictChecker",
    "HttpClient",
    "SettingsCache",
    "WebhookDelivery",
]
