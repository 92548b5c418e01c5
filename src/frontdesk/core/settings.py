"""Runtime settings loader."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator


class LifecycleSettings(BaseModel):
    interval_seconds: float = Field(default=60, gt=0)
    # Lookback must cover at least one sweep period or boundaries can fall in a gap.
    lookback_seconds: float = Field(default=300, gt=0)
    dedup_limit: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _check_lookback(self) -> "LifecycleSettings":
        if self.lookback_seconds < self.interval_seconds:
            raise ValueError("lifecycle.lookback_seconds must be >= lifecycle.interval_seconds")
        return self


class ReminderSettings(BaseModel):
    interval_seconds: float = Field(default=300, gt=0)
    lead_min_minutes: float = Field(default=25, ge=0)
    lead_max_minutes: float = Field(default=35, gt=0)
    dedup_limit: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _check_window(self) -> "ReminderSettings":
        if self.lead_min_minutes >= self.lead_max_minutes:
            raise ValueError("reminder.lead_min_minutes must be < reminder.lead_max_minutes")
        if (self.lead_max_minutes - self.lead_min_minutes) * 60 < self.interval_seconds:
            raise ValueError("reminder window must be at least as wide as reminder.interval_seconds")
        return self


class BookingSettings(BaseModel):
    lock_ttl_ms: int = Field(default=10000, gt=0)
    lock_wait_ms: int = Field(default=5000, ge=0)


class WebhookSettings(BaseModel):
    timeout_seconds: float = Field(default=10.0, gt=0)
    on_receptionist_booking: bool = False


class LiveSettings(BaseModel):
    max_queue: int = Field(default=100, ge=1)
    backfill_overlap_seconds: float = Field(default=30, ge=0)
    backfill_limit: int = Field(default=200, ge=1)
    resubscribe_attempts: int = Field(default=5, ge=1)
    resubscribe_max_wait_seconds: float = Field(default=10, gt=0)


class RuntimeSettings(BaseModel):
    store_path: Path = Field(default=Path("frontdesk_store.json"))
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    reminder: ReminderSettings = Field(default_factory=ReminderSettings)
    booking: BookingSettings = Field(default_factory=BookingSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    live: LiveSettings = Field(default_factory=LiveSettings)

    @classmethod
    def from_file(cls, path: Path) -> "RuntimeSettings":
        data = yaml.safe_load(path.read_text()) or {}
        try:
            settings = cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid runtime settings: {exc}") from exc
        if not settings.store_path.is_absolute():
            settings.store_path = (path.parent / settings.store_path).resolve()
        return settings

    @classmethod
    def load(cls, path: Optional[Path]) -> "RuntimeSettings":
        """Read ``path`` when it exists, otherwise fall back to defaults."""
        if path is not None and path.exists():
            return cls.from_file(path)
        return cls()
