"""Bookkeeping of already-handled lifecycle and reminder events."""

from __future__ import annotations

from typing import Iterable, Set

from frontdesk.core.models import Appointment


class DedupSet:
    """Process-local membership set bounded by clearing it once it exceeds ``limit``.

    Clearing everything (rather than evicting the oldest keys) can let a key be
    re-observed; the persisted watermarks on ``Appointment`` catch those.
    """

    def __init__(self, limit: int = 100) -> None:
        if limit < 1:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._keys: Set[str] = set()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self):
        return iter(self._keys)

    def add(self, key: str) -> None:
        self._keys.add(key)

    def update(self, keys: Iterable[str]) -> None:
        self._keys.update(keys)

    def trim(self) -> bool:
        """Clear the set when it is over its bound; return True if it was cleared."""
        if len(self._keys) <= self.limit:
            return False
        self._keys.clear()
        return True


class LifecycleLedger:
    """Tracks which appointment boundaries have already produced a notification.

    Keys carry the boundary time, so a boundary moved by an edit is a new key
    and gets announced again once its cleared watermark is seen.
    """

    def __init__(self, limit: int = 100) -> None:
        self.starts = DedupSet(limit)
        self.ends = DedupSet(limit)

    @staticmethod
    def start_key(appointment: Appointment) -> str:
        return f"start-{appointment.id}@{appointment.start_time.isoformat()}"

    @staticmethod
    def end_key(appointment: Appointment) -> str:
        return f"end-{appointment.id}@{appointment.end_time.isoformat()}"

    def start_handled(self, appointment: Appointment) -> bool:
        return appointment.started_notified_at is not None or self.start_key(appointment) in self.starts

    def end_handled(self, appointment: Appointment) -> bool:
        return appointment.ended_notified_at is not None or self.end_key(appointment) in self.ends

    def mark_started(self, appointment: Appointment) -> None:
        self.starts.add(self.start_key(appointment))

    def mark_ended(self, appointment: Appointment) -> None:
        self.ends.add(self.end_key(appointment))

    def trim(self) -> list[str]:
        trimmed = []
        if self.starts.trim():
            trimmed.append("start")
        if self.ends.trim():
            trimmed.append("end")
        return trimmed


class ReminderLedger:
    """Appointment start times that already had a reminder attempted."""

    def __init__(self, limit: int = 100) -> None:
        self.reminded = DedupSet(limit)

    @staticmethod
    def key(appointment: Appointment) -> str:
        return f"{appointment.id}@{appointment.start_time.isoformat()}"

    def handled(self, appointment: Appointment) -> bool:
        return appointment.reminded_at is not None or self.key(appointment) in self.reminded

    def mark(self, appointment: Appointment) -> None:
        self.reminded.add(self.key(appointment))

    def trim(self) -> bool:
        return self.reminded.trim()
