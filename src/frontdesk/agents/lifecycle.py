"""Lifecycle watcher raising "started" and "ended" notifications."""

from __future__ import annotations

import datetime as dt
from typing import Awaitable, Callable, Dict, List, Optional

from frontdesk.agents.base import Clock, PeriodicAgent
from frontdesk.core.ledger import LifecycleLedger
from frontdesk.core.models import (
    AccountStatus,
    AgentConfig,
    Appointment,
    Employee,
    Notification,
    NotificationType,
    UserRole,
)
from frontdesk.core.settings import LifecycleSettings
from frontdesk.data.record_store import RecordStore


RecipientResolver = Callable[[], Awaitable[List[str]]]


class LifecycleWatcher(PeriodicAgent):
    """Sweeps the trailing lookback window for start and end boundary crossings.

    Each boundary is announced once: the in-memory ledger covers the running
    process and the ``*_notified_at`` watermarks cover restarts and trims.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        store: RecordStore,
        settings: Optional[LifecycleSettings] = None,
        ledger: Optional[LifecycleLedger] = None,
        recipients: Optional[RecipientResolver] = None,
        bus=None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(config, bus=bus, clock=clock)
        self.settings = settings or LifecycleSettings()
        self.store = store
        self.ledger = ledger or LifecycleLedger(self.settings.dedup_limit)
        self._recipients = recipients or self._active_receptionists

    async def _active_receptionists(self) -> List[str]:
        employees = await self.store.list_employees(role=UserRole.RECEPTIONIST, status=AccountStatus.ACTIVE)
        return [e.id for e in employees]

    async def sweep(self, now: dt.datetime) -> int:
        lower = now - dt.timedelta(seconds=self.settings.lookback_seconds)
        emitted = 0
        try:
            recipients = await self._recipients()
            hosts: Dict[str, Optional[Employee]] = {}

            for appointment in await self.store.appointments_starting_between(lower, now):
                if self.ledger.start_handled(appointment):
                    continue
                await self._announce(appointment, "started", recipients, hosts)
                self.ledger.mark_started(appointment)
                await self._watermark(appointment.id, started_notified_at=now)
                emitted += 1

            for appointment in await self.store.appointments_ending_between(lower, now):
                if self.ledger.end_handled(appointment):
                    continue
                await self._announce(appointment, "ended", recipients, hosts)
                self.ledger.mark_ended(appointment)
                await self._watermark(appointment.id, ended_notified_at=now)
                emitted += 1
        finally:
            trimmed = self.ledger.trim()
            if trimmed:
                self.logger.info("Cleared %s dedup set(s) after exceeding %d entries", "/".join(trimmed), self.ledger.starts.limit)

        if emitted:
            self.logger.info("Announced %d lifecycle transition(s)", emitted)
        return emitted

    async def _announce(
        self,
        appointment: Appointment,
        transition: str,
        recipients: List[str],
        hosts: Dict[str, Optional[Employee]],
    ) -> List[Notification]:
        if appointment.host_id not in hosts:
            hosts[appointment.host_id] = await self.store.get_employee(appointment.host_id)
        host = hosts[appointment.host_id]
        host_name = host.full_name if host else appointment.host_id
        at = appointment.start_time if transition == "started" else appointment.end_time
        notifications = [
            Notification(
                recipient_id=recipient_id,
                type=NotificationType.APPOINTMENT,
                title=f"Meeting {transition}",
                content=f'"{appointment.title}" with {host_name} {transition} at {at:%H:%M}',
                related_id=appointment.id,
            )
            for recipient_id in recipients
        ]
        if not notifications:
            self.logger.warning("No active receptionist to notify that %s %s", appointment.id, transition)
            return []
        return await self.store.insert_notifications(notifications)

    async def _watermark(self, appointment_id: str, **marks: dt.datetime) -> None:
        try:
            await self.store.mark_appointment(appointment_id, **marks)
        except Exception:
            # The in-memory ledger still prevents a repeat in this process.
            self.logger.warning("Could not persist watermark for %s", appointment_id, exc_info=True)
