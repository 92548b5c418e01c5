"""Reminder dispatcher firing one webhook per upcoming appointment."""

from __future__ import annotations

import datetime as dt
from typing import Optional, Protocol

from frontdesk.agents.base import Clock, PeriodicAgent
from frontdesk.core.errors import DeliveryFailed
from frontdesk.core.ledger import ReminderLedger
from frontdesk.core.models import AgentConfig
from frontdesk.core.settings import ReminderSettings
from frontdesk.data.record_store import RecordStore
from frontdesk.services.webhook import DeliveryReport


class ReminderDelivery(Protocol):
    async def deliver(self, appointment_id: str) -> DeliveryReport: ...


class ReminderDispatcher(PeriodicAgent):
    """Finds appointments starting inside the lead window and reminds each once.

    The appointment is marked reminded before delivery is attempted, so a
    failed delivery is never retried.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        store: RecordStore,
        delivery: ReminderDelivery,
        settings: Optional[ReminderSettings] = None,
        ledger: Optional[ReminderLedger] = None,
        bus=None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(config, bus=bus, clock=clock)
        self.settings = settings or ReminderSettings()
        self.store = store
        self.delivery = delivery
        self.ledger = ledger or ReminderLedger(self.settings.dedup_limit)

    async def sweep(self, now: dt.datetime) -> int:
        lower = now + dt.timedelta(minutes=self.settings.lead_min_minutes)
        upper = now + dt.timedelta(minutes=self.settings.lead_max_minutes)
        attempted = 0
        try:
            for appointment in await self.store.appointments_starting_between(lower, upper):
                if self.ledger.handled(appointment):
                    continue
                self.ledger.mark(appointment)
                try:
                    await self.store.mark_appointment(appointment.id, reminded_at=now)
                except Exception:
                    self.logger.warning("Could not persist reminder mark for %s", appointment.id, exc_info=True)
                attempted += 1
                await self._deliver(appointment.id)
        finally:
            if self.ledger.trim():
                self.logger.info("Cleared reminder dedup set after exceeding %d entries", self.ledger.reminded.limit)
        return attempted

    async def _deliver(self, appointment_id: str) -> None:
        try:
            report = await self.delivery.deliver(appointment_id)
        except DeliveryFailed as exc:
            self.logger.warning("Reminder not delivered (no retry): %s", exc)
            return
        except Exception:
            self.logger.exception("Unexpected error delivering reminder for %s", appointment_id)
            return
        self.logger.info("Reminder for appointment %s: %s", appointment_id, report.status.value)
