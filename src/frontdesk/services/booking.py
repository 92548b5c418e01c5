"""Booking, editing and deleting appointments on a host's calendar."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import List, Optional, Set

from frontdesk.core.errors import DeliveryFailed, InvalidRequest, NotFound, PermissionDenied
from frontdesk.core.locks import InMemoryLockManager, LockManager
from frontdesk.core.models import (
    AccountStatus,
    Actor,
    Appointment,
    AppointmentType,
    BookingOutcome,
    BookingRequest,
    Notification,
    NotificationType,
    UserRole,
    utcnow,
)
from frontdesk.core.settings import BookingSettings
from frontdesk.data.record_store import RecordStore
from frontdesk.services.conflicts import ConflictChecker, validate_interval
from frontdesk.services.webhook import WebhookDelivery
from frontdesk.utils.logging import get_logger


class BookingService:
    """Runs conflict check and commit for one host under that host's lock.

    Two requests for the same host are serialized, so overlapping bookings
    cannot both pass the check.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        lock_manager: Optional[LockManager] = None,
        settings: Optional[BookingSettings] = None,
        webhook: Optional[WebhookDelivery] = None,
        webhook_on_receptionist_booking: bool = False,
    ) -> None:
        self._store = store
        self._locks = lock_manager or InMemoryLockManager()
        self._settings = settings or BookingSettings()
        self._webhook = webhook
        self._webhook_on_booking = webhook_on_receptionist_booking
        self._background: Set["asyncio.Task[None]"] = set()
        self.checker = ConflictChecker(store)
        self.logger = get_logger(self.__class__.__name__)

    def _host_lock(self, host_id: str):
        return self._locks.lock(
            f"host:{host_id}",
            ttl_ms=self._settings.lock_ttl_ms,
            wait_ms=self._settings.lock_wait_ms,
        )

    @staticmethod
    def _resolve_host(actor: Actor, requested: Optional[str], current: Optional[str] = None) -> str:
        if not actor.can_book_for_others:
            if current is not None and current != actor.id:
                raise PermissionDenied(f"{actor.id} cannot change appointments of host {current}")
            return actor.id
        host_id = requested or current
        if not host_id:
            raise InvalidRequest("Select the host for this appointment")
        return host_id

    async def book(self, actor: Actor, request: BookingRequest) -> BookingOutcome:
        validate_interval(request.start_time, request.end_time)
        host_id = self._resolve_host(actor, request.host_id)

        async with self._host_lock(host_id) as acquired:
            if not acquired:
                return BookingOutcome.stale(f"Calendar of host {host_id} is busy, try again")
            result = await self.checker.check(host_id, request.start_time, request.end_time)
            if not result.ok:
                self.logger.info(
                    "Rejected booking for host %s: overlaps appointment %s", host_id, result.conflicting_id
                )
                return BookingOutcome.conflict(host_id, result.conflicting_id or "")
            appointment = Appointment(
                host_id=host_id,
                created_by=actor.id,
                title=request.title,
                description=request.description or None,
                start_time=request.start_time,
                end_time=request.end_time,
                type=request.type,
                guest_name=request.guest_name if request.type is AppointmentType.EXTERNAL else None,
            )
            await self._store.insert_appointment(appointment)

        self.logger.info("Booked appointment %s for host %s", appointment.id, host_id)
        if actor.is_receptionist:
            self._fire_webhook(appointment.id)
        else:
            await self._notify_receptionists(actor, appointment)
        return BookingOutcome.booked(appointment)

    async def edit(self, actor: Actor, appointment_id: str, request: BookingRequest) -> BookingOutcome:
        validate_interval(request.start_time, request.end_time)
        existing = await self._store.get_appointment(appointment_id)
        if existing is None:
            return BookingOutcome.stale(f"Appointment {appointment_id} no longer exists")
        host_id = self._resolve_host(actor, request.host_id, existing.host_id)

        async with self._host_lock(host_id) as acquired:
            if not acquired:
                return BookingOutcome.stale(f"Calendar of host {host_id} is busy, try again")
            result = await self.checker.check(
                host_id, request.start_time, request.end_time, exclude_id=appointment_id
            )
            if not result.ok:
                return BookingOutcome.conflict(host_id, result.conflicting_id or "")
            # The store keeps current watermarks and clears those of moved boundaries.
            try:
                updated = await self._store.edit_appointment(
                    appointment_id,
                    host_id=host_id,
                    title=request.title,
                    description=request.description or None,
                    start_time=request.start_time,
                    end_time=request.end_time,
                    type=request.type,
                    guest_name=request.guest_name if request.type is AppointmentType.EXTERNAL else None,
                )
            except NotFound:
                return BookingOutcome.stale(f"Appointment {appointment_id} no longer exists")

        self.logger.info("Updated appointment %s for host %s", appointment_id, host_id)
        if actor.is_receptionist:
            self._fire_webhook(updated.id)
        return BookingOutcome.booked(updated)

    async def delete(self, actor: Actor, appointment_id: str) -> bool:
        existing = await self._store.get_appointment(appointment_id)
        if existing is None:
            return False
        if not actor.can_book_for_others and actor.id not in (existing.host_id, existing.created_by):
            raise PermissionDenied(f"{actor.id} cannot delete appointment {appointment_id}")
        deleted = await self._store.delete_appointment(appointment_id)
        if deleted:
            self.logger.info("Deleted appointment %s", appointment_id)
        return deleted

    async def current_appointment(self, host_id: str, at: Optional[dt.datetime] = None) -> Optional[Appointment]:
        """Appointment the host is in right now, if any."""
        return await self._store.appointment_at(host_id, at or utcnow())

    async def _notify_receptionists(self, actor: Actor, appointment: Appointment) -> List[Notification]:
        receptionists = await self._store.list_employees(
            role=UserRole.RECEPTIONIST, status=AccountStatus.ACTIVE
        )
        if not receptionists:
            return []
        name = actor.full_name or "An employee"
        content = f'{name} booked "{appointment.title}" for {appointment.start_time:%d/%m %H:%M}'
        notifications = [
            Notification(
                recipient_id=receptionist.id,
                type=NotificationType.APPOINTMENT,
                title="New meeting booked",
                content=content,
                related_id=appointment.id,
            )
            for receptionist in receptionists
        ]
        try:
            return await self._store.insert_notifications(notifications)
        except Exception:
            # The booking itself is committed; only the heads-up is lost.
            self.logger.warning("Failed to notify receptionists about %s", appointment.id, exc_info=True)
            return []

    def _fire_webhook(self, appointment_id: str) -> None:
        if not (self._webhook_on_booking and self._webhook):
            return
        task = asyncio.create_task(self._send_webhook(appointment_id), name=f"webhook-{appointment_id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_webhook(self, appointment_id: str) -> None:
        assert self._webhook is not None
        try:
            await self._webhook.deliver(appointment_id)
        except DeliveryFailed as exc:
            self.logger.warning("Booking webhook failed: %s", exc)
        except Exception:
            self.logger.exception("Unexpected error sending booking webhook for %s", appointment_id)

    async def drain(self) -> None:
        """Wait for in-flight background webhook calls."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
