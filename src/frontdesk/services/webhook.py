"""Outbound appointment webhook."""

from __future__ import annotations

import enum
from typing import Any, Dict, Optional, Sequence

import httpx
from pydantic import BaseModel

from frontdesk.core.errors import DeliveryFailed
from frontdesk.core.models import Appointment, Employee
from frontdesk.data.record_store import RecordStore
from frontdesk.services.http_client import HttpClient
from frontdesk.services.settings_cache import SettingsCache
from frontdesk.utils.logging import get_logger


# Labels stored in app_settings.webhook_fields, as chosen on the admin screen.
FIELD_VISIT_DATE = "Data da Visita"
FIELD_GUEST_NAME = "Nome do Visitante"
FIELD_HOST_NAME = "Nome do Funcionário"
FIELD_HOST_EMAIL = "Email do Funcionário"
FIELD_HOST_PHONE = "Telefone do Funcionário"
FIELD_TYPE = "Tipo de Visita"
FIELD_NOTES = "Observações"

WEBHOOK_FIELDS = (
    FIELD_VISIT_DATE,
    FIELD_GUEST_NAME,
    FIELD_HOST_NAME,
    FIELD_HOST_EMAIL,
    FIELD_HOST_PHONE,
    FIELD_TYPE,
    FIELD_NOTES,
)


def build_payload(
    appointment: Appointment,
    host: Optional[Employee],
    fields: Sequence[str],
) -> Dict[str, Any]:
    """Build the JSON body from the configured field allow-list.

    The title is always sent; every other key only appears when its label is
    selected.
    """
    selected = set(fields)
    payload: Dict[str, Any] = {}
    if FIELD_VISIT_DATE in selected:
        payload["appointment_date"] = appointment.start_time.strftime("%d-%m-%Y")
        payload["appointment_time"] = appointment.start_time.strftime("%H:%M")
    if FIELD_GUEST_NAME in selected:
        payload["guest_name"] = appointment.guest_name
    if FIELD_HOST_NAME in selected:
        payload["host_name"] = host.full_name if host else None
    if FIELD_HOST_EMAIL in selected:
        payload["host_email"] = host.email if host else None
    if FIELD_HOST_PHONE in selected:
        payload["host_phone"] = host.phone if host else None
    if FIELD_TYPE in selected:
        payload["appointment_type"] = appointment.type.value
    if FIELD_NOTES in selected:
        payload["notes"] = appointment.description
    payload["appointment_title"] = appointment.title
    return payload


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    SKIPPED = "skipped"


class DeliveryReport(BaseModel):
    appointment_id: str
    status: DeliveryStatus
    status_code: Optional[int] = None
    payload: Optional[Dict[str, Any]] = None


class WebhookDelivery:
    """POSTs the appointment payload to the configured webhook url."""

    def __init__(
        self,
        store: RecordStore,
        http_client: HttpClient,
        *,
        settings_cache: SettingsCache,
    ) -> None:
        self._store = store
        self._http = http_client
        self._settings = settings_cache
        self.logger = get_logger(self.__class__.__name__)

    async def deliver(self, appointment_id: str) -> DeliveryReport:
        """Send the webhook for one appointment.

        Raises ``DeliveryFailed`` on a missing appointment, a transport error or
        a non-2xx response. Returns a ``skipped`` report when no url is set.
        """
        settings = await self._settings.get()
        if not settings.webhook_url:
            self.logger.info("Webhook not configured; skipping appointment %s", appointment_id)
            return DeliveryReport(appointment_id=appointment_id, status=DeliveryStatus.SKIPPED)

        appointment = await self._store.get_appointment(appointment_id)
        if appointment is None:
            raise DeliveryFailed(appointment_id, "appointment not found")
        host = await self._store.get_employee(appointment.host_id)
        payload = build_payload(appointment, host, settings.webhook_fields)

        self.logger.info("Sending webhook for appointment %s", appointment_id)
        async with self._http.session("webhook") as client:
            try:
                response = await client.post(settings.webhook_url, json=payload)
            except httpx.HTTPError as exc:
                raise DeliveryFailed(appointment_id, str(exc) or exc.__class__.__name__) from exc

        if not response.is_success:
            raise DeliveryFailed(
                appointment_id,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return DeliveryReport(
            appointment_id=appointment_id,
            status=DeliveryStatus.SENT,
            status_code=response.status_code,
            payload=payload,
        )
