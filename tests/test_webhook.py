from __future__ import annotations

import datetime as dt
import json

import httpx
import pytest

from frontdesk.core.errors import DeliveryFailed
from frontdesk.core.models import AppSettings, Appointment, AppointmentType, Employee
from frontdesk.services import HttpClient, SettingsCache, WebhookDelivery
from frontdesk.services.webhook import WEBHOOK_FIELDS, DeliveryStatus, build_payload


HOST = Employee(id="emp-1", full_name="Ana Souza", email="ana@example.com", phone="+55 11 90000-0001")


def _visit(t0: dt.datetime) -> Appointment:
    return Appointment(
        id="appt-1",
        host_id="emp-1",
        created_by="rec-1",
        title="Visit",
        description="Bring badge",
        start_time=t0,
        end_time=t0 + dt.timedelta(hours=1),
        type=AppointmentType.EXTERNAL,
        guest_name="Maria",
    )


def test_payload_only_carries_selected_fields(t0):
    payload = build_payload(_visit(t0), HOST, ["Nome do Visitante", "Tipo de Visita"])
    assert payload == {"guest_name": "Maria", "appointment_type": "external", "appointment_title": "Visit"}


def test_payload_with_every_field(t0):
    payload = build_payload(_visit(t0), HOST, WEBHOOK_FIELDS)
    assert payload == {
        "appointment_date": "02-03-2026",
        "appointment_time": "10:00",
        "guest_name": "Maria",
        "host_name": "Ana Souza",
        "host_email": "ana@example.com",
        "host_phone": "+55 11 90000-0001",
        "appointment_type": "external",
        "notes": "Bring badge",
        "appointment_title": "Visit",
    }


def test_payload_without_fields_or_host(t0):
    assert build_payload(_visit(t0), None, []) == {"appointment_title": "Visit"}
    assert build_payload(_visit(t0), None, ["Nome do Funcionário"])["host_name"] is None


async def _delivery(store, handler) -> tuple[WebhookDelivery, HttpClient]:
    http_client = HttpClient(transport=httpx.MockTransport(handler))
    return WebhookDelivery(store, http_client, settings_cache=SettingsCache(store)), http_client


@pytest.mark.asyncio
async def test_delivery_posts_payload(store, t0):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(204)

    await store.insert_appointment(_visit(t0))
    await store.update_settings(
        AppSettings(webhook_url="https://hooks.example.com/visit", webhook_fields=["Nome do Visitante", "Tipo de Visita"])
    )
    delivery, http_client = await _delivery(store, handler)

    report = await delivery.deliver("appt-1")
    await http_client.close_all()

    assert report.status is DeliveryStatus.SENT
    assert report.status_code == 204
    assert seen == [
        (
            "https://hooks.example.com/visit",
            {"guest_name": "Maria", "appointment_type": "external", "appointment_title": "Visit"},
        )
    ]


@pytest.mark.asyncio
async def test_non_2xx_raises_delivery_failed(store, t0):
    await store.insert_appointment(_visit(t0))
    await store.update_settings(AppSettings(webhook_url="https://hooks.example.com/visit"))
    delivery, http_client = await _delivery(store, lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(DeliveryFailed) as excinfo:
        await delivery.deliver("appt-1")
    await http_client.close_all()
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_transport_error_raises_delivery_failed(store, t0):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    await store.insert_appointment(_visit(t0))
    await store.update_settings(AppSettings(webhook_url="https://hooks.example.com/visit"))
    delivery, http_client = await _delivery(store, handler)

    with pytest.raises(DeliveryFailed):
        await delivery.deliver("appt-1")
    await http_client.close_all()


@pytest.mark.asyncio
async def test_unconfigured_webhook_is_skipped(store, t0):
    calls = []
    await store.insert_appointment(_visit(t0))
    delivery, _ = await _delivery(store, lambda request: calls.append(request) or httpx.Response(200))

    report = await delivery.deliver("appt-1")
    assert report.status is DeliveryStatus.SKIPPED
    assert calls == []


@pytest.mark.asyncio
async def test_missing_appointment_raises(store):
    await store.update_settings(AppSettings(webhook_url="https://hooks.example.com/visit"))
    delivery, _ = await _delivery(store, lambda request: httpx.Response(200))
    with pytest.raises(DeliveryFailed):
        await delivery.deliver("nope")


@pytest.mark.asyncio
async def test_settings_cache_serves_stale_copy_until_refresh(store):
    cache = SettingsCache(store)
    assert (await cache.get()).webhook_url is None

    await store.update_settings(AppSettings(webhook_url="https://hooks.example.com/visit"))
    assert (await cache.get()).webhook_url is None
    assert (await cache.refresh()).webhook_url == "https://hooks.example.com/visit"

    await cache.update(AppSettings(logo_url="https://cdn.example.com/logo.png"))
    assert (await cache.get()).webhook_url is None
    assert (await store.get_settings()).logo_url == "https://cdn.example.com/logo.png"
