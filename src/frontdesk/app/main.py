"""FastAPI application exposing booking, messaging and session endpoints."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from frontdesk.app.models import (
    AppState,
    ContactStatusOut,
    FeedEntry,
    NewMessage,
    OpenSession,
    SessionSummary,
    SurfaceUpdate,
)
from frontdesk.core.errors import (
    AccountInactive,
    ConflictError,
    DeliveryFailed,
    FrontDeskError,
    InvalidInterval,
    InvalidRequest,
    NotFound,
    PermissionDenied,
    StaleBookingError,
    StoreUnavailable,
)
from frontdesk.core.locks import InMemoryLockManager
from frontdesk.core.message_bus import MessageBus
from frontdesk.core.models import (
    Actor,
    AppSettings,
    Appointment,
    BookingRequest,
    Message,
    Notification,
    UserRole,
)
from frontdesk.core.runtime import EngineRuntime, SessionBundle
from frontdesk.core.settings import RuntimeSettings
from frontdesk.data.record_store import JsonRecordStore
from frontdesk.services import BookingService, HttpClient, SettingsCache, WebhookDelivery
from frontdesk.services.webhook import DeliveryReport
from frontdesk.utils.env import get_choice_env
from frontdesk.utils.logging import get_logger


logger = get_logger("FrontDeskAPI")

_STATUS_BY_ERROR = [
    (InvalidInterval, 422),
    (InvalidRequest, 422),
    (ConflictError, 409),
    (StaleBookingError, 409),
    (NotFound, 404),
    (AccountInactive, 403),
    (PermissionDenied, 403),
    (DeliveryFailed, 502),
    (StoreUnavailable, 503),
]


def _summary(bundle: SessionBundle) -> SessionSummary:
    return SessionSummary(
        session_id=bundle.session_id,
        actor_id=bundle.actor.id,
        role=bundle.actor.role.value,
        surface=bundle.router.surface,
        connected=bundle.router.connected.is_set(),
    )


def create_app(
    settings: RuntimeSettings,
    *,
    store: Optional[JsonRecordStore] = None,
    bus: Optional[MessageBus] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    # Select change feed backend
    bus_backend = get_choice_env("FRONTDESK_BUS", {"memory", "redis"}, default="memory")
    if bus is not None:
        message_bus = bus
        lock_manager = InMemoryLockManager()
    elif bus_backend == "redis":
        from frontdesk.core.locks_redis import RedisLockManager
        from frontdesk.core.message_bus_redis import RedisMessageBus

        redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        message_bus = RedisMessageBus(redis_url)
        lock_manager = RedisLockManager(redis_url)
    else:
        message_bus = MessageBus()
        lock_manager = InMemoryLockManager()

    if store is None:
        store = JsonRecordStore(settings.store_path, change_feed=message_bus)
    http_client = HttpClient(timeout=settings.webhook.timeout_seconds, transport=transport)
    settings_cache = SettingsCache(store)
    delivery = WebhookDelivery(store, http_client, settings_cache=settings_cache)
    booking = BookingService(
        store,
        lock_manager=lock_manager,
        settings=settings.booking,
        webhook=delivery,
        webhook_on_receptionist_booking=settings.webhook.on_receptionist_booking,
    )
    runtime = EngineRuntime(store=store, bus=message_bus, delivery=delivery, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await settings_cache.refresh()
        logger.info("FrontDesk engine started (bus=%s)", bus_backend)
        try:
            yield
        finally:
            await runtime.stop()
            await booking.drain()
            await http_client.close_all()
            await message_bus.close()

    app = FastAPI(title="FrontDesk Engine", lifespan=lifespan)
    app.state.runtime = runtime
    app.state.booking = booking
    app.state.store = store

    @app.exception_handler(FrontDeskError)
    async def _frontdesk_error(request: Request, exc: FrontDeskError) -> JSONResponse:
        for error_type, status in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                return JSONResponse(status_code=status, content={"detail": str(exc)})
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    async def current_actor(x_actor_id: str = Header(...)) -> Actor:
        employee = await store.get_employee(x_actor_id)
        if employee is None:
            raise HTTPException(status_code=401, detail="Unknown actor")
        return Actor(
            id=employee.id,
            role=employee.role,
            account_status=employee.account_status,
            full_name=employee.full_name,
        )

    def require_admin(actor: Actor = Depends(current_actor)) -> Actor:
        if actor.role is not UserRole.ADMIN:
            raise HTTPException(status_code=403, detail="Admin only")
        return actor

    def session_of(actor: Actor) -> SessionBundle:
        bundle = runtime.get_session(actor.id)
        if bundle is None:
            raise HTTPException(status_code=404, detail="No open session")
        return bundle

    @app.get("/")
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": "FrontDesk Engine API",
            "status": "running",
            "sessions": len(runtime.sessions),
            "endpoints": {
                "health": "/health",
                "api_docs": "/docs",
                "sessions": "/sessions",
                "appointments": "/appointments",
                "messages": "/messages",
                "notifications": "/notifications",
            },
        }

    @app.get("/health", response_model=AppState)
    async def health() -> AppState:
        return AppState(
            started=True,
            background_running=runtime.watcher.running,
            sessions=[_summary(b) for b in runtime.sessions],
        )

    # Sessions

    @app.post("/sessions", response_model=SessionSummary)
    async def open_session(payload: OpenSession, actor: Actor = Depends(current_actor)) -> SessionSummary:
        bundle = await runtime.open_session(actor, surface=payload.surface)
        return _summary(bundle)

    @app.delete("/sessions/me")
    async def close_session(actor: Actor = Depends(current_actor)) -> dict:
        return {"ok": await runtime.close_session(actor.id)}

    @app.put("/sessions/me/surface", response_model=SessionSummary)
    async def set_surface(payload: SurfaceUpdate, actor: Actor = Depends(current_actor)) -> SessionSummary:
        bundle = session_of(actor)
        bundle.router.set_surface(payload.surface)
        return _summary(bundle)

    @app.get("/sessions/me/feed", response_model=List[FeedEntry])
    async def feed(actor: Actor = Depends(current_actor)) -> List[FeedEntry]:
        bundle = session_of(actor)
        return [
            FeedEntry(key=e.key, kind=e.kind.value, pending=e.pending, record=e.record.model_dump(mode="json"))
            for e in bundle.router.view.entries()
        ]

    @app.get("/sessions/me/alerts")
    async def alerts(actor: Actor = Depends(current_actor)) -> list:
        bundle = session_of(actor)
        return [a.model_dump(mode="json") for a in bundle.router.alerts]

    # Appointments

    @app.post("/appointments", response_model=Appointment, status_code=201)
    async def book(request: BookingRequest, actor: Actor = Depends(current_actor)) -> Appointment:
        outcome = await booking.book(actor, request)
        return outcome.raise_for_status()

    @app.put("/appointments/{appointment_id}", response_model=Appointment)
    async def edit(
        appointment_id: str, request: BookingRequest, actor: Actor = Depends(current_actor)
    ) -> Appointment:
        outcome = await booking.edit(actor, appointment_id, request)
        return outcome.raise_for_status()

    @app.delete("/appointments/{appointment_id}")
    async def delete(appointment_id: str, actor: Actor = Depends(current_actor)) -> dict:
        return {"ok": await booking.delete(actor, appointment_id)}

    @app.get("/hosts/{host_id}/current", response_model=Optional[Appointment])
    async def current(host_id: str, actor: Actor = Depends(current_actor)) -> Optional[Appointment]:
        return await booking.current_appointment(host_id)

    @app.get("/contacts/{contact_id}/status", response_model=ContactStatusOut)
    async def contact_status(contact_id: str, actor: Actor = Depends(current_actor)) -> ContactStatusOut:
        status = await session_of(actor).router.contact_status(contact_id)
        return ContactStatusOut(
            contact_id=contact_id,
            online=status.online,
            in_meeting=status.in_meeting,
            appointment_id=status.current_appointment.id if status.current_appointment else None,
        )

    # Notifications and messages

    @app.get("/notifications", response_model=List[Notification])
    async def notifications(actor: Actor = Depends(current_actor)) -> List[Notification]:
        return await store.list_notifications(actor.id)

    @app.post("/notifications/{notification_id}/read", response_model=Notification)
    async def mark_read(notification_id: str, actor: Actor = Depends(current_actor)) -> Notification:
        bundle = runtime.get_session(actor.id)
        if bundle is not None:
            return await bundle.router.mark_notification_read(notification_id)
        return await store.mark_notification_read(notification_id, recipient_id=actor.id)

    @app.post("/messages", response_model=Message, status_code=201)
    async def send_message(payload: NewMessage, actor: Actor = Depends(current_actor)) -> Message:
        bundle = runtime.get_session(actor.id)
        if bundle is not None:
            return await bundle.router.send_message(payload.recipient_id, payload.content)
        if not payload.content.strip():
            raise InvalidRequest("Message content is empty")
        message = Message(sender_id=actor.id, recipient_id=payload.recipient_id, content=payload.content.strip())
        return await store.insert_message(message)

    @app.get("/conversations/{contact_id}", response_model=List[Message])
    async def conversation(contact_id: str, actor: Actor = Depends(current_actor)) -> List[Message]:
        bundle = runtime.get_session(actor.id)
        if bundle is not None:
            return await bundle.router.open_conversation(contact_id)
        return await store.conversation(actor.id, contact_id)

    # Settings and webhook

    @app.get("/settings", response_model=AppSettings)
    async def get_settings() -> AppSettings:
        return await settings_cache.get()

    @app.put("/settings", response_model=AppSettings)
    async def put_settings(payload: AppSettings, actor: Actor = Depends(require_admin)) -> AppSettings:
        return await settings_cache.update(payload)

    @app.post("/settings/refresh", response_model=AppSettings)
    async def refresh_settings(actor: Actor = Depends(current_actor)) -> AppSettings:
        return await settings_cache.refresh()

    @app.post("/webhook/test/{appointment_id}", response_model=DeliveryReport)
    async def test_webhook(appointment_id: str, actor: Actor = Depends(require_admin)) -> DeliveryReport:
        return await delivery.deliver(appointment_id)

    return app


# Default ASGI app when run via `uvicorn frontdesk.app.main:app` with env FRONTDESK_CONFIG

config_env = os.getenv("FRONTDESK_CONFIG", "config/runtime.example.yml")
app = create_app(RuntimeSettings.load(Path(config_env)))
