"""CLI entrypoint to launch the scheduling and notification engine."""

from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path

from frontdesk.core.locks import InMemoryLockManager
from frontdesk.core.message_bus import MessageBus
from frontdesk.core.models import Actor
from frontdesk.core.runtime import EngineRuntime
from frontdesk.core.settings import RuntimeSettings
from frontdesk.data.record_store import JsonRecordStore
from frontdesk.services import BookingService, HttpClient, SettingsCache, WebhookDelivery
from frontdesk.utils.env import get_choice_env
from frontdesk.utils.logging import get_logger


logger = get_logger("EngineCLI")


def _build_bus():
    backend = get_choice_env("FRONTDESK_BUS", {"memory", "redis"}, default="memory")
    if backend == "redis":
        from frontdesk.core.locks_redis import RedisLockManager
        from frontdesk.core.message_bus_redis import RedisMessageBus

        redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        logger.info("Using Redis change feed at %s", redis_url)
        return RedisMessageBus(redis_url), RedisLockManager(redis_url)
    logger.info("Using in-process change feed")
    return MessageBus(), InMemoryLockManager()


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run the front-desk scheduling and notification engine.")
    parser.add_argument("--config", type=Path, default=Path("config/runtime.example.yml"), help="Path to runtime YAML")
    parser.add_argument(
        "--receptionist",
        action="append",
        default=[],
        metavar="ACTOR_ID",
        help="Open a session for this receptionist so the background sweeps run (repeatable)",
    )
    args = parser.parse_args()

    settings = RuntimeSettings.load(args.config)
    message_bus, lock_manager = _build_bus()
    store = JsonRecordStore(settings.store_path, change_feed=message_bus)
    http_client = HttpClient(timeout=settings.webhook.timeout_seconds)
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

    for actor_id in args.receptionist:
        employee = await store.get_employee(actor_id)
        if employee is None:
            logger.warning("Unknown receptionist %s; skipping", actor_id)
            continue
        actor = Actor(
            id=employee.id,
            role=employee.role,
            account_status=employee.account_status,
            full_name=employee.full_name,
        )
        await runtime.open_session(actor)

    try:
        await runtime.run_forever()
    finally:
        await booking.drain()
        await http_client.close_all()


if __name__ == "__main__":
    asyncio.run(main())
