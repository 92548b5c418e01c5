from __future__ import annotations

import asyncio
import datetime as dt

import pytest
import pytest_asyncio

from frontdesk.core.message_bus import MessageBus
from frontdesk.core.models import AccountStatus, Actor, Employee, UserRole
from frontdesk.data.record_store import JsonRecordStore


DIRECTORY = [
    Employee(id="emp-1", full_name="Ana Souza", email="ana@example.com", phone="+55 11 90000-0001"),
    Employee(id="emp-2", full_name="Bruno Lima", email="bruno@example.com"),
    Employee(id="rec-1", full_name="Carla Dias", email="carla@example.com", role=UserRole.RECEPTIONIST),
    Employee(
        id="rec-2",
        full_name="Diego Alves",
        email="diego@example.com",
        role=UserRole.RECEPTIONIST,
        account_status=AccountStatus.BLOCKED,
    ),
    Employee(id="adm-1", full_name="Elisa Rocha", email="elisa@example.com", role=UserRole.ADMIN),
]


@pytest.fixture
def t0() -> dt.datetime:
    return dt.datetime(2026, 3, 2, 10, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def bus():
    return MessageBus()


@pytest_asyncio.fixture
async def store(bus):
    store = JsonRecordStore(change_feed=bus)
    for employee in DIRECTORY:
        await store.upsert_employee(employee)
    yield store
    if not bus.closed:
        await bus.close()


@pytest.fixture
def actor_for():
    by_id = {e.id: e for e in DIRECTORY}

    def _actor(employee_id: str) -> Actor:
        employee = by_id[employee_id]
        return Actor(
            id=employee.id,
            role=employee.role,
            account_status=employee.account_status,
            full_name=employee.full_name,
        )

    return _actor


@pytest.fixture
def eventually():
    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait


@pytest.fixture
def directory():
    return list(DIRECTORY)
