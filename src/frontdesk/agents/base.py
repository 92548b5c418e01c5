"""Common agent abstractions."""

from __future__ import annotations

import abc
import asyncio
import datetime as dt
from typing import Callable, Optional

from frontdesk.core.models import AgentConfig, EventEnvelope, EventType, utcnow
from frontdesk.utils.logging import get_logger


Clock = Callable[[], dt.datetime]


class BaseAgent(abc.ABC):
    """Abstract agent with lifecycle helpers."""

    def __init__(self, config: AgentConfig, *, name: Optional[str] = None) -> None:
        self.config = config
        self._name = name or self.__class__.__name__
        self.logger = get_logger(self._name)
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self.logger.info("Starting agent for session %s", self.config.session_id)
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_wrapper(), name=f"{self._name}-{self.config.session_id}")

    async def stop(self) -> None:
        self.logger.info("Stopping agent for session %s", self.config.session_id)
        self._stop_event.set()
        if self._task:
            task, self._task = self._task, None
            await self._interrupt(task)

    async def _interrupt(self, task: "asyncio.Task[None]") -> None:
        """Wait for the run loop to notice the stop flag; subclasses blocked on I/O cancel instead."""
        await task

    async def _run_wrapper(self) -> None:
        try:
            await self.setup()
            await self.run()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pragma: no cover - ensure errors are logged
            self.logger.exception("Unhandled exception: %s", exc)
        finally:
            await self.teardown()

    def should_stop(self) -> bool:
        return self._stop_event.is_set()

    async def wait_or_stop(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True when a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def setup(self) -> None:
        """Optional hook executed once before run loop."""

    async def teardown(self) -> None:
        """Optional hook executed once after run loop."""

    @abc.abstractmethod
    async def run(self) -> None:
        """Main agent body."""


class PeriodicAgent(BaseAgent):
    """Runs ``sweep`` every ``poll_interval_seconds`` until stopped.

    A failing sweep is logged and the next one runs on schedule; errors never
    escape the tick.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        bus=None,
        clock: Optional[Clock] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(config, name=name)
        self.bus = bus
        self.clock: Clock = clock or utcnow

    @abc.abstractmethod
    async def sweep(self, now: dt.datetime) -> int:
        """Handle one tick; returns the number of items acted upon."""

    async def tick(self) -> str:
        status = "ok"
        try:
            await self.sweep(self.clock())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            status = "error"
            self.logger.warning("Sweep failed, retrying on next tick: %s", exc, exc_info=True)
        finally:
            await self._emit_heartbeat(status=status)
        return status

    async def run(self) -> None:
        while not self.should_stop():
            await self.tick()
            if await self.wait_or_stop(self.config.poll_interval_seconds):
                break

    async def _emit_heartbeat(self, *, status: str) -> None:
        if self.bus is None or self.bus.closed:
            return
        envelope = EventEnvelope(
            type=EventType.HEARTBEAT,
            payload={
                "agent": self._name,
                "status": status,
                "timestamp": utcnow().isoformat(),
            },
        )
        try:
            await self.bus.publish(envelope)
        except Exception:
            self.logger.debug("Failed to emit heartbeat", exc_info=True)
