"""
Engine - one object wiring storage, delay timers and the coordinator.

Applications that don't need to assemble the pieces themselves open an
Engine from configuration and use it as an async context manager:

    async with await Engine.open(EngineConfig.from_env()) as engine:
        await engine.store.insert_journey(journey)
        run_id = await engine.trigger(journey.id, {"age": 70})
        run = await engine.get_run(run_id)

Opening an engine runs the recovery sweep (unless disabled), so runs
that were waiting on a delay when the previous process stopped pick up
where they left off. Closing it cancels pending timers and closes the
store; waiting runs keep their persisted deadline for the next open.
"""

from __future__ import annotations

import logging
from typing import Any

from pyjourney.config import EngineConfig, open_store, set_log_level
from pyjourney.executor.channel import MessageChannel
from pyjourney.executor.coordinator import ExecutionCoordinator
from pyjourney.executor.delay import DelayScheduler
from pyjourney.models import Journey, JourneyRun
from pyjourney.storage.base import JourneyStore

logger = logging.getLogger(__name__)


class Engine:
    """Façade over a connected JourneyStore and its ExecutionCoordinator."""

    def __init__(self, store: JourneyStore, channel: MessageChannel | None = None):
        self._store = store
        self._scheduler = DelayScheduler()
        self._coordinator = ExecutionCoordinator(store, self._scheduler, channel)
        self._closed = False

    @classmethod
    async def open(
        cls,
        config: EngineConfig | None = None,
        channel: MessageChannel | None = None,
    ) -> Engine:
        """
        Connect the configured store and build an engine on top of it.

        Args:
            config: Engine configuration (defaults to EngineConfig.from_env())
                Its log_level is applied to the pyjourney loggers.
            channel: Destination for MESSAGE nodes (logs by default)

        Returns:
            A ready engine; close it with ``await engine.close()``
        """
        if config is None:
            config = EngineConfig.from_env()
        set_log_level(config.log_level)

        store = await open_store(config)
        engine = cls(store, channel)

        logger.info(f"Opened journey engine on {store!r}")

        if config.recover_on_start:
            await engine.recover()
        return engine

    @property
    def store(self) -> JourneyStore:
        return self._store

    @property
    def coordinator(self) -> ExecutionCoordinator:
        return self._coordinator

    @property
    def scheduler(self) -> DelayScheduler:
        return self._scheduler

    async def create_journey(self, journey: Journey) -> str:
        """Store a journey definition and return its id."""
        await self._store.insert_journey(journey)
        return journey.id

    async def trigger(self, journey_id: str, context: dict[str, Any] | None = None) -> str:
        """Create and start a run. See ExecutionCoordinator.trigger()."""
        return await self._coordinator.trigger(journey_id, context)

    async def start(self, run_id: str) -> None:
        await self._coordinator.start(run_id)

    async def get_run(self, run_id: str) -> JourneyRun | None:
        return await self._store.get_run(run_id)

    def cancel(self, run_id: str) -> bool:
        """Stop a run's pending delay; the run stays IN_PROGRESS."""
        return self._coordinator.cancel(run_id)

    async def recover(self) -> int:
        return await self._coordinator.recover()

    async def close(self) -> None:
        """Cancel pending timers and close the store. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self._scheduler.shutdown()
        await self._store.close()
        logger.info("Closed journey engine")

    async def __aenter__(self) -> Engine:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
