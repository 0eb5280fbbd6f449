"""In-memory storage implementation for pyjourney.

Design Pattern: Adapter Pattern
InMemoryJourneyStore adapts in-memory dictionaries to the JourneyStore interface.

Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import UTC, datetime

from pyjourney.models import Journey, JourneyRun, RunStatus
from pyjourney.storage.base import JourneyStore, StorageError


class InMemoryJourneyStore(JourneyStore):
    """In-memory storage for tests and single-process embedding.

    Can be substituted for SqliteJourneyStore without changing client code.

    Usage:
        store = InMemoryJourneyStore()
        await store.insert_journey(journey)
        run = await store.get_run(run_id)
    """

    def __init__(self):
        """Initialize in-memory storage with status notification support."""
        # Storage: {journey_id: Journey} (journeys are immutable, stored as-is)
        self._journeys: dict[str, Journey] = {}

        # Storage: {run_id: JourneyRun} (copied in and out)
        self._runs: dict[str, JourneyRun] = {}

        self._lock = asyncio.Lock()

        # Status notification uses Condition for race-free wait_for(predicate) pattern
        self._status_notify = asyncio.Condition(self._lock)

    def __repr__(self) -> str:
        """Return string representation of storage instance."""
        return "InMemoryJourneyStore"

    async def insert_journey(self, journey: Journey) -> None:
        async with self._lock:
            if journey.id in self._journeys:
                raise StorageError(f"Journey already exists: journey_id={journey.id}")
            self._journeys[journey.id] = journey

    async def get_journey(self, journey_id: str) -> Journey | None:
        async with self._lock:
            return self._journeys.get(journey_id)

    async def list_journeys(self) -> list[Journey]:
        async with self._lock:
            # Insertion order is creation order
            return list(reversed(self._journeys.values()))

    async def insert_run(self, run: JourneyRun) -> None:
        async with self._lock:
            if run.id in self._runs:
                raise StorageError(f"Run already exists: run_id={run.id}")
            self._runs[run.id] = copy.deepcopy(run)

    async def get_run(self, run_id: str) -> JourneyRun | None:
        async with self._lock:
            run = self._runs.get(run_id)
            return copy.deepcopy(run) if run is not None else None

    async def update_run_status_and_node(
        self,
        run_id: str,
        status: RunStatus,
        node_id: str | None,
        wake_at: datetime | None = None,
    ) -> None:
        async with self._status_notify:
            run = self._runs.get(run_id)
            if run is None:
                raise StorageError(f"Run not found: run_id={run_id}")

            run.status = status
            run.current_node_id = node_id
            run.wake_at = wake_at
            run.updated_at = datetime.now(UTC)

            self._status_notify.notify_all()

    async def get_runs_for_journey(self, journey_id: str) -> list[JourneyRun]:
        async with self._lock:
            runs = [copy.deepcopy(r) for r in self._runs.values() if r.journey_id == journey_id]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs

    async def get_waiting_runs(self) -> list[JourneyRun]:
        async with self._lock:
            return [copy.deepcopy(r) for r in self._runs.values() if r.is_waiting]

    async def reset(self) -> None:
        """Clear all data."""
        async with self._lock:
            self._journeys.clear()
            self._runs.clear()

    async def wait_for_terminal(self, run_id: str) -> RunStatus:
        """Wait until a run reaches COMPLETED or FAILED (race-free).

        Uses asyncio.Condition with manual check-wait loop pattern.
        The condition's lock ensures no race between status check and wait.
        Wrap in asyncio.wait_for() to bound the wait.

        Raises:
            StorageError: If the run doesn't exist
        """
        async with self._status_notify:
            while True:
                run = self._runs.get(run_id)
                if run is None:
                    raise StorageError(f"Run not found: run_id={run_id}")
                if run.status.is_terminal:
                    return run.status
                await self._status_notify.wait()
