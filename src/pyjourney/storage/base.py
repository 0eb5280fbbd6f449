"""
JourneyStore - Abstract interface for storage backends.

Design Pattern: Adapter Pattern
JourneyStore defines the target interface that all storage adapters implement.
Different storage backends (SQLite, Redis, Memory) adapt to this common interface.

Design Principle: Dependency Inversion
The coordinator and scheduler depend on this abstraction, not on concrete
storage implementations, so tests run against InMemoryJourneyStore and
deployments swap in SqliteJourneyStore or RedisJourneyStore unchanged.

Only three operations are needed to execute a run (get_run, get_journey,
update_run_status_and_node). The rest serve the code that creates journeys
and runs, and the recovery sweep.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pyjourney.models import Journey, JourneyRun, RunStatus


class StorageError(Exception):
    """
    Storage operation failed.

    Custom exception with context, not generic Exception. The coordinator
    treats it as an execution failure for the run being processed.
    """

    pass


class JourneyStore(ABC):
    """
    Abstract storage interface for journeys and their runs.

    Pattern Benefits:
    - Open-Closed Principle: Add new storage backends without modifying the engine
    - Testability: Easy to substitute InMemoryJourneyStore
    - Flexibility: Switch storage through configuration (memory <-> SQLite <-> Redis)
    """

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def connect(self) -> None:
        """Open underlying connections. No-op for backends that need none."""
        return None

    async def close(self) -> None:
        """Release underlying connections. No-op for backends that hold none."""
        return None

    @abstractmethod
    async def reset(self) -> None:
        """Delete every journey and run (test helper)."""
        pass

    # ========================================================================
    # Journey Operations
    # ========================================================================

    @abstractmethod
    async def insert_journey(self, journey: Journey) -> None:
        """
        Persist a new journey definition.

        Journeys are immutable; inserting an id that already exists is an error.

        Raises:
            StorageError: If the journey already exists or the write fails
        """
        pass

    @abstractmethod
    async def get_journey(self, journey_id: str) -> Journey | None:
        """
        Load a journey definition.

        Returns None when the journey doesn't exist; the coordinator decides
        what a missing journey means for the run.
        """
        pass

    @abstractmethod
    async def list_journeys(self) -> list[Journey]:
        """Return all journeys, newest first."""
        pass

    # ========================================================================
    # Run Operations
    # ========================================================================

    @abstractmethod
    async def insert_run(self, run: JourneyRun) -> None:
        """
        Persist a new run.

        Raises:
            StorageError: If the run already exists or the write fails
        """
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> JourneyRun | None:
        """
        Load a run, fresh from storage.

        Returns a copy; mutating it has no effect on the stored state.
        """
        pass

    @abstractmethod
    async def update_run_status_and_node(
        self,
        run_id: str,
        status: RunStatus,
        node_id: str | None,
        wake_at: datetime | None = None,
    ) -> None:
        """
        Persist a run's status and position.

        This is the single write the engine performs per step. It also sets
        (or clears, when None) the waiting deadline, so a run suspended on a
        delay can be found by the recovery sweep.

        Args:
            run_id: Run to update
            status: New status
            node_id: New current node id (None when completed)
            wake_at: Deadline of a pending delay, None otherwise

        Raises:
            StorageError: If the run doesn't exist or the write fails
        """
        pass

    @abstractmethod
    async def get_runs_for_journey(self, journey_id: str) -> list[JourneyRun]:
        """Return all runs of a journey, newest first."""
        pass

    @abstractmethod
    async def get_waiting_runs(self) -> list[JourneyRun]:
        """
        Return every IN_PROGRESS run with a waiting deadline.

        Used by the recovery sweep to re-arm timers lost on restart.
        """
        pass
