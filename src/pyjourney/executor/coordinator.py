"""
ExecutionCoordinator - drives journey runs from start to a terminal status.

The coordinator owns the step loop:

    reload run → resolve node → interpret → persist → loop | suspend | stop

Durability ordering:
    Each step's (status, current_node_id) write completes before the
    coordinator loops to the next node or hands a delay to the scheduler,
    so the persisted state is never behind the side effects already taken.

Failure policy:
    Any exception raised while stepping a run is caught here, logged, and
    turned into a FAILED run that keeps the last node the engine attempted.
    Failed runs are terminal: nothing is retried. If the write that marks
    the run failed itself raises StorageError, that error propagates.

Concurrency:
    Runs progress independently. Every entry point for a run holds that
    run's asyncio.Lock, so two racing resumptions of the same run are
    serialized and the second one observes the first one's writes.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import UTC, datetime, timedelta
from typing import Any

from pyjourney.errors import UnresolvedReference
from pyjourney.executor.channel import LoggingChannel, MessageChannel
from pyjourney.executor.delay import DelayScheduler
from pyjourney.executor.interpreter import interpret
from pyjourney.executor.outcome import Advance, Finish, Suspend
from pyjourney.models import DelayNode, Journey, JourneyRun, RunStatus
from pyjourney.storage.base import JourneyStore

logger = logging.getLogger(__name__)

__all__ = ["ExecutionCoordinator"]


class ExecutionCoordinator:
    """
    Execute journey runs against a JourneyStore.

    Usage:
        store = InMemoryJourneyStore()
        coordinator = ExecutionCoordinator(store)

        await store.insert_journey(journey)
        run_id = await coordinator.trigger(journey.id, {"age": 70})

        # start()/trigger() return once the run is terminal or suspended;
        # callers read the outcome back from the store
        run = await store.get_run(run_id)
    """

    def __init__(
        self,
        store: JourneyStore,
        scheduler: DelayScheduler | None = None,
        channel: MessageChannel | None = None,
    ):
        """
        Args:
            store: Storage backend for journeys and runs
            scheduler: Delay scheduler (a new one is created if omitted)
            channel: Destination for MESSAGE nodes (logs by default)
        """
        self._store = store
        self._scheduler = scheduler if scheduler is not None else DelayScheduler()
        self._scheduler.bind(self.resume_after_delay)
        # Empty RecordingChannels are falsy
        self._channel = channel if channel is not None else LoggingChannel()

        # Entries vanish once no task holds or waits on the lock
        self._run_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def store(self) -> JourneyStore:
        return self._store

    @property
    def scheduler(self) -> DelayScheduler:
        return self._scheduler

    def _lock_for(self, run_id: str) -> asyncio.Lock:
        lock = self._run_locks.get(run_id)
        if lock is None:
            lock = asyncio.Lock()
            self._run_locks[run_id] = lock
        return lock

    # ========================================================================
    # Entry Points
    # ========================================================================

    async def trigger(self, journey_id: str, context: dict[str, Any] | None = None) -> str:
        """
        Create a run of a journey and start it.

        Returns once the run is terminal or suspended on its first delay.

        Args:
            journey_id: Journey to run
            context: Patient context for the run

        Returns:
            The new run's id

        Raises:
            UnresolvedReference: If the journey doesn't exist (no run is created)
            StorageError: If the run cannot be stored
        """
        journey = await self._store.get_journey(journey_id)
        if journey is None:
            raise UnresolvedReference(journey_id)

        run = JourneyRun.create(journey_id, context)
        await self._store.insert_run(run)
        logger.info(f"[EXECUTOR] Triggered run {run.id} of journey {journey_id}")

        await self.start(run.id)
        return run.id

    async def start(self, run_id: str) -> None:
        """
        Start executing a run.

        Seeds the run at the journey's start node (persisted before any step
        runs) if it has no position yet, then enters the step loop.
        """
        logger.info(f"[EXECUTOR] Starting execution for run {run_id}")

        async with self._lock_for(run_id):
            run = await self._store.get_run(run_id)
            if run is None:
                logger.error(f"[EXECUTOR] Run {run_id} not found")
                return

            if run.is_terminal:
                logger.info(f"[EXECUTOR] Run {run_id} is already {run.status}")
                return

            if run.current_node_id is None:
                try:
                    journey = await self._load_journey(run)
                    if journey.get_node(journey.start_node_id) is None:
                        raise UnresolvedReference(journey.id, journey.start_node_id)

                    await self._store.update_run_status_and_node(
                        run_id, RunStatus.IN_PROGRESS, journey.start_node_id
                    )
                except UnresolvedReference as e:
                    logger.error(f"[EXECUTOR] Cannot start run {run_id}: {e}")
                    await self._mark_failed(run_id, e.node_id)
                    return
                except Exception as e:
                    logger.error(f"[EXECUTOR] Error starting execution for run {run_id}: {e!r}")
                    await self._mark_failed(run_id, None)
                    return

            await self._step_loop(run_id)

    async def resume(self, run_id: str) -> None:
        """
        Continue a run from its persisted position.

        No-op for runs that are already COMPLETED or FAILED.
        """
        async with self._lock_for(run_id):
            await self._step_loop(run_id)

    async def resume_after_delay(
        self,
        run_id: str,
        next_node_id: str | None,
        delay_node_id: str | None = None,
    ) -> None:
        """
        Timer callback: move a suspended run past its delay and continue.

        Persists the run at ``next_node_id`` (or COMPLETED when None) before
        stepping. Stale and duplicate fires are no-ops: the run must still
        be waiting at a DELAY node whose successor is ``next_node_id``
        (and, when given, that node must be ``delay_node_id``).

        Args:
            run_id: Run to resume
            next_node_id: Successor of the delay node, None to complete
            delay_node_id: Delay node that armed the timer
        """
        async with self._lock_for(run_id):
            run = await self._store.get_run(run_id)
            if run is None:
                logger.error(f"[EXECUTOR] Run {run_id} not found after delay")
                return

            if run.is_terminal:
                logger.info(f"[EXECUTOR] Run {run_id} is already {run.status}, ignoring timer")
                return

            try:
                if not await self._is_parked_at(run, delay_node_id, next_node_id):
                    logger.warning(
                        f"[EXECUTOR] Ignoring stale timer for run {run_id}: "
                        f"run is at {run.current_node_id}, timer was for {delay_node_id}"
                    )
                    return

                if next_node_id is None:
                    await self._store.update_run_status_and_node(
                        run_id, RunStatus.COMPLETED, None
                    )
                    logger.info(f"[EXECUTOR] Journey run {run_id} completed after delay")
                    return

                journey = await self._load_journey(run)
                if journey.get_node(next_node_id) is None:
                    raise UnresolvedReference(journey.id, next_node_id)

                await self._store.update_run_status_and_node(
                    run_id, RunStatus.IN_PROGRESS, next_node_id
                )
            except Exception as e:
                logger.error(f"[EXECUTOR] Error resuming run {run_id} after delay: {e!r}")
                await self._mark_failed(run_id, run.current_node_id)
                return

            await self._step_loop(run_id)

    def cancel(self, run_id: str) -> bool:
        """
        Stop a run's pending delay timer.

        The run's status is left unchanged; a cancelled run stays
        IN_PROGRESS at its delay node.

        Returns:
            True if a pending timer was cancelled
        """
        cancelled = self._scheduler.cancel(run_id)
        if cancelled:
            logger.info(f"[EXECUTOR] Cancelled run {run_id}")
        return cancelled

    async def recover(self) -> int:
        """
        Re-arm delay timers lost on restart.

        For every IN_PROGRESS run with a persisted waiting deadline: resume
        now if the deadline has passed, otherwise arm a timer for the time
        remaining. Runs whose delay node can no longer be resolved are
        marked FAILED.

        Returns:
            Number of runs re-armed
        """
        waiting = await self._store.get_waiting_runs()
        rearmed = 0

        for snapshot in waiting:
            async with self._lock_for(snapshot.id):
                if self._scheduler.is_scheduled(snapshot.id):
                    continue

                # The snapshot may be stale: a timer or resume may have moved the run on
                run = await self._store.get_run(snapshot.id)
                if run is None or not run.is_waiting:
                    continue

                journey = await self._store.get_journey(run.journey_id)
                node = journey.get_node(run.current_node_id) if journey is not None else None
                if not isinstance(node, DelayNode):
                    logger.error(
                        f"[RECOVERY] Run {run.id} waits at {run.current_node_id}, "
                        "which is not a delay node of its journey"
                    )
                    await self._mark_failed(run.id, run.current_node_id)
                    continue

                remaining = max(0.0, (run.wake_at - datetime.now(UTC)).total_seconds())
                self._scheduler.schedule(run.id, remaining, node.next_node_id, node.id)
                rearmed += 1
                logger.info(f"[RECOVERY] Re-armed run {run.id}: resuming in {remaining:.3f}s")

        if waiting:
            logger.info(f"[RECOVERY] Re-armed {rearmed} of {len(waiting)} waiting runs")
        return rearmed

    # ========================================================================
    # Step Loop
    # ========================================================================

    async def _step_loop(self, run_id: str) -> None:
        """Step a run until it is terminal or suspended. Caller holds the run lock."""
        node_id: str | None = None

        try:
            while True:
                run = await self._store.get_run(run_id)
                if run is None:
                    logger.error(f"[EXECUTOR] Run {run_id} not found")
                    return

                if run.is_terminal:
                    logger.info(f"[EXECUTOR] Run {run_id} is already {run.status}")
                    return

                node_id = run.current_node_id
                journey = await self._load_journey(run)
                node = journey.get_node(node_id)
                if node is None:
                    raise UnresolvedReference(journey.id, node_id)

                logger.info(f"[EXECUTOR] Processing node {node.id} ({node.type}) for run {run_id}")

                transition = await interpret(run, node, self._channel)

                match transition:
                    case Advance(next_node_id):
                        # Dangling successor: fail here, still at the last valid node
                        if journey.get_node(next_node_id) is None:
                            raise UnresolvedReference(journey.id, next_node_id)
                        await self._store.update_run_status_and_node(
                            run_id, RunStatus.IN_PROGRESS, next_node_id
                        )

                    case Finish():
                        await self._store.update_run_status_and_node(
                            run_id, RunStatus.COMPLETED, None
                        )
                        logger.info(f"[EXECUTOR] Journey run {run_id} completed")
                        return

                    case Suspend(delay_seconds, next_node_id):
                        wake_at = datetime.now(UTC) + timedelta(seconds=delay_seconds)
                        await self._store.update_run_status_and_node(
                            run_id, RunStatus.IN_PROGRESS, node.id, wake_at=wake_at
                        )
                        self._scheduler.schedule(run_id, delay_seconds, next_node_id, node.id)
                        return

        except Exception as e:
            logger.error(f"[EXECUTOR] Error processing run {run_id} at node {node_id}: {e!r}")
            if node_id is None:
                # Failed before the first reload; keep the persisted position
                node_id = await self._last_known_node(run_id)
            await self._mark_failed(run_id, node_id)

    async def _load_journey(self, run: JourneyRun) -> Journey:
        journey = await self._store.get_journey(run.journey_id)
        if journey is None:
            raise UnresolvedReference(run.journey_id)
        return journey

    async def _is_parked_at(
        self, run: JourneyRun, delay_node_id: str | None, next_node_id: str | None
    ) -> bool:
        """True if ``run`` waits at the delay node a timer for ``next_node_id`` belongs to."""
        if not run.is_waiting:
            return False
        if delay_node_id is not None and run.current_node_id != delay_node_id:
            return False

        journey = await self._load_journey(run)
        node = journey.get_node(run.current_node_id)
        return isinstance(node, DelayNode) and node.next_node_id == next_node_id

    async def _last_known_node(self, run_id: str) -> str | None:
        """Persisted position of a run. A StorageError here propagates to the caller."""
        run = await self._store.get_run(run_id)
        return run.current_node_id if run is not None else None

    async def _mark_failed(self, run_id: str, node_id: str | None) -> None:
        """Persist FAILED. A StorageError here propagates to the caller."""
        self._scheduler.cancel(run_id)
        await self._store.update_run_status_and_node(run_id, RunStatus.FAILED, node_id)
        logger.error(f"[EXECUTOR] Journey run {run_id} failed at node {node_id}")
