"""
Delay scheduling for suspended journey runs.

DELAY nodes suspend a run outside the normal call stack: the coordinator
persists the run as waiting, hands the delay to the DelayScheduler and
returns. When the timer fires, the scheduler calls back into the
coordinator, which re-enters the step loop for that run.

Timer table:
    run_id → asyncio.Task sleeping for the delay

Invariants:
- At most one live timer per run id. Scheduling a run that already has a
  timer cancels the old one first.
- A firing timer removes its own entry before calling back, so a cancel()
  issued after firing is a harmless no-op and the callback may schedule a
  new timer for the same run.

Timers live in process memory and do not survive a restart. The waiting
deadline persisted on the run lets ExecutionCoordinator.recover() re-arm
them after one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

__all__ = ["DelayScheduler", "ResumeCallback", "TimerError"]

ResumeCallback = Callable[[str, str | None, str | None], Awaitable[None]]
"""Called with (run_id, next_node_id, delay_node_id) when a delay elapses."""


class DelayScheduler:
    """
    Owns the pending delay timers of every suspended run.

    Usage:
        scheduler = DelayScheduler(coordinator.resume_after_delay)
        scheduler.schedule(run_id, 2.0, "m1")   # returns immediately
        scheduler.cancel(run_id)                # best effort

    The coordinator binds itself as the callback when constructed, so most
    code never calls bind() directly.
    """

    def __init__(self, on_fire: ResumeCallback | None = None):
        self._on_fire = on_fire
        self._timers: dict[str, asyncio.Task] = {}

    def bind(self, on_fire: ResumeCallback) -> None:
        """Set the callback invoked when a timer fires."""
        self._on_fire = on_fire

    def schedule(
        self,
        run_id: str,
        delay_seconds: float,
        next_node_id: str | None,
        delay_node_id: str | None = None,
    ) -> None:
        """
        Arm a timer that resumes ``run_id`` at ``next_node_id`` after a delay.

        Does not block: the timer runs as a task on the current event loop.
        Any timer already pending for the run is cancelled first.

        Args:
            run_id: Run to resume
            delay_seconds: Delay in seconds (0 resumes on the next loop iteration)
            next_node_id: Node to resume at, None to complete the run
            delay_node_id: Delay node the run is parked at, passed back to
                the callback so it can tell a stale timer from a live one

        Raises:
            TimerError: If no callback is bound or the delay is negative
        """
        if self._on_fire is None:
            raise TimerError("No resume callback bound. Call bind() first.")
        if delay_seconds < 0:
            raise TimerError(f"Delay must be >= 0, got {delay_seconds}")

        if self.cancel(run_id):
            logger.warning(f"[DELAY] Replaced pending timer for run {run_id}")

        task = asyncio.get_running_loop().create_task(
            self._fire_after(run_id, delay_seconds, next_node_id, delay_node_id),
            name=f"delay:{run_id}",
        )
        task.add_done_callback(self._log_failure)
        self._timers[run_id] = task

        logger.debug(f"[DELAY] Armed {delay_seconds}s timer for run {run_id} -> {next_node_id}")

    def cancel(self, run_id: str) -> bool:
        """
        Stop the pending timer of a run, if any.

        Does not change the run's status: a run whose timer is cancelled
        stays IN_PROGRESS until something resumes or fails it.

        Returns:
            True if a pending timer was cancelled, False if there was none
        """
        task = self._timers.pop(run_id, None)
        if task is None:
            return False
        task.cancel()
        logger.debug(f"[DELAY] Cancelled timer for run {run_id}")
        return True

    def is_scheduled(self, run_id: str) -> bool:
        """Return True if the run has a live timer."""
        return run_id in self._timers

    def active_count(self) -> int:
        """Number of live timers (for monitoring)."""
        return len(self._timers)

    async def shutdown(self) -> None:
        """Cancel every pending timer and wait for the tasks to finish.

        Runs stay IN_PROGRESS with their waiting deadline persisted, so a
        later recover() picks them up again.
        """
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"[DELAY] Cancelling {len(tasks)} pending timers")
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _fire_after(
        self,
        run_id: str,
        delay_seconds: float,
        next_node_id: str | None,
        delay_node_id: str | None,
    ) -> None:
        await asyncio.sleep(delay_seconds)

        # Remove our own entry only; a newer timer may already own the slot
        if self._timers.get(run_id) is asyncio.current_task():
            del self._timers[run_id]

        logger.info(f"[DELAY] Delay completed for run {run_id}, resuming execution")
        await self._on_fire(run_id, next_node_id, delay_node_id)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[DELAY] Resumption failed for {task.get_name()}: {error!r}")


class TimerError(Exception):
    """
    Timer operation failed.

    Custom exception with context, not generic Exception.
    """

    pass
