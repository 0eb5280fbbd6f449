"""
Delayed reminder with SQLite storage and restart recovery.

This example demonstrates:
- Durable run state in a SQLite database
- A process "crash" while a run is suspended on a delay
- Recovery on the next Engine.open(): the timer is re-armed for the
  remaining time and the run completes

Run it twice in a row to watch the second invocation recover nothing,
since every run from the first one already completed.
"""

import asyncio
import logging

from pyjourney import (
    DelayNode,
    Engine,
    EngineConfig,
    Journey,
    MessageNode,
    RunStatus,
    configure_logging,
)

configure_logging("INFO")
logger = logging.getLogger(__name__)

DB_PATH = "data/reminders.db"


async def main():
    config = EngineConfig(storage="sqlite", db_path=DB_PATH)

    # Phase 1: start a run and stop while it's waiting
    engine = await Engine.open(config)
    journey = Journey.create(
        "Medication reminder",
        "wait",
        [
            DelayNode("wait", 2, "remind"),
            MessageNode("remind", "Time to take your medication."),
        ],
    )
    await engine.create_journey(journey)
    run_id = await engine.trigger(journey.id, {"patient_id": "p-7"})
    logger.info(f"Run {run_id} suspended: {await engine.get_run(run_id)}")
    await engine.close()

    # Phase 2: reopen; recovery re-arms the timer
    async with await Engine.open(config) as engine:
        while (run := await engine.get_run(run_id)).status == RunStatus.IN_PROGRESS:
            await asyncio.sleep(0.1)
        print(f"Run {run_id} finished after restart: {run.status}")


if __name__ == "__main__":
    asyncio.run(main())
