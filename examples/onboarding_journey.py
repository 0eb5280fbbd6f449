"""
Onboarding journey example.

This example demonstrates:
- Building a journey from MESSAGE, DELAY and CONDITIONAL nodes
- Loading a journey from its stored (JSON) shape
- Triggering runs for several patients against the in-memory store
- Branching on nested context fields
- Waiting for delayed runs to finish

Scenario:
- Every patient gets a welcome message
- After a short delay, patients over 65 get a nurse call-back message,
  everyone else gets a link to the self-service portal
"""

import asyncio
import logging

from pyjourney import Engine, EngineConfig, Journey, RecordingChannel, configure_logging

configure_logging("INFO")
logger = logging.getLogger(__name__)

ONBOARDING = {
    "id": "onboarding-v1",
    "name": "Patient onboarding",
    "start_node_id": "welcome",
    "nodes": [
        {
            "id": "welcome",
            "type": "MESSAGE",
            "message": "Welcome to the clinic!",
            "next_node_id": "wait",
        },
        {"id": "wait", "type": "DELAY", "delay_seconds": 1, "next_node_id": "by_age"},
        {
            "id": "by_age",
            "type": "CONDITIONAL",
            "condition": {"field": "patient.age", "operator": ">", "value": 65},
            "on_true_next_node_id": "nurse",
            "on_false_next_node_id": "portal",
        },
        {"id": "nurse", "type": "MESSAGE", "message": "A nurse will call you today."},
        {"id": "portal", "type": "MESSAGE", "message": "Manage your care at the portal."},
    ],
}

PATIENTS = [
    {"patient_id": "p-100", "patient": {"age": 72}},
    {"patient_id": "p-101", "patient": {"age": 34}},
    {"patient_id": "p-102", "patient": {"age": "81"}},
]


async def main():
    channel = RecordingChannel()

    async with await Engine.open(EngineConfig(storage="memory"), channel=channel) as engine:
        journey_id = await engine.create_journey(Journey.from_dict(ONBOARDING))

        run_ids = [await engine.trigger(journey_id, context) for context in PATIENTS]
        logger.info(f"Triggered {len(run_ids)} runs, all waiting on the delay")

        for run_id in run_ids:
            await asyncio.wait_for(engine.store.wait_for_terminal(run_id), timeout=10)

        for run_id, context in zip(run_ids, PATIENTS, strict=True):
            run = await engine.get_run(run_id)
            print(f"{context['patient_id']}: {run.status} -> {channel.messages_for(run_id)}")


if __name__ == "__main__":
    asyncio.run(main())
