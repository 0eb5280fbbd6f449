"""
pyjourney - Journey execution engine for patient engagement flows.

A journey is a stored graph of MESSAGE, DELAY and CONDITIONAL nodes. The
engine advances one run of a journey at a time against a per-run patient
context, persisting progress after every step and suspending runs on
delay timers without blocking the event loop.

Example:
    ```python
    import asyncio
    from pyjourney import (
        Condition, ConditionalNode, Engine, EngineConfig, Journey, MessageNode,
    )

    journey = Journey.create(
        "onboarding",
        "c1",
        [
            ConditionalNode("c1", Condition("age", ">", 65), "senior", "general"),
            MessageNode("senior", "Welcome! A nurse will call you today."),
            MessageNode("general", "Welcome!"),
        ],
    )

    async def main():
        async with await Engine.open(EngineConfig(storage="memory")) as engine:
            await engine.create_journey(journey)
            run_id = await engine.trigger(journey.id, {"age": 70})
            print(await engine.get_run(run_id))

    asyncio.run(main())
    ```
"""

from pyjourney.config import EngineConfig, configure_logging, open_store
from pyjourney.engine import Engine
from pyjourney.errors import JourneyError, UnresolvedReference, UnsupportedOperator
from pyjourney.executor import (
    DelayScheduler,
    ExecutionCoordinator,
    LoggingChannel,
    MessageChannel,
    RecordingChannel,
    TimerError,
    evaluate,
    interpret,
)
from pyjourney.models import (
    Condition,
    ConditionalNode,
    DelayNode,
    Journey,
    JourneyRun,
    MessageNode,
    Node,
    RunStatus,
    node_from_dict,
)
from pyjourney.storage import InMemoryJourneyStore, JourneyStore, StorageError

__version__ = "0.1.0"

__all__ = [
    # Engine
    "Engine",
    "EngineConfig",
    "configure_logging",
    "open_store",
    "ExecutionCoordinator",
    "DelayScheduler",
    "interpret",
    "evaluate",
    # Channels
    "MessageChannel",
    "LoggingChannel",
    "RecordingChannel",
    # Models
    "Journey",
    "JourneyRun",
    "RunStatus",
    "Node",
    "Condition",
    "MessageNode",
    "DelayNode",
    "ConditionalNode",
    "node_from_dict",
    # Storage
    "JourneyStore",
    "InMemoryJourneyStore",
    "StorageError",
    # Errors
    "JourneyError",
    "UnresolvedReference",
    "UnsupportedOperator",
    "TimerError",
]
