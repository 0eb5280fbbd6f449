"""
Executor module - Runtime engine for journey runs.

This module contains the execution components:
- evaluator: Condition evaluation against a run context
- interpreter: Per-node-type state machine
- outcome: Transition union (Advance/Finish/Suspend)
- delay: In-process delay timers for suspended runs
- channel: MESSAGE node side-effect destinations
- coordinator: Drives runs from start to a terminal status
"""

from pyjourney.executor.channel import LoggingChannel, MessageChannel, RecordingChannel
from pyjourney.executor.coordinator import ExecutionCoordinator
from pyjourney.executor.delay import DelayScheduler, TimerError
from pyjourney.executor.evaluator import ABSENT, SUPPORTED_OPERATORS, evaluate, resolve_field
from pyjourney.executor.interpreter import interpret
from pyjourney.executor.outcome import Advance, Finish, Suspend, Transition, is_suspended

__all__ = [
    # Coordinator
    "ExecutionCoordinator",
    # Delay timers
    "DelayScheduler",
    "TimerError",
    # Interpreter and transitions
    "interpret",
    "Advance",
    "Finish",
    "Suspend",
    "Transition",
    "is_suspended",
    # Conditions
    "evaluate",
    "resolve_field",
    "ABSENT",
    "SUPPORTED_OPERATORS",
    # Channels
    "MessageChannel",
    "LoggingChannel",
    "RecordingChannel",
]
