"""Node interpreter: the per-node-type state machine.

Given the current node and a run snapshot, computes the transition the run
should take and performs the node's side effect. The interpreter never
touches storage; persisting the transition is the coordinator's job.

Transition rules:
    MESSAGE      send message; next set → Advance(next), else Finish
    DELAY        Suspend(delay_seconds, next); run stays at the delay node
    CONDITIONAL  evaluate condition; chosen target set → Advance(target), else Finish
"""

from __future__ import annotations

import logging
from typing import assert_never

from pyjourney.executor.channel import MessageChannel
from pyjourney.executor.evaluator import evaluate
from pyjourney.executor.outcome import Advance, Finish, Suspend, Transition
from pyjourney.models import ConditionalNode, DelayNode, JourneyRun, MessageNode, Node

logger = logging.getLogger(__name__)

__all__ = ["interpret"]


def _advance_or_finish(node_id: str | None) -> Transition:
    return Advance(node_id) if node_id else Finish()


async def interpret(run: JourneyRun, node: Node, channel: MessageChannel) -> Transition:
    """Compute the transition for one step.

    Args:
        run: Fresh snapshot of the run being stepped
        node: The run's current node
        channel: Destination for MESSAGE side effects

    Returns:
        Advance, Finish, or Suspend

    Raises:
        UnsupportedOperator: If a conditional node names an unknown operator
        Exception: Whatever the message channel raises
    """
    match node:
        case MessageNode():
            await channel.send(run, node)
            return _advance_or_finish(node.next_node_id)

        case DelayNode():
            logger.info(f"[DELAY] Scheduling {node.delay_seconds}s delay for run {run.id}")
            return Suspend(node.delay_seconds, node.next_node_id)

        case ConditionalNode():
            condition = node.condition
            logger.info(f"[CONDITIONAL] Evaluating condition: {condition}")
            result = evaluate(run.context, condition.field, condition.operator, condition.value)
            logger.info(f"[CONDITIONAL] Result: {result}")
            return _advance_or_finish(node.true_node_id if result else node.false_node_id)

        case _:
            assert_never(node)
