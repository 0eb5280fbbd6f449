"""
Step transitions produced by the node interpreter.

This module defines the Transition state machine for a single step.

**Design Pattern**: State Machine using Union types

Every step ends in exactly one of three ways, and the coordinator drives a
single loop over them instead of mixing recursion (for immediate steps)
with callbacks (for delays):

- Advance: continue immediately at another node
- Finish: the journey is complete
- Suspend: wait for a delay, then continue at another node (or finish)

Example:
    ```python
    transition = await interpret(run, node, channel)

    match transition:
        case Advance(node_id):
            print(f"next: {node_id}")
        case Finish():
            print("done")
        case Suspend(delay_seconds, next_node_id):
            print(f"sleeping {delay_seconds}s before {next_node_id}")
    ```
"""

from dataclasses import dataclass

__all__ = [
    "Advance",
    "Finish",
    "Suspend",
    "Transition",
    "is_suspended",
]


@dataclass(frozen=True)
class Advance:
    """
    Continue immediately at ``node_id``.

    The coordinator persists ``(in_progress, node_id)`` and loops.
    """

    node_id: str

    def __str__(self) -> str:
        return f"Advance({self.node_id})"


@dataclass(frozen=True)
class Finish:
    """
    The journey has no further node.

    The coordinator persists ``(completed, None)`` and stops.
    """

    def __str__(self) -> str:
        return "Finish()"


@dataclass(frozen=True)
class Suspend:
    """
    Wait ``delay_seconds``, then continue at ``next_node_id``.

    The run stays ``(in_progress, <delay node>)`` while suspended. A None
    ``next_node_id`` completes the run when the delay elapses.

    Attributes:
        delay_seconds: How long to wait (>= 0)
        next_node_id: Node to resume at, None to complete on fire
    """

    delay_seconds: float
    next_node_id: str | None = None

    def __str__(self) -> str:
        return f"Suspend({self.delay_seconds}s -> {self.next_node_id})"


# =============================================================================
# TRANSITION UNION TYPE
# =============================================================================

# Pattern matching:
#     match transition:
#         case Advance(node_id): ...
#         case Finish(): ...
#         case Suspend(delay_seconds, next_node_id): ...
#
Transition = Advance | Finish | Suspend


def is_suspended(transition: Transition) -> bool:
    """Type guard: True if the step suspended on a delay."""
    return isinstance(transition, Suspend)
