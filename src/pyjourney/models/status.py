"""Status enumeration for journey run tracking.

Defines the lifecycle states of a single journey run.
"""

from enum import Enum


class RunStatus(Enum):
    """Status of a journey run.

    Lifecycle:
        IN_PROGRESS → COMPLETED
        IN_PROGRESS → FAILED

    A run that is waiting on a delay is still IN_PROGRESS; the waiting
    deadline is tracked separately on the run (``wake_at``).

    Design: No Resume From Failure
        FAILED is terminal. Recovering from a failure means creating a
        new run from the journey's start node.
    """

    IN_PROGRESS = "in_progress"
    """Run is stepping through nodes or waiting on a delay."""

    COMPLETED = "completed"
    """Run reached the end of the journey (current_node_id is None)."""

    FAILED = "failed"
    """Run hit an unrecoverable error (current_node_id is the last node attempted)."""

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (no further transitions)."""
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)

    def __str__(self) -> str:
        return self.value
