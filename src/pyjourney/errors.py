"""Execution-time errors raised inside the journey engine.

Raised while a run is being stepped, these are caught at the coordinator
boundary and turned into a FAILED run. The exception is trigger(): an
unknown journey id raises UnresolvedReference to the caller and no run
is created.
Storage failures live with the storage contract (pyjourney.storage.base).
"""

from __future__ import annotations


class JourneyError(Exception):
    """Base class for journey execution errors."""

    pass


class UnresolvedReference(JourneyError):  # noqa: N818
    """The run's journey, or the node it points at, cannot be found.

    Surfaces structural inconsistencies (dangling successor ids) at the
    point execution reaches them.

    Attributes:
        journey_id: Journey that was being resolved
        node_id: Node id that could not be resolved, None if the journey itself is missing
    """

    def __init__(self, journey_id: str, node_id: str | None = None):
        self.journey_id = journey_id
        self.node_id = node_id
        if node_id is None:
            message = f"Journey {journey_id} not found"
        else:
            message = f"Node {node_id} not found in journey {journey_id}"
        super().__init__(message)


class UnsupportedOperator(JourneyError):  # noqa: N818
    """A condition names a comparison operator the evaluator does not support."""

    def __init__(self, operator: str):
        self.operator = operator
        super().__init__(f"Unsupported operator: {operator}")
