"""Core data models for journey execution.

Defines the journey graph (nodes and journeys) and the run state that the
engine advances.

Design: Dependency-Free Models
These types have no dependencies on executor or storage modules to
prevent circular imports and enable clean layering.
"""

from pyjourney.models.journey import Journey
from pyjourney.models.node import (
    NODE_TYPES,
    Condition,
    ConditionalNode,
    DelayNode,
    MessageNode,
    Node,
    node_from_dict,
)
from pyjourney.models.run import JourneyRun
from pyjourney.models.status import RunStatus

__all__ = [
    "Journey",
    "JourneyRun",
    "RunStatus",
    "Node",
    "NODE_TYPES",
    "Condition",
    "MessageNode",
    "DelayNode",
    "ConditionalNode",
    "node_from_dict",
]
