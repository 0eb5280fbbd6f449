"""Journey node types.

A node is one step in a journey. Nodes form a tagged union of three
immutable dataclasses, discriminated on the stored ``type`` field:

    MESSAGE      emit a message, then continue or terminate
    DELAY        suspend for a duration, then continue or terminate
    CONDITIONAL  branch on a comparison against the run context

Design: State Machine using Union types
``Node`` is a closed union, so the interpreter can match on the concrete
class and an unknown node type is rejected once, at parse time, instead
of surfacing as a runtime failure in the middle of a run.

Example:
    ```python
    node = node_from_dict({"id": "m1", "type": "MESSAGE", "message": "hi"})

    match node:
        case MessageNode(message=text):
            print(text)
        case DelayNode(delay_seconds=seconds):
            print(f"waiting {seconds}s")
    ```
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

__all__ = [
    "Condition",
    "MessageNode",
    "DelayNode",
    "ConditionalNode",
    "Node",
    "NODE_TYPES",
    "node_from_dict",
]


@dataclass(frozen=True)
class Condition:
    """Comparison of a context field against a literal value."""

    field: str
    """Field path into the run context, e.g. ``"age"`` or ``"patient.age"``."""

    operator: str
    """Comparison operator (``>``, ``<``, ``>=``, ``<=``, ``=``, ``==``, ``!=``)."""

    value: Any = None
    """Literal the resolved field value is compared against."""

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(field=data["field"], operator=data["operator"], value=data.get("value"))

    def __str__(self) -> str:
        return f"{self.field} {self.operator} {self.value!r}"


@dataclass(frozen=True)
class MessageNode:
    """Emit a message to the patient, then move on."""

    id: str
    message: str
    next_node_id: str | None = None

    type = "MESSAGE"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "next_node_id": self.next_node_id,
        }


@dataclass(frozen=True)
class DelayNode:
    """Suspend the run for ``delay_seconds``, then move on."""

    id: str
    delay_seconds: float
    next_node_id: str | None = None

    type = "DELAY"

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ValueError(
                f"DELAY node {self.id!r} has negative delay_seconds: {self.delay_seconds}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "delay_seconds": self.delay_seconds,
            "next_node_id": self.next_node_id,
        }


@dataclass(frozen=True)
class ConditionalNode:
    """Branch on a condition evaluated against the run context.

    A ``None`` branch target ends the journey when that branch is taken.
    """

    id: str
    condition: Condition
    true_node_id: str | None = None
    false_node_id: str | None = None

    type = "CONDITIONAL"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "condition": self.condition.to_dict(),
            "true_node_id": self.true_node_id,
            "false_node_id": self.false_node_id,
        }


Node = MessageNode | DelayNode | ConditionalNode

NODE_TYPES: tuple[str, ...] = (MessageNode.type, DelayNode.type, ConditionalNode.type)


def node_from_dict(data: dict[str, Any]) -> Node:
    """Parse a stored node shape into its concrete node class.

    Conditional branches are read from ``true_node_id``/``false_node_id``;
    the authoring names ``on_true_next_node_id``/``on_false_next_node_id``
    are accepted as well.

    Args:
        data: Node mapping with at least ``id`` and ``type``

    Returns:
        MessageNode, DelayNode, or ConditionalNode

    Raises:
        ValueError: If the node type is unknown or required fields are missing
    """
    node_type = data.get("type")
    node_id = data.get("id")

    try:
        match node_type:
            case "MESSAGE":
                return MessageNode(
                    id=node_id,
                    message=data["message"],
                    next_node_id=data.get("next_node_id"),
                )
            case "DELAY":
                return DelayNode(
                    id=node_id,
                    delay_seconds=data["delay_seconds"],
                    next_node_id=data.get("next_node_id"),
                )
            case "CONDITIONAL":
                return ConditionalNode(
                    id=node_id,
                    condition=Condition.from_dict(data["condition"]),
                    true_node_id=data.get("true_node_id", data.get("on_true_next_node_id")),
                    false_node_id=data.get("false_node_id", data.get("on_false_next_node_id")),
                )
    except KeyError as e:
        raise ValueError(f"{node_type} node {node_id!r} is missing field {e.args[0]!r}") from e

    raise ValueError(f"Node {node_id!r} has unknown type {node_type!r}")
