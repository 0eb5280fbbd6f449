"""Journey definition: a named, immutable graph of nodes."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from uuid_extensions import uuid7

from pyjourney.models.node import Node, node_from_dict


@dataclass(frozen=True)
class Journey:
    """Immutable journey definition.

    Nodes are keyed by their unique id; insertion order carries no meaning.
    Successor references are assumed to be consistent (validated when the
    journey is authored, not when it is executed).

    Design: Value Object
        A journey never changes after creation, so runs can resolve nodes
        against it without copying.
    """

    id: str
    """Unique journey identifier (uuid7 string when minted by create())."""

    name: str
    """Human-readable journey name."""

    start_node_id: str
    """Node every new run starts at."""

    nodes: Mapping[str, Node] = field(default_factory=dict)
    """Nodes keyed by node id."""

    def __post_init__(self) -> None:
        # Accept any iterable of nodes and freeze it into a read-only mapping
        nodes = self.nodes
        if not isinstance(nodes, Mapping):
            nodes = {node.id: node for node in nodes}
        object.__setattr__(self, "nodes", MappingProxyType(dict(nodes)))

    @classmethod
    def create(cls, name: str, start_node_id: str, nodes: Iterable[Node]) -> Journey:
        """Create a journey with a freshly minted id."""
        return cls(id=str(uuid7()), name=name, start_node_id=start_node_id, nodes=list(nodes))

    def get_node(self, node_id: str | None) -> Node | None:
        """Resolve a node id, returning None when it is unset or unknown."""
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "start_node_id": self.start_node_id,
            "nodes": [node.to_dict() for node in self.nodes.values()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Journey:
        """Build a journey from its stored shape.

        Raises:
            ValueError: If a node has an unknown type or is malformed
        """
        return cls(
            id=data["id"],
            name=data["name"],
            start_node_id=data["start_node_id"],
            nodes=[node_from_dict(node) for node in data.get("nodes", [])],
        )

    def __repr__(self) -> str:
        return (
            f"Journey(id={self.id!r}, name={self.name!r}, "
            f"start_node_id={self.start_node_id!r}, nodes={len(self.nodes)})"
        )
