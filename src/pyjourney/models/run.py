"""Journey run: one execution of a journey against a patient context."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from uuid_extensions import uuid7

from pyjourney.models.status import RunStatus


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class JourneyRun:
    """Execution state of one journey run.

    Runs are snapshots: the coordinator reloads a run from storage before
    every step and never trusts an earlier in-memory copy, since a
    resumption may happen long after the run was suspended.

    Invariants:
        - IN_PROGRESS: current_node_id names an existing journey node
          (or is None before the run has been started)
        - COMPLETED: current_node_id is None
        - FAILED: current_node_id is the last node the engine attempted
    """

    id: str
    """Unique run identifier."""

    journey_id: str
    """Journey this run executes."""

    context: dict[str, Any] = field(default_factory=dict)
    """Open, string-keyed patient context read by conditional nodes."""

    status: RunStatus = RunStatus.IN_PROGRESS
    """Current lifecycle status."""

    current_node_id: str | None = None
    """Node the run is at (None before start and after completion)."""

    created_at: datetime = field(default_factory=_utcnow)
    """When the run was created."""

    updated_at: datetime = field(default_factory=_utcnow)
    """When the run's status or position last changed."""

    wake_at: datetime | None = None
    """Deadline of the pending delay, None unless the run is waiting on a timer."""

    @classmethod
    def create(cls, journey_id: str, context: dict[str, Any] | None = None) -> JourneyRun:
        """Create a fresh IN_PROGRESS run with a minted id and unset position."""
        return cls(
            id=str(uuid7()),
            journey_id=journey_id,
            context=copy.deepcopy(context) if context else {},
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_waiting(self) -> bool:
        """True if the run is suspended on a delay."""
        return self.status == RunStatus.IN_PROGRESS and self.wake_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "journey_id": self.journey_id,
            "context": copy.deepcopy(self.context),
            "status": self.status.value,
            "current_node_id": self.current_node_id,
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _format_timestamp(self.updated_at),
            "wake_at": _format_timestamp(self.wake_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JourneyRun:
        now = _utcnow()
        return cls(
            id=data["id"],
            journey_id=data["journey_id"],
            context=copy.deepcopy(data.get("context") or {}),
            status=RunStatus(data.get("status", RunStatus.IN_PROGRESS.value)),
            current_node_id=data.get("current_node_id"),
            created_at=_parse_timestamp(data.get("created_at")) or now,
            updated_at=_parse_timestamp(data.get("updated_at")) or now,
            wake_at=_parse_timestamp(data.get("wake_at")),
        )

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"JourneyRun(id={self.id!r}, journey_id={self.journey_id!r}, "
            f"status={self.status}, current_node_id={self.current_node_id!r})"
        )
