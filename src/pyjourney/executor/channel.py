"""Message channels: where MESSAGE nodes hand off their text.

Delivery to a real patient channel (SMS, email, voice) belongs to the
embedding application. The engine only guarantees the channel is called
once per MESSAGE step it processes; it does not guarantee exactly-once
delivery across crashes.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from pyjourney.models import JourneyRun, MessageNode

logger = logging.getLogger(__name__)

__all__ = ["MessageChannel", "LoggingChannel", "RecordingChannel"]


@runtime_checkable
class MessageChannel(Protocol):
    """Protocol for MESSAGE node side effects."""

    async def send(self, run: JourneyRun, node: MessageNode) -> None:
        """Deliver ``node.message`` for ``run``.

        Exceptions propagate to the coordinator, which fails the run.
        """
        ...


class LoggingChannel:
    """Default channel: writes the message to the log."""

    async def send(self, run: JourneyRun, node: MessageNode) -> None:
        patient_id = run.context.get("patient_id", run.context.get("id"))
        logger.info(f"[MESSAGE] run={run.id} patient={patient_id} node={node.id}: {node.message}")


class RecordingChannel:
    """Channel that keeps every message in memory.

    Useful in tests and for applications that drain messages in batches.

    Usage:
        channel = RecordingChannel()
        coordinator = ExecutionCoordinator(store, channel=channel)
        ...
        assert channel.messages_for(run_id) == ["Welcome!"]
    """

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        """(run_id, node_id, message) in send order."""

    async def send(self, run: JourneyRun, node: MessageNode) -> None:
        self.sent.append((run.id, node.id, node.message))

    def messages_for(self, run_id: str) -> list[str]:
        return [message for rid, _, message in self.sent if rid == run_id]

    def nodes_for(self, run_id: str) -> list[str]:
        """Node ids whose messages were sent for a run, in order."""
        return [node_id for rid, node_id, _ in self.sent if rid == run_id]

    def __len__(self) -> int:
        return len(self.sent)
