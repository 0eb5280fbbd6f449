"""
Pytest configuration and fixtures for pyjourney tests.

Provides reusable fixtures for storage backends, sample journeys, and the
coordinator wired to a recording message channel.
"""

import shutil
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from hypothesis import strategies as st

from pyjourney.executor import DelayScheduler, ExecutionCoordinator, RecordingChannel
from pyjourney.models import (
    Condition,
    ConditionalNode,
    DelayNode,
    Journey,
    MessageNode,
)
from pyjourney.storage import InMemoryJourneyStore, SqliteJourneyStore


@pytest.fixture
async def in_memory_store() -> AsyncGenerator[InMemoryJourneyStore, None]:
    """Async in-memory store fixture with automatic cleanup."""
    store = InMemoryJourneyStore()
    yield store
    await store.reset()


@pytest.fixture
async def sqlite_memory_store() -> AsyncGenerator[SqliteJourneyStore, None]:
    """Async SQLite in-memory store fixture with automatic cleanup."""
    store = SqliteJourneyStore(":memory:")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "test.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
async def sqlite_file_store(temp_db_path: Path) -> AsyncGenerator[SqliteJourneyStore, None]:
    """Async SQLite file-based store fixture with automatic cleanup."""
    store = SqliteJourneyStore(str(temp_db_path))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
async def coordinator(
    in_memory_store: InMemoryJourneyStore, channel: RecordingChannel
) -> AsyncGenerator[ExecutionCoordinator, None]:
    """Coordinator over the in-memory store; pending timers are cancelled on teardown."""
    scheduler = DelayScheduler()
    coordinator = ExecutionCoordinator(in_memory_store, scheduler, channel)
    yield coordinator
    await scheduler.shutdown()


# Sample journeys for reuse across tests


def single_message_journey() -> Journey:
    """{m1: Message "hi" -> null}"""
    return Journey(
        id="journey-message",
        name="Single message",
        start_node_id="m1",
        nodes=[MessageNode("m1", "hi")],
    )


def age_branch_journey() -> Journey:
    """{c1: age > 65 -> senior | general; both messages end the journey}"""
    return Journey(
        id="journey-age",
        name="Age branch",
        start_node_id="c1",
        nodes=[
            ConditionalNode("c1", Condition("age", ">", 65), "senior", "general"),
            MessageNode("senior", "Senior care plan"),
            MessageNode("general", "General care plan"),
        ],
    )


def delay_journey(delay_seconds: float = 0.05) -> Journey:
    """{d1: Delay -> m1; m1: Message -> null}"""
    return Journey(
        id="journey-delay",
        name="Delayed reminder",
        start_node_id="d1",
        nodes=[
            DelayNode("d1", delay_seconds, "m1"),
            MessageNode("m1", "Time for your check-in"),
        ],
    )


def message_chain_journey(length: int) -> Journey:
    """m0 -> m1 -> ... -> m{length-1} -> null"""
    nodes = [
        MessageNode(f"m{i}", f"message {i}", f"m{i + 1}" if i + 1 < length else None)
        for i in range(length)
    ]
    return Journey(id=f"journey-chain-{length}", name="Chain", start_node_id="m0", nodes=nodes)


@pytest.fixture
def message_journey() -> Journey:
    return single_message_journey()


@pytest.fixture
def branch_journey() -> Journey:
    return age_branch_journey()


@pytest.fixture
def short_delay_journey() -> Journey:
    return delay_journey(0.05)


# Hypothesis strategies for property-based testing

scalar_values = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(10**6), max_value=10**6),
    st.floats(allow_nan=False, allow_infinity=False, width=32),
    st.text(max_size=8),
    st.integers(min_value=-1000, max_value=1000).map(str),
)

field_names = st.text(
    min_size=1, max_size=10, alphabet=st.characters(whitelist_categories=("Lu", "Ll"))
)
