"""
Execution coordinator tests.

Covers the end-to-end run lifecycle:
- immediate journeys run to completion without real time passing
- conditional branching
- suspension on delays and resumption by the scheduler
- dangling references and other step failures becoming FAILED runs
- per-run serialization of racing resumptions
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from conftest import (
    age_branch_journey,
    delay_journey,
    message_chain_journey,
    single_message_journey,
)

from pyjourney.errors import UnresolvedReference
from pyjourney.executor import DelayScheduler, ExecutionCoordinator, RecordingChannel
from pyjourney.models import (
    Condition,
    ConditionalNode,
    DelayNode,
    Journey,
    JourneyRun,
    MessageNode,
    RunStatus,
)
from pyjourney.storage import InMemoryJourneyStore, StorageError


class HistoryStore(InMemoryJourneyStore):
    """In-memory store that records every (status, node) write."""

    def __init__(self):
        super().__init__()
        self.history: list[tuple[RunStatus, str | None]] = []

    async def update_run_status_and_node(self, run_id, status, node_id, wake_at=None):
        await super().update_run_status_and_node(run_id, status, node_id, wake_at)
        self.history.append((status, node_id))


async def wait_terminal(store: InMemoryJourneyStore, run_id: str) -> JourneyRun:
    await asyncio.wait_for(store.wait_for_terminal(run_id), timeout=5)
    return await store.get_run(run_id)


# ==============================================================================
# Scenario A: single message
# ==============================================================================


@pytest.mark.asyncio
async def test_single_message_journey_completes():
    store = HistoryStore()
    channel = RecordingChannel()
    coordinator = ExecutionCoordinator(store, channel=channel)
    journey = single_message_journey()
    await store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id, {"patient_id": "p-1"})

    run = await store.get_run(run_id)
    assert run.status == RunStatus.COMPLETED
    assert run.current_node_id is None
    assert store.history == [(RunStatus.IN_PROGRESS, "m1"), (RunStatus.COMPLETED, None)]
    assert channel.messages_for(run_id) == ["hi"]


@pytest.mark.asyncio
async def test_empty_recording_channel_is_used(in_memory_store):
    channel = RecordingChannel()
    assert len(channel) == 0

    coordinator = ExecutionCoordinator(in_memory_store, channel=channel)
    journey = single_message_journey()
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    assert channel.messages_for(run_id) == ["hi"]
    assert len(channel) == 1


@pytest.mark.asyncio
async def test_long_message_chain_completes(coordinator, in_memory_store, channel):
    """The step loop iterates rather than recursing once per node."""
    journey = message_chain_journey(3000)
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.COMPLETED
    assert len(channel.messages_for(run_id)) == 3000


# ==============================================================================
# Scenario B: conditional branching
# ==============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("age,expected_node", [(70, "senior"), (40, "general"), (65, "general")])
async def test_age_branch(coordinator, in_memory_store, channel, age, expected_node):
    journey = age_branch_journey()
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id, {"age": age})

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.COMPLETED
    assert channel.nodes_for(run_id) == [expected_node]


@pytest.mark.asyncio
async def test_null_branch_completes(coordinator, in_memory_store, channel):
    journey = Journey(
        "j-null",
        "Null branch",
        "c1",
        [
            ConditionalNode("c1", Condition("patient.vip", "=", True), "vip", None),
            MessageNode("vip", "VIP line"),
        ],
    )
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id, {"patient": {"vip": False}})

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.COMPLETED
    assert len(channel) == 0


# ==============================================================================
# Scenario C: delays
# ==============================================================================


@pytest.mark.asyncio
async def test_delay_suspends_then_completes(coordinator, in_memory_store, channel):
    journey = delay_journey(0.05)
    await in_memory_store.insert_journey(journey)

    before = datetime.now(UTC)
    run_id = await coordinator.trigger(journey.id)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.IN_PROGRESS
    assert run.current_node_id == "d1"
    assert run.wake_at is not None
    assert run.wake_at >= before + timedelta(seconds=0.05)
    assert coordinator.scheduler.is_scheduled(run_id)
    assert len(channel) == 0

    run = await wait_terminal(in_memory_store, run_id)
    assert run.status == RunStatus.COMPLETED
    assert run.current_node_id is None
    assert run.wake_at is None
    assert channel.messages_for(run_id) == ["Time for your check-in"]


@pytest.mark.asyncio
async def test_zero_delay_is_in_progress_when_scheduled(coordinator, in_memory_store):
    journey = delay_journey(0)
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.IN_PROGRESS
    assert run.current_node_id == "d1"

    run = await wait_terminal(in_memory_store, run_id)
    assert run.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_delay_without_successor_completes_on_fire(coordinator, in_memory_store):
    journey = Journey(
        "j-tail", "Tail delay", "m1", [MessageNode("m1", "hi", "d1"), DelayNode("d1", 0.01)]
    )
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await wait_terminal(in_memory_store, run_id)
    assert run.status == RunStatus.COMPLETED
    assert run.current_node_id is None


@pytest.mark.asyncio
async def test_consecutive_delays(coordinator, in_memory_store, channel):
    journey = Journey(
        "j-two-delays",
        "Two delays",
        "d1",
        [DelayNode("d1", 0.01, "d2"), DelayNode("d2", 0.01, "m1"), MessageNode("m1", "done")],
    )
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await wait_terminal(in_memory_store, run_id)
    assert run.status == RunStatus.COMPLETED
    assert channel.messages_for(run_id) == ["done"]


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_concurrent_runs_progress_independently(coordinator, in_memory_store, channel):
    journey = delay_journey(0.02)
    await in_memory_store.insert_journey(journey)

    run_ids = await asyncio.gather(
        *(coordinator.trigger(journey.id, {"patient_id": f"p-{i}"}) for i in range(20))
    )

    assert len(set(run_ids)) == 20
    for run_id in run_ids:
        run = await wait_terminal(in_memory_store, run_id)
        assert run.status == RunStatus.COMPLETED
    assert len(channel) == 20


# ==============================================================================
# Scenario D: dangling references and step failures
# ==============================================================================


@pytest.mark.asyncio
async def test_dangling_successor_fails_at_last_valid_node(coordinator, in_memory_store):
    journey = Journey("j-dangling", "Dangling", "m1", [MessageNode("m1", "hi", "ghost")])
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "m1"


@pytest.mark.asyncio
async def test_dangling_branch_target_fails_at_conditional(coordinator, in_memory_store):
    journey = Journey(
        "j-dangling-branch",
        "Dangling branch",
        "c1",
        [ConditionalNode("c1", Condition("age", ">", 65), "ghost", None)],
    )
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id, {"age": 90})

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "c1"


@pytest.mark.asyncio
async def test_dangling_delay_successor_fails_at_delay(coordinator, in_memory_store):
    journey = Journey("j-dangling-delay", "Dangling delay", "d1", [DelayNode("d1", 0, "ghost")])
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await wait_terminal(in_memory_store, run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "d1"


@pytest.mark.asyncio
async def test_missing_start_node_fails(coordinator, in_memory_store):
    journey = Journey("j-no-start", "No start", "nope", [MessageNode("m1", "hi")])
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "nope"


@pytest.mark.asyncio
async def test_missing_journey_fails_run(coordinator, in_memory_store):
    run = JourneyRun.create("deleted-journey")
    await in_memory_store.insert_run(run)

    await coordinator.start(run.id)

    stored = await in_memory_store.get_run(run.id)
    assert stored.status == RunStatus.FAILED
    assert stored.current_node_id is None


@pytest.mark.asyncio
async def test_trigger_unknown_journey_raises(coordinator, in_memory_store):
    with pytest.raises(UnresolvedReference) as exc_info:
        await coordinator.trigger("no-such-journey", {})

    assert exc_info.value.journey_id == "no-such-journey"
    assert await in_memory_store.get_runs_for_journey("no-such-journey") == []


@pytest.mark.asyncio
async def test_start_unknown_run_is_noop(coordinator):
    await coordinator.start("no-such-run")


@pytest.mark.asyncio
async def test_unsupported_operator_fails_run(coordinator, in_memory_store):
    journey = Journey(
        "j-bad-op",
        "Bad operator",
        "c1",
        [ConditionalNode("c1", Condition("age", "between", [1, 2]), None, None)],
    )
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id, {"age": 1})

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "c1"


@pytest.mark.asyncio
async def test_channel_failure_fails_run(in_memory_store):
    class FlakyGateway:
        async def send(self, run, node):
            if node.id == "m2":
                raise ConnectionError("gateway timeout")

    coordinator = ExecutionCoordinator(in_memory_store, channel=FlakyGateway())
    journey = message_chain_journey(4)
    await in_memory_store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "m2"


@pytest.mark.asyncio
async def test_storage_failure_mid_run_fails_run():
    class FailingAdvanceStore(InMemoryJourneyStore):
        async def update_run_status_and_node(self, run_id, status, node_id, wake_at=None):
            if node_id == "m2" and status == RunStatus.IN_PROGRESS:
                raise StorageError("disk full")
            await super().update_run_status_and_node(run_id, status, node_id, wake_at)

    store = FailingAdvanceStore()
    coordinator = ExecutionCoordinator(store, channel=RecordingChannel())
    journey = message_chain_journey(3)
    await store.insert_journey(journey)

    run_id = await coordinator.trigger(journey.id)

    run = await store.get_run(run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "m1"


@pytest.mark.asyncio
async def test_failure_write_error_propagates():
    class ReadOnlyStore(InMemoryJourneyStore):
        async def update_run_status_and_node(self, run_id, status, node_id, wake_at=None):
            raise StorageError("database is read-only")

    store = ReadOnlyStore()
    coordinator = ExecutionCoordinator(store, channel=RecordingChannel())
    journey = single_message_journey()
    await store.insert_journey(journey)

    with pytest.raises(StorageError, match="read-only"):
        await coordinator.trigger(journey.id)


@pytest.mark.asyncio
async def test_read_failure_before_first_step_keeps_position():
    class FlakyReadStore(InMemoryJourneyStore):
        def __init__(self):
            super().__init__()
            self.fail_reads = 0

        async def get_run(self, run_id):
            if self.fail_reads:
                self.fail_reads -= 1
                raise StorageError("connection reset")
            return await super().get_run(run_id)

    store = FlakyReadStore()
    channel = RecordingChannel()
    coordinator = ExecutionCoordinator(store, channel=channel)
    journey = message_chain_journey(3)
    await store.insert_journey(journey)

    run = JourneyRun.create(journey.id)
    await store.insert_run(run)
    await store.update_run_status_and_node(run.id, RunStatus.IN_PROGRESS, "m1")

    store.fail_reads = 1
    await coordinator.resume(run.id)

    stored = await store.get_run(run.id)
    assert stored.status == RunStatus.FAILED
    assert stored.current_node_id == "m1"
    assert len(channel) == 0


# ==============================================================================
# Durability ordering
# ==============================================================================


@pytest.mark.asyncio
async def test_position_persisted_before_side_effect(in_memory_store):
    seen = []

    class InspectingChannel:
        async def send(self, run, node):
            stored = await in_memory_store.get_run(run.id)
            seen.append((node.id, stored.current_node_id, stored.status))

    coordinator = ExecutionCoordinator(in_memory_store, channel=InspectingChannel())
    journey = message_chain_journey(3)
    await in_memory_store.insert_journey(journey)

    await coordinator.trigger(journey.id)

    assert seen == [
        ("m0", "m0", RunStatus.IN_PROGRESS),
        ("m1", "m1", RunStatus.IN_PROGRESS),
        ("m2", "m2", RunStatus.IN_PROGRESS),
    ]


# ==============================================================================
# Terminal runs and cancellation
# ==============================================================================


@pytest.mark.asyncio
async def test_resuming_terminal_run_is_noop(coordinator, in_memory_store, channel):
    journey = single_message_journey()
    await in_memory_store.insert_journey(journey)
    run_id = await coordinator.trigger(journey.id)
    completed = await in_memory_store.get_run(run_id)

    await coordinator.resume(run_id)
    await coordinator.start(run_id)
    await coordinator.resume_after_delay(run_id, "m1")

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.COMPLETED
    assert run.current_node_id is None
    assert run.updated_at == completed.updated_at
    assert len(channel) == 1


@pytest.mark.asyncio
async def test_resuming_failed_run_is_noop(coordinator, in_memory_store):
    journey = Journey("j-dangling", "Dangling", "m1", [MessageNode("m1", "hi", "ghost")])
    await in_memory_store.insert_journey(journey)
    run_id = await coordinator.trigger(journey.id)

    await coordinator.resume(run_id)
    await coordinator.resume_after_delay(run_id, None)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "m1"


@pytest.mark.asyncio
async def test_cancel_leaves_run_in_progress(coordinator, in_memory_store, channel):
    journey = delay_journey(0.05)
    await in_memory_store.insert_journey(journey)
    run_id = await coordinator.trigger(journey.id)

    assert coordinator.cancel(run_id) is True
    await asyncio.sleep(0.1)

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.IN_PROGRESS
    assert run.current_node_id == "d1"
    assert len(channel) == 0
    assert coordinator.cancel(run_id) is False


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_racing_timer_resumptions_run_once(in_memory_store, channel):
    scheduler = DelayScheduler()
    coordinator = ExecutionCoordinator(in_memory_store, scheduler, channel)
    journey = delay_journey(10)
    await in_memory_store.insert_journey(journey)
    run_id = await coordinator.trigger(journey.id)
    coordinator.cancel(run_id)

    await asyncio.gather(
        coordinator.resume_after_delay(run_id, "m1"),
        coordinator.resume_after_delay(run_id, "m1"),
    )

    run = await in_memory_store.get_run(run_id)
    assert run.status == RunStatus.COMPLETED
    assert channel.messages_for(run_id) == ["Time for your check-in"]
    await scheduler.shutdown()


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_racing_resumes_process_each_node_once(in_memory_store):
    sent = []

    class SlowChannel:
        async def send(self, run, node):
            await asyncio.sleep(0.01)
            sent.append(node.id)

    coordinator = ExecutionCoordinator(in_memory_store, channel=SlowChannel())
    journey = message_chain_journey(3)
    await in_memory_store.insert_journey(journey)

    run = JourneyRun.create(journey.id)
    await in_memory_store.insert_run(run)
    await in_memory_store.update_run_status_and_node(run.id, RunStatus.IN_PROGRESS, "m0")

    await asyncio.gather(coordinator.resume(run.id), coordinator.resume(run.id))

    assert sent == ["m0", "m1", "m2"]
    stored = await in_memory_store.get_run(run.id)
    assert stored.status == RunStatus.COMPLETED


# ==============================================================================
# Stale and duplicate timers
# ==============================================================================


def two_delay_journey() -> Journey:
    return Journey(
        "journey-two-delays",
        "Two delays",
        "d1",
        [
            DelayNode("d1", 3600, "m1"),
            MessageNode("m1", "reminder", "d2"),
            DelayNode("d2", 3600),
        ],
    )


@pytest.mark.asyncio
async def test_stale_timer_after_run_moved_on_is_noop(coordinator, in_memory_store, channel):
    journey = two_delay_journey()
    await in_memory_store.insert_journey(journey)
    run_id = await coordinator.trigger(journey.id)
    coordinator.cancel(run_id)

    await coordinator.resume_after_delay(run_id, "m1", "d1")
    parked = await in_memory_store.get_run(run_id)
    assert parked.current_node_id == "d2"
    assert parked.is_waiting

    # Replays of the d1 timer, with and without the delay node id
    await coordinator.resume_after_delay(run_id, "m1", "d1")
    await coordinator.resume_after_delay(run_id, "m1")

    run = await in_memory_store.get_run(run_id)
    assert run.current_node_id == "d2"
    assert run.is_waiting
    assert run.updated_at == parked.updated_at
    assert channel.messages_for(run_id) == ["reminder"]
    assert coordinator.scheduler.is_scheduled(run_id)


@pytest.mark.asyncio
async def test_timer_for_run_not_waiting_is_noop(coordinator, in_memory_store, channel):
    journey = message_chain_journey(3)
    await in_memory_store.insert_journey(journey)
    run = JourneyRun.create(journey.id)
    await in_memory_store.insert_run(run)
    await in_memory_store.update_run_status_and_node(run.id, RunStatus.IN_PROGRESS, "m0")

    await coordinator.resume_after_delay(run.id, "m1", "m0")

    stored = await in_memory_store.get_run(run.id)
    assert stored.status == RunStatus.IN_PROGRESS
    assert stored.current_node_id == "m0"
    assert len(channel) == 0
