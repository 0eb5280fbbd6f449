"""Redis-based journey store implementation.

Provides a Redis backend so journey and run state lives outside the
engine process and can be inspected by other services.

Data Structures:
- journey:def:{journey_id} (STRING): Journey JSON document
- journey:journeys (ZSET): All journey ids (score = created_at millis)
- journey:run:{run_id} (HASH): Run fields (context stored as JSON)
- journey:runs:{journey_id} (ZSET): Run ids per journey (score = created_at millis)
- journey:waiting (ZSET): Runs suspended on a delay (score = wake_at millis)

Key Features:
- Atomic operations: Uses MULTI/EXEC pipelines for multi-key writes
- Connection pooling: redis-py connection pool for concurrent access

Design: Adapter Pattern
Implements JourneyStore for Redis, adapting the key-value store to the
JourneyStore interface.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import redis.asyncio as redis
from redis.exceptions import RedisError

from pyjourney.models import Journey, JourneyRun, RunStatus
from pyjourney.storage.base import JourneyStore, StorageError

_JOURNEYS_INDEX = "journey:journeys"
_WAITING_INDEX = "journey:waiting"


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: bytes | str | None) -> datetime | None:
    if value is None or value in (b"", ""):
        return None
    return datetime.fromtimestamp(int(value) / 1000.0, UTC)


def _text(value: bytes | str | None) -> str | None:
    if value is None or value in (b"", ""):
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisJourneyStore(JourneyStore):
    """Redis journey store using connection pooling.

    All dependencies (Redis connection) passed explicitly.

    Usage:
        store = RedisJourneyStore("redis://localhost:6379")
        await store.connect()

        await store.insert_journey(journey)
        run = await store.get_run(run_id)
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", max_connections: int = 16):
        """Initialize Redis journey store.

        Default redis_url works for local development.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisJourneyStore({self._redis_url})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        self._redis = redis.from_url(
            self._redis_url,
            decode_responses=False,
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _journey_key(journey_id: str) -> str:
        """Build Redis key for a journey document."""
        return f"journey:def:{journey_id}"

    @staticmethod
    def _run_key(run_id: str) -> str:
        """Build Redis key for run state."""
        return f"journey:run:{run_id}"

    @staticmethod
    def _journey_runs_key(journey_id: str) -> str:
        """Build Redis key for the per-journey run index."""
        return f"journey:runs:{journey_id}"

    # ========================================================================
    # Journey Operations
    # ========================================================================

    async def insert_journey(self, journey: Journey) -> None:
        self._check_connected()

        try:
            created = await self._redis.set(
                self._journey_key(journey.id), json.dumps(journey.to_dict()), nx=True
            )
            if not created:
                raise StorageError(f"Journey already exists: journey_id={journey.id}")
            await self._redis.zadd(_JOURNEYS_INDEX, {journey.id: _to_millis(datetime.now(UTC))})
        except RedisError as e:
            raise StorageError(f"Failed to insert journey {journey.id}: {e}") from e

    async def get_journey(self, journey_id: str) -> Journey | None:
        self._check_connected()

        try:
            raw = await self._redis.get(self._journey_key(journey_id))
        except RedisError as e:
            raise StorageError(f"Failed to load journey {journey_id}: {e}") from e

        if raw is None:
            return None

        try:
            return Journey.from_dict(json.loads(raw))
        except (ValueError, KeyError) as e:
            raise StorageError(f"Corrupt journey document {journey_id}: {e}") from e

    async def list_journeys(self) -> list[Journey]:
        self._check_connected()

        try:
            journey_ids = await self._redis.zrevrange(_JOURNEYS_INDEX, 0, -1)
        except RedisError as e:
            raise StorageError(f"Failed to list journeys: {e}") from e

        journeys = []
        for journey_id in journey_ids:
            journey = await self.get_journey(_text(journey_id))
            if journey is not None:
                journeys.append(journey)
        return journeys

    # ========================================================================
    # Run Operations
    # ========================================================================

    async def insert_run(self, run: JourneyRun) -> None:
        self._check_connected()

        run_key = self._run_key(run.id)
        mapping = {
            "id": run.id,
            "journey_id": run.journey_id,
            "context": json.dumps(run.context),
            "status": run.status.value,
            "current_node_id": run.current_node_id or "",
            "created_at": _to_millis(run.created_at),
            "updated_at": _to_millis(run.updated_at),
            "wake_at": _to_millis(run.wake_at) if run.wake_at else "",
        }

        try:
            if await self._redis.exists(run_key):
                raise StorageError(f"Run already exists: run_id={run.id}")

            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(run_key, mapping=mapping)
                pipe.zadd(self._journey_runs_key(run.journey_id), {run.id: mapping["created_at"]})
                if run.is_waiting:
                    pipe.zadd(_WAITING_INDEX, {run.id: mapping["wake_at"]})
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to insert run {run.id}: {e}") from e

    async def get_run(self, run_id: str) -> JourneyRun | None:
        self._check_connected()

        try:
            data = await self._redis.hgetall(self._run_key(run_id))
        except RedisError as e:
            raise StorageError(f"Failed to load run {run_id}: {e}") from e

        if not data:
            return None

        return self._hash_to_run(data)

    async def update_run_status_and_node(
        self,
        run_id: str,
        status: RunStatus,
        node_id: str | None,
        wake_at: datetime | None = None,
    ) -> None:
        """Persist status, position and waiting deadline atomically."""
        self._check_connected()

        run_key = self._run_key(run_id)

        try:
            if not await self._redis.exists(run_key):
                raise StorageError(f"Run not found: run_id={run_id}")

            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(
                    run_key,
                    mapping={
                        "status": status.value,
                        "current_node_id": node_id or "",
                        "wake_at": _to_millis(wake_at) if wake_at else "",
                        "updated_at": _to_millis(datetime.now(UTC)),
                    },
                )
                if wake_at is not None and status == RunStatus.IN_PROGRESS:
                    pipe.zadd(_WAITING_INDEX, {run_id: _to_millis(wake_at)})
                else:
                    pipe.zrem(_WAITING_INDEX, run_id)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to update run {run_id}: {e}") from e

    async def get_runs_for_journey(self, journey_id: str) -> list[JourneyRun]:
        self._check_connected()

        try:
            run_ids = await self._redis.zrevrange(self._journey_runs_key(journey_id), 0, -1)
        except RedisError as e:
            raise StorageError(f"Failed to load runs for journey {journey_id}: {e}") from e

        return await self._load_runs(run_ids)

    async def get_waiting_runs(self) -> list[JourneyRun]:
        self._check_connected()

        try:
            run_ids = await self._redis.zrange(_WAITING_INDEX, 0, -1)
        except RedisError as e:
            raise StorageError(f"Failed to load waiting runs: {e}") from e

        return [run for run in await self._load_runs(run_ids) if run.is_waiting]

    async def reset(self) -> None:
        """Delete every key owned by this store (for testing)."""
        self._check_connected()

        keys = [key async for key in self._redis.scan_iter(match="journey:*")]
        if keys:
            await self._redis.delete(*keys)

    async def _load_runs(self, run_ids: list) -> list[JourneyRun]:
        runs = []
        for run_id in run_ids:
            run = await self.get_run(_text(run_id))
            if run is not None:
                runs.append(run)
        return runs

    def _hash_to_run(self, data: dict) -> JourneyRun:
        """Convert a Redis hash (bytes keys and values) to a JourneyRun."""
        fields = {_text(k): v for k, v in data.items()}
        return JourneyRun(
            id=_text(fields["id"]),
            journey_id=_text(fields["journey_id"]),
            context=json.loads(fields.get("context") or b"{}"),
            status=RunStatus(_text(fields["status"])),
            current_node_id=_text(fields.get("current_node_id")),
            created_at=_from_millis(fields.get("created_at")),
            updated_at=_from_millis(fields.get("updated_at")),
            wake_at=_from_millis(fields.get("wake_at")),
        )
