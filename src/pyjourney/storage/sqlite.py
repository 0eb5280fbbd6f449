"""SQLite-backed storage implementation for pyjourney.

Design Pattern: Adapter Pattern
SqliteJourneyStore adapts a SQLite database to the JourneyStore interface.

Complex database logic is isolated here, not scattered across the engine.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- Node graphs and run contexts stored as JSON text columns
- INTEGER timestamps (milliseconds since epoch, UTC)
- Index on (status, wake_at) for the recovery sweep
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from pyjourney.models import Journey, JourneyRun, RunStatus, node_from_dict
from pyjourney.storage.base import JourneyStore, StorageError


def _to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _from_millis(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000.0, UTC)


_RUN_COLUMNS = """
    id, journey_id, context_json, status, current_node_id,
    created_at, updated_at, wake_at
"""


class SqliteJourneyStore(JourneyStore):
    """SQLite-backed durable storage.

    Design Principles Applied:
    - Single Responsibility: Only handles persistence (doesn't execute runs)
    - Dependency Inversion: Implements the JourneyStore interface

    After __init__, the instance is not yet usable. Call connect() first.
    This follows asyncio practice (no async in __init__).

    Usage:
        store = SqliteJourneyStore("journeys.db")
        await store.connect()
        try:
            await store.insert_journey(journey)
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteJourneyStore:
        """
        Create an in-memory SQLite storage for testing.

        Returns:
            Connected in-memory storage instance

        Example:
            store = await SqliteJourneyStore.in_memory()
            # Ready to use immediately
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        """Return string representation of storage instance."""
        if self.db_path == ":memory:":
            return "SqliteJourneyStore(in-memory)"
        return f"SqliteJourneyStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create tables and indexes
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode, one statement per write
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()

        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()
        await self._connection.commit()

    async def _create_schema(self) -> None:
        """Create database tables and indexes.

        Schema design:
        - journeys: immutable definitions, nodes serialized as a JSON array
        - journey_runs: mutable run state, context serialized as a JSON object
        - lowercase status values, matching RunStatus
        """
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS journeys (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                start_node_id TEXT NOT NULL,
                nodes_json TEXT NOT NULL,
                created_at INTEGER NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS journey_runs (
                id TEXT PRIMARY KEY,
                journey_id TEXT NOT NULL,
                context_json TEXT NOT NULL,
                status TEXT CHECK( status IN (
                    'in_progress','completed','failed'
                ) ) NOT NULL,
                current_node_id TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                wake_at INTEGER
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_journey_runs_journey
            ON journey_runs(journey_id, created_at)
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_journey_runs_waiting
            ON journey_runs(status, wake_at)
        """)

    # ========================================================================
    # Journey Operations
    # ========================================================================

    async def insert_journey(self, journey: Journey) -> None:
        self._check_connected()

        nodes_json = json.dumps([node.to_dict() for node in journey.nodes.values()])
        created_at = _to_millis(datetime.now(UTC))

        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO journeys (id, name, start_node_id, nodes_json, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """,
                    (journey.id, journey.name, journey.start_node_id, nodes_json, created_at),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                raise StorageError(f"Journey already exists: journey_id={journey.id}") from e
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to insert journey {journey.id}: {e}") from e

    async def get_journey(self, journey_id: str) -> Journey | None:
        """Load a journey.

        Returns None when not found (not an error condition).
        """
        self._check_connected()

        try:
            cursor = await self._connection.execute(
                """
                SELECT id, name, start_node_id, nodes_json
                FROM journeys
                WHERE id = ?
            """,
                (journey_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to load journey {journey_id}: {e}") from e

        if row is None:
            return None

        return self._row_to_journey(row)

    async def list_journeys(self) -> list[Journey]:
        self._check_connected()

        try:
            cursor = await self._connection.execute("""
                SELECT id, name, start_node_id, nodes_json
                FROM journeys
                ORDER BY created_at DESC, rowid DESC
            """)
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to list journeys: {e}") from e

        return [self._row_to_journey(row) for row in rows]

    # ========================================================================
    # Run Operations
    # ========================================================================

    async def insert_run(self, run: JourneyRun) -> None:
        self._check_connected()

        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO journey_runs (
                        id, journey_id, context_json, status, current_node_id,
                        created_at, updated_at, wake_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        run.id,
                        run.journey_id,
                        json.dumps(run.context),
                        run.status.value,
                        run.current_node_id,
                        _to_millis(run.created_at),
                        _to_millis(run.updated_at),
                        _to_millis(run.wake_at),
                    ),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                raise StorageError(f"Run already exists: run_id={run.id}") from e
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to insert run {run.id}: {e}") from e

    async def get_run(self, run_id: str) -> JourneyRun | None:
        self._check_connected()

        try:
            cursor = await self._connection.execute(
                f"SELECT {_RUN_COLUMNS} FROM journey_runs WHERE id = ?",
                (run_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to load run {run_id}: {e}") from e

        if row is None:
            return None

        return self._row_to_run(row)

    async def update_run_status_and_node(
        self,
        run_id: str,
        status: RunStatus,
        node_id: str | None,
        wake_at: datetime | None = None,
    ) -> None:
        """Persist status and position in a single UPDATE.

        Raises StorageError if the run is not found.
        """
        self._check_connected()

        now_millis = _to_millis(datetime.now(UTC))

        async with self._lock:
            try:
                cursor = await self._connection.execute(
                    """
                    UPDATE journey_runs
                    SET status = ?,
                        current_node_id = ?,
                        wake_at = ?,
                        updated_at = ?
                    WHERE id = ?
                """,
                    (status.value, node_id, _to_millis(wake_at), now_millis, run_id),
                )
                await self._connection.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to update run {run_id}: {e}") from e

        if cursor.rowcount == 0:
            raise StorageError(f"Run not found: run_id={run_id}")

    async def get_runs_for_journey(self, journey_id: str) -> list[JourneyRun]:
        self._check_connected()

        try:
            cursor = await self._connection.execute(
                f"""
                SELECT {_RUN_COLUMNS}
                FROM journey_runs
                WHERE journey_id = ?
                ORDER BY created_at DESC, rowid DESC
            """,
                (journey_id,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to load runs for journey {journey_id}: {e}") from e

        return [self._row_to_run(row) for row in rows]

    async def get_waiting_runs(self) -> list[JourneyRun]:
        self._check_connected()

        try:
            cursor = await self._connection.execute(
                f"""
                SELECT {_RUN_COLUMNS}
                FROM journey_runs
                WHERE status = 'in_progress' AND wake_at IS NOT NULL
                ORDER BY wake_at ASC
            """
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to load waiting runs: {e}") from e

        return [self._row_to_run(row) for row in rows]

    async def reset(self) -> None:
        """Clear all data (for testing)."""
        self._check_connected()

        async with self._lock:
            await self._connection.execute("DELETE FROM journey_runs")
            await self._connection.execute("DELETE FROM journeys")
            await self._connection.commit()

    async def close(self) -> None:
        """Close storage connection.

        Explicit resource cleanup, not relying on GC.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> None:
        """Guard clause: Ensure connection is open."""
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    def _row_to_journey(self, row: tuple) -> Journey:
        """Convert database row to Journey.

        Row format: 0:id, 1:name, 2:start_node_id, 3:nodes_json
        """
        try:
            nodes = [node_from_dict(node) for node in json.loads(row[3])]
        except (ValueError, TypeError) as e:
            raise StorageError(f"Corrupt node graph for journey {row[0]}: {e}") from e

        return Journey(id=row[0], name=row[1], start_node_id=row[2], nodes=nodes)

    def _row_to_run(self, row: tuple) -> JourneyRun:
        """Convert database row to JourneyRun.

        Row format (matches _RUN_COLUMNS):
        0:id, 1:journey_id, 2:context_json, 3:status, 4:current_node_id,
        5:created_at, 6:updated_at, 7:wake_at
        """
        return JourneyRun(
            id=row[0],
            journey_id=row[1],
            context=json.loads(row[2]),
            status=RunStatus(row[3]),
            current_node_id=row[4],
            created_at=_from_millis(row[5]),
            updated_at=_from_millis(row[6]),
            wake_at=_from_millis(row[7]),
        )
