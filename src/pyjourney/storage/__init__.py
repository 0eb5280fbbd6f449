"""Storage backends for journey and run persistence.

Provides multiple storage implementations behind a common interface:
    - JourneyStore: Abstract interface
    - SqliteJourneyStore: SQLite-backed storage
    - RedisJourneyStore: Redis-backed storage
    - InMemoryJourneyStore: In-memory storage for testing

Design: Adapter Pattern + Dependency Inversion
    All storage implementations adapt to the JourneyStore interface.
    The engine depends on the abstraction, not concrete implementations,
    enabling easy swapping between storage backends.
"""

from pyjourney.storage.base import JourneyStore, StorageError
from pyjourney.storage.memory import InMemoryJourneyStore

# Lazy imports so that the optional drivers (aiosqlite, redis) are only
# loaded when their backend is actually requested


def __getattr__(name: str):
    """Lazy import driver-backed storage implementations."""
    if name == "RedisJourneyStore":
        from pyjourney.storage.redis import RedisJourneyStore

        return RedisJourneyStore
    elif name == "SqliteJourneyStore":
        from pyjourney.storage.sqlite import SqliteJourneyStore

        return SqliteJourneyStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "JourneyStore",
    "StorageError",
    "InMemoryJourneyStore",
    "SqliteJourneyStore",
    "RedisJourneyStore",
]
