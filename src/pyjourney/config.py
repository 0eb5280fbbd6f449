"""Engine configuration.

Settings come from explicit arguments or from environment variables:

    JOURNEY_STORAGE           memory | sqlite | redis      (default: memory)
    JOURNEY_DB_PATH           SQLite database path         (default: journeys.db)
    JOURNEY_REDIS_URL         Redis connection URL         (default: redis://localhost:6379)
    JOURNEY_RECOVER_ON_START  re-arm waiting runs on open  (default: true)
    JOURNEY_LOG_LEVEL         logging level name           (default: INFO)

Example:
    # $ export JOURNEY_STORAGE=sqlite JOURNEY_DB_PATH=/var/lib/journeys.db
    config = EngineConfig.from_env()
    store = await open_store(config)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from pyjourney.storage.base import JourneyStore

STORAGE_BACKENDS = ("memory", "sqlite", "redis")

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for opening an Engine."""

    storage: str = "memory"
    """Storage backend name, one of STORAGE_BACKENDS."""

    db_path: str = "journeys.db"
    """SQLite database path (sqlite backend only)."""

    redis_url: str = "redis://localhost:6379"
    """Redis URL (redis backend only)."""

    recover_on_start: bool = True
    """Re-arm timers of runs left waiting by a previous process."""

    log_level: str = "INFO"
    """Level passed to configure_logging()."""

    def __post_init__(self) -> None:
        if self.storage not in STORAGE_BACKENDS:
            raise ValueError(
                f"Unknown storage backend {self.storage!r}, expected one of {STORAGE_BACKENDS}"
            )

    @classmethod
    def from_env(cls) -> EngineConfig:
        """
        Build configuration from JOURNEY_* environment variables.

        Unset variables fall back to the dataclass defaults.
        """
        defaults = cls()
        recover = os.getenv("JOURNEY_RECOVER_ON_START")
        return cls(
            storage=os.getenv("JOURNEY_STORAGE", defaults.storage).strip().lower(),
            db_path=os.getenv("JOURNEY_DB_PATH", defaults.db_path),
            redis_url=os.getenv("JOURNEY_REDIS_URL", defaults.redis_url),
            recover_on_start=(
                defaults.recover_on_start
                if recover is None
                else recover.strip().lower() in _TRUE_VALUES
            ),
            log_level=os.getenv("JOURNEY_LOG_LEVEL", defaults.log_level).upper(),
        )


def set_log_level(level: str | int) -> None:
    """Set the level of every pyjourney logger without touching handlers."""
    logging.getLogger("pyjourney").setLevel(level)


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for applications embedding the engine."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    set_log_level(level)


async def open_store(config: EngineConfig) -> JourneyStore:
    """Create and connect the storage backend named by ``config``."""
    if config.storage == "sqlite":
        from pyjourney.storage.sqlite import SqliteJourneyStore

        store: JourneyStore = SqliteJourneyStore(config.db_path)
    elif config.storage == "redis":
        from pyjourney.storage.redis import RedisJourneyStore

        store = RedisJourneyStore(config.redis_url)
    else:
        from pyjourney.storage.memory import InMemoryJourneyStore

        store = InMemoryJourneyStore()

    await store.connect()
    return store
