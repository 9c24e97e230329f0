"""Storage backends for retry and execution state persistence.

Provides multiple storage implementations behind a common interface:
    - StateStore: Abstract interface
    - InMemoryStateStore: In-memory storage for testing
    - JsonFileStateStore: One JSON file per entity, atomic writes
    - SqliteStateStore: SQLite-backed storage
    - RedisStateStore: Redis-backed shared storage

Design: Adapter Pattern + Dependency Inversion (SOLID)
    All storage implementations adapt to the StateStore interface.
    Clients depend on abstraction, not concrete implementations,
    enabling easy swapping between storage backends.
"""

from pycadence.storage.base import StateStore
from pycadence.storage.json_file import JsonFileStateStore
from pycadence.storage.memory import InMemoryStateStore

# SQLite and Redis pull in their client libraries; imported lazily so the
# file and memory stores work without them loaded.


def __getattr__(name: str):
    """Lazy import of the database-backed stores."""
    if name == "SqliteStateStore":
        from pycadence.storage.sqlite import SqliteStateStore

        return SqliteStateStore
    elif name == "RedisStateStore":
        from pycadence.storage.redis import RedisStateStore

        return RedisStateStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "SqliteStateStore",
    "RedisStateStore",
]
