"""Storage adapters for the idempotency coordinator.

All adapters implement the StorageAdapter protocol defined in base.py.

Available Adapters:
    - MemoryStorageAdapter: In-process dictionary, for tests and single-process use
    - SQLAlchemyStorageAdapter: Relational table with a UNIQUE (owner, key) constraint
"""

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.storage.base import StorageAdapter
from idempotency_coordinator.storage.memory import MemoryStorageAdapter
from idempotency_coordinator.storage.sql import SQLAlchemyStorageAdapter


def create_storage(config: IdempotencyConfig) -> StorageAdapter:
    """Build the storage adapter selected by ``config.storage_adapter``.

    The SQL adapter's schema is not created here; call
    ``await storage.create_schema()`` (or run migrations) at startup.
    """
    if config.storage_adapter == "sql":
        return SQLAlchemyStorageAdapter.from_url(config.database_url)
    return MemoryStorageAdapter()


__all__ = [
    "StorageAdapter",
    "MemoryStorageAdapter",
    "SQLAlchemyStorageAdapter",
    "create_storage",
]
