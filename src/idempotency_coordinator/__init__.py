"""
Idempotency coordinator for payment-management APIs.

This package makes side-effecting financial mutations (deposits, withdrawals,
transfers) replay-safe: a client retrying a request with the same
idempotency key receives the first successful outcome instead of the
mutation running a second time.
"""

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.cleanup import ExpirySweeper, run_cleanup
from idempotency_coordinator.core.middleware import IdempotencyMiddleware, Request
from idempotency_coordinator.core.replay import ReplayedResponse
from idempotency_coordinator.exceptions import IdempotencyError, StorageError
from idempotency_coordinator.storage import (
    MemoryStorageAdapter,
    SQLAlchemyStorageAdapter,
    StorageAdapter,
    create_storage,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "IdempotencyConfig",
    "IdempotencyMiddleware",
    "Request",
    "ReplayedResponse",
    "ExpirySweeper",
    "run_cleanup",
    "IdempotencyError",
    "StorageError",
    "StorageAdapter",
    "MemoryStorageAdapter",
    "SQLAlchemyStorageAdapter",
    "create_storage",
]
