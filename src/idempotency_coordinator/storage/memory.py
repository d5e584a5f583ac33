"""In-memory storage adapter with asyncio concurrency control.

This module provides an in-memory implementation of the StorageAdapter
protocol. Records live in a dictionary keyed by (owner, key); an
asyncio.Lock makes the check-and-set of try_insert atomic with respect to
every other coroutine on the same event loop.

The MemoryStorageAdapter is suitable for:
    - Single-process deployments
    - Development and testing

It is not shared between processes or server instances. Production
deployments behind a load balancer use SQLAlchemyStorageAdapter.

Examples:
    Basic usage::

        from idempotency_coordinator.models import IdempotencyRecord
        from idempotency_coordinator.storage.memory import MemoryStorageAdapter

        adapter = MemoryStorageAdapter()

        record = IdempotencyRecord.new(
            owner="user-42",
            key="deposit-001",
            status_code=201,
            body=b'{"transaction_id": "T1"}',
        )
        result = await adapter.try_insert(record)
        assert result.inserted

        lookup = await adapter.lookup("user-42", "deposit-001")
        assert lookup.is_hit

    Deterministic expiry in tests::

        now = datetime(2024, 1, 1, tzinfo=UTC)
        adapter = MemoryStorageAdapter(clock=lambda: now)
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from idempotency_coordinator.models import (
    IdempotencyRecord,
    InsertResult,
    InsertStatus,
    LookupResult,
    ensure_utc,
    utcnow,
)
from idempotency_coordinator.storage.base import StorageAdapter


class MemoryStorageAdapter(StorageAdapter):
    """In-memory storage adapter keyed by (owner, key).

    Attributes:
        _store: Dictionary mapping (owner, key) to IdempotencyRecord objects.
        _lock: Lock serializing writes (insert, reclaim, sweep).
        _clock: Callable returning the current UTC time.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize a new in-memory storage adapter.

        Args:
            clock: Optional time source, used by tests to move time forward.
        """
        self._store: dict[tuple[str, str], IdempotencyRecord] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    async def lookup(self, owner: str, key: str) -> LookupResult:
        """Look up the cached outcome for (owner, key).

        Expired records are deleted before EXPIRED is returned, but only if
        the slot still holds the same expired record.
        """
        record = self._store.get((owner, key))
        if record is None:
            return LookupResult.absent()

        if record.is_expired(self._now()):
            async with self._lock:
                current = self._store.get((owner, key))
                if current is not None and current.id == record.id:
                    del self._store[(owner, key)]
            return LookupResult.expired()

        return LookupResult.hit(record)

    async def try_insert(self, record: IdempotencyRecord) -> InsertResult:
        """Atomically insert ``record`` unless its (owner, key) slot is live.

        An expired occupant is replaced in the same critical section, so it
        never blocks a new insert.
        """
        slot = (record.owner, record.key)
        async with self._lock:
            existing = self._store.get(slot)
            if existing is not None and not existing.is_expired(self._now()):
                return InsertResult.already_exists()
            self._store[slot] = record

        return InsertResult(status=InsertStatus.INSERTED, record=record)

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """Remove every record with expires_at < now."""
        reference = ensure_utc(now) if now is not None else self._now()

        removed_count = 0
        async with self._lock:
            expired_slots = [
                slot for slot, record in self._store.items() if record.expires_at < reference
            ]
            for slot in expired_slots:
                del self._store[slot]
                removed_count += 1

        return removed_count

    async def count(self, owner: str | None = None) -> int:
        if owner is None:
            return len(self._store)
        return sum(1 for record_owner, _ in self._store if record_owner == owner)

    async def get(self, record_id: str) -> IdempotencyRecord | None:
        for record in self._store.values():
            if record.id == record_id:
                return record
        return None

    async def delete(self, record_id: str) -> bool:
        """Remove the record with ``record_id``; False if there is none."""
        async with self._lock:
            for slot, record in self._store.items():
                if record.id == record_id:
                    del self._store[slot]
                    return True
        return False
