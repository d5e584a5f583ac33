"""
Pytest configuration and shared fixtures for idempotency_coordinator tests.
"""

from datetime import UTC, datetime, timedelta

import pytest

from idempotency_coordinator.exceptions import StorageError
from idempotency_coordinator.models import IdempotencyRecord, InsertResult, LookupResult
from idempotency_coordinator.storage.memory import MemoryStorageAdapter


class FakeClock:
    """Manually advanced time source for deterministic expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FailingStorage:
    """Storage adapter whose selected operations raise StorageError."""

    def __init__(
        self,
        fail_lookup: bool = True,
        fail_insert: bool = True,
        fail_cleanup: bool = True,
    ) -> None:
        self.inner = MemoryStorageAdapter()
        self.fail_lookup = fail_lookup
        self.fail_insert = fail_insert
        self.fail_cleanup = fail_cleanup

    async def lookup(self, owner: str, key: str) -> LookupResult:
        if self.fail_lookup:
            raise StorageError("database unavailable", cause=ConnectionError("refused"))
        return await self.inner.lookup(owner, key)

    async def try_insert(self, record: IdempotencyRecord) -> InsertResult:
        if self.fail_insert:
            raise StorageError("database unavailable", cause=ConnectionError("refused"))
        return await self.inner.try_insert(record)

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        if self.fail_cleanup:
            raise StorageError("database unavailable", cause=ConnectionError("refused"))
        return await self.inner.cleanup_expired(now)

    async def count(self, owner: str | None = None) -> int:
        return await self.inner.count(owner)

    async def get(self, record_id: str) -> IdempotencyRecord | None:
        return await self.inner.get(record_id)

    async def delete(self, record_id: str) -> bool:
        if self.fail_cleanup:
            raise StorageError("database unavailable", cause=ConnectionError("refused"))
        return await self.inner.delete(record_id)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock starting at 2024-01-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorageAdapter:
    """Create a fresh memory storage adapter for each test."""
    return MemoryStorageAdapter()


@pytest.fixture
def sample_idempotency_key() -> str:
    """Provide a sample idempotency key for tests."""
    return "deposit-001"


@pytest.fixture
def sample_record(sample_idempotency_key: str) -> IdempotencyRecord:
    """Provide a cached deposit outcome owned by user-42."""
    return IdempotencyRecord.new(
        owner="user-42",
        key=sample_idempotency_key,
        status_code=201,
        body=b'{"transaction_id": "T1", "amount": 100}',
        headers={"content-type": "application/json"},
        ttl_seconds=3600,
    )


@pytest.fixture
def failing_storage() -> type[FailingStorage]:
    """Provide the FailingStorage class; call it with the operations to break."""
    return FailingStorage
