"""Storage adapter protocol for the idempotency coordinator.

The store is the only shared mutable resource of the coordinator and the
sole source of truth for "has this (owner, key) been seen before". It is
shared by every worker and every server instance, so no in-process lock can
protect it; correctness comes from the store's own atomic unique insert.

Examples:
    Implementing a custom storage adapter::

        class RedisStorageAdapter:
            async def lookup(self, owner: str, key: str) -> LookupResult:
                data = await self.redis.get(f"idem:{owner}:{key}")
                if data is None:
                    return LookupResult.absent()
                record = IdempotencyRecord.model_validate_json(data)
                if record.is_expired():
                    await self.redis.delete(f"idem:{owner}:{key}")
                    return LookupResult.expired()
                return LookupResult.hit(record)

            async def try_insert(self, record: IdempotencyRecord) -> InsertResult:
                # SET NX gives the atomic create-or-fail semantics
                created = await self.redis.set(
                    f"idem:{record.owner}:{record.key}",
                    record.model_dump_json(),
                    nx=True,
                )
                if not created:
                    return InsertResult.already_exists()
                return InsertResult(status=InsertStatus.INSERTED, record=record)

Atomicity Requirements:
    All StorageAdapter implementations MUST guarantee:

    1. **Atomic insert**: try_insert() either creates the row or reports
       ALREADY_EXISTS because a concurrent insert won. It must never be
       implemented as a read followed by a write.

    2. **Owner scoping**: the uniqueness invariant is per (owner, key). The
       same key used by two owners addresses two independent slots.

    3. **Expiry handling**: expired rows are treated as absent by lookup()
       and do not block try_insert().

    4. **Immutability**: rows are never updated. Only the sweeper
       (cleanup_expired), expired-slot reclamation and the operator's
       delete(record_id) remove them.

    5. **Error translation**: backend failures are raised as StorageError.
       A uniqueness violation is a result (ALREADY_EXISTS), not an error.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from idempotency_coordinator.models import IdempotencyRecord, InsertResult, LookupResult


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol defining the interface for idempotency storage backends.

    All methods are async and must be safe to call concurrently from
    multiple tasks, threads, processes and server instances.
    """

    async def lookup(self, owner: str, key: str) -> LookupResult:
        """Look up the cached outcome for (owner, key).

        An expired row is reclaimed (deleted) and reported as EXPIRED, which
        callers treat exactly like ABSENT.

        Args:
            owner: Authenticated caller identifier.
            key: Normalized idempotency key.

        Returns:
            LookupResult with status ABSENT, EXPIRED or HIT.

        Raises:
            StorageError: If the backend cannot be reached.
        """
        ...

    async def try_insert(self, record: IdempotencyRecord) -> InsertResult:
        """Atomically insert a record unless (owner, key) is already taken.

        Args:
            record: The fully built record to persist.

        Returns:
            InsertResult with status INSERTED, or ALREADY_EXISTS when a
            concurrent insert for the same (owner, key) won.

        Raises:
            StorageError: If the backend fails for a reason other than the
                uniqueness constraint.
        """
        ...

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """Remove every record with expires_at < now.

        Deleting an already deleted row is a no-op, so concurrent sweeps are
        safe.

        Args:
            now: Reference time; defaults to the current UTC time.

        Returns:
            The number of records removed.

        Raises:
            StorageError: If the backend cannot be reached.
        """
        ...

    async def count(self, owner: str | None = None) -> int:
        """Return the number of stored records, optionally for one owner."""
        ...

    async def get(self, record_id: str) -> IdempotencyRecord | None:
        """Return the record with ``record_id`` (expired or not), or None.

        Operator lookup; the request path always goes through lookup().
        """
        ...

    async def delete(self, record_id: str) -> bool:
        """Remove the record with ``record_id``.

        Lets an operator release a key before its TTL elapses.

        Returns:
            True if a record was removed, False if none had that id.

        Raises:
            StorageError: If the backend cannot be reached.
        """
        ...
