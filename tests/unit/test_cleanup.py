"""Unit tests for the expiry sweeper."""

import asyncio

import pytest

from idempotency_coordinator.core.cleanup import ExpirySweeper, cleanup_loop, run_cleanup
from idempotency_coordinator.exceptions import StorageError
from idempotency_coordinator.models import IdempotencyRecord
from idempotency_coordinator.storage.memory import MemoryStorageAdapter


async def seed(storage: MemoryStorageAdapter, clock, live: int, expiring: int) -> None:
    for i in range(live):
        await storage.try_insert(
            IdempotencyRecord.new(
                owner="user-42", key=f"live-{i}", status_code=201, body=b"{}",
                ttl_seconds=3600, now=clock(),
            )
        )
    for i in range(expiring):
        await storage.try_insert(
            IdempotencyRecord.new(
                owner="user-42", key=f"old-{i}", status_code=201, body=b"{}",
                ttl_seconds=60, now=clock(),
            )
        )


class TestRunCleanup:
    @pytest.mark.asyncio
    async def test_purges_only_expired(self, clock) -> None:
        storage = MemoryStorageAdapter(clock=clock)
        await seed(storage, clock, live=2, expiring=3)
        clock.advance(120)

        purged = await run_cleanup(storage)

        assert purged == 3
        assert await storage.count() == 2

    @pytest.mark.asyncio
    async def test_nothing_to_purge(self, storage) -> None:
        assert await run_cleanup(storage) == 0

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, clock) -> None:
        storage = MemoryStorageAdapter(clock=clock)
        await seed(storage, clock, live=0, expiring=2)
        clock.advance(120)

        assert await run_cleanup(storage) == 2
        assert await run_cleanup(storage) == 0

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, failing_storage) -> None:
        """The operator trigger reports store failures."""
        with pytest.raises(StorageError):
            await run_cleanup(failing_storage())


class TestCleanupLoop:
    @pytest.mark.asyncio
    async def test_loop_runs_immediately_and_stops(self, clock) -> None:
        storage = MemoryStorageAdapter(clock=clock)
        await seed(storage, clock, live=1, expiring=1)
        clock.advance(120)
        stop_event = asyncio.Event()

        task = asyncio.create_task(cleanup_loop(storage, interval_seconds=3600, stop_event=stop_event))
        for _ in range(50):
            if await storage.count() == 1:
                break
            await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert await storage.count() == 1

    @pytest.mark.asyncio
    async def test_loop_survives_storage_errors(self, failing_storage) -> None:
        stop_event = asyncio.Event()
        task = asyncio.create_task(
            cleanup_loop(failing_storage(), interval_seconds=1, stop_event=stop_event)
        )
        await asyncio.sleep(0.05)

        assert not task.done()

        stop_event.set()
        await asyncio.wait_for(task, timeout=2.0)


class TestExpirySweeper:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, storage) -> None:
        sweeper = ExpirySweeper(storage, interval_seconds=3600)

        sweeper.start()
        assert sweeper.running

        await sweeper.stop()
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_start_twice_is_a_no_op(self, storage) -> None:
        sweeper = ExpirySweeper(storage, interval_seconds=3600)

        sweeper.start()
        task = sweeper._task
        sweeper.start()

        assert sweeper._task is task
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, storage) -> None:
        sweeper = ExpirySweeper(storage)
        await sweeper.stop()
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_trigger_returns_purged_count(self, clock) -> None:
        storage = MemoryStorageAdapter(clock=clock)
        await seed(storage, clock, live=1, expiring=4)
        clock.advance(61)
        sweeper = ExpirySweeper(storage)

        assert await sweeper.trigger() == 4

    @pytest.mark.asyncio
    async def test_trigger_propagates_storage_error(self, failing_storage) -> None:
        sweeper = ExpirySweeper(failing_storage())
        with pytest.raises(StorageError):
            await sweeper.trigger()
