"""Expiry sweeper for idempotency records.

Expired records are already invisible to lookups and do not block inserts,
so the sweeper is not needed for correctness. It reclaims storage by
deleting every record whose TTL elapsed.

The sweeper:
1. Runs once at startup, then at a fixed interval (default 1 hour)
2. Exposes the same deletion routine as an operator-invokable trigger
3. Reports metrics and logs for observability
4. Keeps running when a sweep fails

Deleting an already deleted row is a no-op, so concurrent sweeps (several
server instances, or a manual trigger during a scheduled run) are safe.

Examples:
    Run the sweeper in the background::

        from idempotency_coordinator.core.cleanup import ExpirySweeper

        sweeper = ExpirySweeper(storage, interval_seconds=3600)
        sweeper.start()

        # Operator trigger
        purged = await sweeper.trigger()

        # On shutdown
        await sweeper.stop()
"""

import asyncio

from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.observability.metrics import record_cleanup
from idempotency_coordinator.storage.base import StorageAdapter

logger = get_logger(__name__)


async def run_cleanup(storage: StorageAdapter) -> int:
    """Delete every expired record and return how many were removed.

    This is the operator-invokable trigger. Store failures propagate as
    StorageError so the operator sees them.

    Args:
        storage: Storage adapter to clean up

    Returns:
        The number of records purged
    """
    count = await storage.cleanup_expired()
    record_cleanup(count)

    if count > 0:
        logger.info("cleanup.completed", records_removed=count)
    else:
        logger.debug("cleanup.completed", records_removed=0)

    return count


async def cleanup_loop(
    storage: StorageAdapter,
    interval_seconds: int = 3600,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Background task that periodically purges expired records.

    Args:
        storage: Storage adapter to clean up
        interval_seconds: Time between cleanup runs (default 3600s = 1 hour)
        stop_event: Event to signal the loop to stop (optional)
    """
    if stop_event is None:
        stop_event = asyncio.Event()

    logger.info("cleanup.started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            await run_cleanup(storage)
        except Exception as e:
            logger.error(
                "cleanup.failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("cleanup.stopped")


class ExpirySweeper:
    """Owns the background cleanup task and its shutdown hook.

    Attributes:
        storage: Storage adapter to clean up
        interval_seconds: Time between scheduled sweeps
    """

    def __init__(self, storage: StorageAdapter, interval_seconds: int = 3600) -> None:
        self.storage = storage
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop. Calling start() on a running sweeper is a no-op.

        Must be called from within a running event loop.
        """
        if self.running:
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            cleanup_loop(
                storage=self.storage,
                interval_seconds=self.interval_seconds,
                stop_event=self._stop_event,
            ),
            name="idempotency-expiry-sweeper",
        )

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the background loop gracefully, cancelling it after ``timeout``."""
        task = self._task
        if task is None:
            return

        if self._stop_event is not None:
            self._stop_event.set()

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("cleanup.stop_timeout", message="Cleanup task did not stop in time")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("cleanup.cancelled")
        finally:
            self._task = None
            self._stop_event = None

    async def trigger(self) -> int:
        """Run one sweep now and return the number of records purged."""
        return await run_cleanup(self.storage)
