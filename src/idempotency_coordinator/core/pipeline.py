"""Capture pipeline for eligible requests.

This module implements the lookup / execute / insert flow applied to every
request the classifier marked eligible:

    lookup(owner, key)
      HIT             -> replay, handler not invoked
      ABSENT/EXPIRED  -> invoke handler
                           non-2xx -> return as is, nothing cached
                           2xx     -> try_insert
                                        INSERTED       -> return own response
                                        ALREADY_EXISTS -> lookup again, replay winner

The handler itself is not held under any lock. Two duplicates arriving at
the same instant can both execute; the store's atomic insert picks one
outcome, and the loser replays it so every caller converges on one result.

Store failures never reach the caller. Any StorageError, or an outcome that
cannot be turned into a record, makes the pipeline fail open: the request is served without idempotency protection and the
failure is logged and counted.
"""

import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.replay import ReplayedResponse, capture_record, replay_response
from idempotency_coordinator.exceptions import StorageError
from idempotency_coordinator.models import LookupStatus, Outcome
from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.observability.metrics import (
    record_execution_time,
    record_race_loss,
    record_store_error,
)
from idempotency_coordinator.storage.base import StorageAdapter

logger = get_logger(__name__)

Handler = Callable[[Any], Awaitable[ReplayedResponse]]
Clock = Callable[[], datetime]


class PipelineResult:
    """Result of running an eligible request through the pipeline.

    Attributes:
        response: The response to return (fresh or replayed)
        outcome: How the request was resolved
        execution_time_ms: Handler execution time (None when the handler did not run)
    """

    def __init__(
        self,
        response: ReplayedResponse,
        outcome: Outcome,
        execution_time_ms: int | None = None,
    ) -> None:
        self.response = response
        self.outcome = outcome
        self.execution_time_ms = execution_time_ms

    @property
    def was_replayed(self) -> bool:
        return self.outcome in (Outcome.REPLAYED, Outcome.RACE_REPLAYED)


async def process_eligible_request(
    storage: StorageAdapter,
    owner: str,
    key: str,
    handler: Handler,
    request: Any,
    config: IdempotencyConfig,
    clock: Clock | None = None,
) -> PipelineResult:
    """Process an eligible request with replay protection.

    Args:
        storage: Storage adapter for idempotency records
        owner: Authenticated caller id
        key: Normalized idempotency key
        handler: Async function executing the real mutation
        request: The request object passed to the handler
        config: Configuration object
        clock: Time source for record creation and replay timestamps
            (defaults to the current UTC time)

    Returns:
        PipelineResult with the response and how it was produced

    Raises:
        Exception: Whatever the handler raises propagates unchanged and is
            never cached.
    """
    try:
        lookup = await storage.lookup(owner, key)
    except StorageError as e:
        _store_unavailable("lookup", owner, key, e)
        response, execution_time_ms = await _execute(handler, request)
        return PipelineResult(response, Outcome.FAIL_OPEN, execution_time_ms)

    if lookup.record is not None:
        logger.info(
            "idempotency.replayed",
            owner=owner,
            key=key,
            status_code=lookup.record.status_code,
            record_id=lookup.record.id,
        )
        now = clock() if clock else None
        replayed = replay_response(lookup.record, key, now=now, key_header=config.header_name)
        return PipelineResult(replayed, Outcome.REPLAYED)

    if lookup.status is LookupStatus.EXPIRED:
        logger.debug("idempotency.expired_record_reclaimed", owner=owner, key=key)

    response, execution_time_ms = await _execute(handler, request)

    if not response.is_success:
        # Failed mutations are retried from scratch, so they are never cached
        logger.info(
            "idempotency.not_cached",
            owner=owner,
            key=key,
            status_code=response.status,
        )
        return PipelineResult(response, Outcome.NOT_CACHED, execution_time_ms)

    return await _store_outcome(storage, owner, key, response, execution_time_ms, config, clock)


async def _execute(handler: Handler, request: Any) -> tuple[ReplayedResponse, int]:
    start_time = time.monotonic()
    response = await handler(request)
    execution_time_ms = int((time.monotonic() - start_time) * 1000)
    record_execution_time(execution_time_ms)
    return response, execution_time_ms


async def _store_outcome(
    storage: StorageAdapter,
    owner: str,
    key: str,
    response: ReplayedResponse,
    execution_time_ms: int,
    config: IdempotencyConfig,
    clock: Clock | None = None,
    attempts: int = 2,
) -> PipelineResult:
    """Insert the outcome; on a lost race, replay the winner's outcome.

    A second attempt is made only when the winner's record cannot be found
    after the race (it expired or was swept between the two calls).
    """
    for _ in range(attempts):
        now = clock() if clock else None
        try:
            record = capture_record(
                owner,
                key,
                response,
                config.ttl_seconds,
                now=now,
                key_header=config.header_name,
            )
        except ValueError as e:
            # The outcome already happened; serve it even though it cannot be kept
            logger.warning("idempotency.capture_failed", owner=owner, key=key, error=str(e))
            return PipelineResult(response, Outcome.FAIL_OPEN, execution_time_ms)

        try:
            inserted = await storage.try_insert(record)
        except StorageError as e:
            _store_unavailable("insert", owner, key, e)
            return PipelineResult(response, Outcome.FAIL_OPEN, execution_time_ms)

        if inserted.inserted:
            logger.info(
                "idempotency.stored",
                owner=owner,
                key=key,
                status_code=response.status,
                record_id=record.id,
                execution_time_ms=execution_time_ms,
            )
            return PipelineResult(response, Outcome.EXECUTED, execution_time_ms)

        record_race_loss()
        logger.warning(
            "idempotency.race_lost",
            owner=owner,
            key=key,
            discarded_status_code=response.status,
        )

        try:
            winner = await storage.lookup(owner, key)
        except StorageError as e:
            _store_unavailable("reconcile_lookup", owner, key, e)
            return PipelineResult(response, Outcome.FAIL_OPEN, execution_time_ms)

        if winner.record is not None:
            return PipelineResult(
                replay_response(winner.record, key, now=now, key_header=config.header_name),
                Outcome.RACE_REPLAYED,
                execution_time_ms,
            )

        logger.warning("idempotency.race_winner_missing", owner=owner, key=key)

    # The slot kept flipping between taken and gone; serve our own result
    logger.warning("idempotency.reconcile_exhausted", owner=owner, key=key)
    return PipelineResult(response, Outcome.FAIL_OPEN, execution_time_ms)


def _store_unavailable(operation: str, owner: str, key: str, error: StorageError) -> None:
    record_store_error(operation)
    logger.warning(
        "idempotency.store_unavailable",
        operation=operation,
        owner=owner,
        key=key,
        error=error.message,
        error_type=type(error.cause).__name__ if error.cause else None,
    )
