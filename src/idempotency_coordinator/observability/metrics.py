"""Prometheus metrics for the idempotency coordinator.

Metrics include:

- Request counters by outcome (executed, replayed, race_replayed, ...)
- Handler duration histogram for fresh executions
- Insert race losses
- Store errors by operation (the fail-open signal)
- Cleanup operation tracking

Examples:
    Recording a replayed request::

        from idempotency_coordinator.observability.metrics import record_request

        record_request(outcome="replayed", status_code=201)

    Recording a store failure::

        from idempotency_coordinator.observability.metrics import record_store_error

        record_store_error("lookup")
"""

from prometheus_client import Counter, Histogram

# Labels: outcome (see models.Outcome), status_code
requests_total = Counter(
    "idempotency_requests_total",
    "Total number of requests processed by the idempotency coordinator",
    ["outcome", "status_code"],
)

# Only fresh executions are observed, never replays
handler_duration_seconds = Histogram(
    "idempotency_handler_duration_seconds",
    "Wrapped handler execution time in seconds (fresh executions only)",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

race_losses_total = Counter(
    "idempotency_race_losses_total",
    "Number of inserts that lost the (owner, key) race to a concurrent duplicate",
)

store_errors_total = Counter(
    "idempotency_store_errors_total",
    "Number of store operations that failed and were absorbed (fail open)",
    ["operation"],
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of cleanup operations performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by cleanup",
)


def record_request(outcome: str, status_code: int) -> None:
    """Record a processed request.

    Args:
        outcome: How the request was resolved (models.Outcome value)
        status_code: HTTP status code returned to the caller
    """
    requests_total.labels(outcome=outcome, status_code=str(status_code)).inc()


def record_execution_time(exec_time_ms: int) -> None:
    """Record handler execution time. Call only for fresh executions."""
    handler_duration_seconds.observe(exec_time_ms / 1000.0)


def record_race_loss() -> None:
    race_losses_total.inc()


def record_store_error(operation: str) -> None:
    """Record an absorbed store failure for ``operation`` (lookup, insert, ...)."""
    store_errors_total.labels(operation=operation).inc()


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup operation and how many records it removed."""
    cleanup_operations.inc()
    if records_removed > 0:
        cleanup_records_removed.inc(records_removed)
