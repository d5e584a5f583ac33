"""Observability utilities for the idempotency coordinator.

This package provides:
- Prometheus metrics for outcomes, race losses, store errors and cleanup
- Structured logging with contextual information

Store failures never reach callers (the coordinator fails open), so these
signals are how operators learn that deduplication was degraded.
"""

from idempotency_coordinator.observability.logging import (
    configure_logging,
    configure_logging_from_config,
    get_logger,
)
from idempotency_coordinator.observability.metrics import (
    record_cleanup,
    record_execution_time,
    record_race_loss,
    record_request,
    record_store_error,
)

__all__ = [
    "configure_logging",
    "configure_logging_from_config",
    "get_logger",
    "record_request",
    "record_execution_time",
    "record_race_loss",
    "record_store_error",
    "record_cleanup",
]
