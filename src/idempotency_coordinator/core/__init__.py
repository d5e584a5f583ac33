"""Core logic of the idempotency coordinator.

This package contains the framework-agnostic business logic:
- Classifier: Key extraction and eligibility decisions
- Pipeline: Lookup, execute, insert and race reconciliation
- Replay: Capturing outcomes and reconstructing cached responses
- Middleware: The request-processing stage wrapping the handler
- Cleanup: The expiry sweeper

The core logic is wrapped by adapters for specific web frameworks.
"""

from idempotency_coordinator.core.classifier import classify_request
from idempotency_coordinator.core.replay import replay_response

__all__ = ["classify_request", "replay_response"]
