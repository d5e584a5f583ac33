"""Framework-agnostic request-processing stage for idempotency.

This module provides the stage composed in front of the business handler.
It is framework-agnostic and is wrapped by adapters for specific web
frameworks (see adapters/asgi.py).

The middleware:
1. Classifies the request (method, idempotency header, authenticated caller)
2. Passes ineligible requests straight to the handler
3. Runs eligible requests through the capture pipeline
4. Annotates eligible responses with idempotency metadata headers

Examples:
    Using the middleware directly::

        from idempotency_coordinator.config import IdempotencyConfig
        from idempotency_coordinator.core.middleware import IdempotencyMiddleware, Request
        from idempotency_coordinator.storage.memory import MemoryStorageAdapter

        middleware = IdempotencyMiddleware(MemoryStorageAdapter(), IdempotencyConfig())

        async def deposit(request: Request) -> ReplayedResponse:
            return ReplayedResponse(status=201, headers={}, body=b'{"id": "T1"}')

        response = await middleware.process(
            Request(
                method="POST",
                path="/wallets/deposit",
                headers={"Idempotency-Key": "k1"},
                body=b'{"amount": 100}',
                principal="user-42",
            ),
            deposit,
        )
"""

from collections.abc import Awaitable, Callable
from datetime import datetime

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.classifier import classify_request
from idempotency_coordinator.core.pipeline import PipelineResult, process_eligible_request
from idempotency_coordinator.core.replay import ReplayedResponse
from idempotency_coordinator.models import EligibilityDecision, Outcome
from idempotency_coordinator.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)
from idempotency_coordinator.observability.metrics import record_request
from idempotency_coordinator.storage.base import StorageAdapter
from idempotency_coordinator.utils.headers import add_replay_headers

logger = get_logger(__name__)


class Request:
    """Abstract request representation.

    Framework adapters convert their framework-specific request objects into
    this format.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: URL path
        headers: Request headers as dict
        body: Request body as bytes
        principal: Authenticated caller id, or None for anonymous requests
    """

    def __init__(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        body: bytes = b"",
        principal: str | None = None,
    ) -> None:
        self.method = method
        self.path = path
        self.headers = headers
        self.body = body
        self.principal = principal


class IdempotencyMiddleware:
    """Framework-agnostic idempotency stage.

    Attributes:
        storage: Storage adapter for idempotency records
        config: Configuration object
        clock: Optional time source for record timestamps
    """

    def __init__(
        self,
        storage: StorageAdapter,
        config: IdempotencyConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.storage = storage
        self.config = config
        self.clock = clock

    def classify(self, request: Request) -> EligibilityDecision:
        """Decide whether idempotency applies to ``request``."""
        return classify_request(
            method=request.method,
            headers=request.headers,
            principal=request.principal,
            config=self.config,
        )

    async def process(
        self,
        request: Request,
        handler: Callable[[Request], Awaitable[ReplayedResponse]],
    ) -> ReplayedResponse:
        """Process a request with idempotency handling.

        Args:
            request: The incoming request
            handler: Async function executing the real business handler

        Returns:
            The handler's response, or the replay of a cached outcome
        """
        decision = self.classify(request)

        if not decision.is_eligible:
            response = await handler(request)
            self.record_bypass(request, decision, response.status)
            return response

        # Eligible decisions always carry both fields
        owner = decision.owner or ""
        key = decision.key or ""

        bind_request_context(owner, key)
        try:
            result = await process_eligible_request(
                storage=self.storage,
                owner=owner,
                key=key,
                handler=handler,
                request=request,
                config=self.config,
                clock=self.clock,
            )
        finally:
            clear_request_context()

        record_request(result.outcome.value, result.response.status)
        return self._annotate(result, key)

    def record_bypass(
        self, request: Request, decision: EligibilityDecision, status_code: int
    ) -> None:
        """Log and count a request that ran without idempotency handling."""
        logger.debug(
            "idempotency.bypassed",
            method=request.method,
            path=request.path,
            reason=decision.reason.value if decision.reason else None,
        )
        record_request(Outcome.BYPASSED.value, status_code)

    def _annotate(self, result: PipelineResult, key: str) -> ReplayedResponse:
        """Mark fresh responses of eligible requests as non-replays."""
        response = result.response
        if not result.was_replayed:
            response.headers = add_replay_headers(
                response.headers, key, is_replay=False, key_header=self.config.header_name
            )
        return response
