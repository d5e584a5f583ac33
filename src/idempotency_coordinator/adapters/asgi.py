"""ASGI middleware adapter for FastAPI and Starlette applications.

This module provides an ASGI middleware wrapper around the core idempotency
middleware, plus the operator-facing pieces an application needs to run the
expiry sweeper.

The middleware:
1. Resolves the authenticated caller (the idempotency owner)
2. Classifies the request; ineligible requests pass through untouched
3. Processes eligible requests through the core middleware
4. Converts internal responses back to ASGI format

The middleware must run inside the authentication layer so the caller is
already resolved when it sees the request. With Starlette that means adding
it before AuthenticationMiddleware (later additions wrap earlier ones).

Examples:
    FastAPI integration::

        from fastapi import FastAPI
        from starlette.middleware.authentication import AuthenticationMiddleware
        from idempotency_coordinator.adapters.asgi import (
            ASGIIdempotencyMiddleware,
            create_cleanup_route,
            idempotency_lifespan,
        )
        from idempotency_coordinator.core.cleanup import ExpirySweeper
        from idempotency_coordinator.storage.memory import MemoryStorageAdapter

        storage = MemoryStorageAdapter()
        sweeper = ExpirySweeper(storage)

        app = FastAPI(lifespan=lambda app: idempotency_lifespan(sweeper))
        app.add_middleware(ASGIIdempotencyMiddleware, storage=storage)
        app.add_middleware(AuthenticationMiddleware, backend=TokenBackend())
        app.add_api_route(
            "/admin/idempotency/cleanup",
            create_cleanup_route(sweeper),
            methods=["POST"],
        )
"""

import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import JSONResponse, Response

from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.cleanup import ExpirySweeper
from idempotency_coordinator.core.middleware import IdempotencyMiddleware, Request
from idempotency_coordinator.core.replay import ReplayedResponse
from idempotency_coordinator.exceptions import StorageError
from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.storage.base import StorageAdapter
from idempotency_coordinator.utils.headers import REPLAY_HEADER, get_header_value

logger = get_logger(__name__)

PrincipalResolver = Callable[[StarletteRequest], "str | None | Awaitable[str | None]"]


def default_principal_resolver(request: StarletteRequest) -> str | None:
    """Read the caller set by Starlette's AuthenticationMiddleware.

    Returns:
        The user's identity (or display name when the user type has no
        identity), or None for unauthenticated requests.
    """
    user = request.scope.get("user")
    if user is None or not getattr(user, "is_authenticated", False):
        return None

    try:
        identity = user.identity
    except NotImplementedError:
        identity = None

    principal = identity or user.display_name
    return str(principal) if principal else None


class ASGIIdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware for idempotency handling.

    This middleware wraps the core IdempotencyMiddleware and adapts it
    for use with ASGI frameworks like FastAPI and Starlette.

    Attributes:
        storage: Storage adapter for idempotency records
        config: Configuration object
        middleware: Core middleware instance
        principal_resolver: Callable returning the authenticated caller id
    """

    def __init__(
        self,
        app: Any,
        storage: StorageAdapter,
        config: IdempotencyConfig | None = None,
        principal_resolver: PrincipalResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the ASGI middleware.

        Args:
            app: The ASGI application
            storage: Storage adapter for idempotency records
            config: Configuration object (uses defaults if not provided)
            principal_resolver: Sync or async callable mapping a request to
                its caller id (defaults to the AuthenticationMiddleware user)
            clock: Optional time source for record timestamps, shared with
                the storage adapter in tests
        """
        super().__init__(app)
        self.storage = storage
        self.config = config or IdempotencyConfig()
        self.middleware = IdempotencyMiddleware(storage, self.config, clock=clock)
        self.principal_resolver = principal_resolver or default_principal_resolver

    async def dispatch(
        self,
        request: StarletteRequest,
        call_next: Callable[[StarletteRequest], Awaitable[Response]],
    ) -> Response:
        """Process an ASGI request with idempotency handling.

        Ineligible requests are handed to ``call_next`` untouched: their
        responses are neither buffered nor rebuilt.

        Args:
            request: The Starlette request object
            call_next: Function to call the next middleware/handler

        Returns:
            Starlette Response object
        """
        internal_request = await self._convert_request(request)
        decision = self.middleware.classify(internal_request)

        if not decision.is_eligible:
            response = await call_next(request)
            self.middleware.record_bypass(internal_request, decision, response.status_code)
            return response

        internal_request.body = await request.body()
        downstream: list[Response] = []

        async def handler(_req: Request) -> ReplayedResponse:
            response = await call_next(request)
            downstream.append(response)

            body = b""
            if hasattr(response, "body_iterator"):
                async for chunk in response.body_iterator:
                    if isinstance(chunk, str):
                        body += chunk.encode("utf-8")
                    else:
                        body += bytes(chunk)
            else:
                body = bytes(getattr(response, "body", b""))

            return ReplayedResponse(
                status=response.status_code,
                headers=dict(response.headers),
                body=body,
            )

        result = await self.middleware.process(internal_request, handler)
        return self._convert_response(result, downstream[-1] if downstream else None)

    async def _convert_request(self, request: StarletteRequest) -> Request:
        """Convert Starlette request to internal Request format (body not read)."""
        principal = self.principal_resolver(request)
        if inspect.isawaitable(principal):
            principal = await principal

        return Request(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers.items()),
            principal=principal,
        )

    def _convert_response(
        self,
        response: ReplayedResponse,
        downstream: Response | None = None,
    ) -> Response:
        """Convert internal ReplayedResponse to Starlette Response.

        When ``response`` is the handler's own outcome, the downstream header
        list is kept as is, so repeated headers (several Set-Cookie) survive.
        Replays are built from the stored headers.
        """
        if downstream is None or get_header_value(response.headers, REPLAY_HEADER) == "true":
            return Response(
                content=response.body,
                status_code=response.status,
                headers=response.headers,
            )

        converted = Response(content=response.body, status_code=response.status)
        raw_headers = list(downstream.raw_headers)
        present = {name for name, _ in raw_headers}
        for name, value in response.headers.items():
            encoded = name.lower().encode("latin-1")
            if encoded not in present:
                raw_headers.append((encoded, value.encode("latin-1")))
        converted.raw_headers = raw_headers
        return converted


def create_cleanup_route(
    sweeper: ExpirySweeper,
) -> Callable[[StarletteRequest], Awaitable[JSONResponse]]:
    """Build the operator endpoint that purges expired records on demand.

    The returned coroutine function can be registered on FastAPI or
    Starlette routers. It answers ``{"purged": <count>}``, or 503 when the
    store is unavailable.
    """

    async def cleanup_endpoint(request: StarletteRequest) -> JSONResponse:
        try:
            purged = await sweeper.trigger()
        except StorageError as e:
            logger.error("cleanup.trigger_failed", error=e.message)
            return JSONResponse({"error": e.message}, status_code=503)

        logger.info("cleanup.triggered", records_removed=purged)
        return JSONResponse({"purged": purged})

    return cleanup_endpoint


@asynccontextmanager
async def idempotency_lifespan(sweeper: ExpirySweeper) -> AsyncIterator[None]:
    """Run the expiry sweeper for the lifetime of the application."""
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
