"""Framework adapters for the idempotency coordinator.

This package provides adapters that integrate the framework-agnostic core
middleware with specific web frameworks:

- asgi.py: ASGI middleware for FastAPI, Starlette, etc., plus the operator
  cleanup endpoint and the sweeper lifespan

The adapters handle the conversion between framework-specific request/response
objects and the middleware's internal representation.
"""

from idempotency_coordinator.adapters.asgi import (
    ASGIIdempotencyMiddleware,
    create_cleanup_route,
    default_principal_resolver,
    idempotency_lifespan,
)

__all__ = [
    "ASGIIdempotencyMiddleware",
    "create_cleanup_route",
    "default_principal_resolver",
    "idempotency_lifespan",
]
