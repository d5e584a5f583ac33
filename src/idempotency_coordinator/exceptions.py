"""Custom exceptions for the idempotency coordinator.

This module defines the exception hierarchy used by the coordinator. Only
infrastructure problems are modelled as exceptions: a lost insert race, an
expired record or an ineligible request are ordinary results, not errors.

Examples:
    Handling a storage error (fail open)::

        from idempotency_coordinator.exceptions import StorageError

        try:
            result = await storage.lookup(owner, key)
        except StorageError as e:
            logger.warning("idempotency.store_unavailable", error=str(e))
            # Proceed without idempotency protection
            return await handler(request)
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.

    Examples:
        Catching all coordinator errors::

            try:
                purged = await sweeper.trigger()
            except IdempotencyError as e:
                logger.error("cleanup.failed", error=e.message)
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class StorageError(IdempotencyError):
    """Storage backend operation failed.

    Raised when the backend cannot complete an operation for reasons unrelated
    to the ``(owner, key)`` uniqueness constraint:

    1. Network failures (connection refused, timeouts)
    2. Database unavailability or exhausted connection pools
    3. Permission errors or schema problems

    The middleware fails open on this error: the request executes without
    idempotency protection and the failure is only logged.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the storage error.

    Examples:
        Raising a storage error from an adapter::

            try:
                await session.execute(stmt)
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to look up key: {e}", cause=e) from e
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        """Initialize the storage error with details.

        Args:
            message: Human-readable error description.
            cause: The underlying exception that caused the storage error.
        """
        super().__init__(message)
        self.cause = cause


class InvalidKeyError(IdempotencyError):
    """The client-supplied idempotency key cannot be used.

    Raised by key validation when a key is blank or longer than the storage
    column allows. The classifier converts it into an ineligible decision, so
    the client never sees this error; the request simply runs unprotected.

    Attributes:
        message: Human-readable error description.
        key: The rejected key.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key
