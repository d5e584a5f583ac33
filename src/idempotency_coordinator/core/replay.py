"""Response capture and replay for the idempotency coordinator.

This module converts between the framework-neutral ReplayedResponse and the
persisted IdempotencyRecord:

1. capture_record() builds the record stored after a successful execution,
   dropping volatile headers so only the outcome itself is cached
2. replay_response() rebuilds the response for a duplicate request: cached
   status and body verbatim, plus replay metadata headers

Examples:
    Basic replay::

        from idempotency_coordinator.core.replay import replay_response

        response = replay_response(record, "deposit-001")
        # response.status == record.status_code
        # response.body == record.get_payload_bytes()
        # response.headers["Idempotent-Replay"] == "true"
"""

from datetime import datetime

from idempotency_coordinator.models import IdempotencyRecord, ensure_utc, utcnow
from idempotency_coordinator.utils.headers import (
    KEY_HEADER,
    add_replay_headers,
    filter_response_headers,
)


class ReplayedResponse:
    """Represents an HTTP response, fresh or replayed.

    Attributes:
        status: HTTP status code (e.g., 200, 404, 500)
        headers: Response headers as key-value pairs
        body: Response body as bytes
    """

    def __init__(self, status: int, headers: dict[str, str], body: bytes) -> None:
        self.status = status
        self.headers = headers
        self.body = body

    @property
    def is_success(self) -> bool:
        """True for 2xx responses, the only ones that are ever cached."""
        return 200 <= self.status < 300


def capture_record(
    owner: str,
    key: str,
    response: ReplayedResponse,
    ttl_seconds: int,
    now: datetime | None = None,
    key_header: str = KEY_HEADER,
) -> IdempotencyRecord:
    """Build the record persisting a successful handler response.

    Args:
        owner: Authenticated caller id
        key: Normalized idempotency key
        response: The handler's 2xx response
        ttl_seconds: Deployment-wide TTL
        now: Creation time (defaults to current UTC time)
        key_header: Configured key header name, never stored with the outcome

    Raises:
        ValueError: If the response is not a 2xx response.
    """
    if not response.is_success:
        raise ValueError(f"Only 2xx responses are cached, got {response.status}")

    return IdempotencyRecord.new(
        owner=owner,
        key=key,
        status_code=response.status,
        body=response.body,
        headers=filter_response_headers(response.headers, additional_volatile=[key_header]),
        ttl_seconds=ttl_seconds,
        now=now,
    )


def replay_response(
    record: IdempotencyRecord,
    key: str,
    now: datetime | None = None,
    key_header: str = KEY_HEADER,
) -> ReplayedResponse:
    """Reconstruct the cached response for a duplicate request.

    Status and body are returned verbatim. Headers are the stored headers
    plus replay metadata: the duplicate flag, the key, when this replay was
    served and when the original outcome was recorded.

    Args:
        record: The cached idempotency record
        key: The idempotency key for this request
        now: Replay time (defaults to current UTC time)
        key_header: Header name the key is echoed under

    Returns:
        ReplayedResponse object with status, headers, and body

    Example:
        >>> response = replay_response(record, "deposit-001")
        >>> response.headers["Idempotent-Replay"]
        'true'
    """
    replayed_at = ensure_utc(now) if now is not None else utcnow()

    headers = add_replay_headers(
        filter_response_headers(record.headers, additional_volatile=[key_header]),
        key,
        is_replay=True,
        replayed_at=replayed_at,
        original_created_at=record.created_at,
        key_header=key_header,
    )

    return ReplayedResponse(
        status=record.status_code,
        headers=headers,
        body=record.get_payload_bytes(),
    )
