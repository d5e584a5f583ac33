"""Header utilities for the idempotency coordinator.

This module provides functions for:
- Case-insensitive header lookup (used to read the idempotency key)
- Filtering volatile headers before a response is cached or replayed
- Adding replay metadata headers
"""

from datetime import datetime

# Response header names carrying replay metadata
REPLAY_HEADER = "Idempotent-Replay"
KEY_HEADER = "Idempotency-Key"
REPLAYED_AT_HEADER = "Idempotent-Replayed-At"
ORIGINAL_CREATED_AT_HEADER = "Idempotent-Original-Created-At"

# Headers that should be removed from cached and replayed responses
# These are volatile and may differ between the original response and a replay
VOLATILE_HEADERS = {
    "date",
    "server",
    "connection",
    "transfer-encoding",
    "keep-alive",
    "trailer",
    "upgrade",
    "proxy-connection",
    "proxy-authenticate",
    "proxy-authorization",
}

# Headers that are per-response rather than per-outcome
OPTIONAL_VOLATILE_HEADERS = {
    "set-cookie",
    "age",
    "expires",
    "etag",
    "last-modified",
}

# Replay metadata must never be cached as part of the outcome
_REPLAY_METADATA_HEADERS = {
    REPLAY_HEADER.lower(),
    KEY_HEADER.lower(),
    REPLAYED_AT_HEADER.lower(),
    ORIGINAL_CREATED_AT_HEADER.lower(),
}


def get_header_value(
    headers: dict[str, str],
    header_name: str,
    default: str | None = None,
) -> str | None:
    """Get header value with case-insensitive lookup.

    Args:
        headers: Headers dictionary
        header_name: Name of header to find (case-insensitive)
        default: Default value if header not found

    Returns:
        Header value or default

    Example:
        >>> get_header_value({"IDEMPOTENCY-KEY": "abc"}, "Idempotency-Key")
        'abc'
        >>> get_header_value({}, "missing", "default")
        'default'
    """
    header_name_lower = header_name.lower()

    for key, value in headers.items():
        if key.lower() == header_name_lower:
            return value

    return default


def filter_response_headers(
    headers: dict[str, str],
    remove_cookies: bool = True,
    additional_volatile: list[str] | None = None,
) -> dict[str, str]:
    """Filter volatile headers from response headers.

    Cookies are removed by default: a replay must not hand one caller's
    session cookie to a later request.

    Args:
        headers: Original response headers
        remove_cookies: If True, remove Set-Cookie and caching validators
        additional_volatile: Additional header names to remove (case-insensitive)

    Returns:
        Filtered headers dictionary

    Example:
        >>> filter_response_headers({
        ...     "Content-Type": "application/json",
        ...     "Date": "Mon, 01 Oct 2025 12:00:00 GMT",
        ... })
        {'Content-Type': 'application/json'}
    """
    headers_to_remove = VOLATILE_HEADERS | _REPLAY_METADATA_HEADERS

    if remove_cookies:
        headers_to_remove = headers_to_remove | OPTIONAL_VOLATILE_HEADERS

    if additional_volatile:
        headers_to_remove = headers_to_remove | {h.lower() for h in additional_volatile}

    return {key: value for key, value in headers.items() if key.lower() not in headers_to_remove}


def add_replay_headers(
    headers: dict[str, str],
    idempotency_key: str,
    is_replay: bool = True,
    replayed_at: datetime | None = None,
    original_created_at: datetime | None = None,
    key_header: str = KEY_HEADER,
) -> dict[str, str]:
    """Add idempotency metadata headers to a response.

    Args:
        headers: Existing response headers
        idempotency_key: The idempotency key used for this request
        is_replay: Whether this response was served from the cache
        replayed_at: When the replay was served (replays only)
        original_created_at: When the cached outcome was recorded (replays only)
        key_header: Header name the key is echoed under (the configured
            request header name)

    Returns:
        A new headers dict with replay metadata added

    Example:
        >>> add_replay_headers({"Content-Type": "application/json"}, "abc-123")
        {'Content-Type': 'application/json', 'Idempotent-Replay': 'true', 'Idempotency-Key': 'abc-123'}
    """
    result = headers.copy()

    result[REPLAY_HEADER] = "true" if is_replay else "false"
    result[key_header] = idempotency_key

    if replayed_at is not None:
        result[REPLAYED_AT_HEADER] = replayed_at.isoformat()
    if original_created_at is not None:
        result[ORIGINAL_CREATED_AT_HEADER] = original_created_at.isoformat()

    return result
