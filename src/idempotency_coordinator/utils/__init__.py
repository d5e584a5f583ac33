"""Utility modules for the idempotency coordinator."""

from .headers import (
    KEY_HEADER,
    REPLAY_HEADER,
    REPLAYED_AT_HEADER,
    VOLATILE_HEADERS,
    add_replay_headers,
    filter_response_headers,
    get_header_value,
)

__all__ = [
    "filter_response_headers",
    "add_replay_headers",
    "get_header_value",
    "VOLATILE_HEADERS",
    "REPLAY_HEADER",
    "KEY_HEADER",
    "REPLAYED_AT_HEADER",
]
