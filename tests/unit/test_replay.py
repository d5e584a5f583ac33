"""Unit tests for response capture and replay."""

from datetime import UTC, datetime, timedelta

import pytest

from idempotency_coordinator.core.replay import ReplayedResponse, capture_record, replay_response
from idempotency_coordinator.models import IdempotencyRecord

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def test_capture_record_basic() -> None:
    response = ReplayedResponse(
        status=201,
        headers={"content-type": "application/json", "date": "Mon, 01 Jan 2024 12:00:00 GMT"},
        body=b'{"transaction_id": "T1"}',
    )

    record = capture_record("user-42", "deposit-001", response, ttl_seconds=3600, now=NOW)

    assert record.owner == "user-42"
    assert record.key == "deposit-001"
    assert record.status_code == 201
    assert record.get_payload_bytes() == b'{"transaction_id": "T1"}'
    assert record.headers == {"content-type": "application/json"}
    assert record.expires_at == NOW + timedelta(hours=1)


@pytest.mark.parametrize("status", [400, 402, 409, 422, 500, 503])
def test_capture_record_rejects_failures(status: int) -> None:
    """Failed mutations are never cached."""
    response = ReplayedResponse(status=status, headers={}, body=b"{}")
    with pytest.raises(ValueError, match="Only 2xx"):
        capture_record("user-42", "k1", response, ttl_seconds=60)


def test_replayed_response_is_success() -> None:
    assert ReplayedResponse(200, {}, b"").is_success
    assert ReplayedResponse(299, {}, b"").is_success
    assert not ReplayedResponse(302, {}, b"").is_success
    assert not ReplayedResponse(500, {}, b"").is_success


def test_replay_response_basic(sample_record: IdempotencyRecord) -> None:
    """Cached status and body are replayed verbatim."""
    response = replay_response(sample_record, "deposit-001")

    assert isinstance(response, ReplayedResponse)
    assert response.status == 201
    assert response.body == b'{"transaction_id": "T1", "amount": 100}'
    assert response.headers["content-type"] == "application/json"
    assert response.headers["Idempotent-Replay"] == "true"
    assert response.headers["Idempotency-Key"] == "deposit-001"


def test_replay_response_timestamps() -> None:
    record = IdempotencyRecord.new(
        owner="user-42", key="k1", status_code=200, body=b"ok", now=NOW
    )
    replayed_at = NOW + timedelta(minutes=5)

    response = replay_response(record, "k1", now=replayed_at)

    assert response.headers["Idempotent-Replayed-At"] == replayed_at.isoformat()
    assert response.headers["Idempotent-Original-Created-At"] == NOW.isoformat()


def test_replay_response_filters_volatile_headers() -> None:
    record = IdempotencyRecord.new(
        owner="user-42",
        key="k1",
        status_code=200,
        body=b"ok",
        headers={"content-type": "text/plain", "set-cookie": "session=abc"},
        now=NOW,
    )

    response = replay_response(record, "k1")

    assert "set-cookie" not in response.headers
    assert response.headers["content-type"] == "text/plain"


def test_replay_is_stable_across_calls(sample_record: IdempotencyRecord) -> None:
    """Every replay carries the same status and body."""
    first = replay_response(sample_record, "deposit-001")
    second = replay_response(sample_record, "deposit-001")

    assert first.status == second.status
    assert first.body == second.body


def test_configured_key_header_is_not_cached() -> None:
    response = ReplayedResponse(
        status=201,
        headers={"content-type": "application/json", "X-Request-Key": "k1"},
        body=b"{}",
    )

    record = capture_record("user-42", "k1", response, 60, now=NOW, key_header="X-Request-Key")
    replay = replay_response(record, "k1", now=NOW, key_header="X-Request-Key")

    assert record.headers == {"content-type": "application/json"}
    assert replay.headers["X-Request-Key"] == "k1"
    assert "Idempotency-Key" not in replay.headers
