"""Scenario 1: Happy Path Conformance Tests

This module tests the core replay flow through the demo wallet API:
- First deposit with an idempotency key executes the handler
- The outcome is stored and returned
- A retry with the same key returns the cached outcome (replay)
- Replay has header: Idempotent-Replay: true
- Replayed status and body match exactly
- The ledger is only moved once
"""

import asyncio

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from demo_app import create_app
from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.storage.memory import MemoryStorageAdapter

ALICE = {"Authorization": "Bearer alice-token"}
BOB = {"Authorization": "Bearer bob-token"}


@pytest.fixture
def app(storage: MemoryStorageAdapter) -> FastAPI:
    return create_app(storage=storage, config=IdempotencyConfig())


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create a test client."""
    return TestClient(app)


def deposit(client: TestClient, key: str, amount: int = 100, auth: dict = ALICE):
    return client.post(
        "/wallets/deposit",
        json={"amount": amount},
        headers={**auth, "Idempotency-Key": key},
    )


def test_first_deposit_executes_handler(client: TestClient) -> None:
    """The first request runs the handler and is marked as a fresh response."""
    response = deposit(client, "deposit-001")

    assert response.status_code == 201
    data = response.json()
    assert data["kind"] == "deposit"
    assert data["amount"] == 100
    assert data["balance"] == 100
    assert data["transaction_id"].startswith("txn_")

    assert response.headers.get("Idempotency-Key") == "deposit-001"
    assert response.headers.get("Idempotent-Replay") == "false"


def test_retry_returns_cached_outcome(client: TestClient) -> None:
    """A retried deposit replays the original transaction instead of a new one."""
    first = deposit(client, "deposit-002")
    second = deposit(client, "deposit-002")

    assert second.status_code == first.status_code == 201
    assert second.content == first.content
    assert second.headers.get("Idempotent-Replay") == "true"
    assert second.headers.get("Idempotency-Key") == "deposit-002"
    assert "Idempotent-Replayed-At" in second.headers
    assert "Idempotent-Original-Created-At" in second.headers

    balance = client.get("/wallets/me", headers=ALICE).json()["balance"]
    assert balance == 100


def test_many_retries_move_money_once(client: TestClient) -> None:
    responses = [deposit(client, "deposit-003", amount=250) for _ in range(5)]

    assert len({r.json()["transaction_id"] for r in responses}) == 1
    assert [r.headers["Idempotent-Replay"] for r in responses] == ["false"] + ["true"] * 4
    assert client.get("/wallets/me", headers=ALICE).json()["balance"] == 250


def test_replay_ignores_changed_body(client: TestClient) -> None:
    """The key alone identifies the operation; the first outcome wins."""
    first = deposit(client, "deposit-004", amount=100)
    second = deposit(client, "deposit-004", amount=999)

    assert second.json() == first.json()
    assert client.get("/wallets/me", headers=ALICE).json()["balance"] == 100


def test_key_header_is_case_insensitive(client: TestClient) -> None:
    first = client.post(
        "/wallets/deposit",
        json={"amount": 100},
        headers={**ALICE, "IDEMPOTENCY-KEY": "deposit-005"},
    )
    second = client.post(
        "/wallets/deposit",
        json={"amount": 100},
        headers={**ALICE, "idempotency-key": "deposit-005"},
    )

    assert second.headers["Idempotent-Replay"] == "true"
    assert second.json() == first.json()


def test_key_value_case_is_normalized(client: TestClient) -> None:
    first = deposit(client, "Deposit-ABC")
    second = deposit(client, "deposit-abc")

    assert second.headers["Idempotent-Replay"] == "true"
    assert second.json()["transaction_id"] == first.json()["transaction_id"]


def test_distinct_keys_execute_separately(client: TestClient) -> None:
    first = deposit(client, "deposit-006")
    second = deposit(client, "deposit-007")

    assert first.json()["transaction_id"] != second.json()["transaction_id"]
    assert client.get("/wallets/me", headers=ALICE).json()["balance"] == 200


def test_transfer_is_replayed(client: TestClient) -> None:
    deposit(client, "seed-funds", amount=500)

    first = client.post(
        "/wallets/transfer",
        json={"to_user": "bob", "amount": 200},
        headers={**ALICE, "Idempotency-Key": "transfer-001"},
    )
    second = client.post(
        "/wallets/transfer",
        json={"to_user": "bob", "amount": 200},
        headers={**ALICE, "Idempotency-Key": "transfer-001"},
    )

    assert first.status_code == 201
    assert second.json() == first.json()
    assert client.get("/wallets/me", headers=ALICE).json()["balance"] == 300
    assert client.get("/wallets/me", headers=BOB).json()["balance"] == 200


def test_record_is_persisted(client: TestClient, storage: MemoryStorageAdapter) -> None:
    response = deposit(client, "deposit-008")

    lookup = asyncio.run(storage.lookup("alice", "deposit-008"))
    assert lookup.is_hit
    assert lookup.record.status_code == 201
    assert lookup.record.get_payload_bytes() == response.content
