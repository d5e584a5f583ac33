"""Demo wallet API protected by the idempotency coordinator.

Deposits, withdrawals and transfers are side-effecting mutations: a client
that retries one with the same Idempotency-Key gets the first outcome back
instead of moving money twice.

Run with: python demo_app.py
Then try::

    curl -X POST localhost:8000/wallets/deposit \\
        -H "Authorization: Bearer alice-token" \\
        -H "Idempotency-Key: deposit-001" \\
        -H "Content-Type: application/json" \\
        -d '{"amount": 100}'

Configuration is read from IDEMPOTENCY_* environment variables (for example
IDEMPOTENCY_STORAGE_ADAPTER=sql, IDEMPOTENCY_DATABASE_URL and
IDEMPOTENCY_LOG_LEVEL).
"""

import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    AuthenticationError,
    SimpleUser,
)
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.requests import HTTPConnection

from idempotency_coordinator.adapters.asgi import (
    ASGIIdempotencyMiddleware,
    create_cleanup_route,
    idempotency_lifespan,
)
from idempotency_coordinator.config import IdempotencyConfig
from idempotency_coordinator.core.cleanup import ExpirySweeper
from idempotency_coordinator.observability.logging import configure_logging_from_config, get_logger
from idempotency_coordinator.storage import StorageAdapter, create_storage
from idempotency_coordinator.storage.sql import SQLAlchemyStorageAdapter

logger = get_logger(__name__)

# Bearer token -> user id
DEMO_TOKENS = {
    "alice-token": "alice",
    "bob-token": "bob",
}


class TokenBackend(AuthenticationBackend):
    """Resolves the caller from an ``Authorization: Bearer <token>`` header."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self.tokens = tokens

    async def authenticate(self, conn: HTTPConnection) -> tuple[AuthCredentials, SimpleUser] | None:
        header = conn.headers.get("authorization")
        if not header:
            return None

        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise AuthenticationError("Malformed Authorization header")

        user_id = self.tokens.get(token.strip())
        if user_id is None:
            raise AuthenticationError("Unknown token")

        return AuthCredentials(["authenticated"]), SimpleUser(user_id)


class AmountRequest(BaseModel):
    amount: int = Field(gt=0, description="Amount in minor units (cents)")


class TransferRequest(BaseModel):
    to_user: str
    amount: int = Field(gt=0)


class TransactionResponse(BaseModel):
    transaction_id: str
    kind: str
    amount: int
    balance: int
    created_at: str


class Ledger:
    """In-memory wallet balances and transaction log."""

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.transactions: list[dict[str, object]] = []

    def balance(self, user_id: str) -> int:
        return self.balances.get(user_id, 0)

    def apply(self, user_id: str, kind: str, delta: int, amount: int) -> TransactionResponse:
        self.balances[user_id] = self.balance(user_id) + delta
        transaction = TransactionResponse(
            transaction_id=f"txn_{uuid.uuid4().hex[:16]}",
            kind=kind,
            amount=amount,
            balance=self.balances[user_id],
            created_at=datetime.now(UTC).isoformat(),
        )
        self.transactions.append({"user_id": user_id, **transaction.model_dump()})
        return transaction


def current_user(request: Request) -> str:
    """FastAPI dependency returning the authenticated user id."""
    user = request.scope.get("user")
    if user is None or not user.is_authenticated:
        raise HTTPException(status_code=401, detail="Authentication required")
    return str(user.display_name)


def create_app(
    storage: StorageAdapter | None = None,
    config: IdempotencyConfig | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Build the demo application.

    Args:
        storage: Storage adapter (built from config when omitted)
        config: Configuration (read from the environment when omitted)
        clock: Time source for record timestamps; pass the same clock
            the storage adapter uses
    """
    if config is None:
        config = IdempotencyConfig.from_env()
    if storage is None:
        storage = create_storage(config)
    sweeper = ExpirySweeper(storage, interval_seconds=config.cleanup_interval_seconds)
    ledger = Ledger()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if isinstance(storage, SQLAlchemyStorageAdapter):
            await storage.create_schema()
        async with idempotency_lifespan(sweeper):
            yield
        if isinstance(storage, SQLAlchemyStorageAdapter):
            await storage.dispose()

    app = FastAPI(
        title="Wallet API (idempotency demo)",
        description="Payment endpoints made replay-safe with Idempotency-Key",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.ledger = ledger
    app.state.storage = storage
    app.state.sweeper = sweeper

    # Added first so the authentication layer wraps it
    app.add_middleware(ASGIIdempotencyMiddleware, storage=storage, config=config, clock=clock)
    app.add_middleware(AuthenticationMiddleware, backend=TokenBackend(DEMO_TOKENS))

    @app.get("/wallets/me")
    async def get_wallet(user_id: str = Depends(current_user)):
        """Read the caller's balance (safe method, never deduplicated)."""
        return {"user_id": user_id, "balance": ledger.balance(user_id)}

    @app.post("/wallets/deposit", status_code=201, response_model=TransactionResponse)
    async def deposit(body: AmountRequest, user_id: str = Depends(current_user)):
        logger.info("wallet.deposit", user_id=user_id, amount=body.amount)
        return ledger.apply(user_id, "deposit", body.amount, body.amount)

    @app.post("/wallets/withdraw", status_code=201, response_model=TransactionResponse)
    async def withdraw(body: AmountRequest, user_id: str = Depends(current_user)):
        if ledger.balance(user_id) < body.amount:
            raise HTTPException(status_code=422, detail="Insufficient funds")
        logger.info("wallet.withdraw", user_id=user_id, amount=body.amount)
        return ledger.apply(user_id, "withdraw", -body.amount, body.amount)

    @app.post("/wallets/transfer", status_code=201, response_model=TransactionResponse)
    async def transfer(body: TransferRequest, user_id: str = Depends(current_user)):
        if body.to_user == user_id:
            raise HTTPException(status_code=422, detail="Cannot transfer to yourself")
        if ledger.balance(user_id) < body.amount:
            raise HTTPException(status_code=422, detail="Insufficient funds")
        logger.info("wallet.transfer", user_id=user_id, to_user=body.to_user, amount=body.amount)
        ledger.apply(body.to_user, "transfer_in", body.amount, body.amount)
        return ledger.apply(user_id, "transfer_out", -body.amount, body.amount)

    app.add_api_route(
        "/admin/idempotency/cleanup",
        create_cleanup_route(sweeper),
        methods=["POST"],
    )

    return app


if __name__ == "__main__":
    app_config = IdempotencyConfig.from_env()
    configure_logging_from_config(app_config)
    uvicorn.run(create_app(config=app_config), host="0.0.0.0", port=8000)
