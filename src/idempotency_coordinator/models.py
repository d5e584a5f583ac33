"""Core type definitions and models for the idempotency coordinator.

This module provides the data structures shared by the classifier, the
storage adapters and the capture pipeline: the persisted idempotency record,
the results of store lookups and inserts, and the eligibility decision made
for each inbound request.

Examples:
    Creating a record for a successful deposit::

        from idempotency_coordinator.models import IdempotencyRecord

        record = IdempotencyRecord.new(
            owner="user-42",
            key="deposit-2024-01-01-001",
            status_code=201,
            body=b'{"transaction_id": "T1"}',
            headers={"content-type": "application/json"},
            ttl_seconds=86400,
        )

    Interpreting a lookup::

        result = await storage.lookup("user-42", "deposit-2024-01-01-001")
        if result.status is LookupStatus.HIT:
            replay(result.record)
"""

import base64
import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC.

    Some backends (SQLite) hand back naive datetimes for columns written as
    UTC; comparisons against aware timestamps require a consistent form.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class IdempotencyRecord(BaseModel):
    """Cached outcome of a successful mutation, scoped to (owner, key).

    Records are created only after the wrapped handler returned a 2xx
    response, and never change afterwards. They disappear when the sweeper
    purges them, and lookups treat them as absent once expired.

    Attributes:
        id: Opaque identifier assigned at creation.
        owner: Authenticated caller the key belongs to.
        key: Client-supplied idempotency key, already normalized.
        status_code: HTTP status of the cached outcome (always 2xx).
        response_payload: Base64-encoded serialized response body.
        headers: Replay-relevant response headers (e.g. content-type).
        created_at: When the record was written.
        expires_at: created_at + TTL; replayable until this instant.
    """

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Opaque record identifier",
        examples=["550e8400-e29b-41d4-a716-446655440000"],
    )
    owner: str = Field(
        ...,
        description="Authenticated caller identifier scoping the key",
        min_length=1,
        max_length=255,
        examples=["user-42"],
    )
    key: str = Field(
        ...,
        description="Idempotency key provided by the client",
        min_length=1,
        max_length=255,
        examples=["deposit-2024-01-01-001"],
    )
    status_code: int = Field(
        ...,
        description="HTTP status code of the cached outcome",
        ge=200,
        le=299,
        examples=[200, 201],
    )
    response_payload: str = Field(
        ...,
        description="Base64-encoded response body",
        examples=["eyJ0cmFuc2FjdGlvbl9pZCI6ICJUMSJ9"],
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Response headers replayed with the cached body",
        examples=[{"content-type": "application/json"}],
    )
    created_at: datetime = Field(
        ...,
        description="Timestamp when the record was created",
    )
    expires_at: datetime = Field(
        ...,
        description="Timestamp after which the record is no longer replayable",
    )

    model_config = {"frozen": True}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        try:
            UUID(v)
        except ValueError as e:
            raise ValueError(f"Invalid UUID format for id: {e}") from e
        return v

    @field_validator("response_payload")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        """Validate that the payload is properly base64-encoded."""
        try:
            base64.b64decode(v, validate=True)
        except Exception as e:
            raise ValueError(f"Invalid base64 encoding: {e}") from e
        return v

    @field_validator("created_at", "expires_at")
    @classmethod
    def validate_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("expires_at")
    @classmethod
    def validate_expires_after_created(cls, v: datetime, info: Any) -> datetime:
        """Validate that expires_at is after created_at."""
        if "created_at" in info.data and v <= info.data["created_at"]:
            raise ValueError("expires_at must be after created_at")
        return v

    @classmethod
    def new(
        cls,
        owner: str,
        key: str,
        status_code: int,
        body: bytes,
        headers: dict[str, str] | None = None,
        ttl_seconds: int = 86400,
        now: datetime | None = None,
    ) -> "IdempotencyRecord":
        """Build a fresh record expiring ``ttl_seconds`` after ``now``."""
        created_at = ensure_utc(now) if now is not None else utcnow()
        return cls(
            owner=owner,
            key=key,
            status_code=status_code,
            response_payload=base64.b64encode(body).decode("ascii"),
            headers=headers or {},
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl_seconds),
        )

    def get_payload_bytes(self) -> bytes:
        """Decode and return the cached response body."""
        return base64.b64decode(self.response_payload)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True once ``now`` has passed ``expires_at``."""
        current = ensure_utc(now) if now is not None else utcnow()
        return current > self.expires_at


class LookupStatus(str, Enum):
    """Outcome of looking up an (owner, key) slot.

    Attributes:
        ABSENT: No record exists.
        EXPIRED: A record existed but its TTL had elapsed; it was reclaimed.
        HIT: An unexpired record exists and can be replayed.
    """

    ABSENT = "ABSENT"
    EXPIRED = "EXPIRED"
    HIT = "HIT"


class LookupResult(BaseModel):
    """Result of StorageAdapter.lookup().

    Callers treat EXPIRED exactly like ABSENT.

    Attributes:
        status: What the store found.
        record: The cached record when status is HIT, None otherwise.
    """

    status: LookupStatus
    record: IdempotencyRecord | None = Field(default=None, validate_default=True)

    @field_validator("record")
    @classmethod
    def validate_record_with_status(
        cls, v: IdempotencyRecord | None, info: Any
    ) -> IdempotencyRecord | None:
        """Validate that a record is present if and only if status is HIT."""
        if "status" in info.data:
            status = info.data["status"]
            if status is LookupStatus.HIT and v is None:
                raise ValueError("record must be provided when status is HIT")
            if status is not LookupStatus.HIT and v is not None:
                raise ValueError("record must be None unless status is HIT")
        return v

    @property
    def is_hit(self) -> bool:
        return self.status is LookupStatus.HIT

    @classmethod
    def absent(cls) -> "LookupResult":
        return cls(status=LookupStatus.ABSENT)

    @classmethod
    def expired(cls) -> "LookupResult":
        return cls(status=LookupStatus.EXPIRED)

    @classmethod
    def hit(cls, record: IdempotencyRecord) -> "LookupResult":
        return cls(status=LookupStatus.HIT, record=record)


class InsertStatus(str, Enum):
    """Outcome of StorageAdapter.try_insert().

    Attributes:
        INSERTED: This call created the record.
        ALREADY_EXISTS: A concurrent insert for the same (owner, key) won.
    """

    INSERTED = "INSERTED"
    ALREADY_EXISTS = "ALREADY_EXISTS"


class InsertResult(BaseModel):
    """Result of StorageAdapter.try_insert().

    Attributes:
        status: Whether the insert won or lost.
        record: The stored record when INSERTED, None otherwise.
    """

    status: InsertStatus
    record: IdempotencyRecord | None = Field(default=None, validate_default=True)

    @field_validator("record")
    @classmethod
    def validate_record_with_status(
        cls, v: IdempotencyRecord | None, info: Any
    ) -> IdempotencyRecord | None:
        if "status" in info.data:
            status = info.data["status"]
            if status is InsertStatus.INSERTED and v is None:
                raise ValueError("record must be provided when status is INSERTED")
            if status is InsertStatus.ALREADY_EXISTS and v is not None:
                raise ValueError("record must be None when status is ALREADY_EXISTS")
        return v

    @property
    def inserted(self) -> bool:
        return self.status is InsertStatus.INSERTED

    @classmethod
    def already_exists(cls) -> "InsertResult":
        return cls(status=InsertStatus.ALREADY_EXISTS)


class Eligibility(str, Enum):
    """Whether idempotency applies to a request."""

    ELIGIBLE = "ELIGIBLE"
    INELIGIBLE = "INELIGIBLE"


class IneligibleReason(str, Enum):
    """Why a request bypasses idempotency.

    Attributes:
        METHOD: The HTTP method is not a mutating method.
        MISSING_KEY: No (or a blank) idempotency header was sent.
        ANONYMOUS: No authenticated caller was resolved.
        INVALID_KEY: The key cannot be stored (too long).
        INVALID_OWNER: The caller id cannot be stored (too long).
    """

    METHOD = "method"
    MISSING_KEY = "missing_key"
    ANONYMOUS = "anonymous"
    INVALID_KEY = "invalid_key"
    INVALID_OWNER = "invalid_owner"


class EligibilityDecision(BaseModel):
    """Classifier verdict for one inbound request.

    Attributes:
        eligibility: ELIGIBLE or INELIGIBLE.
        owner: Authenticated caller id (eligible requests only).
        key: Normalized idempotency key (eligible requests only).
        reason: Why the request is ineligible (ineligible requests only).
    """

    eligibility: Eligibility
    owner: str | None = None
    key: str | None = None
    reason: IneligibleReason | None = None

    model_config = {"frozen": True}

    @property
    def is_eligible(self) -> bool:
        return self.eligibility is Eligibility.ELIGIBLE

    @classmethod
    def eligible(cls, owner: str, key: str) -> "EligibilityDecision":
        return cls(eligibility=Eligibility.ELIGIBLE, owner=owner, key=key)

    @classmethod
    def ineligible(cls, reason: IneligibleReason) -> "EligibilityDecision":
        return cls(eligibility=Eligibility.INELIGIBLE, reason=reason)


class Outcome(str, Enum):
    """How the coordinator resolved a request.

    Attributes:
        BYPASSED: Ineligible; the handler ran without idempotency.
        EXECUTED: Fresh execution whose 2xx outcome was cached.
        REPLAYED: Cache hit; the handler did not run.
        RACE_REPLAYED: The handler ran but a concurrent duplicate stored its
            outcome first; that outcome was replayed instead.
        NOT_CACHED: The handler returned a non-2xx status; nothing was cached.
        FAIL_OPEN: The store failed; the handler ran without protection.
    """

    BYPASSED = "bypassed"
    EXECUTED = "executed"
    REPLAYED = "replayed"
    RACE_REPLAYED = "race_replayed"
    NOT_CACHED = "not_cached"
    FAIL_OPEN = "fail_open"
