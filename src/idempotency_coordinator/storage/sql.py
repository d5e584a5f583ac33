"""SQLAlchemy storage adapter backed by a relational unique constraint.

The ``idempotency_keys`` table carries a UNIQUE (owner, idempotency_key)
constraint. That constraint, not an application-level existence check, is
what decides the winner when duplicate requests race: every worker simply
INSERTs, and the database rejects all but one.

Works with any SQLAlchemy async driver. Tests and local development use
``sqlite+aiosqlite``; production deployments point ``database_url`` at the
shared database every server instance can reach.

Examples:
    Creating the adapter and schema::

        from idempotency_coordinator.storage.sql import SQLAlchemyStorageAdapter

        storage = SQLAlchemyStorageAdapter.from_url("sqlite+aiosqlite:///./idem.db")
        await storage.create_schema()

        result = await storage.try_insert(record)
        if result.status is InsertStatus.ALREADY_EXISTS:
            ...

        await storage.dispose()
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any, cast

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    delete,
    func,
    select,
)
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from idempotency_coordinator.exceptions import StorageError
from idempotency_coordinator.models import (
    IdempotencyRecord,
    InsertResult,
    InsertStatus,
    LookupResult,
    ensure_utc,
    utcnow,
)
from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.storage.base import StorageAdapter

logger = get_logger(__name__)

# Connection failures surface either wrapped by SQLAlchemy or as raw OSError
_BACKEND_ERRORS = (SQLAlchemyError, OSError)


class Base(DeclarativeBase):
    pass


class IdempotencyKeyRow(Base):
    """Persistence shape of an idempotency record."""

    __tablename__ = "idempotency_keys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    response_payload: Mapped[str] = mapped_column(Text, nullable=False)
    headers: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("owner", "idempotency_key", name="uq_idempotency_keys_owner_key"),
        Index("ix_idempotency_keys_expires_at", "expires_at"),
    )

    @classmethod
    def from_record(cls, record: IdempotencyRecord) -> "IdempotencyKeyRow":
        return cls(
            id=record.id,
            owner=record.owner,
            idempotency_key=record.key,
            status_code=record.status_code,
            response_payload=record.response_payload,
            headers=dict(record.headers),
            created_at=record.created_at,
            expires_at=record.expires_at,
        )

    def to_record(self) -> IdempotencyRecord:
        return IdempotencyRecord(
            id=self.id,
            owner=self.owner,
            key=self.idempotency_key,
            status_code=self.status_code,
            response_payload=self.response_payload,
            headers=self.headers or {},
            created_at=ensure_utc(self.created_at),
            expires_at=ensure_utc(self.expires_at),
        )


class SQLAlchemyStorageAdapter(StorageAdapter):
    """Idempotency store over an async SQLAlchemy engine.

    Attributes:
        engine: The async engine shared by all sessions of this adapter.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            engine: Async engine pointing at the shared database.
            clock: Optional time source, used by tests to move time forward.
        """
        self.engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self._clock = clock or utcnow

    @classmethod
    def from_url(
        cls,
        url: str,
        clock: Callable[[], datetime] | None = None,
        **engine_kwargs: Any,
    ) -> "SQLAlchemyStorageAdapter":
        """Create an adapter with its own engine for ``url``."""
        return cls(create_async_engine(url, **engine_kwargs), clock=clock)

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    async def create_schema(self) -> None:
        """Create the idempotency_keys table if it does not exist."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except _BACKEND_ERRORS as e:
            raise StorageError(f"Failed to create idempotency schema: {e}", cause=e) from e

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()

    async def lookup(self, owner: str, key: str) -> LookupResult:
        now = self._now()
        try:
            async with self._session_factory() as session:
                stmt = select(IdempotencyKeyRow).where(
                    IdempotencyKeyRow.owner == owner,
                    IdempotencyKeyRow.idempotency_key == key,
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    return LookupResult.absent()

                record = row.to_record()
                if record.is_expired(now):
                    # Delete by id so a newer record in the slot is never touched
                    await session.execute(
                        delete(IdempotencyKeyRow).where(IdempotencyKeyRow.id == record.id)
                    )
                    await session.commit()
                    return LookupResult.expired()

                return LookupResult.hit(record)

        except _BACKEND_ERRORS as e:
            raise StorageError(f"Failed to look up idempotency key: {e}", cause=e) from e

    async def try_insert(self, record: IdempotencyRecord) -> InsertResult:
        try:
            if await self._insert(record):
                return InsertResult(status=InsertStatus.INSERTED, record=record)

            # The slot is taken. An expired occupant does not count, so
            # reclaim it and give the insert one more chance.
            if await self._reclaim_expired_slot(record.owner, record.key):
                if await self._insert(record):
                    return InsertResult(status=InsertStatus.INSERTED, record=record)

            return InsertResult.already_exists()

        except _BACKEND_ERRORS as e:
            raise StorageError(f"Failed to insert idempotency key: {e}", cause=e) from e

    async def _insert(self, record: IdempotencyRecord) -> bool:
        """INSERT the row; False when the unique constraint rejects it."""
        async with self._session_factory() as session:
            session.add(IdempotencyKeyRow.from_record(record))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def _reclaim_expired_slot(self, owner: str, key: str) -> bool:
        async with self._session_factory() as session:
            stmt = delete(IdempotencyKeyRow).where(
                IdempotencyKeyRow.owner == owner,
                IdempotencyKeyRow.idempotency_key == key,
                IdempotencyKeyRow.expires_at < self._now(),
            )
            cursor = cast(CursorResult[Any], await session.execute(stmt))
            await session.commit()
        if cursor.rowcount > 0:
            logger.debug("idempotency.slot_reclaimed", owner=owner, key=key)
            return True
        return False

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        reference = ensure_utc(now) if now is not None else self._now()
        try:
            async with self._session_factory() as session:
                stmt = delete(IdempotencyKeyRow).where(IdempotencyKeyRow.expires_at < reference)
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return cursor.rowcount or 0
        except _BACKEND_ERRORS as e:
            raise StorageError(f"Failed to clean up idempotency keys: {e}", cause=e) from e

    async def count(self, owner: str | None = None) -> int:
        try:
            async with self._session_factory() as session:
                stmt = select(func.count()).select_from(IdempotencyKeyRow)
                if owner is not None:
                    stmt = stmt.where(IdempotencyKeyRow.owner == owner)
                return int((await session.execute(stmt)).scalar_one())
        except _BACKEND_ERRORS as e:
            raise StorageError(f"Failed to count idempotency keys: {e}", cause=e) from e

    async def get(self, record_id: str) -> IdempotencyRecord | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(IdempotencyKeyRow, record_id)
                return row.to_record() if row is not None else None
        except _BACKEND_ERRORS as e:
            raise StorageError(f"Failed to read idempotency record: {e}", cause=e) from e

    async def delete(self, record_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                stmt = delete(IdempotencyKeyRow).where(IdempotencyKeyRow.id == record_id)
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
        except _BACKEND_ERRORS as e:
            raise StorageError(f"Failed to delete idempotency record: {e}", cause=e) from e

        if cursor.rowcount > 0:
            logger.info("idempotency.record_deleted", record_id=record_id)
            return True
        return False
