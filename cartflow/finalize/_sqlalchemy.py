"""
SQLAlchemy ledger: checkout attempts in a relational table.

Usage:

    ledger = await SQLAlchemyLedger.connect("sqlite+aiosqlite:///cartflow.db")
    finalizer = OrderFinalizer(backend, ledger)

Each attempt row carries the frozen finalize request and, once
completed, the order as JSON. Status transitions happen in single
UPDATE ... WHERE status IN (...) statements, so claim() is atomic.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any

from kungfu import Error, Ok, Result
from sqlalchemy import DateTime, String, Text, and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cartflow.finalize._ledger import LedgerError
from cartflow.finalize._types import AttemptRecord, AttemptState, FinalizeRequest, Order

# ═══════════════════════════════════════════════════════════════════════════════
# Table
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


class AttemptTable(Base):
    """
    One row per checkout attempt.

    Columns:
    - intent_id: gateway intent id, the idempotency key
    - status: "OPEN" | "FINALIZING" | "COMPLETED" | "FAILED"
    - request: frozen finalize request (JSON)
    - order: committed order (JSON), set on COMPLETED
    - error: last finalize error message
    """

    __tablename__ = "checkout_attempts"

    intent_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    cart_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AttemptState.OPEN.value)
    request: Mapped[str] = mapped_column(Text, nullable=False)
    order: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored value is UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _to_record(row: AttemptTable) -> AttemptRecord:
    return AttemptRecord(
        intent_id=row.intent_id,
        email=row.email,
        cart_id=row.cart_id,
        request=FinalizeRequest.from_record(json.loads(row.request)),
        state=AttemptState(row.status),
        order=Order.from_payload(json.loads(row.order)) if row.order else None,
        error=row.error,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _insert_ignore(dialect: str, values: dict[str, Any]) -> Any:
    """INSERT ... ON CONFLICT DO NOTHING for the engine's dialect."""
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    return insert(AttemptTable).values(**values).on_conflict_do_nothing(index_elements=["intent_id"])


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyLedger:
    """
    AttemptLedger over an async SQLAlchemy engine.

    Note: create() relies on ON CONFLICT DO NOTHING, available for
    SQLite and PostgreSQL.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dialect: str = "sqlite",
    ) -> None:
        self._session_factory = session_factory
        self._dialect = dialect

    @classmethod
    async def connect(cls, url: str = "sqlite+aiosqlite:///:memory:") -> "SQLAlchemyLedger":
        """Create engine, create tables, return ledger."""
        engine = create_async_engine(url, echo=False)
        await create_tables(engine)
        return cls(async_sessionmaker(engine, expire_on_commit=False), engine.dialect.name)

    async def get(self, intent_id: str) -> Result[AttemptRecord | None, LedgerError]:
        try:
            async with self._session_factory() as session:
                row = await session.get(AttemptTable, intent_id)
                return Ok(_to_record(row) if row is not None else None)
        except Exception as e:
            return Error(LedgerError(f"Failed to get: {e}", e))

    async def create(self, record: AttemptRecord) -> Result[bool, LedgerError]:
        try:
            async with self._session_factory() as session:
                stmt = _insert_ignore(self._dialect, {
                    "intent_id": record.intent_id,
                    "email": record.email,
                    "cart_id": None if record.cart_id is None else str(record.cart_id),
                    "status": record.state.value,
                    "request": json.dumps(record.request.as_record()),
                    "order": json.dumps(record.order.as_payload()) if record.order else None,
                    "error": record.error,
                    "created_at": record.created_at,
                    "updated_at": record.updated_at,
                })
                cursor: CursorResult[Any] = await session.execute(stmt)  # type: ignore[assignment]
                await session.commit()
                return Ok(cursor.rowcount > 0)
        except Exception as e:
            return Error(LedgerError(f"Failed to create: {e}", e))

    async def claim(
        self, intent_id: str, *, stale_after: timedelta | None = None
    ) -> Result[bool, LedgerError]:
        claimable = AttemptTable.status.in_([AttemptState.OPEN.value, AttemptState.FAILED.value])
        if stale_after is not None:
            claimable = or_(
                claimable,
                and_(
                    AttemptTable.status == AttemptState.FINALIZING.value,
                    AttemptTable.updated_at <= _now() - stale_after,
                ),
            )
        try:
            async with self._session_factory() as session:
                stmt = (
                    update(AttemptTable)
                    .where(AttemptTable.intent_id == intent_id, claimable)
                    .values(status=AttemptState.FINALIZING.value, error=None, updated_at=_now())
                )
                cursor: CursorResult[Any] = await session.execute(stmt)  # type: ignore[assignment]
                await session.commit()
                if cursor.rowcount > 0:
                    return Ok(True)
                if await session.get(AttemptTable, intent_id) is None:
                    return Error(LedgerError(f"No attempt for intent: {intent_id}"))
                return Ok(False)
        except Exception as e:
            return Error(LedgerError(f"Failed to claim: {e}", e))

    async def complete(self, intent_id: str, order: Order) -> Result[None, LedgerError]:
        return await self._set(
            intent_id,
            status=AttemptState.COMPLETED.value,
            order=json.dumps(order.as_payload()),
        )

    async def fail(self, intent_id: str, message: str) -> Result[None, LedgerError]:
        return await self._set(intent_id, status=AttemptState.FAILED.value, error=message)

    async def pending(self, email: str) -> Result[tuple[AttemptRecord, ...], LedgerError]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(AttemptTable)
                    .where(
                        AttemptTable.email == email,
                        AttemptTable.status != AttemptState.COMPLETED.value,
                    )
                    .order_by(AttemptTable.created_at)
                )
                rows = (await session.execute(stmt)).scalars().all()
                return Ok(tuple(_to_record(row) for row in rows))
        except Exception as e:
            return Error(LedgerError(f"Failed to list pending: {e}", e))

    async def _set(self, intent_id: str, **values: Any) -> Result[None, LedgerError]:
        try:
            async with self._session_factory() as session:
                row = await session.get(AttemptTable, intent_id)
                if row is None:
                    return Error(LedgerError(f"No attempt for intent: {intent_id}"))
                for name, value in values.items():
                    setattr(row, name, value)
                row.updated_at = _now()
                await session.commit()
                return Ok(None)
        except Exception as e:
            return Error(LedgerError(f"Failed to update: {e}", e))


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = (
    "Base",
    "AttemptTable",
    "SQLAlchemyLedger",
    "create_tables",
)
