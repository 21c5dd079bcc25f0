"""
Attempt ledger: durable record of checkout attempts, keyed by intent id.

All methods return Result for explicit error handling.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from kungfu import Error, Ok, Result

from cartflow.finalize._types import AttemptRecord, AttemptState, Order

# ═══════════════════════════════════════════════════════════════════════════════
# Ledger Error
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class LedgerError:
    """Storage operation error."""

    message: str
    cause: Exception | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class AttemptLedger(Protocol):
    """
    Attempt storage.

    Note: claim() must be atomic (compare-and-swap). It is what keeps
    two concurrent finalize calls for one intent from both committing.
    """

    async def get(self, intent_id: str) -> Result[AttemptRecord | None, LedgerError]:
        """Get record. Returns Ok(None) if not found."""
        ...

    async def create(self, record: AttemptRecord) -> Result[bool, LedgerError]:
        """Insert record. Ok(False) if one already exists for the intent."""
        ...

    async def claim(
        self, intent_id: str, *, stale_after: timedelta | None = None
    ) -> Result[bool, LedgerError]:
        """
        OPEN/FAILED → FINALIZING. Ok(False) if the record is in any other state.

        With stale_after, a FINALIZING record untouched for that long is
        taken over as well.
        """
        ...

    async def complete(self, intent_id: str, order: Order) -> Result[None, LedgerError]:
        ...

    async def fail(self, intent_id: str, message: str) -> Result[None, LedgerError]:
        ...

    async def pending(self, email: str) -> Result[tuple[AttemptRecord, ...], LedgerError]:
        """Records of this user that never reached COMPLETED, oldest first."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Ledger
# ═══════════════════════════════════════════════════════════════════════════════


_CLAIMABLE = (AttemptState.OPEN, AttemptState.FAILED)


class MemoryLedger:
    """
    In-memory ledger.

    Note: Single session only. Nothing survives a restart.
    """

    def __init__(self) -> None:
        self._records: dict[str, AttemptRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, intent_id: str) -> Result[AttemptRecord | None, LedgerError]:
        async with self._lock:
            return Ok(self._records.get(intent_id))

    async def create(self, record: AttemptRecord) -> Result[bool, LedgerError]:
        async with self._lock:
            if record.intent_id in self._records:
                return Ok(False)
            self._records[record.intent_id] = record
            return Ok(True)

    async def claim(
        self, intent_id: str, *, stale_after: timedelta | None = None
    ) -> Result[bool, LedgerError]:
        async with self._lock:
            existing = self._records.get(intent_id)
            if existing is None:
                return Error(LedgerError(f"No attempt for intent: {intent_id}"))
            stale = stale_after is not None and existing.is_stale(stale_after)
            if existing.state not in _CLAIMABLE and not stale:
                return Ok(False)
            self._records[intent_id] = existing.finalizing()
            return Ok(True)

    async def complete(self, intent_id: str, order: Order) -> Result[None, LedgerError]:
        async with self._lock:
            existing = self._records.get(intent_id)
            if existing is None:
                return Error(LedgerError(f"No attempt for intent: {intent_id}"))
            self._records[intent_id] = existing.completed(order)
            return Ok(None)

    async def fail(self, intent_id: str, message: str) -> Result[None, LedgerError]:
        async with self._lock:
            existing = self._records.get(intent_id)
            if existing is None:
                return Error(LedgerError(f"No attempt for intent: {intent_id}"))
            self._records[intent_id] = existing.failed(message)
            return Ok(None)

    async def pending(self, email: str) -> Result[tuple[AttemptRecord, ...], LedgerError]:
        async with self._lock:
            rows = [
                r for r in self._records.values()
                if r.email == email and r.state != AttemptState.COMPLETED
            ]
            return Ok(tuple(sorted(rows, key=lambda r: r.created_at)))


__all__ = ("LedgerError", "AttemptLedger", "MemoryLedger")
