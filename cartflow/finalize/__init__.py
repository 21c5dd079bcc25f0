"""
Finalize: idempotent order creation, keyed by payment intent id.

    from cartflow import finalize as F

    ledger = await F.SQLAlchemyLedger.connect(settings.ledger_url)
    finalizer = F.OrderFinalizer(backend, ledger)
    result = await finalizer.finalize(email, cart_id, request)

Architecture: ledger state routes the call.

    FinalizeSpec
         │
         ▼
    FetchAttemptNode
         │
         ├── COMPLETED   → cached order, no backend call
         ├── FINALIZING  → CONFLICT (abandoned claim → claim → commit)
         ├── OPEN/FAILED → claim → commit
         └── no record   → create → claim → commit
"""

from cartflow.finalize._types import (
    OrderStatus,
    PaymentStatus,
    Order,
    FinalizeRequest,
    FinalizeResult,
    FinalizeError,
    FinalizeErrorKind,
    AttemptState,
    AttemptRecord,
    STALE_CLAIM_AFTER,
)
from cartflow.finalize._ledger import (
    LedgerError,
    AttemptLedger,
    MemoryLedger,
)
from cartflow.finalize._sqlalchemy import (
    AttemptTable,
    SQLAlchemyLedger,
    create_tables,
)
from cartflow.finalize._graph import (
    FinalizeSpec,
    FinalizeOutcome,
    FinalResultNode,
    run_finalize,
)
from cartflow.finalize._finalizer import OrderBackend, OrderFinalizer

__all__ = (
    # Types
    "OrderStatus",
    "PaymentStatus",
    "Order",
    "FinalizeRequest",
    "FinalizeResult",
    "FinalizeError",
    "FinalizeErrorKind",
    "AttemptState",
    "AttemptRecord",
    "STALE_CLAIM_AFTER",
    # Ledger
    "LedgerError",
    "AttemptLedger",
    "MemoryLedger",
    "AttemptTable",
    "SQLAlchemyLedger",
    "create_tables",
    # Graph
    "FinalizeSpec",
    "FinalizeOutcome",
    "FinalResultNode",
    "run_finalize",
    # Finalizer
    "OrderBackend",
    "OrderFinalizer",
)
