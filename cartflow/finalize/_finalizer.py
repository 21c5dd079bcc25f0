"""
OrderFinalizer: turns a confirmed-paid intent into exactly one order.

    finalizer = OrderFinalizer(backend, ledger)

    match await finalizer.finalize(email, cart_id, request):
        case Ok(FinalizeResult(order=order, from_cache=cached)):
            ...
        case Error(FinalizeError(kind=FinalizeErrorKind.CONFLICT)):
            ...

Every call carries the intent id, and the ledger decides whether the
backend is called at all (see _graph.py).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Protocol

from kungfu import Error, Ok, Result

from cartflow._types import CartId, PaymentMethod
from cartflow.finalize._graph import FinalizeSpec, run_finalize
from cartflow.finalize._ledger import AttemptLedger, LedgerError, MemoryLedger
from cartflow.finalize._types import (
    STALE_CLAIM_AFTER,
    AttemptRecord,
    FinalizeError,
    FinalizeErrorKind,
    FinalizeRequest,
    FinalizeResult,
    Order,
    OrderStatus,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


class OrderBackend(Protocol):
    """The order half of the commerce backend."""

    async def finalize_order(
        self, email: str, cart_id: CartId, request: FinalizeRequest
    ) -> Result[str | None, Any]: ...

    async def get_order(self, email: str, order_id: str) -> Result[Order, Any]: ...

    async def list_orders(self, email: str) -> Result[tuple[Order, ...], Any]: ...


def _message(error: object) -> str:
    return getattr(error, "message", None) or str(error)


def _most_recent(orders: tuple[Order, ...], intent_id: str) -> Order | None:
    """Order carrying this intent id, else the newest one."""
    for order in orders:
        if order.intent_id == intent_id:
            return order
    if not orders:
        return None
    if all(order.order_id.isdigit() for order in orders):
        return max(orders, key=lambda order: int(order.order_id))
    return orders[0]


class OrderFinalizer:
    def __init__(
        self,
        backend: OrderBackend,
        ledger: AttemptLedger | None = None,
        *,
        stale_after: timedelta = STALE_CLAIM_AFTER,
    ) -> None:
        self._backend = backend
        self._ledger: AttemptLedger = ledger if ledger is not None else MemoryLedger()
        self._stale_after = stale_after

    @property
    def ledger(self) -> AttemptLedger:
        return self._ledger

    async def record_attempt(self, record: AttemptRecord) -> Result[bool, LedgerError]:
        """Store the frozen attempt snapshot at intent creation."""
        return await self._ledger.create(record)

    async def lookup(self, intent_id: str) -> Result[AttemptRecord | None, LedgerError]:
        return await self._ledger.get(intent_id)

    async def pending(self, email: str) -> Result[tuple[AttemptRecord, ...], LedgerError]:
        """Attempts of this user that never became an order."""
        return await self._ledger.pending(email)

    async def finalize(
        self,
        email: str,
        cart_id: CartId,
        request: FinalizeRequest,
    ) -> Result[FinalizeResult, FinalizeError]:
        if not email:
            return Error(FinalizeError(
                FinalizeErrorKind.NOT_SIGNED_IN,
                "finalize needs a signed-in user",
                request.intent_id,
            ))

        spec = FinalizeSpec(
            email=email,
            cart_id=cart_id,
            request=request,
            ledger=self._ledger,
            commit=self._commit,
            stale_after=self._stale_after,
        )
        result = await run_finalize(spec)

        match result:
            case Ok(done):
                logger.info(
                    "intent %s finalized as order %s%s",
                    done.intent_id, done.order.order_id, " (cached)" if done.from_cache else "",
                )
            case Error(e):
                logger.error("finalize of intent %s failed: %s %s", request.intent_id, e.kind.name, e.message)
        return result

    async def _commit(
        self,
        email: str,
        cart_id: CartId,
        request: FinalizeRequest,
    ) -> Result[Order, FinalizeError]:
        match await self._backend.finalize_order(email, cart_id, request):
            case Error(e):
                return Error(FinalizeError(FinalizeErrorKind.BACKEND, _message(e), request.intent_id))
            case Ok(order_id):
                pass

        if order_id is None:
            return await self._resolve_recent(email, request)

        match await self._backend.get_order(email, order_id):
            case Ok(order):
                return Ok(replace(order, intent_id=order.intent_id or request.intent_id))
            case Error(e):
                logger.debug("order %s detail unavailable (%s), using request snapshot", order_id, _message(e))
                return Ok(Order(
                    order_id=order_id,
                    status=OrderStatus.PLACED,
                    items=request.items,
                    address=request.address,
                    totals=request.totals,
                    payment_status=(
                        PaymentStatus.PAID
                        if request.payment_method is PaymentMethod.GATEWAY
                        else PaymentStatus.PENDING
                    ),
                    intent_id=request.intent_id,
                ))

    async def _resolve_recent(self, email: str, request: FinalizeRequest) -> Result[Order, FinalizeError]:
        match await self._backend.list_orders(email):
            case Ok(orders):
                recent = _most_recent(orders, request.intent_id)
            case Error(e):
                logger.warning("order list unavailable: %s", _message(e))
                recent = None

        if recent is None:
            return Error(FinalizeError(
                FinalizeErrorKind.NO_ORDER,
                "backend returned no order id and no recent order was found",
                request.intent_id,
            ))

        logger.warning(
            "backend returned no order id for intent %s, using most recent order %s",
            request.intent_id, recent.order_id,
        )
        return Ok(replace(recent, intent_id=recent.intent_id or request.intent_id))


__all__ = ("OrderBackend", "OrderFinalizer")
