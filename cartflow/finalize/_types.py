"""
Finalize types: orders, finalize requests and ledger records.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Any

from cartflow._types import Address, CartId, Money, PaymentMethod, ShippingOption, Totals
from cartflow.cart import CartLine

# ═══════════════════════════════════════════════════════════════════════════════
# Order Status
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    """
    Fulfilment status of an order.

    Tracking progress:
        PLACED → CONFIRMED → PACKED → SHIPPING → DELIVERED
    """

    PENDING = "PENDING"
    PLACED = "PLACED"
    CONFIRMED = "CONFIRMED"
    PACKED = "PACKED"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, raw: object) -> OrderStatus:
        """Case-insensitive. Unknown or missing maps to PLACED."""
        if raw is None:
            return cls.PLACED
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return cls.PLACED

    @property
    def progress_index(self) -> int:
        """Step on the tracking bar, -1 when off the bar."""
        return _PROGRESS.get(self, -1)


_PROGRESS = {
    OrderStatus.PENDING: 0,
    OrderStatus.PLACED: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PACKED: 2,
    OrderStatus.SHIPPING: 3,
    OrderStatus.DELIVERED: 4,
}


class PaymentStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: object) -> PaymentStatus:
        if raw is None:
            return cls.UNKNOWN
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return cls.UNKNOWN


# ═══════════════════════════════════════════════════════════════════════════════
# Order
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Order:
    """A durable order as the backend reports it."""

    order_id: str
    status: OrderStatus = OrderStatus.PLACED
    items: tuple[CartLine, ...] = ()
    address: Address | None = None
    totals: Totals = field(default_factory=lambda: Totals(0, 0))
    payment_status: PaymentStatus = PaymentStatus.UNKNOWN
    intent_id: str | None = None

    def as_payload(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "status": self.status.value,
            "items": [_line_payload(line) for line in self.items],
            "address": self.address.as_payload() if self.address else None,
            "totals": self.totals.as_payload(),
            "paymentStatus": self.payment_status.value,
            "intentId": self.intent_id,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Order:
        totals = data.get("totals") or {}
        address = data.get("address")
        return cls(
            order_id=str(data["orderId"]),
            status=OrderStatus.parse(data.get("status")),
            items=tuple(_line_from_payload(item) for item in data.get("items", ())),
            address=Address.from_payload(address) if address else None,
            totals=Totals(
                subtotal=totals.get("subtotal", 0),
                shipping_fee=totals.get("shippingFee", 0),
                discount=totals.get("discount", 0),
            ),
            payment_status=PaymentStatus.parse(data.get("paymentStatus")),
            intent_id=data.get("intentId"),
        )


def _line_payload(line: CartLine) -> dict[str, Any]:
    return {
        "productId": line.product_id,
        "name": line.name,
        "price": line.price,
        "quantity": line.quantity,
        "image": line.image,
        "color": line.color,
        "size": line.size,
    }


def _line_from_payload(data: dict[str, Any]) -> CartLine:
    return CartLine(
        product_id=data["productId"],
        name=data.get("name", ""),
        price=data.get("price", 0),
        quantity=data.get("quantity", 1),
        image=data.get("image", ""),
        color=data.get("color"),
        size=data.get("size"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Finalize Request / Result
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class FinalizeRequest:
    """
    Everything the backend needs to commit an order.

    Note: items/address/totals are the snapshot frozen at intent
    creation, never the live cart.
    """

    intent_id: str
    address: Address | None
    shipping_option: ShippingOption
    totals: Totals
    items: tuple[CartLine, ...]
    voucher_code: str | None = None
    payment_method: PaymentMethod = PaymentMethod.GATEWAY

    @property
    def amount(self) -> Money:
        return self.totals.total

    @classmethod
    def minimal(cls, intent_id: str) -> FinalizeRequest:
        """Request carrying only the intent id (resume without a ledger record)."""
        return cls(
            intent_id=intent_id,
            address=None,
            shipping_option=ShippingOption.STANDARD,
            totals=Totals(0, 0),
            items=(),
        )

    @property
    def is_minimal(self) -> bool:
        return not self.items

    def as_payload(self) -> dict[str, Any]:
        """Wire body for the order endpoint."""
        return {
            "intentId": self.intent_id,
            "address": self.address.as_payload() if self.address else None,
            "shippingOption": self.shipping_option.value,
            "voucherCode": self.voucher_code,
            "paymentMethod": self.payment_method.value,
            "totals": self.totals.as_payload(),
            "amount": self.amount,
            "items": [line.as_payload() for line in self.items],
        }

    def as_record(self) -> dict[str, Any]:
        """Lossless form for the ledger."""
        return {
            **self.as_payload(),
            "items": [_line_payload(line) for line in self.items],
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> FinalizeRequest:
        totals = data.get("totals") or {}
        address = data.get("address")
        return cls(
            intent_id=str(data["intentId"]),
            address=Address.from_payload(address) if address else None,
            shipping_option=ShippingOption(data.get("shippingOption", "standard")),
            totals=Totals(
                subtotal=totals.get("subtotal", 0),
                shipping_fee=totals.get("shippingFee", 0),
                discount=totals.get("discount", 0),
            ),
            items=tuple(_line_from_payload(item) for item in data.get("items", ())),
            voucher_code=data.get("voucherCode"),
            payment_method=PaymentMethod(data.get("paymentMethod", PaymentMethod.GATEWAY.value)),
        )


@dataclass(frozen=True, slots=True)
class FinalizeResult:
    """
    Successful finalize.

    Note: from_cache is True when the ledger already held the order
    and no backend call was made.
    """

    order: Order
    from_cache: bool
    intent_id: str


class FinalizeErrorKind(Enum):
    """Kinds of finalize errors."""

    CONFLICT = auto()  # Finalize for this intent already in flight
    BACKEND = auto()  # Order endpoint failed
    NO_ORDER = auto()  # Backend gave no order id and none could be resolved
    LEDGER = auto()  # Ledger read/write failed
    NOT_SIGNED_IN = auto()


@dataclass(frozen=True, slots=True)
class FinalizeError:
    kind: FinalizeErrorKind
    message: str
    intent_id: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger Record
# ═══════════════════════════════════════════════════════════════════════════════


class AttemptState(Enum):
    """
    Finalize lifecycle of one checkout attempt.

    Lifecycle:
        OPEN → FINALIZING → COMPLETED
                          → FAILED → FINALIZING (retry)
    """

    OPEN = "OPEN"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# A FINALIZING claim older than this is taken to belong to a dead process.
STALE_CLAIM_AFTER = timedelta(minutes=2)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One checkout attempt as stored in the ledger, keyed by intent id."""

    intent_id: str
    email: str
    cart_id: CartId | None
    request: FinalizeRequest
    state: AttemptState = AttemptState.OPEN
    order: Order | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def is_completed(self) -> bool:
        return self.state == AttemptState.COMPLETED and self.order is not None

    @property
    def is_finalizing(self) -> bool:
        return self.state == AttemptState.FINALIZING

    def is_stale(self, after: timedelta, now: datetime | None = None) -> bool:
        """FINALIZING for longer than `after`: the claimant died mid-commit."""
        if not self.is_finalizing:
            return False
        return self.updated_at <= (now or _now()) - after

    def finalizing(self) -> AttemptRecord:
        return replace(self, state=AttemptState.FINALIZING, error=None, updated_at=_now())

    def completed(self, order: Order) -> AttemptRecord:
        return replace(self, state=AttemptState.COMPLETED, order=order, updated_at=_now())

    def failed(self, message: str) -> AttemptRecord:
        return replace(self, state=AttemptState.FAILED, error=message, updated_at=_now())


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
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
)
