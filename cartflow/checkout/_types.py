"""
Checkout types: states, the transition table, errors and the attempt snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto

from cartflow._types import Address, CartId, Money, PaymentMethod, Totals
from cartflow.cart import Cart
from cartflow.finalize import AttemptRecord, FinalizeRequest
from cartflow.shipping import ShippingQuote

# ═══════════════════════════════════════════════════════════════════════════════
# States
# ═══════════════════════════════════════════════════════════════════════════════


class CheckoutState(Enum):
    """
    Lifecycle:
        IDLE → ADDRESS_READY → INTENT_CREATED → AWAITING_GATEWAY → POLLING
             → PAID → FINALIZING → COMPLETE
        FAILED / CANCELLED fall straight back to ADDRESS_READY.

    Cash on delivery skips the gateway:
        ADDRESS_READY → FINALIZING → COMPLETE
                                   → FAILED → ADDRESS_READY
    """

    IDLE = "IDLE"
    ADDRESS_READY = "ADDRESS_READY"
    INTENT_CREATED = "INTENT_CREATED"
    AWAITING_GATEWAY = "AWAITING_GATEWAY"
    POLLING = "POLLING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    FINALIZING = "FINALIZING"
    COMPLETE = "COMPLETE"

    @property
    def attempt_active(self) -> bool:
        """An attempt is between intent creation and a final outcome."""
        return self in _ACTIVE


_ACTIVE = frozenset({
    CheckoutState.INTENT_CREATED,
    CheckoutState.AWAITING_GATEWAY,
    CheckoutState.POLLING,
    CheckoutState.FINALIZING,
})

_S = CheckoutState

TRANSITIONS: dict[CheckoutState, frozenset[CheckoutState]] = {
    _S.IDLE: frozenset({_S.ADDRESS_READY, _S.POLLING}),
    _S.ADDRESS_READY: frozenset({_S.ADDRESS_READY, _S.INTENT_CREATED, _S.POLLING, _S.FINALIZING}),
    _S.INTENT_CREATED: frozenset({_S.AWAITING_GATEWAY, _S.FAILED, _S.CANCELLED}),
    _S.AWAITING_GATEWAY: frozenset({_S.POLLING, _S.FAILED, _S.CANCELLED}),
    _S.POLLING: frozenset({_S.PAID, _S.FAILED, _S.CANCELLED}),
    _S.PAID: frozenset({_S.FINALIZING}),
    _S.FAILED: frozenset({_S.ADDRESS_READY}),
    _S.CANCELLED: frozenset({_S.ADDRESS_READY}),
    _S.FINALIZING: frozenset({_S.COMPLETE, _S.PAID, _S.FAILED}),
    _S.COMPLETE: frozenset({_S.ADDRESS_READY, _S.POLLING}),
}
"""Allowed moves. POLLING is reachable from rest states for resume."""


def can_transition(source: CheckoutState, target: CheckoutState) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Transition:
    source: CheckoutState
    target: CheckoutState
    reason: str = ""
    intent_id: str | None = None
    at: datetime = field(default_factory=_now)


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class CheckoutErrorKind(Enum):
    VALIDATION = auto()  # Precondition not met, nothing sent
    GATEWAY = auto()  # Intent creation or opening the payment page failed
    PAYMENT_FAILED = auto()  # Gateway or rcode said FAILED
    CANCELLED = auto()  # User closed the browser or cancel rcode
    UNCONFIRMED = auto()  # Polling budget spent, outcome unknown
    FINALIZE = auto()  # Paid, but the order could not be committed
    ATTEMPT_IN_PROGRESS = auto()
    INVALID_TRANSITION = auto()


class Precondition(Enum):
    NOT_SIGNED_IN = auto()
    NO_ADDRESS = auto()
    EMPTY_CART = auto()
    NON_POSITIVE_TOTAL = auto()


_USER_MESSAGES = {
    CheckoutErrorKind.VALIDATION: "Please review your cart and shipping address.",
    CheckoutErrorKind.GATEWAY: "Could not start the payment. Please try again.",
    CheckoutErrorKind.PAYMENT_FAILED: "The payment was not completed.",
    CheckoutErrorKind.CANCELLED: "Payment cancelled.",
    CheckoutErrorKind.UNCONFIRMED: (
        "We could not confirm your payment yet. Please check your order history."
    ),
    CheckoutErrorKind.FINALIZE: (
        "Your payment went through but the order is not placed yet. Please retry."
    ),
    CheckoutErrorKind.ATTEMPT_IN_PROGRESS: "A payment is already in progress.",
    CheckoutErrorKind.INVALID_TRANSITION: "This step is not available right now.",
}

_PRECONDITION_MESSAGES = {
    Precondition.NOT_SIGNED_IN: "Please sign in to check out.",
    Precondition.NO_ADDRESS: "Please choose a shipping address.",
    Precondition.EMPTY_CART: "Your cart is empty.",
    Precondition.NON_POSITIVE_TOTAL: "The order total must be above zero.",
}


@dataclass(frozen=True, slots=True)
class CheckoutError:
    kind: CheckoutErrorKind
    message: str
    precondition: Precondition | None = None
    intent_id: str | None = None

    @property
    def user_message(self) -> str:
        if self.precondition is not None:
            return _PRECONDITION_MESSAGES[self.precondition]
        return _USER_MESSAGES[self.kind]

    @classmethod
    def validation(cls, precondition: Precondition, message: str) -> CheckoutError:
        return cls(CheckoutErrorKind.VALIDATION, message, precondition=precondition)


# ═══════════════════════════════════════════════════════════════════════════════
# Attempt
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CheckoutAttempt:
    """
    Everything frozen at intent creation.

    Note: cart is a snapshot. Edits to the live cart after this point
    never change the amount or items of this attempt.
    """

    intent_id: str
    email: str
    cart_id: CartId
    cart: Cart
    address: Address
    quote: ShippingQuote
    totals: Totals
    redirect_url: str | None = None
    voucher_code: str | None = None
    method: PaymentMethod = PaymentMethod.GATEWAY
    created_at: datetime = field(default_factory=_now)

    @property
    def amount(self) -> Money:
        return self.totals.total

    def finalize_request(self) -> FinalizeRequest:
        return FinalizeRequest(
            intent_id=self.intent_id,
            address=self.address,
            shipping_option=self.quote.option,
            totals=self.totals,
            items=self.cart.lines,
            voucher_code=self.voucher_code,
            payment_method=self.method,
        )

    def as_record(self) -> AttemptRecord:
        return AttemptRecord(
            intent_id=self.intent_id,
            email=self.email,
            cart_id=self.cart_id,
            request=self.finalize_request(),
            created_at=self.created_at,
            updated_at=self.created_at,
        )


__all__ = (
    "CheckoutState",
    "TRANSITIONS",
    "can_transition",
    "Transition",
    "CheckoutErrorKind",
    "Precondition",
    "CheckoutError",
    "CheckoutAttempt",
)
