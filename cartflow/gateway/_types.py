"""
Payment gateway types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from cartflow._types import Address, CartId, Money, ShippingOption, Totals, to_money
from cartflow.cart import CartLine

# ═══════════════════════════════════════════════════════════════════════════════
# Intent Status
# ═══════════════════════════════════════════════════════════════════════════════


class IntentStatus(Enum):
    """
    Gateway-side status of a payment intent.

    Lifecycle:
        PENDING → PAID
                → FAILED
    """

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not IntentStatus.PENDING

    @classmethod
    def parse(cls, raw: object) -> IntentStatus:
        """Gateway spellings vary; anything unrecognised is still PENDING."""
        if raw is None:
            return cls.PENDING
        value = str(raw).strip().upper()
        if value in _PAID:
            return cls.PAID
        if value in _FAILED:
            return cls.FAILED
        return cls.PENDING


_PAID = frozenset({"PAID", "SUCCESS", "SUCCEEDED", "COMPLETED", "00"})
_FAILED = frozenset({"FAILED", "FAILURE", "CANCELLED", "CANCELED", "EXPIRED", "DECLINED"})


def normalize_amount(value: object) -> Money:
    """
    Amount as the gateway accepts it: a positive whole number.

    Rounds half-up. Raises ValueError for non-finite or non-positive input.

    Example:
        normalize_amount(149_999.5)  # 150_000
        normalize_amount(0)          # ValueError
    """
    amount = to_money(value)
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {value!r}")
    return amount


# ═══════════════════════════════════════════════════════════════════════════════
# Requests and Responses
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IntentRequest:
    """What the gateway needs to open a hosted payment page."""

    email: str
    cart_id: CartId
    amount: object
    items: tuple[CartLine, ...]
    return_url: str
    totals: Totals | None = None
    address: Address | None = None
    shipping_option: ShippingOption = ShippingOption.STANDARD
    voucher_code: str | None = None

    def as_payload(self, amount: Money) -> dict[str, Any]:
        return {
            "email": self.email,
            "cartId": self.cart_id,
            "amount": amount,
            "returnUrl": self.return_url,
            "address": self.address.as_payload() if self.address else None,
            "shippingOption": self.shipping_option.value,
            "voucherCode": self.voucher_code,
            "totals": self.totals.as_payload() if self.totals else {"total": amount},
            "items": [line.as_payload() for line in self.items],
        }


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    """
    One gateway session.

    Note: amount is fixed at creation. Status only moves
    PENDING → PAID or PENDING → FAILED.
    """

    intent_id: str
    amount: Money
    status: IntentStatus = IntentStatus.PENDING
    redirect_url: str | None = None


@dataclass(frozen=True, slots=True)
class StatusReport:
    intent_id: str
    status: IntentStatus
    amount: Money | None = None


class GatewayErrorKind(Enum):
    INVALID_AMOUNT = auto()  # Rejected before any network call
    TRANSPORT = auto()
    REJECTED = auto()  # Non-2xx
    DECODE = auto()  # No intent id, bad body
    NO_REDIRECT = auto()  # Intent created but no payment page URL


@dataclass(frozen=True, slots=True)
class GatewayError:
    kind: GatewayErrorKind
    message: str
    status: int | None = None


# Wire


class IntentBody(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    intent_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("intentId", "orderId", "id"),
    )
    redirect_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("redirectUrl", "payUrl", "paymentUrl", "vnpUrl"),
    )
    status: str | None = None
    amount: Any = None


class StatusBody(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    status: str | None = Field(
        default=None,
        validation_alias=AliasChoices("status", "paymentStatus"),
    )
    amount: Any = None


__all__ = (
    "IntentStatus",
    "normalize_amount",
    "IntentRequest",
    "PaymentIntent",
    "StatusReport",
    "GatewayError",
    "GatewayErrorKind",
    "IntentBody",
    "StatusBody",
)
