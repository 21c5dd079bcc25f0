"""
Core types for cartflow.

Re-exports from kungfu + shared domain values used by every component.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Protocol

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Aliases
# ═══════════════════════════════════════════════════════════════════════════════

type Money = int
"""Amount in whole currency units (the currency has no subunit)."""


def to_money(value: object) -> Money:
    """
    Round to whole currency units, half-up.

    Raises ValueError for anything that is not a finite number.

    Example:
        to_money(149_999.5)  # 150_000
        to_money("12000")    # 12_000
    """
    if isinstance(value, bool):
        raise ValueError(f"not an amount: {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not an amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"amount must be finite, got {value!r}")
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


type CartId = str | int
"""Backend cart identifier."""

type Lazy[T, E] = LazyCoroResult[T, E]
"""Lazy async computation that may fail."""

# ═══════════════════════════════════════════════════════════════════════════════
# Address
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Address:
    """
    Flat shipping address snapshot.

    Note: Copied by value into the checkout attempt and the order.
    Later edits in the address book never touch a placed order.
    """

    line1: str
    city: str
    state: str = ""
    country: str = "VN"
    postal_code: str = ""
    phone: str = ""
    full_name: str = ""

    def as_payload(self) -> dict[str, str]:
        return {
            "line1": self.line1,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "postalCode": self.postal_code,
            "phone": self.phone,
            "fullName": self.full_name,
        }

    @classmethod
    def from_payload(cls, data: dict[str, str]) -> Address:
        return cls(
            line1=data.get("line1", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            country=data.get("country", "VN"),
            postal_code=data.get("postalCode", ""),
            phone=data.get("phone", ""),
            full_name=data.get("fullName", ""),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Shipping Option
# ═══════════════════════════════════════════════════════════════════════════════


class ShippingOption(Enum):
    STANDARD = "standard"
    EXPRESS = "express"


class PaymentMethod(Enum):
    """GATEWAY pays on the hosted page up front. CASH is paid on delivery."""

    GATEWAY = "vnpay"
    CASH = "CASH"


# ═══════════════════════════════════════════════════════════════════════════════
# Totals
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Totals:
    """Checkout totals. `total` never goes below zero."""

    subtotal: Money
    shipping_fee: Money
    discount: Money = 0

    @property
    def total(self) -> Money:
        return max(0, self.subtotal - self.discount + self.shipping_fee)

    def as_payload(self) -> dict[str, int]:
        return {
            "subtotal": self.subtotal,
            "discount": self.discount,
            "shippingFee": self.shipping_fee,
            "total": self.total,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Credential Store (external, read-only)
# ═══════════════════════════════════════════════════════════════════════════════


class CredentialStore(Protocol):
    """
    Read-only lookup of the signed-in session.

    Implemented by the host app (token storage is outside this package).
    """

    async def email(self) -> str | None: ...

    async def token(self) -> str | None: ...

    async def cart_id(self) -> CartId | None: ...


@dataclass(frozen=True, slots=True)
class StaticCredentials:
    """Fixed credentials for scripts and tests."""

    user_email: str | None
    session_token: str | None = None
    user_cart_id: CartId | None = None

    async def email(self) -> str | None:
        return self.user_email

    async def token(self) -> str | None:
        return self.session_token

    async def cart_id(self) -> CartId | None:
        return self.user_cart_id


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Aliases
    "Money",
    "CartId",
    "Lazy",
    "to_money",
    # Domain
    "Address",
    "ShippingOption",
    "PaymentMethod",
    "Totals",
    "CredentialStore",
    "StaticCredentials",
)
