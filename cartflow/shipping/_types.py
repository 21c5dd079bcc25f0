"""
Shipping types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cartflow._types import Money, ShippingOption

# ═══════════════════════════════════════════════════════════════════════════════
# Quote
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ShippingQuote:
    """
    Fee and delivery estimate for one option.

    Note: degraded is True when the fee came from the fallback table
    rather than the rate service.
    """

    option: ShippingOption
    fee: Money
    eta_label: str
    degraded: bool = False

    def __post_init__(self) -> None:
        if self.fee < 0:
            raise ValueError(f"fee must be >= 0, got {self.fee}")


@dataclass(frozen=True, slots=True)
class FallbackRate:
    fee: Money
    eta_label: str


DEFAULT_FALLBACK: dict[ShippingOption, FallbackRate] = {
    ShippingOption.STANDARD: FallbackRate(fee=0, eta_label="5–7 days"),
    ShippingOption.EXPRESS: FallbackRate(fee=12_000, eta_label="1–2 days"),
}

# ═══════════════════════════════════════════════════════════════════════════════
# Wire
# ═══════════════════════════════════════════════════════════════════════════════


class RateBody(BaseModel):
    """Rate service response. Both fields may be missing."""

    model_config = ConfigDict(extra="ignore")

    fee: Any = None
    eta: str | None = Field(default=None)


__all__ = (
    "ShippingQuote",
    "FallbackRate",
    "DEFAULT_FALLBACK",
    "RateBody",
)
