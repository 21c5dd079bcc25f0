"""
Shipping: fee and ETA per option, with a fallback table.

    from cartflow import shipping as Sh

    calc = Sh.ShippingCalculator.from_settings(settings)
    quote = await calc.quote(ShippingOption.STANDARD, cart.total)
"""

from cartflow.shipping._types import (
    ShippingQuote,
    FallbackRate,
    DEFAULT_FALLBACK,
    RateBody,
)
from cartflow.shipping._calculator import ShippingCalculator, QuoteCache, QuoteKey

__all__ = (
    "ShippingQuote",
    "FallbackRate",
    "DEFAULT_FALLBACK",
    "RateBody",
    "ShippingCalculator",
    "QuoteCache",
    "QuoteKey",
)
