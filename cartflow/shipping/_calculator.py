"""
ShippingCalculator: option + subtotal → fee and ETA.

    calc = ShippingCalculator.from_settings(settings)
    quote = await calc.quote(ShippingOption.EXPRESS, 450_000)

Never raises. Any failure of the rate service (timeout, transport error,
non-2xx, malformed body) yields the fallback rate with degraded=True.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Mapping

import httpx
from kungfu import Error, Ok

from cartflow import lift as L
from cartflow._types import Money, ShippingOption, to_money
from cartflow.config import Settings
from cartflow.shipping._types import DEFAULT_FALLBACK, FallbackRate, RateBody, ShippingQuote

logger = logging.getLogger(__name__)

type QuoteKey = tuple[ShippingOption, Money]

# ═══════════════════════════════════════════════════════════════════════════════
# Quote Cache: small in-memory LRU
# ═══════════════════════════════════════════════════════════════════════════════


class QuoteCache:
    """
    LRU of service quotes per (option, subtotal). Lookups refresh recency.

        cache = QuoteCache(max_size=32)
    """

    def __init__(self, max_size: int = 32) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._quotes: OrderedDict[QuoteKey, ShippingQuote] = OrderedDict()

    def get(self, key: QuoteKey) -> ShippingQuote | None:
        quote = self._quotes.get(key)
        if quote is not None:
            self._quotes.move_to_end(key)
        return quote

    def set(self, key: QuoteKey, quote: ShippingQuote) -> None:
        self._quotes[key] = quote
        self._quotes.move_to_end(key)
        while len(self._quotes) > self._max_size:
            self._quotes.popitem(last=False)

    def clear(self) -> None:
        self._quotes.clear()

    def __len__(self) -> int:
        return len(self._quotes)


# ═══════════════════════════════════════════════════════════════════════════════
# ShippingCalculator
# ═══════════════════════════════════════════════════════════════════════════════


class ShippingCalculator:
    """
    Rate service client with a static fallback table.

    Only quotes computed by the service are cached; a degraded quote is
    recomputed next time so a recovered service is picked up.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        fallback: Mapping[ShippingOption, FallbackRate] = DEFAULT_FALLBACK,
        cache: QuoteCache | None = None,
    ) -> None:
        self._client = client
        self._fallback = dict(fallback)
        self._cache = cache if cache is not None else QuoteCache()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ShippingCalculator:
        client = httpx.AsyncClient(
            base_url=settings.api_url.rstrip("/") + "/",
            timeout=settings.http_timeout,
            transport=transport,
        )
        return cls(client)

    async def aclose(self) -> None:
        await self._client.aclose()

    def fallback(self, option: ShippingOption) -> ShippingQuote:
        rate = self._fallback[option]
        return ShippingQuote(option, rate.fee, rate.eta_label, degraded=True)

    async def quote(self, option: ShippingOption, subtotal: Money) -> ShippingQuote:
        subtotal = max(0, subtotal)
        key = (option, subtotal)
        if (cached := self._cache.get(key)) is not None:
            return cached

        result = await L.http_json(
            lambda: self._client.get(
                "shipping/fee",
                params={"option": option.value, "subtotal": subtotal},
            ),
            on_error=L.describe,
            decode=RateBody.model_validate,
        )

        match result:
            case Ok(body):
                quote = self._from_body(option, body)
                if not quote.degraded:
                    self._cache.set(key, quote)
                return quote
            case Error(reason):
                logger.warning("shipping rate for %s unavailable (%s), using fallback", option.value, reason)
                return self.fallback(option)

    def _from_body(self, option: ShippingOption, body: RateBody) -> ShippingQuote:
        rate = self._fallback[option]
        fee: Money | None = None
        if body.fee is not None:
            try:
                fee = to_money(body.fee)
            except ValueError:
                logger.warning("shipping rate returned bad fee %r", body.fee)
        if fee is None or fee < 0:
            return ShippingQuote(option, rate.fee, body.eta or rate.eta_label, degraded=True)
        return ShippingQuote(option, fee, body.eta or rate.eta_label)


__all__ = ("ShippingCalculator", "QuoteCache", "QuoteKey")
