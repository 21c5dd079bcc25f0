"""
ReturnInterceptor: watches the payment browser for the redirect back.

One interceptor per checkout attempt. It publishes exactly one event
(a ReturnOutcome or BrowserDismissed) on a single-slot channel, then
stops observing:

    interceptor = ReturnInterceptor.for_attempt(settings, intent.intent_id)

    # Native: in-app browser navigation guard
    webview.on_should_start_load = interceptor.should_start_load

    # Web: full-page redirect landed on the close URL
    interceptor.on_page_load(current_url)

    event = await interceptor.wait()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from cartflow.config import Settings
from cartflow.returns._types import (
    DEFAULT_INTENT_PARAMS,
    BrowserDismissed,
    ReturnEvent,
    outcome_from_query,
    parse_return_url,
)

logger = logging.getLogger(__name__)


class ReturnInterceptor:
    def __init__(
        self,
        intent_id: str | None,
        *,
        close_url: str,
        blocked_schemes: tuple[str, ...] = ("appios://", "exp://"),
        intent_params: tuple[str, ...] = DEFAULT_INTENT_PARAMS,
    ) -> None:
        self._intent_id = intent_id
        self._close_url = close_url
        self._blocked = blocked_schemes
        self._intent_params = intent_params
        self._channel: asyncio.Queue[ReturnEvent] = asyncio.Queue(maxsize=1)
        self._fired = False

    @classmethod
    def for_attempt(cls, settings: Settings, intent_id: str | None) -> ReturnInterceptor:
        return cls(
            intent_id,
            close_url=settings.close_url,
            blocked_schemes=settings.blocked_schemes,
            intent_params=settings.intent_params,
        )

    @property
    def intent_id(self) -> str | None:
        return self._intent_id

    @property
    def fired(self) -> bool:
        return self._fired

    # Observers

    def should_start_load(self, url: str) -> bool:
        """
        Navigation guard. False means "do not load this URL".

        Blocked schemes are refused silently. The close URL is refused
        and, the first time, fires the outcome.
        """
        if url.startswith(self._blocked):
            logger.debug("refusing blocked scheme: %s", url)
            return False
        if not url.startswith(self._close_url):
            return True
        self.on_page_load(url)
        return False

    def on_page_load(self, url: str) -> bool:
        """Full-page redirect. Returns True if this call fired the outcome."""
        if self._fired or url.startswith(self._blocked):
            return False
        outcome = parse_return_url(
            url,
            close_url=self._close_url,
            fallback_intent_id=self._intent_id,
            intent_params=self._intent_params,
        )
        if outcome is None:
            return False
        return self._publish(outcome)

    def on_return(self, query: Mapping[str, str]) -> bool:
        """Already-parsed query of a close URL hit (web route)."""
        if self._fired:
            return False
        return self._publish(outcome_from_query(
            query,
            fallback_intent_id=self._intent_id,
            intent_params=self._intent_params,
        ))

    def dismiss(self) -> bool:
        """User closed the browser. No-op if the outcome already fired."""
        if self._fired:
            return False
        return self._publish(BrowserDismissed(self._intent_id))

    # Channel

    async def wait(self) -> ReturnEvent:
        return await self._channel.get()

    def poll(self) -> ReturnEvent | None:
        """Non-blocking read of the channel."""
        try:
            return self._channel.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def _publish(self, event: ReturnEvent) -> bool:
        self._fired = True
        self._channel.put_nowait(event)
        logger.info("payment return for intent %s: %s", self._intent_id, event)
        return True


__all__ = ("ReturnInterceptor",)
