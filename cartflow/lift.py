"""
Lift: helpers for lifting HTTP calls into kungfu results.

Re-exports from combinators.lift with cartflow-specific additions.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from kungfu import LazyCoroResult

# Re-export from combinators.lift
from combinators.lift import catching_async

# ═══════════════════════════════════════════════════════════════════════════════
# cartflow-specific helpers
# ═══════════════════════════════════════════════════════════════════════════════


def _identity(body: Any) -> Any:
    return body


def http_json[T, E](
    send: Callable[[], Awaitable[httpx.Response]],
    on_error: Callable[[Exception], E],
    decode: Callable[[Any], T] = _identity,
) -> LazyCoroResult[T, E]:
    """
    Lift an httpx request into LazyCoroResult of the decoded JSON body.

    Non-2xx responses, transport errors, undecodable bodies and anything
    decode raises all end up in on_error. An empty body decodes to None
    before decode sees it.

    Example:
        report = await http_json(
            lambda: client.get(f"intents/{intent_id}"),
            on_error=GatewayError.from_exception,
            decode=StatusBody.model_validate,
        )
    """

    async def _run() -> T:
        response = await send()
        response.raise_for_status()
        body = response.json() if response.content else None
        return decode(body)

    return catching_async(_run, on_error=on_error)


def describe(exc: Exception) -> str:
    """One-line description of an HTTP failure, for logs and error values."""
    match exc:
        case httpx.HTTPStatusError(response=response):
            return f"HTTP {response.status_code} from {response.request.url}"
        case httpx.TimeoutException():
            return f"timeout: {exc}"
        case httpx.HTTPError():
            return f"transport error: {exc}"
        case _:
            return f"{type(exc).__name__}: {exc}"


def status_code(exc: Exception) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


__all__ = (
    # From combinators.lift
    "catching_async",
    # cartflow additions
    "http_json",
    "describe",
    "status_code",
)
