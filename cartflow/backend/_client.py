"""
CommerceBackend: httpx client for the cart and order backend.

    async with CommerceBackend.from_settings(settings, credentials) as backend:
        match await backend.get_cart(email, cart_id):
            case Ok(lines):
                store.replace_cart(lines)
            case Error(e):
                logger.warning("cart load failed: %s", e.message)

Every call returns a kungfu Result. Nothing here raises for HTTP trouble.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any
from urllib.parse import quote

import httpx
from kungfu import Result
from pydantic import ValidationError

from cartflow import lift as L
from cartflow._types import CartId, CredentialStore
from cartflow.backend._schemas import CartBody, FinalizeAck, OrderBody
from cartflow.cart import CartLine
from cartflow.config import Settings
from cartflow.finalize._types import FinalizeRequest, Order

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"

# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class BackendErrorKind(Enum):
    TRANSPORT = auto()  # Timeout, connection refused, DNS
    REJECTED = auto()  # Non-2xx other than 404
    NOT_FOUND = auto()
    DECODE = auto()  # Body did not match any known shape


@dataclass(frozen=True, slots=True)
class BackendError:
    kind: BackendErrorKind
    message: str
    status: int | None = None

    @classmethod
    def from_exception(cls, exc: Exception) -> BackendError:
        status = L.status_code(exc)
        match exc:
            case httpx.HTTPStatusError() if status == 404:
                kind = BackendErrorKind.NOT_FOUND
            case httpx.HTTPStatusError():
                kind = BackendErrorKind.REJECTED
            case ValidationError() | ValueError():
                kind = BackendErrorKind.DECODE
            case _:
                kind = BackendErrorKind.TRANSPORT
        return cls(kind, L.describe(exc), status)


# ═══════════════════════════════════════════════════════════════════════════════
# Decoders
# ═══════════════════════════════════════════════════════════════════════════════


def _decode_cart(body: Any) -> tuple[CartLine, ...]:
    if body is None:
        return ()
    return CartBody.model_validate(body).to_lines()


def _decode_order(body: Any) -> Order:
    return OrderBody.model_validate(body).to_order()


def _decode_orders(body: Any) -> tuple[Order, ...]:
    match body:
        case None:
            return ()
        case list():
            rows = body
        case {"content": list() as rows}:
            pass
        case {"orders": list() as rows}:
            pass
        case _:
            raise ValueError(f"unexpected orders body: {type(body).__name__}")
    return tuple(OrderBody.model_validate(row).to_order() for row in rows)


def _decode_ack(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    return FinalizeAck.model_validate(body).order_id


def _ignore(_body: Any) -> None:
    return None


def _user(email: str) -> str:
    return f"public/users/{quote(email, safe='')}"


# ═══════════════════════════════════════════════════════════════════════════════
# CommerceBackend
# ═══════════════════════════════════════════════════════════════════════════════


class CommerceBackend:
    """
    Cart and order endpoints.

    Cart mutations are keyed by (cart_id, product_id) as the backend
    expects. The bearer token is read from the credential store on
    every call, so a refreshed token is picked up without rebuilding.
    """

    def __init__(self, client: httpx.AsyncClient, credentials: CredentialStore) -> None:
        self._client = client
        self._credentials = credentials

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        credentials: CredentialStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> CommerceBackend:
        client = httpx.AsyncClient(
            base_url=settings.api_url.rstrip("/") + "/",
            timeout=settings.http_timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        return cls(client, credentials)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CommerceBackend:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = dict(extra or {})
        token = await self._credentials.token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # Cart

    async def get_cart(
        self,
        email: str,
        cart_id: CartId,
    ) -> Result[tuple[CartLine, ...], BackendError]:
        headers = await self._headers()
        return await L.http_json(
            lambda: self._client.get(f"{_user(email)}/carts/{cart_id}", headers=headers),
            on_error=BackendError.from_exception,
            decode=_decode_cart,
        )

    async def add_item(
        self,
        cart_id: CartId,
        product_id: int,
        quantity: int,
    ) -> Result[None, BackendError]:
        headers = await self._headers()
        logger.debug("add product %s x%d to cart %s", product_id, quantity, cart_id)
        return await L.http_json(
            lambda: self._client.post(
                f"public/carts/{cart_id}/products/{product_id}",
                json={"quantity": quantity},
                headers=headers,
            ),
            on_error=BackendError.from_exception,
            decode=_ignore,
        )

    async def update_quantity(
        self,
        cart_id: CartId,
        product_id: int,
        quantity: int,
    ) -> Result[None, BackendError]:
        headers = await self._headers()
        logger.debug("set product %s to x%d in cart %s", product_id, quantity, cart_id)
        return await L.http_json(
            lambda: self._client.put(
                f"public/carts/{cart_id}/products/{product_id}",
                json={"quantity": quantity},
                headers=headers,
            ),
            on_error=BackendError.from_exception,
            decode=_ignore,
        )

    async def remove_item(
        self,
        cart_id: CartId,
        product_id: int,
    ) -> Result[None, BackendError]:
        headers = await self._headers()
        logger.debug("remove product %s from cart %s", product_id, cart_id)
        return await L.http_json(
            lambda: self._client.delete(
                f"public/carts/{cart_id}/product/{product_id}",
                headers=headers,
            ),
            on_error=BackendError.from_exception,
            decode=_ignore,
        )

    # Orders

    async def finalize_order(
        self,
        email: str,
        cart_id: CartId,
        request: FinalizeRequest,
    ) -> Result[str | None, BackendError]:
        """
        Commit an order for a paid intent.

        Returns the new order id, or None when the backend omits it.

        Note: intent_id goes both in the body and in the Idempotency-Key
        header. A backend honouring either deduplicates retries.
        """
        headers = await self._headers({IDEMPOTENCY_HEADER: request.intent_id})
        return await L.http_json(
            lambda: self._client.post(
                f"{_user(email)}/carts/{cart_id}/orders",
                json=request.as_payload(),
                headers=headers,
            ),
            on_error=BackendError.from_exception,
            decode=_decode_ack,
        )

    async def get_order(self, email: str, order_id: str) -> Result[Order, BackendError]:
        headers = await self._headers()
        return await L.http_json(
            lambda: self._client.get(f"{_user(email)}/orders/{order_id}", headers=headers),
            on_error=BackendError.from_exception,
            decode=_decode_order,
        )

    async def list_orders(self, email: str) -> Result[tuple[Order, ...], BackendError]:
        """All orders of the user, newest first as the backend returns them."""
        headers = await self._headers()
        return await L.http_json(
            lambda: self._client.get(f"{_user(email)}/orders", headers=headers),
            on_error=BackendError.from_exception,
            decode=_decode_orders,
        )


__all__ = (
    "CommerceBackend",
    "BackendError",
    "BackendErrorKind",
    "IDEMPOTENCY_HEADER",
)
