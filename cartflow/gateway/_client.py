"""
PaymentIntentGateway: httpx client for the external payment provider.

    gateway = PaymentIntentGateway.from_settings(settings)

    match await gateway.create_intent(request):
        case Ok(intent):
            open_browser(intent.redirect_url)
        case Error(e):
            show(e.message)

Note: Success is only ever inferred from get_status(). The commerce
backend's view of an order is never treated as payment confirmation.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from kungfu import Error, Ok, Result
from pydantic import ValidationError

from cartflow import lift as L
from cartflow._types import Money, to_money
from cartflow.config import Settings
from cartflow.gateway._types import (
    GatewayError,
    GatewayErrorKind,
    IntentBody,
    IntentRequest,
    IntentStatus,
    PaymentIntent,
    StatusBody,
    StatusReport,
    normalize_amount,
)

logger = logging.getLogger(__name__)


def _error_from_exception(exc: Exception) -> GatewayError:
    match exc:
        case httpx.HTTPStatusError():
            kind = GatewayErrorKind.REJECTED
        case ValidationError() | ValueError():
            kind = GatewayErrorKind.DECODE
        case _:
            kind = GatewayErrorKind.TRANSPORT
    return GatewayError(kind, L.describe(exc), L.status_code(exc))


def _optional_money(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return to_money(value)
    except ValueError:
        return None


class PaymentIntentGateway:
    """
    Intent creation and status polling.

    Status is monotonic per intent: once PAID or FAILED has been
    observed, later reports for that intent never go back to PENDING.

    When creation returns no payment URL and sign_url is set, the
    signing endpoint is asked for one before giving up with NO_REDIRECT.
    """

    def __init__(self, client: httpx.AsyncClient, *, sign_url: str | None = None) -> None:
        self._client = client
        self._sign_url = sign_url
        self._observed: dict[str, IntentStatus] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> PaymentIntentGateway:
        client = httpx.AsyncClient(
            base_url=settings.gateway_url.rstrip("/") + "/",
            timeout=settings.http_timeout,
            headers={"Content-Type": "application/json; charset=utf-8"},
            transport=transport,
        )
        return cls(client, sign_url=settings.sign_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_intent(self, request: IntentRequest) -> Result[PaymentIntent, GatewayError]:
        try:
            amount = normalize_amount(request.amount)
        except ValueError as exc:
            return Error(GatewayError(GatewayErrorKind.INVALID_AMOUNT, str(exc)))

        logger.info("creating payment intent for %s, amount %d", request.email, amount)
        result = await L.http_json(
            lambda: self._client.post("intents", json=request.as_payload(amount)),
            on_error=_error_from_exception,
            decode=IntentBody.model_validate,
        )

        match result:
            case Error(e):
                logger.warning("intent creation failed: %s", e.message)
                return Error(e)
            case Ok(body):
                pass

        if not body.intent_id:
            return Error(GatewayError(GatewayErrorKind.DECODE, "gateway response has no intent id"))
        redirect_url = body.redirect_url
        if not redirect_url and self._sign_url is not None:
            redirect_url = await self._sign(body.intent_id, request, amount)
        if not redirect_url:
            return Error(GatewayError(
                GatewayErrorKind.NO_REDIRECT,
                f"gateway returned no payment URL for intent {body.intent_id}",
            ))

        status = IntentStatus.parse(body.status)
        self._observed[body.intent_id] = status
        logger.debug("intent %s created", body.intent_id)
        return Ok(PaymentIntent(
            intent_id=body.intent_id,
            amount=amount,
            status=status,
            redirect_url=redirect_url,
        ))

    async def get_status(self, intent_id: str) -> Result[StatusReport, GatewayError]:
        result = await L.http_json(
            lambda: self._client.get(f"intents/{intent_id}"),
            on_error=_error_from_exception,
            decode=StatusBody.model_validate,
        )

        match result:
            case Error(e):
                return Error(e)
            case Ok(body):
                status = self._observe(intent_id, IntentStatus.parse(body.status))
                return Ok(StatusReport(intent_id, status, _optional_money(body.amount)))

    async def _sign(self, intent_id: str, request: IntentRequest, amount: Money) -> str | None:
        assert self._sign_url is not None
        url = self._sign_url.format(email=quote(request.email, safe=""), cart_id=request.cart_id)
        logger.info("no payment URL for intent %s, asking the signing endpoint", intent_id)
        result = await L.http_json(
            lambda: self._client.post(
                url,
                params={"amount": amount},
                json={
                    "amount": amount,
                    "totals": {"total": amount},
                    "items": [line.as_payload() for line in request.items],
                    "orderId": intent_id,
                    "locale": "vn",
                    "returnUrl": request.return_url,
                },
            ),
            on_error=_error_from_exception,
            decode=IntentBody.model_validate,
        )
        match result:
            case Ok(body):
                return body.redirect_url
            case Error(e):
                logger.warning("signing intent %s failed: %s", intent_id, e.message)
                return None

    def last_observed(self, intent_id: str) -> IntentStatus | None:
        return self._observed.get(intent_id)

    def _observe(self, intent_id: str, reported: IntentStatus) -> IntentStatus:
        previous = self._observed.get(intent_id)
        if previous is not None and previous.is_terminal:
            if reported is not previous:
                logger.warning(
                    "intent %s reported %s after %s, keeping %s",
                    intent_id, reported.value, previous.value, previous.value,
                )
            return previous
        self._observed[intent_id] = reported
        return reported


__all__ = ("PaymentIntentGateway",)
