"""Tests for PaymentIntentGateway and poll_until."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from cartflow._types import Error, Ok
from cartflow.config import Settings
from cartflow.gateway import (
    Aborted,
    Exhausted,
    GatewayErrorKind,
    IntentRequest,
    IntentStatus,
    PaymentIntentGateway,
    Settled,
    VirtualClock,
    normalize_amount,
    poll_until,
)

# ============= Amounts and statuses =============


class TestNormalizeAmount:
    def test_rounds_half_up(self) -> None:
        assert normalize_amount(149_999.5) == 150_000
        assert normalize_amount("12000") == 12_000

    @pytest.mark.parametrize("value", [0, -5, float("nan"), float("inf"), "abc", True])
    def test_rejects_invalid(self, value) -> None:
        with pytest.raises(ValueError):
            normalize_amount(value)


def test_intent_status_parse() -> None:
    assert IntentStatus.parse("00") is IntentStatus.PAID
    assert IntentStatus.parse("succeeded") is IntentStatus.PAID
    assert IntentStatus.parse("EXPIRED") is IntentStatus.FAILED
    assert IntentStatus.parse("processing") is IntentStatus.PENDING
    assert IntentStatus.parse(None) is IntentStatus.PENDING


# ============= Client =============


def _request(amount: object = 330_000) -> IntentRequest:
    return IntentRequest(
        email="ana@example.com",
        cart_id=42,
        amount=amount,
        items=(),
        return_url="http://localhost:3000/api/payment/vnpay/return",
    )


def _gateway(transport) -> PaymentIntentGateway:
    return PaymentIntentGateway.from_settings(Settings(), transport=transport)


class TestCreateIntent:
    @pytest.mark.asyncio
    async def test_creates_intent_with_normalized_amount(self, transport) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request):
            bodies.append(json.loads(request.content))
            return 201, {"orderId": "pi_9", "vnpUrl": "https://pay.example/pi_9"}

        gateway = _gateway(transport(handler))
        result = await gateway.create_intent(_request(329_999.5))

        match result:
            case Ok(intent):
                assert intent.intent_id == "pi_9"
                assert intent.amount == 330_000
                assert intent.redirect_url == "https://pay.example/pi_9"
                assert intent.status is IntentStatus.PENDING
            case Error(e):
                pytest.fail(f"unexpected error {e}")
        assert bodies[0]["amount"] == 330_000

    @pytest.mark.asyncio
    async def test_invalid_amount_makes_no_call(self, transport) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request):
            calls.append(1)
            return 200, {}

        result = await _gateway(transport(handler)).create_intent(_request(0))

        match result:
            case Error(e):
                assert e.kind is GatewayErrorKind.INVALID_AMOUNT
            case Ok(_):
                pytest.fail("expected INVALID_AMOUNT")
        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_redirect(self, transport) -> None:
        gateway = _gateway(transport(lambda request: (200, {"intentId": "pi_1"})))

        match await gateway.create_intent(_request()):
            case Error(e):
                assert e.kind is GatewayErrorKind.NO_REDIRECT
            case Ok(_):
                pytest.fail("expected NO_REDIRECT")

    @pytest.mark.asyncio
    async def test_missing_redirect_is_signed_separately(self, transport) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request):
            seen.append(request)
            if request.url.path == "/api/payment/intents":
                return 200, {"intentId": "pi_1"}
            return 200, {"payUrl": "https://pay.example/signed/pi_1"}

        match await _gateway(transport(handler)).create_intent(_request()):
            case Ok(intent):
                assert intent.intent_id == "pi_1"
                assert intent.redirect_url == "https://pay.example/signed/pi_1"
            case Error(e):
                pytest.fail(f"unexpected error {e}")

        sign = seen[1]
        assert sign.url.raw_path.startswith(b"/api/public/users/ana%40example.com/carts/42/payments/vnpay/order")
        assert sign.url.params["amount"] == "330000"
        assert json.loads(sign.content)["orderId"] == "pi_1"

    @pytest.mark.asyncio
    async def test_signing_disabled(self, transport) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request):
            calls.append(request.url.path)
            return 200, {"intentId": "pi_1"}

        gateway = PaymentIntentGateway.from_settings(Settings().with_sign_url(None), transport=transport(handler))

        match await gateway.create_intent(_request()):
            case Error(e):
                assert e.kind is GatewayErrorKind.NO_REDIRECT
            case Ok(_):
                pytest.fail("expected NO_REDIRECT")
        assert calls == ["/api/payment/intents"]

    @pytest.mark.asyncio
    async def test_rejected(self, transport) -> None:
        gateway = _gateway(transport(lambda request: (400, {"message": "bad"})))

        match await gateway.create_intent(_request()):
            case Error(e):
                assert e.kind is GatewayErrorKind.REJECTED
                assert e.status == 400
            case Ok(_):
                pytest.fail("expected REJECTED")


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_status_is_monotonic(self, transport) -> None:
        replies = iter([{"status": "PAID", "amount": 330000}, {"status": "PENDING"}])
        gateway = _gateway(transport(lambda request: (200, next(replies))))

        first = await gateway.get_status("pi_1")
        second = await gateway.get_status("pi_1")

        match first, second:
            case Ok(a), Ok(b):
                assert a.status is IntentStatus.PAID
                assert a.amount == 330_000
                assert b.status is IntentStatus.PAID
            case _:
                pytest.fail("expected two reports")
        assert gateway.last_observed("pi_1") is IntentStatus.PAID

    @pytest.mark.asyncio
    async def test_status_url(self, transport) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request):
            paths.append(request.url.path)
            return 200, {"paymentStatus": "FAILED"}

        result = await _gateway(transport(handler)).get_status("pi_7")

        assert paths == ["/api/payment/intents/pi_7"]
        match result:
            case Ok(report):
                assert report.status is IntentStatus.FAILED
            case Error(e):
                pytest.fail(f"unexpected error {e}")


# ============= poll_until =============


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_settles_on_done(self) -> None:
        replies = iter([Ok("PENDING"), Error("timeout"), Ok("PAID")])
        clock = VirtualClock()

        outcome = await poll_until(
            lambda: _ready(next(replies)),
            done=lambda value: value == "PAID",
            interval=1.5,
            max_attempts=5,
            clock=clock,
        )

        assert outcome == Settled("PAID", 3)
        assert clock.sleeps == [1.5, 1.5]

    @pytest.mark.asyncio
    async def test_bounded_by_max_attempts(self) -> None:
        calls: list[int] = []
        clock = VirtualClock()

        async def fetch():
            calls.append(1)
            return Ok("PENDING")

        outcome = await poll_until(fetch, done=lambda v: False, interval=1.5, max_attempts=20, clock=clock)

        match outcome:
            case Exhausted(attempts=attempts, last_value=last):
                assert attempts == 20
                assert last == "PENDING"
            case _:
                pytest.fail(f"expected Exhausted, got {outcome}")
        assert len(calls) == 20
        # No sleep after the last attempt
        assert clock.sleeps == [1.5] * 19

    @pytest.mark.asyncio
    async def test_cancel_aborts(self) -> None:
        stop = asyncio.Event()
        calls: list[int] = []

        async def fetch():
            calls.append(1)
            if len(calls) == 2:
                stop.set()
            return Ok("PENDING")

        outcome = await poll_until(
            fetch, done=lambda v: False, interval=1.5, max_attempts=10,
            clock=VirtualClock(), cancelled=stop,
        )

        assert outcome == Aborted(2)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            await poll_until(lambda: _ready(Ok(1)), done=bool, interval=0, max_attempts=0)


async def _ready(result):
    return result
