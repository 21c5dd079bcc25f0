"""Tests for return URL parsing, the interceptor and the web return route."""
from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from cartflow.returns import (
    BrowserDismissed,
    RcodeClass,
    ReturnInterceptor,
    ReturnOutcome,
    build_return_router,
    classify,
    parse_return_url,
)

CLOSE = "https://vnpay-close.local/"


@pytest.fixture()
def interceptor() -> ReturnInterceptor:
    return ReturnInterceptor("pi_1", close_url=CLOSE)


# ============= Parsing =============


class TestParse:
    @pytest.mark.parametrize(
        ("rcode", "expected"),
        [
            ("00", RcodeClass.SUCCESS),
            ("success", RcodeClass.SUCCESS),
            ("24", RcodeClass.CANCEL),
            ("CANCELLED", RcodeClass.CANCEL),
            ("FAILED", RcodeClass.FAILURE),
            ("07", RcodeClass.UNKNOWN),
            ("", RcodeClass.UNKNOWN),
        ],
    )
    def test_classify(self, rcode: str, expected: RcodeClass) -> None:
        assert classify(rcode) is expected

    def test_parse_with_intent_id(self) -> None:
        outcome = parse_return_url(f"{CLOSE}?rcode=00&intentId=pi_1")
        assert outcome == ReturnOutcome("00", "pi_1", echoed=True)

    def test_order_id_param_accepted(self) -> None:
        outcome = parse_return_url(f"{CLOSE}?rcode=00&orderId=pi_2")
        assert outcome.intent_id == "pi_2"

    def test_missing_intent_id_falls_back(self) -> None:
        outcome = parse_return_url(f"{CLOSE}?rcode=24", fallback_intent_id="pi_9")
        assert outcome == ReturnOutcome("24", "pi_9", echoed=False)

    def test_foreign_url_ignored(self) -> None:
        assert parse_return_url("https://shop.example/?rcode=00", close_url=CLOSE) is None


# ============= Interceptor =============


class TestInterceptor:
    def test_close_url_refused_and_fires_once(self, interceptor: ReturnInterceptor) -> None:
        url = f"{CLOSE}?rcode=00&intentId=pi_1"

        assert interceptor.should_start_load(url) is False
        assert interceptor.should_start_load(url) is False
        assert interceptor.on_page_load(url) is False

        assert interceptor.poll() == ReturnOutcome("00", "pi_1")
        assert interceptor.poll() is None

    def test_other_urls_load(self, interceptor: ReturnInterceptor) -> None:
        assert interceptor.should_start_load("https://pay.example/pi_1") is True
        assert interceptor.fired is False

    def test_blocked_schemes_refused_without_firing(self, interceptor: ReturnInterceptor) -> None:
        assert interceptor.should_start_load("exp://192.168.1.2:8081") is False
        assert interceptor.should_start_load("appios://home") is False
        assert interceptor.fired is False

    def test_dismiss_publishes_once(self, interceptor: ReturnInterceptor) -> None:
        assert interceptor.dismiss() is True
        assert interceptor.dismiss() is False
        assert interceptor.on_page_load(f"{CLOSE}?rcode=00") is False

        assert interceptor.poll() == BrowserDismissed("pi_1")

    def test_dismiss_after_outcome_is_noop(self, interceptor: ReturnInterceptor) -> None:
        interceptor.on_page_load(f"{CLOSE}?rcode=00")
        assert interceptor.dismiss() is False
        assert interceptor.poll() == ReturnOutcome("00", "pi_1", echoed=False)

    @pytest.mark.asyncio
    async def test_wait_receives_event(self, interceptor: ReturnInterceptor) -> None:
        interceptor.on_page_load(f"{CLOSE}?rcode=24&intentId=pi_1")
        event = await interceptor.wait()
        assert event == ReturnOutcome("24", "pi_1")


# ============= Web route =============


class TestReturnRoute:
    def _client(self, interceptor: ReturnInterceptor | None) -> TestClient:
        app = FastAPI()
        app.include_router(build_return_router(lambda intent_id: interceptor))
        return TestClient(app)

    def test_route_fires_interceptor(self, interceptor: ReturnInterceptor) -> None:
        response = self._client(interceptor).get("/payment/close", params={"rcode": "00", "intentId": "pi_1"})

        assert response.status_code == 200
        assert response.json() == {
            "accepted": True,
            "rcode": "00",
            "intent_id": "pi_1",
            "outcome": "success",
        }
        assert interceptor.poll() == ReturnOutcome("00", "pi_1")

    def test_second_hit_not_accepted(self, interceptor: ReturnInterceptor) -> None:
        client = self._client(interceptor)
        client.get("/payment/close", params={"rcode": "00"})

        response = client.get("/payment/close", params={"rcode": "00"})

        assert response.json()["accepted"] is False

    def test_no_waiting_attempt(self) -> None:
        response = self._client(None).get("/payment/close", params={"rcode": "00"})
        assert response.status_code == 404
