"""Tests for the attempt ledgers and OrderFinalizer idempotency."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from cartflow._types import Address, Error, Ok, ShippingOption, Totals
from cartflow.cart import CartLine
from cartflow.finalize import (
    AttemptRecord,
    AttemptState,
    FinalizeErrorKind,
    FinalizeRequest,
    MemoryLedger,
    Order,
    OrderFinalizer,
    OrderStatus,
    STALE_CLAIM_AFTER,
    SQLAlchemyLedger,
)

EMAIL = "ana@example.com"


def _request(intent_id: str = "pi_1") -> FinalizeRequest:
    return FinalizeRequest(
        intent_id=intent_id,
        address=Address(line1="12 Ly Thuong Kiet", city="Hanoi", full_name="Ana"),
        shipping_option=ShippingOption.STANDARD,
        totals=Totals(subtotal=300_000, shipping_fee=30_000),
        items=(CartLine(product_id=7, name="Tee", price=150_000, quantity=2, size="M"),),
        voucher_code="WELCOME",
    )


def _record(intent_id: str = "pi_1", email: str = EMAIL) -> AttemptRecord:
    return AttemptRecord(intent_id=intent_id, email=email, cart_id=42, request=_request(intent_id))


def _abandoned(minutes: int = 10) -> AttemptRecord:
    """FINALIZING record whose claimant stopped touching it `minutes` ago."""
    at = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    return replace(_record(), state=AttemptState.FINALIZING, created_at=at, updated_at=at)


def _ok(result):
    match result:
        case Ok(value):
            return value
        case Error(e):
            pytest.fail(f"unexpected error {e}")


@pytest_asyncio.fixture(params=["memory", "sqlalchemy"])
async def any_ledger(request, tmp_path):
    if request.param == "memory":
        return MemoryLedger()
    return await SQLAlchemyLedger.connect(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")


# ============= Ledgers =============


class TestLedger:
    @pytest.mark.asyncio
    async def test_create_once(self, any_ledger) -> None:
        assert _ok(await any_ledger.create(_record())) is True
        assert _ok(await any_ledger.create(_record())) is False

        match await any_ledger.get("pi_1"):
            case Ok(record) if record is not None:
                assert record.state is AttemptState.OPEN
                assert record.request == _request()
            case other:
                pytest.fail(f"unexpected {other}")

    @pytest.mark.asyncio
    async def test_get_missing(self, any_ledger) -> None:
        assert _ok(await any_ledger.get("pi_404")) is None

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, any_ledger) -> None:
        await any_ledger.create(_record())

        assert _ok(await any_ledger.claim("pi_1")) is True
        assert _ok(await any_ledger.claim("pi_1")) is False

    @pytest.mark.asyncio
    async def test_claim_unknown_intent_errors(self, any_ledger) -> None:
        assert isinstance(await any_ledger.claim("pi_404"), Error)

    @pytest.mark.asyncio
    async def test_failed_attempt_can_be_claimed_again(self, any_ledger) -> None:
        await any_ledger.create(_record())
        await any_ledger.claim("pi_1")
        await any_ledger.fail("pi_1", "HTTP 502")

        match await any_ledger.get("pi_1"):
            case Ok(record) if record is not None:
                assert record.state is AttemptState.FAILED
                assert record.error == "HTTP 502"
            case other:
                pytest.fail(f"unexpected {other}")
        assert _ok(await any_ledger.claim("pi_1")) is True

    @pytest.mark.asyncio
    async def test_complete_stores_order(self, any_ledger) -> None:
        order = Order(order_id="1001", status=OrderStatus.CONFIRMED, items=_request().items, intent_id="pi_1")
        await any_ledger.create(_record())
        await any_ledger.claim("pi_1")

        assert _ok(await any_ledger.complete("pi_1", order)) is None

        match await any_ledger.get("pi_1"):
            case Ok(record) if record is not None:
                assert record.is_completed
                assert record.order.order_id == "1001"
                assert record.order.status is OrderStatus.CONFIRMED
                assert record.order.items[0].size == "M"
            case other:
                pytest.fail(f"unexpected {other}")

    @pytest.mark.asyncio
    async def test_stale_claim_can_be_taken_over(self, any_ledger) -> None:
        await any_ledger.create(_abandoned())

        assert _ok(await any_ledger.claim("pi_1")) is False
        assert _ok(await any_ledger.claim("pi_1", stale_after=STALE_CLAIM_AFTER)) is True
        # The takeover refreshes the claim
        assert _ok(await any_ledger.claim("pi_1", stale_after=STALE_CLAIM_AFTER)) is False

    @pytest.mark.asyncio
    async def test_fresh_claim_is_not_stale(self, any_ledger) -> None:
        await any_ledger.create(_abandoned(minutes=0))

        assert _ok(await any_ledger.claim("pi_1", stale_after=STALE_CLAIM_AFTER)) is False

    @pytest.mark.asyncio
    async def test_pending_excludes_completed_and_other_users(self, any_ledger) -> None:
        await any_ledger.create(_record("pi_1"))
        await any_ledger.create(_record("pi_2"))
        await any_ledger.create(_record("pi_3", email="bo@example.com"))
        await any_ledger.claim("pi_2")
        await any_ledger.complete("pi_2", Order(order_id="1"))

        match await any_ledger.pending(EMAIL):
            case Ok(records):
                assert [r.intent_id for r in records] == ["pi_1"]
            case Error(e):
                pytest.fail(e.message)


# ============= OrderFinalizer =============


class TestOrderFinalizer:
    @pytest.mark.asyncio
    async def test_second_finalize_is_cached(self, finalizer, order_backend) -> None:
        first = await finalizer.finalize(EMAIL, 42, _request())
        second = await finalizer.finalize(EMAIL, 42, _request())

        match first, second:
            case Ok(a), Ok(b):
                assert a.from_cache is False
                assert b.from_cache is True
                assert a.order == b.order
                assert a.order.intent_id == "pi_1"
            case _:
                pytest.fail(f"unexpected {first} {second}")
        assert len(order_backend.commits) == 1

    @pytest.mark.asyncio
    async def test_failed_finalize_can_be_retried(self, finalizer, order_backend, ledger) -> None:
        order_backend.failures = 1

        first = await finalizer.finalize(EMAIL, 42, _request())

        match first:
            case Error(e):
                assert e.kind is FinalizeErrorKind.BACKEND
                assert e.intent_id == "pi_1"
            case Ok(_):
                pytest.fail("expected BACKEND")
        match await ledger.get("pi_1"):
            case Ok(record) if record is not None:
                assert record.state is AttemptState.FAILED
            case other:
                pytest.fail(f"unexpected {other}")

        second = await finalizer.finalize(EMAIL, 42, _request())

        assert isinstance(second, Ok)
        assert len(order_backend.commits) == 2

    @pytest.mark.asyncio
    async def test_in_flight_attempt_conflicts(self, finalizer, order_backend, ledger) -> None:
        await ledger.create(_record())
        await ledger.claim("pi_1")

        result = await finalizer.finalize(EMAIL, 42, _request())

        match result:
            case Error(e):
                assert e.kind is FinalizeErrorKind.CONFLICT
            case Ok(_):
                pytest.fail("expected CONFLICT")
        assert order_backend.commits == []

    @pytest.mark.asyncio
    async def test_abandoned_claim_is_taken_over(self, finalizer, order_backend, ledger) -> None:
        await ledger.create(_abandoned())

        result = await finalizer.finalize(EMAIL, 42, FinalizeRequest.minimal("pi_1"))

        match result:
            case Ok(done):
                assert done.from_cache is False
                assert done.order.intent_id == "pi_1"
            case Error(e):
                pytest.fail(e.message)
        assert order_backend.commits == [_request()]

    @pytest.mark.asyncio
    async def test_cancelled_commit_releases_claim(self, finalizer, order_backend, ledger) -> None:
        order_backend.gate = asyncio.Event()
        task = asyncio.create_task(finalizer.finalize(EMAIL, 42, _request()))
        for _ in range(50):
            if order_backend.commits:
                break
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        match await ledger.get("pi_1"):
            case Ok(record) if record is not None:
                assert record.state is AttemptState.FAILED
                assert record.error == "finalize interrupted"
            case other:
                pytest.fail(f"unexpected {other}")

        order_backend.gate = None
        assert isinstance(await finalizer.finalize(EMAIL, 42, _request()), Ok)
        assert len(order_backend.commits) == 2

    @pytest.mark.asyncio
    async def test_missing_order_id_resolves_recent_order(self, finalizer, order_backend) -> None:
        order_backend.omit_order_id = True

        result = await finalizer.finalize(EMAIL, 42, _request())

        match result:
            case Ok(done):
                assert done.order.order_id == "1000"
                assert done.order.intent_id == "pi_1"
            case Error(e):
                pytest.fail(e.message)

    @pytest.mark.asyncio
    async def test_no_order_anywhere(self, ledger) -> None:
        class Silent:
            async def finalize_order(self, email, cart_id, request):
                return Ok(None)

            async def get_order(self, email, order_id):
                return Error("unused")

            async def list_orders(self, email):
                return Ok(())

        result = await OrderFinalizer(Silent(), ledger).finalize(EMAIL, 42, _request())

        match result:
            case Error(e):
                assert e.kind is FinalizeErrorKind.NO_ORDER
            case Ok(_):
                pytest.fail("expected NO_ORDER")

    @pytest.mark.asyncio
    async def test_order_detail_unavailable_uses_snapshot(self, finalizer, order_backend) -> None:
        order_backend.detail_missing = True

        result = await finalizer.finalize(EMAIL, 42, _request())

        match result:
            case Ok(done):
                assert done.order.order_id == "1000"
                assert done.order.items == _request().items
                assert done.order.totals.total == 330_000
            case Error(e):
                pytest.fail(e.message)

    @pytest.mark.asyncio
    async def test_minimal_request_uses_recorded_snapshot(self, finalizer, order_backend) -> None:
        await finalizer.record_attempt(_record())

        await finalizer.finalize(EMAIL, 42, FinalizeRequest.minimal("pi_1"))

        assert order_backend.commits == [_request()]

    @pytest.mark.asyncio
    async def test_signed_out(self, finalizer, order_backend) -> None:
        result = await finalizer.finalize("", 42, _request())

        match result:
            case Error(e):
                assert e.kind is FinalizeErrorKind.NOT_SIGNED_IN
            case Ok(_):
                pytest.fail("expected NOT_SIGNED_IN")
        assert order_backend.commits == []

    @pytest.mark.asyncio
    async def test_lookup(self, finalizer) -> None:
        await finalizer.finalize(EMAIL, 42, _request())

        match await finalizer.lookup("pi_1"):
            case Ok(record) if record is not None:
                assert record.state is AttemptState.COMPLETED
            case other:
                pytest.fail(f"unexpected {other}")
