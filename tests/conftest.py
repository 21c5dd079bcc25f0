"""Shared fixtures: in-memory fakes for every collaborator of the checkout core."""
from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from cartflow._types import Address, Error, Ok, ShippingOption, StaticCredentials
from cartflow.backend import BackendError, BackendErrorKind
from cartflow.cart import CartLine, CartStore
from cartflow.checkout import PaymentStateMachine
from cartflow.config import Settings
from cartflow.finalize import FinalizeRequest, MemoryLedger, Order, OrderFinalizer, PaymentStatus
from cartflow.gateway import (
    GatewayError,
    GatewayErrorKind,
    IntentStatus,
    PaymentIntent,
    StatusReport,
    VirtualClock,
    normalize_amount,
)
from cartflow.returns import ReturnInterceptor
from cartflow.shipping import ShippingQuote

EMAIL = "ana@example.com"
CART_ID = 42


# ============= HTTP =============


def json_transport(handler: Callable[[httpx.Request], tuple[int, object]]) -> httpx.MockTransport:
    """MockTransport from a handler returning (status, json body)."""

    def respond(request: httpx.Request) -> httpx.Response:
        status, body = handler(request)
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, content=json.dumps(body), headers={"Content-Type": "application/json"})

    return httpx.MockTransport(respond)


@pytest.fixture()
def transport() -> Callable[[Callable[[httpx.Request], tuple[int, object]]], httpx.MockTransport]:
    return json_transport


# ============= Cart backend =============


class FakeCartBackend:
    """Server-side cart kept in a list. Mutations can be made to fail."""

    def __init__(self, lines: tuple[CartLine, ...] = ()):
        self.server: list[CartLine] = list(lines)
        self.calls: list[tuple] = []
        self.fail_mutations = False
        self.fail_fetch = False
        self.gate = None

    async def get_cart(self, email, cart_id):
        self.calls.append(("get", cart_id))
        if self.fail_fetch:
            return Error(BackendError(BackendErrorKind.TRANSPORT, "timeout"))
        return Ok(tuple(self.server))

    async def add_item(self, cart_id, product_id, quantity):
        return await self._mutate(("add", product_id, quantity))

    async def update_quantity(self, cart_id, product_id, quantity):
        return await self._mutate(("update", product_id, quantity))

    async def remove_item(self, cart_id, product_id):
        return await self._mutate(("remove", product_id, None))

    async def _mutate(self, call):
        self.calls.append(call)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_mutations:
            return Error(BackendError(BackendErrorKind.REJECTED, "HTTP 500", 500))

        op, product_id, quantity = call
        existing = next((line for line in self.server if line.product_id == product_id), None)
        if op == "remove":
            self.server = [line for line in self.server if line.product_id != product_id]
        elif op == "update" and existing is not None:
            self.server = [
                line.with_quantity(quantity) if line.product_id == product_id else line
                for line in self.server
            ]
        elif op == "add" and existing is not None:
            self.server = [
                line.with_quantity(line.quantity + quantity) if line.product_id == product_id else line
                for line in self.server
            ]
        elif op == "add":
            self.server.append(CartLine(
                product_id=product_id,
                name=f"Product {product_id}",
                price=100_000,
                quantity=quantity,
                server_line_id=product_id * 10,
            ))
        return Ok(None)


# ============= Order backend =============


class FakeOrderBackend:
    def __init__(self):
        self.commits: list[FinalizeRequest] = []
        self.orders: list[Order] = []
        self.failures = 0
        self.omit_order_id = False
        self.detail_missing = False
        self.gate = None

    async def finalize_order(self, email, cart_id, request):
        self.commits.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures > 0:
            self.failures -= 1
            return Error(BackendError(BackendErrorKind.REJECTED, "HTTP 502", 502))
        order = Order(
            order_id=str(1000 + len(self.orders)),
            items=request.items,
            address=request.address,
            totals=request.totals,
            payment_status=PaymentStatus.PAID,
            intent_id=request.intent_id,
        )
        self.orders.insert(0, order)
        return Ok(None if self.omit_order_id else order.order_id)

    async def get_order(self, email, order_id):
        found = next((o for o in self.orders if o.order_id == order_id), None)
        if found is None or self.detail_missing:
            return Error(BackendError(BackendErrorKind.NOT_FOUND, "HTTP 404", 404))
        return Ok(found)

    async def list_orders(self, email):
        return Ok(tuple(self.orders))


# ============= Gateway / shipping =============


class FakeGateway:
    """Hands out pi_1, pi_2, ... and replays a scripted status sequence."""

    def __init__(self):
        self.created = []
        self.statuses: list[IntentStatus | GatewayError] = [IntentStatus.PAID]
        self.status_calls = 0
        self.create_error: GatewayError | None = None
        self.paid_amount = None

    async def create_intent(self, request):
        try:
            amount = normalize_amount(request.amount)
        except ValueError as exc:
            return Error(GatewayError(GatewayErrorKind.INVALID_AMOUNT, str(exc)))
        self.created.append(request)
        if self.create_error is not None:
            return Error(self.create_error)
        intent_id = f"pi_{len(self.created)}"
        return Ok(PaymentIntent(intent_id, amount, redirect_url=f"https://pay.example/{intent_id}"))

    async def get_status(self, intent_id):
        self.status_calls += 1
        step = self.statuses[min(self.status_calls, len(self.statuses)) - 1]
        if isinstance(step, GatewayError):
            return Error(step)
        return Ok(StatusReport(intent_id, step, self.paid_amount))


class FakeShipping:
    def __init__(self, fee: int = 30_000):
        self.fee = fee
        self.calls: list[tuple[ShippingOption, int]] = []

    async def quote(self, option, subtotal):
        self.calls.append((option, subtotal))
        return ShippingQuote(option, self.fee, "2 days")


class ReturningOpener:
    """Simulates the payment browser landing on the close URL with an rcode."""

    def __init__(self, settings: Settings, rcode: str | None = "00"):
        self.settings = settings
        self.rcode = rcode
        self.opened: list[str] = []
        self.interceptor: ReturnInterceptor | None = None

    async def __call__(self, url: str, interceptor: ReturnInterceptor) -> None:
        self.opened.append(url)
        self.interceptor = interceptor
        if self.rcode is not None:
            interceptor.should_start_load(
                f"{self.settings.close_url}?rcode={self.rcode}&intentId={interceptor.intent_id}"
            )


# ============= Fixtures =============


@pytest.fixture()
def settings() -> Settings:
    return Settings().with_polling(interval=1.5, max_attempts=5)


@pytest.fixture()
def credentials() -> StaticCredentials:
    return StaticCredentials(EMAIL, "token-1", CART_ID)


@pytest.fixture()
def address() -> Address:
    return Address(line1="12 Ly Thuong Kiet", city="Hanoi", phone="0900000000", full_name="Ana")


@pytest.fixture()
def tee() -> CartLine:
    return CartLine(product_id=7, name="Tee", price=150_000, quantity=2, size="M", server_line_id=70)


@pytest.fixture()
def cap() -> CartLine:
    return CartLine(product_id=9, name="Cap", price=80_000, color="black", server_line_id=90)


@pytest.fixture()
def store(tee: CartLine) -> CartStore:
    store = CartStore()
    store.add_line(tee)
    return store


@pytest.fixture()
def cart_backend(tee: CartLine) -> FakeCartBackend:
    return FakeCartBackend((tee,))


@pytest.fixture()
def order_backend() -> FakeOrderBackend:
    return FakeOrderBackend()


@pytest.fixture()
def ledger() -> MemoryLedger:
    return MemoryLedger()


@pytest.fixture()
def finalizer(order_backend: FakeOrderBackend, ledger: MemoryLedger) -> OrderFinalizer:
    return OrderFinalizer(order_backend, ledger)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def shipping() -> FakeShipping:
    return FakeShipping()


@pytest.fixture()
def opener(settings: Settings) -> ReturningOpener:
    return ReturningOpener(settings)


@pytest.fixture()
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture()
def machine(
    store: CartStore,
    shipping: FakeShipping,
    gateway: FakeGateway,
    finalizer: OrderFinalizer,
    credentials: StaticCredentials,
    settings: Settings,
    opener: ReturningOpener,
    clock: VirtualClock,
) -> PaymentStateMachine:
    return PaymentStateMachine(
        store=store,
        shipping=shipping,
        gateway=gateway,
        finalizer=finalizer,
        credentials=credentials,
        settings=settings,
        opener=opener,
        clock=clock,
    )
