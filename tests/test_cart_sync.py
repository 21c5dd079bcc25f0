"""Tests for CartSync: optimistic apply, remote confirm, rollback, reconcile."""
from __future__ import annotations

import asyncio

import pytest

from cartflow._types import Error, Ok, StaticCredentials
from cartflow.cart import CartLine, CartStore, CartSync, CartSyncErrorKind, ServerLineKey, VariantKey


@pytest.fixture()
def sync(store, cart_backend, credentials) -> CartSync:
    return CartSync(store, cart_backend, credentials)


@pytest.mark.asyncio
async def test_quantity_change_confirmed_and_reconciled(sync, store, cart_backend) -> None:
    result = await sync.set_quantity(ServerLineKey(70), 5)

    match result:
        case Ok(mutation):
            assert mutation.reconciled is True
            assert mutation.cart.lines[0].quantity == 5
        case Error(e):
            pytest.fail(f"unexpected error {e}")
    assert ("update", 7, 5) in cart_backend.calls
    assert store.find(ServerLineKey(70)).quantity == 5


@pytest.mark.asyncio
async def test_rejected_change_rolls_back(sync, store, cart_backend) -> None:
    """Scenario: backend refuses a quantity change, the cart returns to its prior state."""
    before = store.snapshot()
    cart_backend.fail_mutations = True

    result = await sync.set_quantity(ServerLineKey(70), 5)

    match result:
        case Error(e):
            assert e.kind is CartSyncErrorKind.REJECTED
            assert e.rolled_back is True
            assert e.user_message
        case Ok(_):
            pytest.fail("expected rejection")
    assert store.snapshot() == before


@pytest.mark.asyncio
async def test_rejected_add_leaves_no_line(sync, store, cart_backend, cap) -> None:
    cart_backend.fail_mutations = True

    result = await sync.add(cap)

    assert isinstance(result, Error)
    assert store.find(cap.key) is None


@pytest.mark.asyncio
async def test_add_picks_up_server_line_id(sync, store, cart_backend) -> None:
    line = CartLine(product_id=3, name="Sock", price=20_000)

    await sync.add(line)

    assert store.find(ServerLineKey(30)) is not None
    assert store.snapshot() == store.cart


@pytest.mark.asyncio
async def test_set_quantity_zero_removes_remotely(sync, store, cart_backend) -> None:
    await sync.set_quantity(VariantKey(7, size="M"), 0)

    assert ("remove", 7, None) in cart_backend.calls
    assert len(store) == 0


@pytest.mark.asyncio
async def test_failed_refetch_keeps_optimistic_state(sync, store, cart_backend) -> None:
    cart_backend.fail_fetch = True

    result = await sync.set_quantity(ServerLineKey(70), 4)

    match result:
        case Ok(mutation):
            assert mutation.reconciled is False
        case Error(e):
            pytest.fail(f"unexpected error {e}")
    assert store.find(ServerLineKey(70)).quantity == 4


@pytest.mark.asyncio
async def test_second_mutation_on_busy_line_rejected(sync, store, cart_backend) -> None:
    cart_backend.gate = asyncio.Event()
    first = asyncio.create_task(sync.set_quantity(ServerLineKey(70), 3))
    await asyncio.sleep(0)

    second = await sync.set_quantity(ServerLineKey(70), 4)

    match second:
        case Error(e):
            assert e.kind is CartSyncErrorKind.LINE_BUSY
        case Ok(_):
            pytest.fail("expected LINE_BUSY")
    # The busy rejection made no local change
    assert store.find(ServerLineKey(70)).quantity == 3

    cart_backend.gate.set()
    await first
    assert sync.in_flight == frozenset()


@pytest.mark.asyncio
async def test_unknown_line(sync) -> None:
    result = await sync.remove(ServerLineKey(12345))

    match result:
        case Error(e):
            assert e.kind is CartSyncErrorKind.UNKNOWN_LINE
        case Ok(_):
            pytest.fail("expected UNKNOWN_LINE")


@pytest.mark.asyncio
async def test_no_session(store, cart_backend) -> None:
    sync = CartSync(store, cart_backend, StaticCredentials(None))

    result = await sync.set_quantity(ServerLineKey(70), 3)

    match result:
        case Error(e):
            assert e.kind is CartSyncErrorKind.NO_SESSION
        case Ok(_):
            pytest.fail("expected NO_SESSION")
    assert cart_backend.calls == []


@pytest.mark.asyncio
async def test_refresh_replaces_cart(cart_backend, credentials, cap) -> None:
    store = CartStore()
    cart_backend.server.append(cap)
    sync = CartSync(store, cart_backend, credentials)

    result = await sync.refresh()

    assert isinstance(result, Ok)
    assert [line.product_id for line in store.snapshot()] == [7, 9]


@pytest.mark.asyncio
async def test_failed_delete_of_last_line_restores_it(sync, store, cart_backend, tee) -> None:
    """Scenario: removing the only line fails remotely, the line comes back."""
    before = store.snapshot()
    cart_backend.fail_mutations = True

    result = await sync.remove(ServerLineKey(70))

    match result:
        case Error(e):
            assert e.kind is CartSyncErrorKind.REJECTED
            assert e.rolled_back is True
        case Ok(_):
            pytest.fail("expected rejection")
    assert store.snapshot() == before
    assert store.snapshot().lines == (tee,)


@pytest.mark.asyncio
async def test_rejected_change_keeps_other_confirmed_lines(sync, store, cart_backend, cap) -> None:
    cart_backend.gate = asyncio.Event()
    held = cart_backend.gate
    pending = asyncio.create_task(sync.set_quantity(ServerLineKey(70), 3))
    await asyncio.sleep(0)

    # A second line is added and reconciled while the first change waits
    cart_backend.gate = None
    added = await sync.add(cap)
    assert isinstance(added, Ok)

    cart_backend.fail_mutations = True
    held.set()
    result = await pending

    match result:
        case Error(e):
            assert e.kind is CartSyncErrorKind.REJECTED
        case Ok(_):
            pytest.fail("expected rejection")
    assert [line.product_id for line in store.snapshot()] == [7, 9]
    assert store.find(ServerLineKey(70)).quantity == 2
