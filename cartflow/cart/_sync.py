"""
CartSync: optimistic cart mutations confirmed by the backend.

Each mutation runs as a two-step compensated transaction:

    1. snapshot, apply locally        compensator: restore from snapshot
    2. confirm with the backend       keyed by (cart_id, product_id)
    3. refetch and replace_cart       best effort

If step 2 fails, recorded compensators run in reverse and the caller
gets a CartSyncError with a message fit for the user. The whole
snapshot comes back only when nothing else touched the cart meanwhile;
otherwise only the mutated line is restored. If step 3 fails, the
optimistic state stays and the result says reconciled=False.

    sync = CartSync(store, backend, credentials)

    match await sync.remove(line.key):
        case Ok(MutationResult(cart=cart)):
            render(cart)
        case Error(e):
            alert(e.user_message)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Protocol

from kungfu import Error, Ok, Result

from cartflow._types import CartId, CredentialStore
from cartflow.cart._events import AddLine, CartEvent, RemoveLine, UpdateQuantity
from cartflow.cart._store import CartStore
from cartflow.cart._types import Cart, CartLine, CartSnapshot, LineKey

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Backend Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class CartBackend(Protocol):
    """The cart half of the commerce backend."""

    async def get_cart(self, email: str, cart_id: CartId) -> Result[tuple[CartLine, ...], Any]: ...

    async def add_item(self, cart_id: CartId, product_id: int, quantity: int) -> Result[None, Any]: ...

    async def update_quantity(self, cart_id: CartId, product_id: int, quantity: int) -> Result[None, Any]: ...

    async def remove_item(self, cart_id: CartId, product_id: int) -> Result[None, Any]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Results and Errors
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class MutationResult:
    """
    Confirmed mutation.

    Note: reconciled is False when the backend accepted the change but
    the follow-up refetch failed; the cart shown is the optimistic one.
    """

    cart: Cart
    reconciled: bool


class CartSyncErrorKind(Enum):
    REJECTED = auto()  # Backend refused; local change rolled back
    LINE_BUSY = auto()  # Another mutation on this line is in flight
    NO_SESSION = auto()  # No email or cart id
    UNKNOWN_LINE = auto()  # Key addresses no line in the cart
    FETCH = auto()  # refresh() could not load the cart


@dataclass(frozen=True, slots=True)
class CartSyncError:
    kind: CartSyncErrorKind
    message: str
    user_message: str
    rolled_back: bool = False


_MESSAGES = {
    "add": "Could not add the item to your cart. Please try again.",
    "update": "Could not update the quantity. Please try again.",
    "remove": "Could not remove the item. Please try again.",
}

# ═══════════════════════════════════════════════════════════════════════════════
# Mutation: one compensated step pair
# ═══════════════════════════════════════════════════════════════════════════════

type Compensator = Callable[[CartSnapshot], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class _Mutation:
    name: str
    key: LineKey
    product_id: int
    local: CartEvent
    remote: Callable[[CartId], Awaitable[Result[None, Any]]]


async def _run_compensators(compensators: list[tuple[CartSnapshot, Compensator]]) -> tuple[int, int]:
    """Run compensators in reverse. Returns (run, failed)."""
    run = 0
    failed = 0
    for snapshot, compensate in reversed(compensators):
        try:
            await compensate(snapshot)
            run += 1
        except Exception:
            logger.exception("cart compensator failed")
            failed += 1
    return run, failed


# ═══════════════════════════════════════════════════════════════════════════════
# CartSync
# ═══════════════════════════════════════════════════════════════════════════════


class CartSync:
    """Runs optimistic mutations against a CartStore and the cart backend."""

    def __init__(
        self,
        store: CartStore,
        backend: CartBackend,
        credentials: CredentialStore,
    ) -> None:
        self._store = store
        self._backend = backend
        self._credentials = credentials
        self._in_flight: set[LineKey] = set()

    @property
    def store(self) -> CartStore:
        return self._store

    @property
    def in_flight(self) -> frozenset[LineKey]:
        return frozenset(self._in_flight)

    # Operations

    async def add(self, line: CartLine) -> Result[MutationResult, CartSyncError]:
        existing = self._store.find(line.key)
        key = existing.key if existing is not None else line.key
        return await self._run(_Mutation(
            name="add",
            key=key,
            product_id=line.product_id,
            local=AddLine(line),
            remote=lambda cart_id: self._backend.add_item(cart_id, line.product_id, line.quantity),
        ))

    async def set_quantity(
        self,
        key: LineKey,
        quantity: int,
    ) -> Result[MutationResult, CartSyncError]:
        """Set quantity; zero removes the line (remote delete)."""
        if quantity == 0:
            return await self.remove(key)
        event = UpdateQuantity(key, quantity)
        line = self._store.find(key)
        if line is None:
            return Error(_unknown_line(key))
        return await self._run(_Mutation(
            name="update",
            key=line.key,
            product_id=line.product_id,
            local=event,
            remote=lambda cart_id: self._backend.update_quantity(cart_id, line.product_id, quantity),
        ))

    async def remove(self, key: LineKey) -> Result[MutationResult, CartSyncError]:
        line = self._store.find(key)
        if line is None:
            return Error(_unknown_line(key))
        return await self._run(_Mutation(
            name="remove",
            key=line.key,
            product_id=line.product_id,
            local=RemoveLine(line.key),
            remote=lambda cart_id: self._backend.remove_item(cart_id, line.product_id),
        ))

    async def refresh(self) -> Result[Cart, CartSyncError]:
        """Load server truth into the store."""
        session = await self._session()
        if session is None:
            return Error(_no_session())
        email, cart_id = session
        match await self._backend.get_cart(email, cart_id):
            case Ok(lines):
                return Ok(self._store.replace_cart(lines))
            case Error(e):
                message = getattr(e, "message", str(e))
                logger.warning("cart refresh failed: %s", message)
                return Error(CartSyncError(
                    CartSyncErrorKind.FETCH,
                    message,
                    "Could not load your cart. Pull to refresh.",
                ))

    # Engine

    async def _session(self) -> tuple[str, CartId] | None:
        email = await self._credentials.email()
        cart_id = await self._credentials.cart_id()
        if not email or cart_id is None:
            return None
        return email, cart_id

    async def _run(self, mutation: _Mutation) -> Result[MutationResult, CartSyncError]:
        session = await self._session()
        if session is None:
            return Error(_no_session())
        email, cart_id = session

        if mutation.key in self._in_flight:
            logger.debug("cart %s rejected, line %s busy", mutation.name, mutation.key)
            return Error(CartSyncError(
                CartSyncErrorKind.LINE_BUSY,
                f"mutation already in flight for {mutation.key}",
                "Please wait, the previous change is still being saved.",
            ))

        self._in_flight.add(mutation.key)
        try:
            compensators: list[tuple[CartSnapshot, Compensator]] = []

            # Step 1: optimistic local apply
            snapshot = self._store.snapshot()
            applied = self._store.dispatch(mutation.local)

            async def restore(before: CartSnapshot) -> None:
                self._restore(before, applied, mutation.key)

            compensators.append((snapshot, restore))

            # Step 2: remote confirm
            match await mutation.remote(cart_id):
                case Error(e):
                    run, failed = await _run_compensators(compensators)
                    message = getattr(e, "message", str(e))
                    logger.warning(
                        "cart %s of product %s rejected (%s), %d compensator(s) run",
                        mutation.name, mutation.product_id, message, run,
                    )
                    return Error(CartSyncError(
                        CartSyncErrorKind.REJECTED,
                        message,
                        _MESSAGES[mutation.name],
                        rolled_back=failed == 0,
                    ))
                case Ok(_):
                    pass

            # Step 3: reconcile with server truth
            match await self._backend.get_cart(email, cart_id):
                case Ok(lines):
                    return Ok(MutationResult(self._store.replace_cart(lines), reconciled=True))
                case Error(e):
                    logger.warning(
                        "cart %s confirmed but refetch failed: %s",
                        mutation.name, getattr(e, "message", e),
                    )
                    return Ok(MutationResult(self._store.cart, reconciled=False))
        finally:
            self._in_flight.discard(mutation.key)

    def _restore(self, snapshot: CartSnapshot, applied: Cart, key: LineKey) -> None:
        if self._store.snapshot() == applied:
            self._store.rollback(snapshot)
            return
        logger.debug("cart changed since %s was applied, restoring that line only", key)
        self._store.restore_line(snapshot, key)


def _no_session() -> CartSyncError:
    return CartSyncError(
        CartSyncErrorKind.NO_SESSION,
        "no signed-in user or cart id",
        "Please sign in to edit your cart.",
    )


def _unknown_line(key: LineKey) -> CartSyncError:
    return CartSyncError(
        CartSyncErrorKind.UNKNOWN_LINE,
        f"no cart line for {key}",
        "This item is no longer in your cart.",
    )


__all__ = (
    "CartBackend",
    "CartSync",
    "MutationResult",
    "CartSyncError",
    "CartSyncErrorKind",
)
