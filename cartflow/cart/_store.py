"""
CartStore: the session's optimistic cart.

Every mutation is an event run through the pure reducer:

    store = CartStore()
    store.add_line(CartLine(product_id=7, name="Tee", price=150_000, size="M"))
    store.update_quantity(VariantKey(7, size="M"), 3)
    store.get_total()  # 450_000

Note: The store never talks to the network and never retries.
Remote confirmation and rollback live in CartSync.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable

from cartflow._types import Money
from cartflow.cart._events import (
    AddLine,
    CartEvent,
    ClearCart,
    RemoveLine,
    ReplaceCart,
    RestoreLine,
    Rollback,
    UpdateQuantity,
    reduce,
)
from cartflow.cart._types import Cart, CartLine, CartSnapshot, LineKey, ServerLineKey

logger = logging.getLogger(__name__)

type Listener = Callable[[Cart, CartEvent], None]
"""Called after every dispatched event with the new cart."""

DEFAULT_HISTORY = 64


class CartStore:
    """
    In-memory cart, mutated only through dispatch().

    History keeps the last `history_size` events for tracing.
    """

    __slots__ = ("_cart", "_history", "_listeners")

    def __init__(
        self,
        initial: Cart | None = None,
        *,
        history_size: int = DEFAULT_HISTORY,
    ) -> None:
        self._cart = initial if initial is not None else Cart()
        self._history: deque[CartEvent] = deque(maxlen=history_size)
        self._listeners: list[Listener] = []

    # Core

    def dispatch(self, event: CartEvent) -> Cart:
        """Apply event, record it, notify listeners. Returns the new cart."""
        self._cart = reduce(self._cart, event)
        self._history.append(event)
        logger.debug("cart %s -> %d lines", type(event).__name__, len(self._cart))
        for listener in tuple(self._listeners):
            listener(self._cart, event)
        return self._cart

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def history(self) -> tuple[CartEvent, ...]:
        return tuple(self._history)

    @property
    def cart(self) -> Cart:
        return self._cart

    # Local mutations

    def add_line(self, item: CartLine) -> Cart:
        return self.dispatch(AddLine(item))

    def update_quantity(self, key: LineKey, quantity: int) -> Cart:
        return self.dispatch(UpdateQuantity(key, quantity))

    def update_quantity_by_server_line_id(
        self,
        line_id: str | int,
        quantity: int,
    ) -> Cart:
        return self.dispatch(UpdateQuantity(ServerLineKey(line_id), quantity))

    def remove_line(self, key: LineKey) -> Cart:
        return self.dispatch(RemoveLine(key))

    def remove_by_server_line_id(self, line_id: str | int) -> Cart:
        return self.dispatch(RemoveLine(ServerLineKey(line_id)))

    def clear(self) -> Cart:
        return self.dispatch(ClearCart())

    # Reconciliation

    def replace_cart(self, lines: Iterable[CartLine]) -> Cart:
        """
        Replace the whole cart with server truth.

        This is the only reconciliation path. Duplicate identities are
        merged. Lines are already validated (quantity >= 1) on construction,
        so callers filter non-positive server quantities before building them.
        """
        return self.dispatch(ReplaceCart(tuple(lines)))

    def rollback(self, snapshot: CartSnapshot) -> Cart:
        """Restore snapshot exactly."""
        return self.dispatch(Rollback(snapshot))

    def restore_line(self, snapshot: CartSnapshot, key: LineKey) -> Cart:
        """Restore one line from snapshot; the rest of the cart stays as it is now."""
        before = snapshot.find(key)
        position = snapshot.lines.index(before) if before is not None else len(snapshot.lines)
        return self.dispatch(RestoreLine(key, before, position))

    # Reads

    def snapshot(self) -> CartSnapshot:
        return self._cart

    def get_total(self) -> Money:
        return self._cart.total

    def find(self, key: LineKey) -> CartLine | None:
        return self._cart.find(key)

    def __len__(self) -> int:
        return len(self._cart)


__all__ = ("CartStore", "Listener", "DEFAULT_HISTORY")
