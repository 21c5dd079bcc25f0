"""
Cart: optimistic, reducer-driven cart store plus backend sync.

    from cartflow import cart as K

    store = K.CartStore()
    store.add_line(K.CartLine(product_id=7, name="Tee", price=150_000))

    sync = K.CartSync(store, backend, credentials)
    await sync.set_quantity(K.VariantKey(7), 2)

Layers:

    CartLine / Cart         immutable values, Cart doubles as snapshot
         │
    reduce(cart, event)     pure
         │
    CartStore               dispatch + history + listeners, no I/O
         │
    CartSync                snapshot → local apply → remote → refetch,
                            rollback on remote failure
"""

from cartflow.cart._types import (
    VariantKey,
    ServerLineKey,
    LineKey,
    CartLine,
    Cart,
    CartSnapshot,
)
from cartflow.cart._events import (
    AddLine,
    UpdateQuantity,
    RemoveLine,
    ReplaceCart,
    Rollback,
    RestoreLine,
    ClearCart,
    CartEvent,
    normalize,
    reduce,
)
from cartflow.cart._store import CartStore, Listener
from cartflow.cart._sync import (
    CartBackend,
    CartSync,
    MutationResult,
    CartSyncError,
    CartSyncErrorKind,
)

__all__ = (
    # Types
    "VariantKey",
    "ServerLineKey",
    "LineKey",
    "CartLine",
    "Cart",
    "CartSnapshot",
    # Events
    "AddLine",
    "UpdateQuantity",
    "RemoveLine",
    "ReplaceCart",
    "Rollback",
    "RestoreLine",
    "ClearCart",
    "CartEvent",
    "normalize",
    "reduce",
    # Store
    "CartStore",
    "Listener",
    # Sync
    "CartBackend",
    "CartSync",
    "MutationResult",
    "CartSyncError",
    "CartSyncErrorKind",
)
