"""
cartflow: cart consistency and payment orchestration for a shop client.

    from cartflow import cart as K        # Optimistic cart + backend sync
    from cartflow import checkout as C    # Payment state machine
    from cartflow import finalize as F    # Idempotent order finalization
    from cartflow import gateway as Gw    # Payment gateway + polling
    from cartflow import returns as R     # Gateway return interception
"""

from cartflow import cart
from cartflow import shipping
from cartflow import gateway
from cartflow import returns
from cartflow import finalize
from cartflow import checkout
from cartflow import backend
from cartflow import graph
from cartflow import lift
from cartflow.config import Settings
from cartflow._types import (
    Money,
    CartId,
    Lazy,
    to_money,
    Address,
    ShippingOption,
    PaymentMethod,
    Totals,
    CredentialStore,
    StaticCredentials,
)

__version__ = "0.1.0"

__all__ = (
    "cart",
    "shipping",
    "gateway",
    "returns",
    "finalize",
    "checkout",
    "backend",
    "graph",
    "lift",
    "Settings",
    "Money",
    "CartId",
    "Lazy",
    "to_money",
    "Address",
    "ShippingOption",
    "PaymentMethod",
    "Totals",
    "CredentialStore",
    "StaticCredentials",
)
