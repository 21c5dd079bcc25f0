"""
Checkout: the payment state machine.

    from cartflow import checkout as C

    machine = C.PaymentStateMachine(store=..., shipping=..., gateway=...,
                                    finalizer=..., credentials=...)
    result = await machine.checkout(address, ShippingOption.STANDARD)

Architecture:

    prepare ──► create_intent ──► open_gateway ──► await_return ──► poll ──► finalize
       │              │                 │                │            │          │
    quote          gateway          interceptor      rcode screen   status    ledger graph
                   + ledger                                         polling   + backend
"""

from cartflow.checkout._types import (
    CheckoutState,
    TRANSITIONS,
    can_transition,
    Transition,
    CheckoutErrorKind,
    Precondition,
    CheckoutError,
    CheckoutAttempt,
)
from cartflow.checkout._machine import (
    GatewayOpener,
    QuoteSource,
    IntentGateway,
    PaymentStateMachine,
)

__all__ = (
    # Types
    "CheckoutState",
    "TRANSITIONS",
    "can_transition",
    "Transition",
    "CheckoutErrorKind",
    "Precondition",
    "CheckoutError",
    "CheckoutAttempt",
    # Machine
    "GatewayOpener",
    "QuoteSource",
    "IntentGateway",
    "PaymentStateMachine",
)
