"""
Gateway: external payment provider client and bounded polling.

    from cartflow import gateway as Gw

    gateway = Gw.PaymentIntentGateway.from_settings(settings)
    intent = await gateway.create_intent(Gw.IntentRequest(...))

    outcome = await Gw.poll_until(
        lambda: gateway.get_status(intent_id),
        done=lambda r: r.status.is_terminal,
        interval=settings.poll_interval,
        max_attempts=settings.poll_max_attempts,
    )
"""

from cartflow.gateway._types import (
    IntentStatus,
    normalize_amount,
    IntentRequest,
    PaymentIntent,
    StatusReport,
    GatewayError,
    GatewayErrorKind,
    IntentBody,
    StatusBody,
)
from cartflow.gateway._poll import (
    Clock,
    AsyncioClock,
    VirtualClock,
    ASYNCIO_CLOCK,
    Settled,
    Exhausted,
    Aborted,
    PollOutcome,
    poll_until,
)
from cartflow.gateway._client import PaymentIntentGateway

__all__ = (
    # Types
    "IntentStatus",
    "normalize_amount",
    "IntentRequest",
    "PaymentIntent",
    "StatusReport",
    "GatewayError",
    "GatewayErrorKind",
    "IntentBody",
    "StatusBody",
    # Polling
    "Clock",
    "AsyncioClock",
    "VirtualClock",
    "ASYNCIO_CLOCK",
    "Settled",
    "Exhausted",
    "Aborted",
    "PollOutcome",
    "poll_until",
    # Client
    "PaymentIntentGateway",
)
