"""
Backend: the commerce server as cartflow sees it.

    from cartflow import backend as B

    backend = B.CommerceBackend.from_settings(settings, credentials)
    lines = await backend.get_cart(email, cart_id)

Field-name drift on the server side is absorbed by the pydantic
schemas; callers only ever get CartLine and Order values.
"""

from cartflow.backend._client import (
    CommerceBackend,
    BackendError,
    BackendErrorKind,
    IDEMPOTENCY_HEADER,
)
from cartflow.backend._schemas import (
    CartItemBody,
    CartBody,
    OrderItemBody,
    AddressBody,
    OrderBody,
    FinalizeAck,
)

__all__ = (
    "CommerceBackend",
    "BackendError",
    "BackendErrorKind",
    "IDEMPOTENCY_HEADER",
    "CartItemBody",
    "CartBody",
    "OrderItemBody",
    "AddressBody",
    "OrderBody",
    "FinalizeAck",
)
