"""
Web return route: the page the gateway redirects a browser tab back to.

    app = fastapi.FastAPI()
    app.include_router(build_return_router(machine.interceptor_for))

The route only hands the query to the attempt's interceptor; the
checkout machine does the confirming and finalizing.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from cartflow.returns._interceptor import ReturnInterceptor
from cartflow.returns._types import DEFAULT_INTENT_PARAMS, classify

type InterceptorLookup = Callable[[str | None], ReturnInterceptor | None]


class ReturnAck(BaseModel):
    """Body of the close-URL response."""

    accepted: bool
    rcode: str
    intent_id: str | None
    outcome: str


def build_return_router(
    interceptor_for: InterceptorLookup,
    close_path: str = "/payment/close",
    *,
    intent_params: tuple[str, ...] = DEFAULT_INTENT_PARAMS,
) -> APIRouter:
    """
    Router serving the web close URL.

    interceptor_for receives the intent id from the query (or None) and
    returns the armed interceptor, or None when no attempt is waiting.
    A second hit for the same attempt is acknowledged with accepted=False.
    """
    router = APIRouter(tags=["payment"])

    @router.get(close_path, response_model=ReturnAck)
    async def payment_return(request: Request) -> ReturnAck:
        query = dict(request.query_params)
        intent_id = next((query[name] for name in intent_params if query.get(name)), None)

        interceptor = interceptor_for(intent_id)
        if interceptor is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No checkout attempt is waiting for this payment",
            )

        accepted = interceptor.on_return(query)
        rcode = query.get("rcode", "")
        return ReturnAck(
            accepted=accepted,
            rcode=rcode,
            intent_id=intent_id or interceptor.intent_id,
            outcome=classify(rcode).name.lower(),
        )

    return router


__all__ = ("ReturnAck", "InterceptorLookup", "build_return_router")
