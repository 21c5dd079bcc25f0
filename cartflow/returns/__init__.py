"""
Returns: catching the payment gateway's redirect back into the app.

    from cartflow import returns as R

    interceptor = R.ReturnInterceptor.for_attempt(settings, intent_id)
    webview.on_should_start_load = interceptor.should_start_load
    event = await interceptor.wait()

    match event:
        case R.ReturnOutcome(rcode=rcode):
            ...
        case R.BrowserDismissed():
            ...
"""

from cartflow.returns._types import (
    RcodeClass,
    SUCCESS_CODES,
    CANCEL_CODES,
    FAILURE_CODES,
    classify,
    ReturnOutcome,
    BrowserDismissed,
    ReturnEvent,
    DEFAULT_INTENT_PARAMS,
    outcome_from_query,
    parse_return_url,
)
from cartflow.returns._interceptor import ReturnInterceptor
from cartflow.returns._web import ReturnAck, InterceptorLookup, build_return_router

__all__ = (
    "RcodeClass",
    "SUCCESS_CODES",
    "CANCEL_CODES",
    "FAILURE_CODES",
    "classify",
    "ReturnOutcome",
    "BrowserDismissed",
    "ReturnEvent",
    "DEFAULT_INTENT_PARAMS",
    "outcome_from_query",
    "parse_return_url",
    "ReturnInterceptor",
    "ReturnAck",
    "InterceptorLookup",
    "build_return_router",
)
