"""
Return types: what the gateway's redirect back into the app tells us.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, auto
from urllib.parse import parse_qs, urlsplit

# ═══════════════════════════════════════════════════════════════════════════════
# rcode classification
# ═══════════════════════════════════════════════════════════════════════════════


class RcodeClass(Enum):
    """
    What a return code claims.

    Only FAILURE and CANCEL end an attempt on their own. SUCCESS and
    UNKNOWN both go on to status polling, which has the final say.
    """

    SUCCESS = auto()
    CANCEL = auto()
    FAILURE = auto()
    UNKNOWN = auto()


SUCCESS_CODES = frozenset({"00", "SUCCESS", "PAID"})
CANCEL_CODES = frozenset({"24", "CANCELLED", "CANCELED", "CANCEL"})
FAILURE_CODES = frozenset({"FAILED"})


def classify(rcode: str) -> RcodeClass:
    code = rcode.strip().upper()
    if code in SUCCESS_CODES:
        return RcodeClass.SUCCESS
    if code in CANCEL_CODES:
        return RcodeClass.CANCEL
    if code in FAILURE_CODES:
        return RcodeClass.FAILURE
    return RcodeClass.UNKNOWN


# ═══════════════════════════════════════════════════════════════════════════════
# Events
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ReturnOutcome:
    """
    Gateway redirect outcome.

    Note: intent_id falls back to the attempt's own id when the
    redirect omits it; `echoed` tells which case happened.
    """

    rcode: str
    intent_id: str | None
    echoed: bool = True

    @property
    def classification(self) -> RcodeClass:
        return classify(self.rcode)


@dataclass(frozen=True, slots=True)
class BrowserDismissed:
    """User closed the payment browser before any redirect."""

    intent_id: str | None


type ReturnEvent = ReturnOutcome | BrowserDismissed

DEFAULT_INTENT_PARAMS = ("intentId", "orderId")

# ═══════════════════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════════════════


def outcome_from_query(
    query: Mapping[str, str],
    *,
    fallback_intent_id: str | None = None,
    intent_params: tuple[str, ...] = DEFAULT_INTENT_PARAMS,
) -> ReturnOutcome:
    rcode = query.get("rcode") or ""
    for name in intent_params:
        if value := query.get(name):
            return ReturnOutcome(rcode, value, echoed=True)
    return ReturnOutcome(rcode, fallback_intent_id, echoed=False)


def parse_return_url(
    url: str,
    *,
    close_url: str | None = None,
    fallback_intent_id: str | None = None,
    intent_params: tuple[str, ...] = DEFAULT_INTENT_PARAMS,
) -> ReturnOutcome | None:
    """
    Extract the outcome from a return URL.

    Returns None when close_url is given and url is not under it.

    Example:
        parse_return_url("https://vnpay-close.local/?rcode=00&intentId=pi_1")
        # ReturnOutcome(rcode="00", intent_id="pi_1", echoed=True)
    """
    if close_url is not None and not url.startswith(close_url):
        return None
    raw = parse_qs(urlsplit(url).query, keep_blank_values=True)
    query = {key: values[0] for key, values in raw.items() if values}
    return outcome_from_query(
        query,
        fallback_intent_id=fallback_intent_id,
        intent_params=intent_params,
    )


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
)
