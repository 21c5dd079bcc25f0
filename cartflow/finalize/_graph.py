"""
Finalize graph: the idempotency decision as nodnod nodes.

Architecture:
    FinalizeSpec (injected)
         │
         ▼
    FetchAttemptNode
         │
         ├── LedgerErrorNode ─────────┐
         ├── CompletedAttemptNode ────┤
         ├── InFlightAttemptNode ─────┼── FinalizeOutcome (@polymorphic)
         ├── OpenAttemptNode ─────────┤          │
         └── UnknownAttemptNode ──────┘          ▼
                                          FinalResultNode

Note: No 'from __future__ import annotations' here. nodnod reads the
type hints of __compose__ at runtime to wire dependencies.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import timedelta

from kungfu import Error, Ok, Result
from nodnod import NodeError, case, polymorphic

from cartflow import graph as G
from cartflow._types import CartId
from cartflow.finalize._ledger import AttemptLedger, LedgerError
from cartflow.finalize._types import (
    AttemptRecord,
    STALE_CLAIM_AFTER,
    AttemptState,
    FinalizeError,
    FinalizeErrorKind,
    FinalizeRequest,
    FinalizeResult,
    Order,
)

logger = logging.getLogger(__name__)

type Commit = Callable[[str, CartId, FinalizeRequest], Awaitable[Result[Order, FinalizeError]]]

# ═══════════════════════════════════════════════════════════════════════════════
# Input: FinalizeSpec (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class FinalizeSpec:
    """
    One finalize call.

    commit performs the backend call; it only runs once the ledger has
    been claimed for this intent. A FINALIZING claim older than
    stale_after is treated as abandoned and may be claimed again.
    """

    email: str
    cart_id: CartId
    request: FinalizeRequest
    ledger: AttemptLedger
    commit: Commit
    stale_after: timedelta = STALE_CLAIM_AFTER

    @property
    def intent_id(self) -> str:
        return self.request.intent_id


# ═══════════════════════════════════════════════════════════════════════════════
# Fetch
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FetchAttemptNode:
    """Loads the attempt record for the intent."""

    def __init__(
        self,
        record: AttemptRecord | None,
        spec: FinalizeSpec,
        ledger_error: LedgerError | None = None,
    ) -> None:
        self.record = record
        self.spec = spec
        self.ledger_error = ledger_error

    @classmethod
    async def __compose__(cls, spec: FinalizeSpec) -> "FetchAttemptNode":
        match await spec.ledger.get(spec.intent_id):
            case Ok(record):
                return cls(record, spec)
            case Error(err):
                return cls(None, spec, ledger_error=err)


# ═══════════════════════════════════════════════════════════════════════════════
# State Nodes: each validates one ledger state
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class LedgerErrorNode:
    def __init__(self, error: LedgerError, spec: FinalizeSpec) -> None:
        self.error = error
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchAttemptNode) -> "LedgerErrorNode":
        if fetch.ledger_error is None:
            raise NodeError("No ledger error")
        return cls(fetch.ledger_error, fetch.spec)


@G.node
class CompletedAttemptNode:
    """Validates: record exists, COMPLETED, has an order."""

    def __init__(self, record: AttemptRecord, spec: FinalizeSpec) -> None:
        self.record = record
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchAttemptNode) -> "CompletedAttemptNode":
        record = fetch.record
        if record is None:
            raise NodeError("No record")
        if not record.is_completed:
            raise NodeError("Not completed")
        return cls(record, fetch.spec)


@G.node
class InFlightAttemptNode:
    """Validates: record exists, FINALIZING, claim still fresh."""

    def __init__(self, record: AttemptRecord, spec: FinalizeSpec) -> None:
        self.record = record
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchAttemptNode) -> "InFlightAttemptNode":
        record = fetch.record
        if record is None:
            raise NodeError("No record")
        if not record.is_finalizing:
            raise NodeError("Not finalizing")
        if record.is_stale(fetch.spec.stale_after):
            raise NodeError("Claim is stale")
        return cls(record, fetch.spec)


@G.node
class OpenAttemptNode:
    """Validates: record exists, OPEN or FAILED (retry allowed), or an abandoned claim."""

    def __init__(self, record: AttemptRecord, spec: FinalizeSpec) -> None:
        self.record = record
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchAttemptNode) -> "OpenAttemptNode":
        record = fetch.record
        if record is None:
            raise NodeError("No record")
        if record.state not in (AttemptState.OPEN, AttemptState.FAILED) and not record.is_stale(
            fetch.spec.stale_after
        ):
            raise NodeError("Not open")
        return cls(record, fetch.spec)


@G.node
class UnknownAttemptNode:
    """Validates: ledger reachable, no record for the intent."""

    def __init__(self, spec: FinalizeSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchAttemptNode) -> "UnknownAttemptNode":
        if fetch.ledger_error is not None:
            raise NodeError("Ledger error")
        if fetch.record is not None:
            raise NodeError("Record exists")
        return cls(fetch.spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OutcomeOk:
    order: Order
    from_cache: bool
    intent_id: str


@dataclass(frozen=True)
class OutcomeError:
    kind: FinalizeErrorKind
    message: str
    intent_id: str


type Outcome = OutcomeOk | OutcomeError


def _ledger_failure(spec: FinalizeSpec, err: LedgerError) -> Outcome:
    return OutcomeError(FinalizeErrorKind.LEDGER, err.message, spec.intent_id)


async def _claim_and_commit(spec: FinalizeSpec) -> Outcome:
    """Claim the intent, run the backend commit, record the result."""
    match await spec.ledger.claim(spec.intent_id, stale_after=spec.stale_after):
        case Error(err):
            return _ledger_failure(spec, err)
        case Ok(False):
            # Lost the race: someone else claimed or completed it
            match await spec.ledger.get(spec.intent_id):
                case Ok(record) if record is not None and record.is_completed:
                    return OutcomeOk(record.order, True, spec.intent_id)  # type: ignore[arg-type]
                case _:
                    return OutcomeError(
                        FinalizeErrorKind.CONFLICT,
                        f"Finalize already in flight for intent {spec.intent_id}",
                        spec.intent_id,
                    )
        case Ok(True):
            pass

    try:
        result = await spec.commit(spec.email, spec.cart_id, spec.request)
    except Exception as e:
        await spec.ledger.fail(spec.intent_id, str(e))
        return OutcomeError(FinalizeErrorKind.BACKEND, str(e), spec.intent_id)
    except BaseException:
        # Cancelled mid-commit: release the claim so the intent can be retried
        await spec.ledger.fail(spec.intent_id, "finalize interrupted")
        raise

    match result:
        case Ok(order):
            match await spec.ledger.complete(spec.intent_id, order):
                case Error(err):
                    # Order exists even though the ledger write failed
                    logger.error("order %s committed but ledger write failed: %s", order.order_id, err.message)
                case Ok(_):
                    pass
            return OutcomeOk(order, False, spec.intent_id)
        case Error(err):
            await spec.ledger.fail(spec.intent_id, err.message)
            return OutcomeError(err.kind, err.message, spec.intent_id)


# ═══════════════════════════════════════════════════════════════════════════════
# Polymorphic Outcome
# ═══════════════════════════════════════════════════════════════════════════════


@polymorphic[Outcome]
class FinalizeOutcome:
    """Each @case depends on a validated state node."""

    @case
    def ledger_error(cls, node: LedgerErrorNode) -> Outcome:
        return _ledger_failure(node.spec, node.error)

    @case
    def cached(cls, node: CompletedAttemptNode) -> Outcome:
        logger.debug("intent %s already finalized as order %s", node.spec.intent_id, node.record.order.order_id)  # type: ignore[union-attr]
        return OutcomeOk(node.record.order, True, node.spec.intent_id)  # type: ignore[arg-type]

    @case
    def in_flight(cls, node: InFlightAttemptNode) -> Outcome:
        return OutcomeError(
            FinalizeErrorKind.CONFLICT,
            f"Finalize already in flight for intent {node.spec.intent_id}",
            node.spec.intent_id,
        )

    @case
    async def finalize_open(cls, node: OpenAttemptNode) -> Outcome:
        # The frozen snapshot in the ledger wins over what the caller sent,
        # unless the caller only knew the intent id.
        spec = node.spec
        if node.record.is_finalizing:
            logger.warning("taking over abandoned finalize claim for intent %s", spec.intent_id)
        if spec.request.is_minimal and not node.record.request.is_minimal:
            spec = replace(spec, request=node.record.request)
        return await _claim_and_commit(spec)

    @case
    async def finalize_unknown(cls, node: UnknownAttemptNode) -> Outcome:
        spec = node.spec
        record = AttemptRecord(
            intent_id=spec.intent_id,
            email=spec.email,
            cart_id=spec.cart_id,
            request=spec.request,
        )
        match await spec.ledger.create(record):
            case Error(err):
                return _ledger_failure(spec, err)
            case Ok(_):
                # Ok(False) means a concurrent create; claim() arbitrates
                pass
        return await _claim_and_commit(spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FinalResultNode:
    """Converts Outcome to typed Result."""

    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: FinalizeOutcome) -> "FinalResultNode":
        return cls(outcome.value)

    def to_result(self) -> Result[FinalizeResult, FinalizeError]:
        match self.outcome:
            case OutcomeOk(order=order, from_cache=from_cache, intent_id=intent_id):
                return Ok(FinalizeResult(order=order, from_cache=from_cache, intent_id=intent_id))
            case OutcomeError(kind=kind, message=message, intent_id=intent_id):
                return Error(FinalizeError(kind=kind, message=message, intent_id=intent_id))


async def run_finalize(spec: FinalizeSpec) -> Result[FinalizeResult, FinalizeError]:
    """Route one finalize call through the graph."""
    node = await G.run(FinalResultNode).inject(spec)
    return node.to_result()


__all__ = (
    "Commit",
    "FinalizeSpec",
    "FetchAttemptNode",
    "LedgerErrorNode",
    "CompletedAttemptNode",
    "InFlightAttemptNode",
    "OpenAttemptNode",
    "UnknownAttemptNode",
    "Outcome",
    "OutcomeOk",
    "OutcomeError",
    "FinalizeOutcome",
    "FinalResultNode",
    "run_finalize",
)
