"""
PaymentStateMachine: drives one checkout attempt from address to order.

    machine = PaymentStateMachine(
        store=store,
        shipping=ShippingCalculator.from_settings(settings),
        gateway=PaymentIntentGateway.from_settings(settings),
        finalizer=OrderFinalizer(backend, ledger),
        credentials=credentials,
        settings=settings,
        opener=open_in_app_browser,
    )

    match await machine.checkout(address, ShippingOption.EXPRESS):
        case Ok(order):
            show_success(order)
        case Error(CheckoutError(kind=CheckoutErrorKind.UNCONFIRMED)):
            show("check your order history")
        case Error(e):
            show(e.user_message)

Each step is also callable on its own (prepare, create_intent,
open_gateway, await_return, poll, finalize) for hosts that render
every state. All of them return Result and never raise.

Cash on delivery skips the gateway: prepare(..., method=PaymentMethod.CASH)
then place_cash_order().
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from kungfu import Error, Ok, Result

from cartflow._types import Address, CartId, CredentialStore, Money, PaymentMethod, ShippingOption, Totals
from cartflow.cart import Cart, CartStore
from cartflow.checkout._types import (
    CheckoutAttempt,
    CheckoutError,
    CheckoutErrorKind,
    CheckoutState,
    Precondition,
    Transition,
    can_transition,
)
from cartflow.config import Settings
from cartflow.finalize import AttemptRecord, FinalizeRequest, Order, OrderFinalizer
from cartflow.gateway import (
    ASYNCIO_CLOCK,
    Aborted,
    Clock,
    Exhausted,
    GatewayError,
    GatewayErrorKind,
    IntentRequest,
    IntentStatus,
    PaymentIntent,
    Settled,
    StatusReport,
    poll_until,
)
from cartflow.returns import (
    BrowserDismissed,
    RcodeClass,
    ReturnInterceptor,
    ReturnOutcome,
    parse_return_url,
)
from cartflow.shipping import ShippingQuote

logger = logging.getLogger(__name__)

_S = CheckoutState

type GatewayOpener = Callable[[str, ReturnInterceptor], Awaitable[None]]
"""Opens the payment page (in-app browser or tab) and wires the interceptor to it."""


class QuoteSource(Protocol):
    async def quote(self, option: ShippingOption, subtotal: Money) -> ShippingQuote: ...


class IntentGateway(Protocol):
    async def create_intent(self, request: IntentRequest) -> Result[PaymentIntent, GatewayError]: ...

    async def get_status(self, intent_id: str) -> Result[StatusReport, GatewayError]: ...


class PaymentStateMachine:
    """
    One checkout attempt at a time.

    Every state change goes through the transition table and is kept
    in `transitions`. An intent whose order was placed is sealed:
    finalizing or resuming it again returns the same order.
    """

    def __init__(
        self,
        *,
        store: CartStore,
        shipping: QuoteSource,
        gateway: IntentGateway,
        finalizer: OrderFinalizer,
        credentials: CredentialStore,
        settings: Settings | None = None,
        opener: GatewayOpener | None = None,
        clock: Clock = ASYNCIO_CLOCK,
    ) -> None:
        self._store = store
        self._shipping = shipping
        self._gateway = gateway
        self._finalizer = finalizer
        self._credentials = credentials
        self._settings = settings if settings is not None else Settings()
        self._opener = opener
        self._clock = clock

        self._state = _S.IDLE
        self._transitions: list[Transition] = []

        # Prepared checkout
        self._email: str | None = None
        self._cart_id: CartId | None = None
        self._address: Address | None = None
        self._option = ShippingOption.STANDARD
        self._method = PaymentMethod.GATEWAY
        self._voucher_code: str | None = None
        self._discount: Money = 0
        self._quote: ShippingQuote | None = None
        self._totals: Totals | None = None

        # Current attempt
        self._attempt: CheckoutAttempt | None = None
        self._request: FinalizeRequest | None = None
        self._pending_intent_id: str | None = None
        self._interceptor: ReturnInterceptor | None = None
        self._stop: asyncio.Event | None = None
        self._creating = False
        self._suspended = False
        # Idempotency key of a cash order, kept across failed tries
        self._cash_key: str | None = None

        self._sealed: dict[str, Order] = {}
        self._last_order: Order | None = None

    # Introspection

    @property
    def state(self) -> CheckoutState:
        return self._state

    @property
    def transitions(self) -> tuple[Transition, ...]:
        return tuple(self._transitions)

    @property
    def attempt(self) -> CheckoutAttempt | None:
        return self._attempt

    @property
    def pending_intent_id(self) -> str | None:
        """Intent paid or possibly paid, but not yet turned into an order."""
        return self._pending_intent_id

    @property
    def quote(self) -> ShippingQuote | None:
        return self._quote

    @property
    def totals(self) -> Totals | None:
        return self._totals

    def order_for(self, intent_id: str) -> Order | None:
        return self._sealed.get(intent_id)

    def interceptor_for(self, intent_id: str | None) -> ReturnInterceptor | None:
        """Armed interceptor for the web return route, if one is waiting."""
        interceptor = self._interceptor
        if interceptor is None or self._state is not _S.AWAITING_GATEWAY:
            return None
        if intent_id is not None and intent_id != interceptor.intent_id:
            logger.warning("return for intent %s while waiting on %s", intent_id, interceptor.intent_id)
        return interceptor

    # Steps

    async def prepare(
        self,
        address: Address | None,
        option: ShippingOption = ShippingOption.STANDARD,
        *,
        voucher_code: str | None = None,
        discount: Money = 0,
        method: PaymentMethod = PaymentMethod.GATEWAY,
    ) -> Result[Totals, CheckoutError]:
        """Validate preconditions and compute totals. Only the shipping quote touches the network."""
        if (refused := self._refuse(_S.ADDRESS_READY)) is not None:
            return Error(refused)

        session = await self._session()
        if session is None:
            return Error(CheckoutError.validation(Precondition.NOT_SIGNED_IN, "no signed-in user"))
        if address is None:
            return Error(CheckoutError.validation(Precondition.NO_ADDRESS, "no shipping address"))

        cart = self._store.snapshot()
        if (invalid := _check_cart(cart)) is not None:
            return Error(invalid)

        quote = await self._shipping.quote(option, cart.total)
        totals = Totals(subtotal=cart.total, shipping_fee=quote.fee, discount=max(0, discount))
        if totals.total <= 0:
            return Error(CheckoutError.validation(
                Precondition.NON_POSITIVE_TOTAL,
                f"order total is {totals.total}",
            ))

        self._email, self._cart_id = session
        self._address = address
        self._option = option
        self._method = method
        self._cash_key = None
        self._voucher_code = voucher_code
        self._discount = totals.discount
        self._quote = quote
        self._totals = totals
        self._move(_S.ADDRESS_READY, "prepared")
        return Ok(totals)

    async def create_intent(self) -> Result[CheckoutAttempt, CheckoutError]:
        """Freeze the cart, open a gateway intent and record the attempt."""
        if self._creating:
            return Error(self._in_progress())
        if (refused := self._refuse(_S.INTENT_CREATED)) is not None:
            return Error(refused)
        if self._method is PaymentMethod.CASH:
            return Error(CheckoutError(
                CheckoutErrorKind.INVALID_TRANSITION,
                "cash orders are placed with place_cash_order",
            ))

        self._creating = True
        try:
            return await self._create_intent()
        finally:
            self._creating = False

    async def _create_intent(self) -> Result[CheckoutAttempt, CheckoutError]:
        assert self._email is not None and self._cart_id is not None
        assert self._address is not None and self._quote is not None and self._totals is not None

        cart = self._store.snapshot()
        if (invalid := _check_cart(cart)) is not None:
            return Error(invalid)

        quote, totals = await self._requote(cart)

        request = IntentRequest(
            email=self._email,
            cart_id=self._cart_id,
            amount=totals.total,
            items=cart.lines,
            return_url=self._settings.gateway_return_url(),
            totals=totals,
            address=self._address,
            shipping_option=self._option,
            voucher_code=self._voucher_code,
        )

        match await self._gateway.create_intent(request):
            case Error(GatewayError(kind=GatewayErrorKind.INVALID_AMOUNT, message=message)):
                return Error(CheckoutError.validation(Precondition.NON_POSITIVE_TOTAL, message))
            case Error(e):
                return Error(CheckoutError(CheckoutErrorKind.GATEWAY, e.message))
            case Ok(intent):
                pass

        attempt = CheckoutAttempt(
            intent_id=intent.intent_id,
            email=self._email,
            cart_id=self._cart_id,
            cart=cart,
            address=self._address,
            quote=quote,
            totals=totals,
            redirect_url=intent.redirect_url,
            voucher_code=self._voucher_code,
        )
        match await self._finalizer.record_attempt(attempt.as_record()):
            case Error(e):
                # Finalize recreates the record from the request it is given
                logger.warning("could not record attempt %s: %s", attempt.intent_id, e.message)
            case Ok(_):
                pass

        self._attempt = attempt
        self._request = attempt.finalize_request()
        self._pending_intent_id = attempt.intent_id
        self._move(_S.INTENT_CREATED, "intent created")
        return Ok(attempt)

    async def open_gateway(self) -> Result[ReturnInterceptor, CheckoutError]:
        """Arm a fresh interceptor and hand the payment URL to the opener."""
        if (refused := self._refuse(_S.AWAITING_GATEWAY)) is not None:
            return Error(refused)
        attempt = self._attempt
        assert attempt is not None and attempt.redirect_url is not None

        interceptor = ReturnInterceptor.for_attempt(self._settings, attempt.intent_id)
        self._interceptor = interceptor
        self._stop = asyncio.Event()
        self._move(_S.AWAITING_GATEWAY, "gateway opened")

        if self._opener is not None:
            self._suspended = True
            try:
                await self._opener(attempt.redirect_url, interceptor)
            except Exception as e:
                logger.exception("could not open payment page for intent %s", attempt.intent_id)
                return Error(self._end(_S.FAILED, CheckoutErrorKind.GATEWAY, f"could not open payment page: {e}"))
            finally:
                self._suspended = False
        # A cancel() during the opener is already queued on the interceptor
        return Ok(interceptor)

    async def await_return(self) -> Result[ReturnOutcome, CheckoutError]:
        """Wait for the redirect back. Cancel and failure codes end the attempt here."""
        if self._state is not _S.AWAITING_GATEWAY:
            return Error(self._invalid(_S.POLLING))
        interceptor = self._interceptor
        attempt = self._attempt
        assert interceptor is not None and attempt is not None

        self._suspended = True
        try:
            event = await interceptor.wait()
        finally:
            self._suspended = False

        match event:
            case BrowserDismissed():
                return Error(self._end(_S.CANCELLED, CheckoutErrorKind.CANCELLED, "payment page closed"))
            case ReturnOutcome(intent_id=returned) if returned != attempt.intent_id:
                logger.warning(
                    "return carried intent %s, expected %s; using the attempt's id",
                    returned, attempt.intent_id,
                )
                outcome = ReturnOutcome(event.rcode, attempt.intent_id, echoed=False)
            case ReturnOutcome():
                outcome = event

        self._move(_S.POLLING, f"returned rcode={outcome.rcode!r}")
        return self._screen(outcome)

    async def poll(self) -> Result[StatusReport, CheckoutError]:
        """Confirm the outcome with the gateway. Only PAID moves on to finalize."""
        if self._state is not _S.POLLING:
            return Error(self._invalid(_S.PAID))
        intent_id = self._pending_intent_id
        assert intent_id is not None
        if self._stop is None:
            self._stop = asyncio.Event()

        self._suspended = True
        try:
            outcome = await poll_until(
                lambda: self._gateway.get_status(intent_id),
                done=lambda report: report.status.is_terminal,
                interval=self._settings.poll_interval,
                max_attempts=self._settings.poll_max_attempts,
                clock=self._clock,
                cancelled=self._stop,
            )
        finally:
            self._suspended = False

        match outcome:
            case Settled(value=report) if report.status is IntentStatus.PAID:
                self._check_amount(report)
                self._move(_S.PAID, "gateway confirmed payment")
                return Ok(report)
            case Settled(value=report):
                return Error(self._end(
                    _S.FAILED,
                    CheckoutErrorKind.PAYMENT_FAILED,
                    f"gateway reported {report.status.value}",
                ))
            case Aborted():
                return Error(self._end(_S.CANCELLED, CheckoutErrorKind.CANCELLED, "polling cancelled"))
            case Exhausted(attempts=attempts, last_error=last_error):
                logger.warning(
                    "intent %s unconfirmed after %d status checks (last error: %s)",
                    intent_id, attempts, last_error,
                )
                return Error(self._end(
                    _S.FAILED,
                    CheckoutErrorKind.UNCONFIRMED,
                    f"payment not confirmed after {attempts} checks",
                ))

    async def finalize(self) -> Result[Order, CheckoutError]:
        """Commit the order for the paid intent, then clear the cart."""
        if self._state is _S.COMPLETE and self._last_order is not None:
            return Ok(self._last_order)
        if self._state is not _S.PAID:
            return Error(self._in_progress() if self._state.attempt_active else self._invalid(_S.FINALIZING))

        intent_id = self._pending_intent_id
        request = self._request
        assert intent_id is not None and request is not None
        if self._email is None or self._cart_id is None:
            return Error(CheckoutError.validation(Precondition.NOT_SIGNED_IN, "no signed-in user"))

        self._move(_S.FINALIZING, "finalizing")
        try:
            finalized = await self._finalizer.finalize(self._email, self._cart_id, request)
        except BaseException:
            # Interrupted: the intent stays paid and retry_finalize stays open
            self._move(_S.PAID, "finalize interrupted")
            raise

        match finalized:
            case Ok(done):
                order = done.order
            case Error(e):
                self._move(_S.PAID, f"finalize failed: {e.kind.name}")
                return Error(CheckoutError(CheckoutErrorKind.FINALIZE, e.message, intent_id=intent_id))

        return Ok(self._complete(intent_id, order))

    async def retry_finalize(self) -> Result[Order, CheckoutError]:
        if self._state is not _S.PAID or self._pending_intent_id is None:
            return Error(self._invalid(_S.FINALIZING))
        logger.info("retrying finalize for intent %s", self._pending_intent_id)
        return await self.finalize()

    async def place_cash_order(self) -> Result[Order, CheckoutError]:
        """
        Cash on delivery: commit the order straight from ADDRESS_READY.

        No gateway is involved. A locally minted key stands in for the
        intent id and is reused if this call is repeated after a failure,
        so the backend still sees one order per checkout.
        """
        if self._state is not _S.ADDRESS_READY or self._method is not PaymentMethod.CASH:
            return Error(self._in_progress() if self._state.attempt_active else self._invalid(_S.FINALIZING))
        assert self._email is not None and self._cart_id is not None and self._address is not None

        cart = self._store.snapshot()
        if (invalid := _check_cart(cart)) is not None:
            return Error(invalid)
        quote, totals = await self._requote(cart)

        key = self._cash_key or f"cod_{uuid.uuid4().hex}"
        self._cash_key = key
        attempt = CheckoutAttempt(
            intent_id=key,
            email=self._email,
            cart_id=self._cart_id,
            cart=cart,
            address=self._address,
            quote=quote,
            totals=totals,
            voucher_code=self._voucher_code,
            method=PaymentMethod.CASH,
        )
        request = attempt.finalize_request()
        self._attempt = attempt
        self._request = request
        self._pending_intent_id = key
        self._move(_S.FINALIZING, "cash on delivery")

        try:
            finalized = await self._finalizer.finalize(self._email, self._cart_id, request)
        except BaseException:
            self._end(_S.FAILED, CheckoutErrorKind.FINALIZE, "cash order interrupted")
            raise

        match finalized:
            case Ok(done):
                self._cash_key = None
                return Ok(self._complete(key, done.order))
            case Error(e):
                return Error(self._end(_S.FAILED, CheckoutErrorKind.FINALIZE, e.message))

    async def unfinished_attempts(self) -> Result[tuple[AttemptRecord, ...], CheckoutError]:
        """
        Attempts of the signed-in user that never became an order.

        Backs the "check your order history" path after an unconfirmed
        payment: each record carries the intent id to resume with.
        """
        session = await self._session()
        if session is None:
            return Error(CheckoutError.validation(Precondition.NOT_SIGNED_IN, "no signed-in user"))
        match await self._finalizer.pending(session[0]):
            case Ok(records):
                return Ok(records)
            case Error(e):
                return Error(CheckoutError(CheckoutErrorKind.FINALIZE, e.message))

    def cancel(self) -> bool:
        """
        User closed the payment browser.

        Returns False when there is no attempt to cancel. A step that
        is waiting on the return or on polling ends the attempt itself.
        """
        if self._state not in (_S.INTENT_CREATED, _S.AWAITING_GATEWAY, _S.POLLING):
            return False
        if self._interceptor is not None:
            self._interceptor.dismiss()
        if self._stop is not None:
            self._stop.set()
        if not self._suspended:
            self._end(_S.CANCELLED, CheckoutErrorKind.CANCELLED, "cancelled by user")
        return True

    # Whole flows

    async def checkout(
        self,
        address: Address | None,
        option: ShippingOption = ShippingOption.STANDARD,
        *,
        voucher_code: str | None = None,
        discount: Money = 0,
        method: PaymentMethod = PaymentMethod.GATEWAY,
    ) -> Result[Order, CheckoutError]:
        match await self.prepare(
            address, option, voucher_code=voucher_code, discount=discount, method=method
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass
        if method is PaymentMethod.CASH:
            return await self.place_cash_order()

        steps: tuple[Callable[[], Awaitable[Result[Any, CheckoutError]]], ...] = (
            self.create_intent,
            self.open_gateway,
            self.await_return,
            self.poll,
        )
        for step in steps:
            match await step():
                case Error(e):
                    return Error(e)
                case Ok(_):
                    pass
        return await self.finalize()

    async def resume(self, outcome: ReturnOutcome) -> Result[Order, CheckoutError]:
        """
        Complete a pending attempt from {intent_id, rcode} alone.

        The ledger supplies the frozen request; without a record the
        backend gets a request carrying only the intent id.
        """
        intent_id = outcome.intent_id or self._pending_intent_id
        if intent_id is None:
            return Error(CheckoutError(CheckoutErrorKind.VALIDATION, "no intent id to resume"))
        if (sealed := self._sealed.get(intent_id)) is not None:
            return Ok(sealed)
        if self._state is _S.PAID and intent_id == self._pending_intent_id:
            return await self.retry_finalize()
        if (refused := self._refuse(_S.POLLING)) is not None:
            return Error(refused)

        session = await self._session()
        if session is None:
            return Error(CheckoutError.validation(Precondition.NOT_SIGNED_IN, "no signed-in user"))

        request = FinalizeRequest.minimal(intent_id)
        match await self._finalizer.lookup(intent_id):
            case Ok(record) if record is not None and record.is_completed:
                assert record.order is not None
                self._seal(intent_id, record.order)
                return Ok(record.order)
            case Ok(record) if record is not None:
                request = record.request
            case Ok(None):
                logger.info("no ledger record for intent %s, resuming with intent id only", intent_id)
            case Error(e):
                logger.warning("ledger lookup for intent %s failed: %s", intent_id, e.message)

        self._email, self._cart_id = session
        self._attempt = None
        self._request = request
        self._pending_intent_id = intent_id
        self._interceptor = None
        self._stop = asyncio.Event()
        self._move(_S.POLLING, f"resumed rcode={outcome.rcode!r}")

        match self._screen(ReturnOutcome(outcome.rcode, intent_id, outcome.echoed)):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass
        match await self.poll():
            case Error(e):
                return Error(e)
            case Ok(_):
                pass
        return await self.finalize()

    async def resume_from_url(self, url: str) -> Result[Order, CheckoutError]:
        outcome = parse_return_url(
            url,
            close_url=self._settings.close_url,
            fallback_intent_id=self._pending_intent_id,
            intent_params=self._settings.intent_params,
        )
        if outcome is None:
            return Error(CheckoutError(CheckoutErrorKind.VALIDATION, f"not a payment return URL: {url}"))
        return await self.resume(outcome)

    # Internals

    async def _requote(self, cart: Cart) -> tuple[ShippingQuote, Totals]:
        assert self._quote is not None and self._totals is not None
        if cart.total != self._totals.subtotal:
            logger.debug("cart changed since prepare, re-quoting shipping")
            quote = await self._shipping.quote(self._option, cart.total)
            self._quote = quote
            self._totals = Totals(subtotal=cart.total, shipping_fee=quote.fee, discount=self._discount)
        return self._quote, self._totals

    async def _session(self) -> tuple[str, CartId] | None:
        email = await self._credentials.email()
        cart_id = await self._credentials.cart_id()
        if not email or cart_id is None:
            return None
        return email, cart_id

    def _screen(self, outcome: ReturnOutcome) -> Result[ReturnOutcome, CheckoutError]:
        """Cancel and failure codes end the attempt; the rest go to polling."""
        match outcome.classification:
            case RcodeClass.CANCEL:
                return Error(self._end(_S.CANCELLED, CheckoutErrorKind.CANCELLED, f"rcode {outcome.rcode}"))
            case RcodeClass.FAILURE:
                return Error(self._end(_S.FAILED, CheckoutErrorKind.PAYMENT_FAILED, f"rcode {outcome.rcode}"))
            case RcodeClass.SUCCESS | RcodeClass.UNKNOWN:
                return Ok(outcome)

    def _check_amount(self, report: StatusReport) -> None:
        expected = self._request.amount if self._request is not None else None
        if report.amount is not None and expected and report.amount != expected:
            logger.warning(
                "intent %s paid amount %d differs from attempt amount %d",
                report.intent_id, report.amount, expected,
            )

    def _complete(self, intent_id: str, order: Order) -> Order:
        self._store.clear()
        self._move(_S.COMPLETE, f"order {order.order_id}")
        self._seal(intent_id, order)
        self._last_order = order
        return order

    def _seal(self, intent_id: str, order: Order) -> None:
        self._sealed[intent_id] = order
        self._pending_intent_id = None
        self._attempt = None
        self._interceptor = None
        self._stop = None

    def _refuse(self, target: CheckoutState) -> CheckoutError | None:
        if can_transition(self._state, target):
            return None
        if self._state.attempt_active:
            return self._in_progress()
        return self._invalid(target)

    def _in_progress(self) -> CheckoutError:
        return CheckoutError(
            CheckoutErrorKind.ATTEMPT_IN_PROGRESS,
            f"checkout attempt in progress ({self._state.value})",
            intent_id=self._pending_intent_id,
        )

    def _invalid(self, target: CheckoutState) -> CheckoutError:
        return CheckoutError(
            CheckoutErrorKind.INVALID_TRANSITION,
            f"cannot go from {self._state.value} to {target.value}",
            intent_id=self._pending_intent_id,
        )

    def _end(self, terminal: CheckoutState, kind: CheckoutErrorKind, message: str) -> CheckoutError:
        """
        FAILED or CANCELLED, then back to ADDRESS_READY. The cart is left alone.

        An unconfirmed intent stays pending so it can still be resumed.
        """
        intent_id = self._attempt.intent_id if self._attempt is not None else self._pending_intent_id
        self._move(terminal, message)
        self._move(_S.ADDRESS_READY, "attempt ended")
        if kind is not CheckoutErrorKind.UNCONFIRMED:
            self._pending_intent_id = None
        self._attempt = None
        self._interceptor = None
        self._stop = None
        logger.info("checkout attempt %s ended: %s (%s)", intent_id, kind.name, message)
        return CheckoutError(kind, message, intent_id=intent_id)

    def _move(self, target: CheckoutState, reason: str) -> None:
        if not can_transition(self._state, target):
            raise RuntimeError(f"illegal checkout transition {self._state.value} -> {target.value}")
        self._transitions.append(Transition(self._state, target, reason, self._pending_intent_id))
        logger.debug("checkout %s -> %s (%s)", self._state.value, target.value, reason)
        self._state = target


def _check_cart(cart: Cart) -> CheckoutError | None:
    if cart.is_empty:
        return CheckoutError.validation(Precondition.EMPTY_CART, "cart is empty")
    if cart.total <= 0:
        return CheckoutError.validation(Precondition.NON_POSITIVE_TOTAL, f"cart total is {cart.total}")
    return None


__all__ = (
    "GatewayOpener",
    "QuoteSource",
    "IntentGateway",
    "PaymentStateMachine",
)
