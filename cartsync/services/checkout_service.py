# cartsync/services/checkout_service.py
import threading
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from cartsync.domain.errors import CartError, CheckoutInProgressError, ErrorKind
from cartsync.domain.schemas import (
    AppliedOffer,
    CheckoutOutcome,
    CheckoutState,
    Outcome,
    PaymentConfirmation,
    PaymentOrderHandle,
    ShippingAddress,
)
from cartsync.services.api_client import error_from_result
from cartsync.services.cart_service import CartService
from cartsync.services.checkout_client import CheckoutClient
from cartsync.services.notification_service import NotificationService
from cartsync.services.payment_gateway import (
    GatewayOutcome,
    GatewayStatus,
    WidgetLoadError,
    WidgetLoader,
    run_widget,
    widget_options,
)
from cartsync.services.session_service import SessionContext
from cartsync.utils.settings import PAYMENT_WIDGET_TIMEOUT_SECONDS
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

_LABELS = {
    "house_no": "House number",
    "street": "Street",
    "city": "City",
    "state": "State",
    "pincode": "Pincode",
}
_FIELD_BY_ALIAS = {"houseNo": "house_no"}


def parse_address(data: ShippingAddress | Dict[str, Any]) -> Tuple[ShippingAddress | None, Dict[str, str]]:
    """Zwraca (adres, {}) albo (None, {pole: komunikat})."""
    if isinstance(data, ShippingAddress):
        data = data.model_dump()

    try:
        return ShippingAddress.model_validate(data), {}
    except ValidationError as e:
        errors: Dict[str, str] = {}
        for err in e.errors():
            loc = str(err["loc"][0]) if err["loc"] else "address"
            field = _FIELD_BY_ALIAS.get(loc, loc)
            if err["type"] in ("missing", "string_too_short"):
                errors[field] = f"{_LABELS.get(field, field)} is required"
            else:
                errors[field] = err["msg"].removeprefix("Value error, ")
        return None, errors


class CheckoutService:
    """
    Serwis odpowiedzialny za checkout i platnosc.
    Maszyna stanow, kroki zawsze po kolei:

    IDLE -> CREATING_DRAFT -> CREATING_PAYMENT_ORDER -> AWAITING_GATEWAY -> CONFIRMING -> DONE
    FAILED osiagalny z kazdego kroku.

    Przerwac (zamknac widget) mozna tylko w AWAITING_GATEWAY. Od CONFIRMING
    idziemy do konca albo do FAILED, bez ponawiania - powtorka moglaby
    obciazyc klienta drugi raz.
    """

    def __init__(
        self,
        session: SessionContext,
        cart_service: CartService,
        checkout_client: CheckoutClient,
        widget_loader: WidgetLoader,
        notifier: NotificationService,
        gateway_timeout: float | None = PAYMENT_WIDGET_TIMEOUT_SECONDS,
    ):
        self.session = session
        self.cart_service = cart_service
        self.client = checkout_client
        self.widget_loader = widget_loader
        self.notifier = notifier
        self.gateway_timeout = gateway_timeout

        self._state = CheckoutState.IDLE
        self.history: List[CheckoutState] = [CheckoutState.IDLE]
        self._applied_offer: AppliedOffer | None = None
        self._running = threading.Lock()

    @property
    def state(self) -> CheckoutState:
        return self._state

    @property
    def applied_offer(self) -> AppliedOffer | None:
        return self._applied_offer

    # =====================================================
    # OFFERS
    # =====================================================
    def apply_offer(self, code: str) -> Outcome:
        code = (code or "").strip()
        if not code:
            return Outcome.fail(CartError.validation("Please enter an offer code", {"offer_code": "Offer code is required"}))

        if not self.session.is_authenticated():
            return Outcome.fail(CartError.validation("Please login to apply an offer"))

        user_id = self.session.current_user_id()
        result = self.client.apply_offer(user_id, code)

        if not result.ok:
            #aktualna oferta zostaje bez zmian
            self.notifier.error("Invalid offer code", result.message)
            return Outcome.fail(error_from_result(result, result.message or "Offer could not be applied"))

        offer: AppliedOffer = result.data
        if offer.discount_amount <= 0:
            self.notifier.error("Offer does not apply to your cart")
            return Outcome.fail(CartError.validation("Offer does not apply to your cart", {"offer_code": code}))

        if self._applied_offer and self._applied_offer.offer_code != code:
            logger.info(f"Offer {self._applied_offer.offer_code} replaced by {code}")
        self._applied_offer = offer

        self.notifier.success(f"Offer {code} applied", f"You save {offer.discount_amount}")
        return Outcome.success()

    def remove_offer(self) -> None:
        if self._applied_offer:
            logger.info(f"Offer {self._applied_offer.offer_code} removed")
        self._applied_offer = None

    # =====================================================
    # CHECKOUT
    # =====================================================
    def reset(self) -> None:
        if self._running.locked():
            raise CheckoutInProgressError("Checkout is in progress")
        self._state = CheckoutState.IDLE
        self.history = [CheckoutState.IDLE]

    def checkout(self, address: ShippingAddress | Dict[str, Any]) -> CheckoutOutcome:
        """
        Use Case: checkout koszyka z platnoscia.

        1. walidacja adresu, niepusty koszyk, sync lokalnych zmian (stan IDLE)
        2. zamowienie robocze
        3. zamowienie w bramce platnosci
        4. widget platnosci
        5. potwierdzenie podpisu na serwerze
        """
        if not self._running.acquire(blocking=False):
            raise CheckoutInProgressError("Checkout is already in progress")

        try:
            # kazda proba startuje od IDLE, takze po FAILED/DONE
            self._state = CheckoutState.IDLE
            self.history = [CheckoutState.IDLE]
            return self._run(address)
        except Exception as e:
            logger.error(f"Checkout crashed in state {self._state.value}: {e}")
            if self._state != CheckoutState.FAILED:
                self._transition(CheckoutState.FAILED)
            raise
        finally:
            self._running.release()

    def _transition(self, new_state: CheckoutState) -> None:
        logger.info(f"Checkout {self._state.value} -> {new_state.value}")
        self._state = new_state
        self.history.append(new_state)

    def _reject(self, error: CartError) -> CheckoutOutcome:
        #odrzucone przed startem, zostajemy w IDLE
        self.notifier.error(error.message)
        return CheckoutOutcome(state=self._state, error=error)

    def _fail(self, error: CartError, order_id=None, payment_id=None) -> CheckoutOutcome:
        self._transition(CheckoutState.FAILED)
        self.notifier.error("Order Failed", error.message)
        return CheckoutOutcome(state=CheckoutState.FAILED, order_id=order_id, payment_id=payment_id, error=error)

    def _run(self, address_data) -> CheckoutOutcome:
        if not self.session.is_authenticated():
            return self._reject(CartError.validation("Please login to checkout"))

        address, field_errors = parse_address(address_data)
        if field_errors:
            return self._reject(CartError.validation("Please fill all required fields correctly", field_errors))

        if not self.cart_service.view.authenticated:
            self.cart_service.load()
        if self.cart_service.view.is_empty:
            return self._reject(CartError.validation("Your cart is empty"))

        if self.cart_service.has_unsynced_changes:
            synced = self.cart_service.sync()
            if not synced.ok:
                return self._fail(synced.error)

        cart = self.cart_service.view
        user_id = self.session.current_user_id()
        offer_code = self._applied_offer.offer_code if self._applied_offer else None

        # 1. zamowienie robocze
        self._transition(CheckoutState.CREATING_DRAFT)
        result = self.client.create_draft_order(user_id, address, cart.lines, offer_code)
        if not result.ok:
            return self._fail(error_from_result(result, result.message or "Failed to place order"))
        draft = result.data
        logger.info(f"Draft order {draft.order_id} created for user {user_id} ({draft.amount} {draft.currency})")

        # 2. zamowienie w bramce
        self._transition(CheckoutState.CREATING_PAYMENT_ORDER)
        result = self.client.create_payment_order(draft.order_id)
        if not result.ok:
            return self._fail(error_from_result(result, "Failed to initiate payment"), order_id=draft.order_id)
        handle: PaymentOrderHandle = result.data

        # 3. widget
        self._transition(CheckoutState.AWAITING_GATEWAY)
        gateway = self._await_gateway(handle)

        if gateway.status == GatewayStatus.CANCELLED:
            #zamowienie zostaje PENDING_PAYMENT na serwerze, mozna ponowic checkout
            error = CartError(kind=ErrorKind.GATEWAY_CANCELLED, message="Payment cancelled", details={"reason": "cancelled"})
            return self._fail(error, order_id=draft.order_id)

        if gateway.status == GatewayStatus.FAILED:
            self._report_failure(handle, gateway.reason)
            error = CartError(
                kind=ErrorKind.GATEWAY_ERROR,
                message=f"Payment failed: {gateway.reason}",
                details={"reason": gateway.reason},
            )
            return self._fail(error, order_id=draft.order_id)

        # 4. potwierdzenie
        self._transition(CheckoutState.CONFIRMING)
        if gateway.gateway_order_id != handle.gateway_order_id:
            logger.warning(
                f"Gateway returned order {gateway.gateway_order_id}, expected {handle.gateway_order_id}"
            )

        confirmation = PaymentConfirmation(
            order_id=handle.order_id,
            payment_id=gateway.payment_id,
            gateway_order_id=gateway.gateway_order_id,
            signature=gateway.signature,
        )
        result = self.client.confirm_payment(confirmation)

        if not result.ok:
            #pieniadze mogly juz zejsc z konta - tylko support, bez retry
            logger.error(
                f"Payment {gateway.payment_id} for order {handle.order_id} not verified: {result.message}"
            )
            error = CartError(
                kind=ErrorKind.CONFIRMATION_AMBIGUOUS,
                message="Payment could not be verified. Please contact support",
                details={
                    "order_id": handle.order_id,
                    "payment_id": gateway.payment_id,
                    "reason": result.message,
                },
            )
            return self._fail(error, order_id=handle.order_id, payment_id=gateway.payment_id)

        self.cart_service.discard_pending_edits()
        self._applied_offer = None
        self.cart_service.load()

        self._transition(CheckoutState.DONE)
        self.notifier.success("Order Placed Successfully!", f"Order #{handle.order_id} has been confirmed.")
        return CheckoutOutcome(state=CheckoutState.DONE, order_id=handle.order_id, payment_id=gateway.payment_id)

    def _await_gateway(self, handle: PaymentOrderHandle) -> GatewayOutcome:
        result = self.client.get_payment_config()
        if not result.ok:
            return GatewayOutcome.failed(f"Payment configuration unavailable: {result.message}")

        try:
            factory = self.widget_loader.load()
        except WidgetLoadError as e:
            logger.error(str(e))
            return GatewayOutcome.failed("Payment widget could not be loaded")

        return run_widget(factory, widget_options(result.data, handle), timeout=self.gateway_timeout)

    def _report_failure(self, handle: PaymentOrderHandle, reason: str) -> None:
        result = self.client.report_payment_failure(handle.order_id, handle.gateway_order_id, reason)
        if not result.ok:
            logger.warning(f"Could not report payment failure for order {handle.order_id}: {result.message}")
