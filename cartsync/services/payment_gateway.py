# cartsync/services/payment_gateway.py
"""
Adapter zewnetrznego widgetu platnosci.

Widget dziala na callbackach: ``Widget(options)`` zwraca obiekt z ``open()``
i ``on(event, handler)``. ``run_widget`` zamienia to w jedno blokujace
wywolanie zwracajace ``GatewayOutcome`` (sukces z podpisanym payloadem,
anulowanie przez usera albo blad z powodem od bramki).
"""
import importlib
import threading
from concurrent.futures import Future, InvalidStateError, TimeoutError as FutureTimeout
from enum import Enum
from typing import Any, Callable, Protocol

from pydantic import BaseModel

from cartsync.domain.schemas import PaymentConfig, PaymentOrderHandle
from cartsync.repos.guest_cart_repo import json_number
from cartsync.utils.settings import PAYMENT_WIDGET_FACTORY, PAYMENT_WIDGET_TIMEOUT_SECONDS
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

EVENT_SUCCESS = "payment.success"
EVENT_FAILED = "payment.failed"
EVENT_DISMISS = "modal.dismiss"


class PaymentWidget(Protocol):
    def open(self) -> None: ...

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...


WidgetFactory = Callable[[dict], PaymentWidget]


class WidgetLoadError(RuntimeError):
    """Nie udalo sie zaladowac widgetu platnosci."""


class GatewayStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class GatewayOutcome(BaseModel):
    status: GatewayStatus
    payment_id: str | None = None
    gateway_order_id: str | None = None
    signature: str | None = None
    reason: str = ""

    @classmethod
    def succeeded(cls, payment_id: str, gateway_order_id: str, signature: str) -> "GatewayOutcome":
        return cls(
            status=GatewayStatus.SUCCEEDED,
            payment_id=payment_id,
            gateway_order_id=gateway_order_id,
            signature=signature,
        )

    @classmethod
    def cancelled(cls) -> "GatewayOutcome":
        return cls(status=GatewayStatus.CANCELLED, reason="cancelled")

    @classmethod
    def failed(cls, reason: str) -> "GatewayOutcome":
        return cls(status=GatewayStatus.FAILED, reason=reason or "Payment failed")


class WidgetLoader:
    """
    Laduje fabryke widgetu raz, przy pierwszym uzyciu.
    Nieudane ladowanie nie jest zapamietywane, nastepny checkout probuje ponownie.
    """

    def __init__(self, factory: WidgetFactory | None = None, path: str | None = None):
        self._factory = factory
        self.path = PAYMENT_WIDGET_FACTORY if path is None else path
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._factory is not None

    def load(self) -> WidgetFactory:
        with self._lock:
            if self._factory is not None:
                return self._factory

            if not self.path:
                raise WidgetLoadError("No payment widget configured")

            module_name, _, attr = self.path.partition(":")
            logger.info(f"Loading payment widget from {self.path}")
            try:
                module = importlib.import_module(module_name)
                factory = getattr(module, attr) if attr else module
            except (ImportError, AttributeError) as e:
                raise WidgetLoadError(f"Failed to load payment widget {self.path}: {e}") from e

            if not callable(factory):
                raise WidgetLoadError(f"{self.path} is not callable")

            self._factory = factory
            return factory


def widget_options(config: PaymentConfig, handle: PaymentOrderHandle) -> dict:
    return {
        "key": config.gateway_key,
        "amount": json_number(handle.amount),
        "currency": handle.currency,
        "order_id": handle.gateway_order_id,
        "name": config.display_name,
        "theme": {"color": config.theme},
    }


def _first(data: dict, *keys: str) -> str | None:
    for key in keys:
        if data.get(key):
            return str(data[key])
    return None


def parse_success(response: Any) -> GatewayOutcome:
    data = response if isinstance(response, dict) else {}
    payment_id = _first(data, "razorpay_payment_id", "paymentId", "payment_id")
    gateway_order_id = _first(data, "razorpay_order_id", "gatewayOrderId", "order_id")
    signature = _first(data, "razorpay_signature", "signature")

    if not (payment_id and gateway_order_id and signature):
        return GatewayOutcome.failed("Incomplete response from payment gateway")
    return GatewayOutcome.succeeded(payment_id, gateway_order_id, signature)


def parse_failure(response: Any) -> GatewayOutcome:
    reason = None
    if isinstance(response, dict):
        error = response.get("error")
        if isinstance(error, dict):
            reason = error.get("description") or error.get("reason")
        reason = reason or response.get("reason") or response.get("description")
    elif isinstance(response, str):
        reason = response
    return GatewayOutcome.failed(reason or "Payment failed")


def run_widget(
    factory: WidgetFactory,
    options: dict,
    timeout: float | None = PAYMENT_WIDGET_TIMEOUT_SECONDS,
) -> GatewayOutcome:
    """Otwiera widget i czeka na pierwszy z trzech wynikow."""
    future: Future = Future()

    def settle(outcome: GatewayOutcome):
        try:
            future.set_result(outcome)
        except InvalidStateError:
            # widget zglosil juz wczesniej inny wynik
            logger.warning(f"Ignoring late gateway event: {outcome.status.value}")

    logger.info(f"Opening payment widget for gateway order {options.get('order_id')}")
    try:
        widget = factory(options)
        widget.on(EVENT_SUCCESS, lambda response=None: settle(parse_success(response)))
        widget.on(EVENT_FAILED, lambda response=None: settle(parse_failure(response)))
        widget.on(EVENT_DISMISS, lambda *args: settle(GatewayOutcome.cancelled()))
        widget.open()
    except Exception as e:
        logger.error(f"Payment widget failed to open: {e}")
        return GatewayOutcome.failed(f"Payment widget failed to open: {e}")

    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        logger.error(f"No answer from payment widget within {timeout}s")
        return GatewayOutcome.failed("Payment timed out")
