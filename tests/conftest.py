import threading
from decimal import Decimal
from typing import Dict, List

import pytest

from cartsync.data.kv_store import MemoryKeyValueStore
from cartsync.domain.schemas import (
    ApiResult,
    AppliedOffer,
    AuthLine,
    DEFAULT_SIZE,
    DraftOrder,
    LineKey,
    PaymentConfig,
    PaymentOrderHandle,
)
from cartsync.repos.guest_cart_repo import GuestCartRepo
from cartsync.repos.pending_edit_repo import PendingEditRepo
from cartsync.services.cart_service import CartService
from cartsync.services.checkout_service import CheckoutService
from cartsync.services.merge_service import MergeService
from cartsync.services.notification_service import NotificationService
from cartsync.services.payment_gateway import EVENT_DISMISS, EVENT_SUCCESS, WidgetLoader
from cartsync.services.session_service import SessionContext
from cartsync.storefront import Storefront

USER_ID = 7

SUCCESS_PAYLOAD = {
    "razorpay_payment_id": "pay_1",
    "razorpay_order_id": "order_GW1",
    "razorpay_signature": "sig_1",
}


# =====================================================
# FAKE SERVER
# =====================================================
class FakeCartClient:
    """Koszyk serwera w pamieci, z mozliwoscia wstrzykniecia bledow."""

    def __init__(self):
        self.items: Dict[LineKey, dict] = {}
        self.prices: Dict[int, Decimal] = {}
        self.calls: List[tuple] = []
        self.fail_add: set = set()
        self.fail_remove: set = set()
        self.fail_fetch = False
        self._next_id = 100
        self._lock = threading.Lock()

    def seed(self, product_id: int, quantity: int, size: str = DEFAULT_SIZE, price: str = "250") -> int:
        self.prices[product_id] = Decimal(price)
        with self._lock:
            self._next_id += 1
            self.items[(product_id, size)] = {
                "cartItemId": self._next_id,
                "productId": product_id,
                "productName": f"Product {product_id}",
                "productPrice": Decimal(price),
                "quantity": quantity,
                "selectedSize": size,
            }
            return self._next_id

    def quantity(self, product_id: int, size: str = DEFAULT_SIZE) -> int | None:
        item = self.items.get((product_id, size))
        return item["quantity"] if item else None

    def calls_of(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]

    def fetch(self, user_id: int) -> ApiResult:
        self.calls.append(("fetch", user_id))
        if self.fail_fetch:
            return ApiResult.failure("Network error, please try again")
        with self._lock:
            lines = [
                AuthLine.model_validate({**i, "totalPrice": i["productPrice"] * i["quantity"]})
                for i in self.items.values()
            ]
        return ApiResult.success(lines)

    def add_line(self, user_id: int, product_id: int, quantity: int, size: str | None = None) -> ApiResult:
        size = size or DEFAULT_SIZE
        self.calls.append(("add", product_id, quantity, size))
        if product_id in self.fail_add:
            return ApiResult.failure("Internal server error", status_code=500)

        with self._lock:
            existing = self.items.get((product_id, size))
            if existing:
                existing["quantity"] += quantity
                return ApiResult.success(existing)

            self._next_id += 1
            item = {
                "cartItemId": self._next_id,
                "productId": product_id,
                "productName": f"Product {product_id}",
                "productPrice": self.prices.get(product_id, Decimal("250")),
                "quantity": quantity,
                "selectedSize": size,
            }
            self.items[(product_id, size)] = item
            return ApiResult.success(item)

    def remove_line(self, cart_item_id: int) -> ApiResult:
        self.calls.append(("remove", cart_item_id))
        with self._lock:
            for key, item in list(self.items.items()):
                if item["cartItemId"] == cart_item_id:
                    if key[0] in self.fail_remove:
                        return ApiResult.failure("Internal server error", status_code=500)
                    del self.items[key]
                    return ApiResult.success(None)
        return ApiResult.failure("Cart item not found", status_code=404)

    def clear_all(self, user_id: int) -> ApiResult:
        self.calls.append(("clear", user_id))
        with self._lock:
            self.items.clear()
        return ApiResult.success(None)


class FakeCheckoutClient:
    def __init__(self):
        self.calls: List[tuple] = []
        self.offers: Dict[str, Decimal] = {"SAVE100": Decimal("100"), "SAVE50": Decimal("50"), "ZERO": Decimal("0")}
        self.draft_result: ApiResult | None = None
        self.payment_order_result: ApiResult | None = None
        self.confirm_result: ApiResult | None = None
        self.config_result: ApiResult | None = None

    def calls_of(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]

    def apply_offer(self, user_id, code):
        self.calls.append(("offer", user_id, code))
        if code not in self.offers:
            return ApiResult.failure("Invalid offer code", status_code=400)
        return ApiResult.success(AppliedOffer(offer_code=code, discount_amount=self.offers[code]))

    def get_payment_config(self):
        self.calls.append(("config",))
        return self.config_result or ApiResult.success(
            PaymentConfig(gateway_key="rzp_test_key", display_name="Shop", theme="#3399cc")
        )

    def create_draft_order(self, user_id, address, lines, offer_code=None):
        self.calls.append(("draft", user_id, address, lines, offer_code))
        if self.draft_result:
            return self.draft_result
        amount = sum((l.effective_price * l.quantity for l in lines), Decimal("0"))
        return ApiResult.success(DraftOrder(order_id=42, amount=amount, status="PENDING_PAYMENT"))

    def create_payment_order(self, order_id):
        self.calls.append(("payment_order", order_id))
        return self.payment_order_result or ApiResult.success(
            PaymentOrderHandle(order_id=order_id, gateway_order_id="order_GW1", amount=Decimal("500"))
        )

    def confirm_payment(self, confirmation):
        self.calls.append(("confirm", confirmation))
        return self.confirm_result or ApiResult.success({"status": "PAID"})

    def report_payment_failure(self, order_id, gateway_order_id, reason):
        self.calls.append(("failure", order_id, gateway_order_id, reason))
        return ApiResult.success(None)


# =====================================================
# FAKE PAYMENT WIDGET
# =====================================================
class ScriptedWidget:
    def __init__(self, script: "ScriptedWidgetFactory"):
        self.script = script
        self.handlers = {}

    def on(self, event, handler):
        self.handlers[event] = handler

    def open(self):
        if self.script.on_open:
            self.script.on_open()
        for event in self.script.events:
            if event == EVENT_DISMISS:
                self.handlers[event]()
            else:
                self.handlers[event](self.script.payload)


class ScriptedWidgetFactory:
    """Widget, ktory od razu w open() odpala zaplanowane zdarzenia."""

    def __init__(self, *events, payload=None):
        self.events = list(events)
        self.payload = SUCCESS_PAYLOAD if payload is None else payload
        self.options: List[dict] = []
        self.on_open = None

    def script(self, *events, payload=None):
        self.events = list(events)
        self.payload = SUCCESS_PAYLOAD if payload is None else payload

    def __call__(self, options):
        self.options.append(options)
        return ScriptedWidget(self)


# =====================================================
# FIXTURES
# =====================================================
@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def session():
    return SessionContext(MemoryKeyValueStore())


@pytest.fixture
def notifier():
    return NotificationService()


@pytest.fixture
def guest_repo(store):
    return GuestCartRepo(store)


@pytest.fixture
def pending_repo(store):
    return PendingEditRepo(store)


@pytest.fixture
def cart_client():
    return FakeCartClient()


@pytest.fixture
def checkout_client():
    return FakeCheckoutClient()


@pytest.fixture
def widget():
    return ScriptedWidgetFactory(EVENT_SUCCESS)


@pytest.fixture
def cart_service(session, guest_repo, pending_repo, cart_client, notifier):
    return CartService(session, guest_repo, pending_repo, cart_client, notifier, max_workers=4)


@pytest.fixture
def merge_service(session, guest_repo, cart_client, cart_service, notifier):
    return MergeService(session, guest_repo, cart_client, cart_service, notifier, max_workers=4)


@pytest.fixture
def checkout_service(session, cart_service, checkout_client, widget, notifier):
    return CheckoutService(
        session,
        cart_service,
        checkout_client,
        WidgetLoader(factory=widget),
        notifier,
        gateway_timeout=1,
    )


@pytest.fixture
def storefront(session, cart_service, merge_service, checkout_service, notifier):
    return Storefront(session, cart_service, merge_service, checkout_service, notifier)


@pytest.fixture
def address():
    return {
        "houseNo": "12B",
        "street": "MG Road",
        "landmark": "Near the park",
        "city": "Pune",
        "state": "MH",
        "pincode": "411001",
    }
