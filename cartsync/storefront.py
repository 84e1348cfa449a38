# cartsync/storefront.py
from typing import Any, Dict

from cartsync.domain.schemas import (
    CartView,
    CheckoutOutcome,
    GuestLine,
    MergeOutcome,
    MergeStatus,
    Outcome,
    ShippingAddress,
    SyncOutcome,
)
from cartsync.services.cart_service import CartService
from cartsync.services.checkout_service import CheckoutService
from cartsync.services.merge_service import MergeService
from cartsync.services.notification_service import NotificationService
from cartsync.services.session_service import SessionContext
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


class Storefront:
    """
    Jedno wejscie dla UI: sesja, koszyk, merge i checkout.
    Sam nic nie liczy, tylko deleguje do serwisow we wlasciwej kolejnosci.
    """

    def __init__(
        self,
        session: SessionContext,
        cart: CartService,
        merge: MergeService,
        checkout: CheckoutService,
        notifier: NotificationService,
    ):
        self.session = session
        self.cart = cart
        self.merge = merge
        self.checkout_service = checkout
        self.notifier = notifier

    # =====================================================
    # SESSION
    # =====================================================
    def login(self, user_id: int, token: str | None = None) -> MergeOutcome:
        self.session.start(user_id, token)
        merged = self.merge.merge_if_needed()
        logger.info(f"Guest cart merge on login of user {user_id}: {merged.status.value}")
        if merged.status in (MergeStatus.SKIPPED, MergeStatus.FAILED):
            #przy MERGED/PARTIAL merge sam przeladowal koszyk
            self.cart.load()
        return merged

    def logout(self) -> CartView:
        self.checkout_service.remove_offer()
        self.session.end()
        return self.cart.load()

    # =====================================================
    # CART
    # =====================================================
    @property
    def view(self) -> CartView:
        return self.cart.view

    def load(self) -> CartView:
        return self.cart.load()

    def add_item(self, item: GuestLine | Dict[str, Any], quantity: int = 1) -> Outcome:
        line = item if isinstance(item, GuestLine) else GuestLine.model_validate({"quantity": quantity, **item})
        return self.cart.add_item(line)

    def change_quantity(self, product_id: int, size: str | None, delta: int) -> CartView:
        return self.cart.change_quantity(product_id, size, delta)

    def set_quantity(self, product_id: int, size: str | None, quantity: int) -> CartView:
        return self.cart.set_quantity(product_id, size, quantity)

    def remove_line(self, product_id: int, size: str | None) -> Outcome:
        return self.cart.remove_line(product_id, size)

    def clear(self) -> Outcome:
        return self.cart.clear()

    def sync(self) -> SyncOutcome:
        return self.cart.sync()

    # =====================================================
    # CHECKOUT
    # =====================================================
    def apply_offer(self, code: str) -> Outcome:
        return self.checkout_service.apply_offer(code)

    def remove_offer(self) -> None:
        self.checkout_service.remove_offer()

    def checkout(self, address: ShippingAddress | Dict[str, Any]) -> CheckoutOutcome:
        return self.checkout_service.checkout(address)
