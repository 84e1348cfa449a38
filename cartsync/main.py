# cartsync/main.py
from cartsync.data.kv_store import KeyValueStore, MemoryKeyValueStore, build_store
from cartsync.repos.guest_cart_repo import GuestCartRepo
from cartsync.repos.pending_edit_repo import PendingEditRepo
from cartsync.services.cart_client import CartClient
from cartsync.services.cart_service import CartService
from cartsync.services.checkout_client import CheckoutClient
from cartsync.services.checkout_service import CheckoutService
from cartsync.services.merge_service import MergeService
from cartsync.services.notification_service import NotificationService
from cartsync.services.payment_gateway import WidgetFactory, WidgetLoader
from cartsync.services.session_service import SessionContext
from cartsync.storefront import Storefront
from cartsync.utils.settings import API_BASE_URL, MAX_CONCURRENT_REQUESTS, PAYMENT_WIDGET_TIMEOUT_SECONDS
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


def create_storefront(
    store: KeyValueStore | None = None,
    session_store: KeyValueStore | None = None,
    base_url: str | None = None,
    widget_factory: WidgetFactory | None = None,
    notifier: NotificationService | None = None,
) -> Storefront:
    """Sklada caly storefront z ustawien (.env) albo podanych zaleznosci."""
    store = store or build_store()
    # flaga merge zyje tyle co sesja, nie trafia do trwalego store'a
    session = SessionContext(session_store or MemoryKeyValueStore())
    notifier = notifier or NotificationService()

    base_url = base_url or API_BASE_URL
    cart_client = CartClient(base_url, token_provider=session.token)
    checkout_client = CheckoutClient(base_url, token_provider=session.token)

    guest_repo = GuestCartRepo(store)
    cart = CartService(
        session,
        guest_repo,
        PendingEditRepo(store),
        cart_client,
        notifier,
        max_workers=MAX_CONCURRENT_REQUESTS,
    )
    merge = MergeService(
        session,
        guest_repo,
        cart_client,
        cart,
        notifier,
        max_workers=MAX_CONCURRENT_REQUESTS,
    )
    checkout = CheckoutService(
        session,
        cart,
        checkout_client,
        WidgetLoader(factory=widget_factory),
        notifier,
        gateway_timeout=PAYMENT_WIDGET_TIMEOUT_SECONDS,
    )

    logger.info(f"Storefront ready (api={base_url})")
    return Storefront(session, cart, merge, checkout, notifier)


if __name__ == "__main__":
    storefront = create_storefront()
    view = storefront.load()
    logger.info(f"Guest cart: {view.item_count} item(s), subtotal {view.subtotal}")
