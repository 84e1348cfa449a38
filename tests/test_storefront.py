from cartsync.data.kv_store import MemoryKeyValueStore
from cartsync.domain.schemas import MergeStatus
from cartsync.main import create_storefront
from cartsync.services.cart_client import CartClient
from cartsync.storefront import Storefront

from conftest import USER_ID


def test_login_merges_guest_cart_and_logout_returns_to_guest(storefront, cart_client, session):
    storefront.add_item({"productId": 5, "productName": "Shirt", "price": 499, "selectedSize": "M"}, quantity=2)
    assert storefront.view.item_count == 2

    merged = storefront.login(USER_ID, token="jwt")

    assert merged.status == MergeStatus.MERGED
    assert cart_client.quantity(5, "M") == 2
    assert storefront.view.authenticated
    assert session.token() == "jwt"

    guest_view = storefront.logout()

    assert not guest_view.authenticated
    assert guest_view.is_empty
    assert session.has_merged()


def test_second_login_in_same_session_does_not_merge_again(storefront, cart_client, guest_repo):
    storefront.add_item({"productId": 5, "price": 499, "selectedSize": "M"}, quantity=2)
    first = storefront.login(USER_ID)
    storefront.logout()

    storefront.add_item({"productId": 6, "price": 100, "selectedSize": "S"})
    second = storefront.login(USER_ID)

    assert first.status == MergeStatus.MERGED
    assert second.status == MergeStatus.SKIPPED
    assert len(cart_client.calls_of("add")) == 1
    assert cart_client.quantity(6, "S") is None
    assert [l.key for l in guest_repo.load()] == [(6, "S")]


def test_login_without_guest_cart_loads_server_cart(storefront, cart_client):
    cart_client.seed(1, 3)

    merged = storefront.login(USER_ID)

    assert merged.status == MergeStatus.SKIPPED
    assert storefront.view.find((1, "Default")).quantity == 3


def test_logout_drops_applied_offer(storefront):
    storefront.login(USER_ID)
    storefront.apply_offer("SAVE100")

    storefront.logout()

    assert storefront.checkout_service.applied_offer is None


def test_create_storefront_wires_shared_session():
    store = MemoryKeyValueStore()
    storefront = create_storefront(store=store, base_url="http://api.test")

    assert isinstance(storefront, Storefront)
    assert isinstance(storefront.cart.cart_client, CartClient)
    assert storefront.cart.cart_client.base_url == "http://api.test"
    assert storefront.merge.session is storefront.session
    assert storefront.checkout_service.session is storefront.session

    storefront.session.start(USER_ID, token="jwt")
    assert storefront.cart.cart_client._headers()["Authorization"] == "Bearer jwt"


def test_guest_cart_survives_new_storefront_on_same_store():
    store = MemoryKeyValueStore()
    first = create_storefront(store=store, base_url="http://api.test")
    first.add_item({"productId": 5, "price": 100})

    second = create_storefront(store=store, base_url="http://api.test")

    assert second.load().item_count == 1
