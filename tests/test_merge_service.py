from decimal import Decimal

import pytest

from cartsync.domain.schemas import GuestLine, MergeStatus

from conftest import USER_ID


@pytest.fixture
def guest_cart(guest_repo):
    guest_repo.add_or_increment(GuestLine(product_id=10, unit_price=Decimal("100"), quantity=2))
    guest_repo.add_or_increment(GuestLine(product_id=11, unit_price=Decimal("300"), quantity=1, selected_size="L"))
    return guest_repo


def test_guest_cart_is_merged_after_login(guest_cart, session, merge_service, cart_client, cart_service, notifier):
    cart_client.seed(10, 1, price="100")
    session.start(USER_ID)

    outcome = merge_service.merge_if_needed()

    assert outcome.status == MergeStatus.MERGED
    assert outcome.merged == 2
    assert cart_client.quantity(10) == 3
    assert cart_client.quantity(11, "L") == 1
    assert guest_cart.is_empty()
    assert session.has_merged()
    assert {l.key: l.quantity for l in cart_service.view.lines} == {(10, "Default"): 3, (11, "L"): 1}
    assert notifier.history[-1].message == "2 item(s) added to your cart!"


def test_merge_runs_once_per_session(guest_cart, session, merge_service, cart_client):
    session.start(USER_ID)
    merge_service.merge_if_needed()
    adds = len(cart_client.calls_of("add"))

    guest_cart.add_or_increment(GuestLine(product_id=12, quantity=1))
    outcome = merge_service.merge_if_needed()

    assert outcome.status == MergeStatus.SKIPPED
    assert outcome.reason == "already merged"
    assert len(cart_client.calls_of("add")) == adds


def test_merge_needs_login(guest_cart, merge_service, cart_client):
    outcome = merge_service.merge_if_needed()

    assert outcome.status == MergeStatus.SKIPPED
    assert cart_client.calls == []
    assert not guest_cart.is_empty()


def test_empty_guest_cart_marks_session_merged(session, merge_service, cart_client):
    session.start(USER_ID)

    outcome = merge_service.merge_if_needed()

    assert outcome.status == MergeStatus.SKIPPED
    assert session.has_merged()
    assert cart_client.calls_of("add") == []


def test_concurrent_trigger_is_skipped(guest_cart, session, merge_service, cart_client):
    session.start(USER_ID)
    merge_service._in_progress.acquire()
    try:
        outcome = merge_service.merge_if_needed()
    finally:
        merge_service._in_progress.release()

    assert outcome.status == MergeStatus.SKIPPED
    assert outcome.reason == "merge in progress"
    assert cart_client.calls == []


def test_partial_merge_keeps_only_unmerged_lines(guest_cart, session, merge_service, cart_client, notifier):
    cart_client.fail_add.add(11)
    session.start(USER_ID)

    outcome = merge_service.merge_if_needed()

    assert outcome.status == MergeStatus.PARTIAL
    assert (outcome.merged, outcome.failed) == (1, 1)
    assert not session.has_merged()
    assert [l.key for l in guest_cart.load()] == [(11, "L")]
    assert notifier.history[-1].message == "Some items failed to merge. Please check your cart."

    cart_client.fail_add.clear()
    retry = merge_service.merge_if_needed()

    assert retry.status == MergeStatus.MERGED
    assert cart_client.quantity(10) == 2
    assert cart_client.quantity(11, "L") == 1
    assert session.has_merged()


def test_failed_merge_leaves_guest_cart_untouched(guest_cart, session, merge_service, cart_client):
    cart_client.fail_add.update({10, 11})
    session.start(USER_ID)

    outcome = merge_service.merge_if_needed()

    assert outcome.status == MergeStatus.FAILED
    assert outcome.failed == 2
    assert not session.has_merged()
    assert {l.key: l.quantity for l in guest_cart.load()} == {(10, "Default"): 2, (11, "L"): 1}
