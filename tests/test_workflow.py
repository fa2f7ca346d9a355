import threading

import pika
import pytest

from storefront_service.cart import Cart
from storefront_service.errors import EmptyCartError, OrderNotFound, RemoteStoreError
from storefront_service.models import AdminConfigUpdate, CheckoutForm, OrderStatus, ProductUpdate
from storefront_service.workflow import change_order_status, process_checkout

from factories import RecordingDispatcher

FORM = CheckoutForm(customer_name=" أحمد ", shop_name="صالون النخبة", city="كفر قاسم", notes="")


class CountingStore:
    """Fails loudly if checkout touches the store."""

    def __getattr__(self, name):
        raise AssertionError(f"store.{name} must not be called")


def test_checkout_persists_pending_order_with_snapshot_total(store, make_product):
    clipper = make_product(name="ماكينة", price=150, category="ماكينات")
    scissors = make_product(price=80)
    cart = Cart()
    cart.add(scissors, 2)
    cart.add(clipper)
    dispatcher = RecordingDispatcher()

    confirmation = process_checkout(cart, FORM, store, dispatcher)

    order = confirmation.order
    assert order.status == OrderStatus.PENDING
    assert order.total == 310 == sum(i.quantity * i.product.price for i in order.items)
    assert order.customer_name == "أحمد"
    assert len(order.order_number) == 5
    assert store.get_order(order.id) == order
    assert [e.order.id for e in dispatcher.events] == [order.id]
    assert cart.is_empty


def test_later_price_change_does_not_touch_order(store, make_product):
    scissors = make_product(price=80)
    cart = Cart()
    cart.add(scissors, 2)
    order = process_checkout(cart, FORM, store, RecordingDispatcher()).order

    store.update_product(scissors.id, ProductUpdate(price=95))

    stored = store.get_order(order.id)
    assert stored.total == 160
    assert stored.items[0].product.price == 80


def test_empty_cart_is_rejected_before_any_store_call():
    dispatcher = RecordingDispatcher()
    with pytest.raises(EmptyCartError):
        process_checkout(Cart(), FORM, CountingStore(), dispatcher)
    assert dispatcher.events == []


def test_failed_persistence_keeps_cart(store, make_product, monkeypatch):
    cart = Cart()
    cart.add(make_product(), 1)

    def broken_insert(order):
        raise RemoteStoreError("HTTP 500")
    monkeypatch.setattr(store, "insert_order", broken_insert)
    dispatcher = RecordingDispatcher()

    with pytest.raises(RemoteStoreError):
        process_checkout(cart, FORM, store, dispatcher)

    assert cart.item_count == 1
    assert dispatcher.events == []


def test_dispatch_failure_does_not_roll_back_order(store, make_product):
    cart = Cart()
    cart.add(make_product(), 1)
    dispatcher = RecordingDispatcher(error=pika.exceptions.AMQPConnectionError("broker down"))

    confirmation = process_checkout(cart, FORM, store, dispatcher)

    assert store.get_order(confirmation.order.id) is not None
    assert cart.is_empty


def test_confirmation_links_use_configured_number(store, make_product):
    store.save_admin_config(AdminConfigUpdate(whatsapp_number="+972 52 000 1111"))
    cart = Cart()
    cart.add(make_product(), 1)

    confirmation = process_checkout(cart, FORM, store, RecordingDispatcher(),
                                    user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)")

    assert confirmation.whatsapp_url.startswith("whatsapp://send?phone=972520001111&text=")
    assert confirmation.whatsapp_web_url.startswith("https://wa.me/972520001111?text=")


def test_status_changes_are_reversible_and_keep_note(store, make_product):
    cart = Cart()
    cart.add(make_product(), 1)
    order = process_checkout(cart, FORM, store, RecordingDispatcher()).order

    cancelled = change_order_status(store, order.id, OrderStatus.CANCELLED, "العميل ألغى")
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.admin_notes == "العميل ألغى"

    restored = change_order_status(store, order.id, OrderStatus.COMPLETED)
    assert restored.status == OrderStatus.COMPLETED
    assert restored.admin_notes == ""


def test_status_change_of_unknown_order(store):
    with pytest.raises(OrderNotFound):
        change_order_status(store, "missing", OrderStatus.COMPLETED)


def test_concurrent_checkouts_of_one_cart_create_one_order(store, make_product, monkeypatch):
    cart = Cart()
    cart.add(make_product(), 1)
    inside_insert = threading.Event()
    release_insert = threading.Event()
    real_insert = store.insert_order

    def slow_insert(order):
        inside_insert.set()
        release_insert.wait(timeout=5)
        return real_insert(order)
    monkeypatch.setattr(store, "insert_order", slow_insert)

    outcomes = []

    def checkout():
        try:
            outcomes.append(process_checkout(cart, FORM, store, RecordingDispatcher()))
        except EmptyCartError as e:
            outcomes.append(e)

    first = threading.Thread(target=checkout)
    second = threading.Thread(target=checkout)
    first.start()
    assert inside_insert.wait(timeout=5)
    second.start()
    release_insert.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert len(outcomes) == 2
    assert sum(isinstance(outcome, EmptyCartError) for outcome in outcomes) == 1
    assert len(store.list_orders()) == 1
    assert cart.is_empty
