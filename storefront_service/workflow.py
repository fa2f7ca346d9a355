"""
workflow.py — Core Order Logic

This module contains the checkout workflow and the admin status changes.

Checkout Overview:
1. Reject an empty cart before touching the store
2. Allocate an order number and persist the order as `pending`
   (retrying with a new number if the store reports a number conflict)
3. Hand an order-created event to the notification dispatcher (best effort)
4. Clear the cart and return the confirmation with the WhatsApp links
"""

import logging
import random
from typing import Optional

import pika

from .cart import Cart
from .config import ORDER_NUMBER_MAX_ATTEMPTS
from .errors import EmptyCartError, OrderNotFound, RemoteStoreError
from .models import CheckoutConfirmation, CheckoutForm, NewOrder, Order, OrderCreatedEvent, OrderStatus
from .notifications import build_whatsapp_message, preferred_whatsapp_url, whatsapp_links, whatsapp_number
from .order_numbers import persist_order_with_unique_number

log = logging.getLogger(__name__)


def process_checkout(cart: Cart, form: CheckoutForm, store, dispatcher,
                     user_agent: Optional[str] = None,
                     max_attempts: int = ORDER_NUMBER_MAX_ATTEMPTS,
                     rng: Optional[random.Random] = None) -> CheckoutConfirmation:
    """
    Executes the checkout for one cart.

    Args:
        cart (Cart): The customer's cart. Cleared only after the order is persisted.
        form (CheckoutForm): Validated customer data.
        store: Store client used for order numbers, persistence and admin config.
        dispatcher: Object with `dispatch(event)` (background or queue based).
        user_agent (str, optional): Client user agent, selects the WhatsApp link flavour.

    Returns:
        CheckoutConfirmation: The persisted order and the WhatsApp links.

    Raises:
        EmptyCartError: If the cart has no items. Nothing is sent to the store.
        AllocationFailed: If no unique order number could be allocated.
        RemoteStoreError: If persisting the order failed. The cart is left untouched.

    Notification failures are logged only; they never undo the persisted order.
    """
    # Held until the cart is cleared: a concurrent second checkout waits, then finds it empty
    with cart.lock:
        if cart.is_empty:
            log.warning(f"Checkout für leeren Warenkorb {cart.cart_id} abgelehnt.")
            raise EmptyCartError("Cart is empty")

        items = cart.line_items()
        total = sum(item.line_total for item in items)

        def build_order(order_number: str) -> NewOrder:
            return NewOrder(
                order_number=order_number,
                customer_name=form.customer_name,
                shop_name=form.shop_name,
                city=form.city,
                notes=form.notes,
                items=items,
                total=total,
                status=OrderStatus.PENDING,
            )

        log.info(f"Checkout gestartet: Warenkorb {cart.cart_id}, {len(items)} Positionen, Summe {total}.")
        order = persist_order_with_unique_number(store, build_order, max_attempts, rng)
        log_prefix = f"[Order: {order.order_number}]"
        log.info(f"{log_prefix} Bestellung gespeichert (ID: {order.id}).")

        try:
            dispatcher.dispatch(OrderCreatedEvent(order=order))
        except (pika.exceptions.AMQPError, OSError) as e:
            log.error(f"{log_prefix} Benachrichtigung konnte nicht eingeplant werden: {e}")

        cart.clear()

    try:
        config = store.get_admin_config()
    except RemoteStoreError as e:
        log.warning(f"{log_prefix} Admin-Konfiguration nicht lesbar, nutze Standardnummer: {e}")
        config = None

    phone = whatsapp_number(config)
    message = build_whatsapp_message(order)
    _, web_url = whatsapp_links(phone, message)
    return CheckoutConfirmation(
        order=order,
        whatsapp_url=preferred_whatsapp_url(phone, message, user_agent),
        whatsapp_web_url=web_url,
    )


def change_order_status(store, order_id: str, new_status: OrderStatus, note: str = "") -> Order:
    """
    Sets a new status and admin note on an order.

    Every status can be reached from every other one; admins may revert
    completed or cancelled orders. Statistics are computed from the current
    status, so a revert is reflected immediately.

    Raises:
        OrderNotFound: If no order has this id.
    """
    current = store.get_order(order_id)
    if current is None:
        raise OrderNotFound(order_id)

    updated = store.update_order_status(order_id, new_status, note)
    log.info(f"[Order: {updated.order_number}] Status geändert: {current.status.value} → {new_status.value}"
             + (f" (Notiz: {note})" if note else ""))
    return updated
