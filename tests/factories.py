from datetime import datetime, timezone
import itertools

import httpx

from storefront_service.models import LineItem, Order, OrderStatus, Product, ProductSnapshot

_ids = itertools.count(1)


def catalog_product(product_id, price, name=None, category="مقصات"):
    return Product(id=product_id, name=name or f"Produkt {product_id}", price=price, category=category)


def order_of(lines, status=OrderStatus.COMPLETED, customer="أحمد", city="كفر قاسم", created_at=None):
    """lines: list of (Product, quantity); prices are snapshotted from the product."""
    items = [LineItem(product=ProductSnapshot.of(product), quantity=qty) for product, qty in lines]
    n = next(_ids)
    return Order(
        id=f"order-{n}",
        order_number=str(10000 + n),
        customer_name=customer,
        shop_name="صالون النخبة",
        city=city,
        items=items,
        total=sum(item.line_total for item in items),
        status=status,
        created_at=created_at or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


class FakeEmailClient:
    """Records sends; fails the first `failures` calls with a 500."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0
        self.sent = []

    def send_order_email(self, order, admin_email, subject, html):
        self.calls += 1
        if self.calls <= self.failures:
            request = httpx.Request("POST", "http://email.test/send-order-email")
            response = httpx.Response(500, request=request)
            raise httpx.HTTPStatusError("provider error", request=request, response=response)
        self.sent.append({"order_number": order.order_number, "to": admin_email,
                          "subject": subject, "html": html})
        return {"id": f"msg_{self.calls}"}


class RecordingDispatcher:
    def __init__(self, error=None):
        self.error = error
        self.events = []

    def dispatch(self, event):
        if self.error:
            raise self.error
        self.events.append(event)
