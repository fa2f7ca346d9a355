"""
cart.py — In-Memory Shopping Carts

A cart maps product id → (product, quantity) and keeps insertion order.
Carts live only in the service's memory; the registry hands them out by an
opaque cart id that the client keeps for its session.
"""

from dataclasses import dataclass
import logging
import threading
from typing import Dict, List, Optional
import uuid

from .errors import CartNotFound, ProductNotFound
from .models import CartLine, CartView, LineItem, Product, ProductSnapshot

log = logging.getLogger(__name__)


@dataclass
class CartItem:
    product: Product
    quantity: int

    @property
    def line_total(self) -> float:
        return self.product.price * self.quantity


class Cart:
    """
    One customer's cart.

    `lock` is re-entrant: checkout holds it from the empty check until the cart
    is cleared, so a double-submitted checkout sees an empty cart.
    """
    def __init__(self, cart_id: Optional[str] = None):
        self.cart_id = cart_id or str(uuid.uuid4())
        self._items: Dict[str, CartItem] = {}
        self.lock = threading.RLock()

    def add(self, product: Product, quantity: int = 1) -> int:
        """Adds `quantity` units of a product and returns the new quantity for it."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        with self.lock:
            item = self._items.get(product.id)
            if item:
                item.quantity += quantity
            else:
                item = self._items[product.id] = CartItem(product=product, quantity=quantity)
            return item.quantity

    def update_quantity(self, product_id: str, quantity: int):
        """
        Sets the quantity of a product already in the cart.
        Zero or a negative quantity removes the item instead.
        """
        with self.lock:
            if quantity <= 0:
                self.remove(product_id)
                return
            if product_id not in self._items:
                raise ProductNotFound(product_id)
            self._items[product_id].quantity = quantity

    def remove(self, product_id: str):
        with self.lock:
            self._items.pop(product_id, None)

    def clear(self):
        with self.lock:
            self._items.clear()

    @property
    def items(self) -> List[CartItem]:
        return list(self._items.values())

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def total(self) -> float:
        return sum(item.line_total for item in self._items.values())

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items.values())

    def line_items(self) -> List[LineItem]:
        """Snapshots the cart into order line items, capturing current prices."""
        return [LineItem(product=ProductSnapshot.of(item.product), quantity=item.quantity)
                for item in self._items.values()]

    def view(self) -> CartView:
        return CartView(
            cart_id=self.cart_id,
            items=[CartLine(product=i.product, quantity=i.quantity, line_total=i.line_total)
                   for i in self._items.values()],
            total=self.total,
            item_count=self.item_count,
        )


class CartRegistry:
    """Thread-safe holder of all active carts."""

    def __init__(self):
        self._carts: Dict[str, Cart] = {}
        self._lock = threading.Lock()

    def create(self) -> Cart:
        cart = Cart()
        with self._lock:
            self._carts[cart.cart_id] = cart
        log.info(f"Neuer Warenkorb angelegt: {cart.cart_id}")
        return cart

    def get(self, cart_id: str) -> Cart:
        with self._lock:
            cart = self._carts.get(cart_id)
        if cart is None:
            raise CartNotFound(cart_id)
        return cart

    def discard(self, cart_id: str):
        with self._lock:
            self._carts.pop(cart_id, None)

    def __len__(self):
        with self._lock:
            return len(self._carts)
