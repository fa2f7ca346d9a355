import pytest

from storefront_service.cart import Cart, CartRegistry
from storefront_service.errors import CartNotFound, ProductNotFound

from factories import catalog_product

CLIPPER = catalog_product("a", 80, name="Product A")
SCISSORS = catalog_product("b", 150, name="Product B")


def test_total_of_two_products():
    cart = Cart()
    cart.add(CLIPPER, 2)
    cart.add(SCISSORS)

    assert cart.total == 310
    assert cart.item_count == 3


def test_adding_same_product_increments_quantity():
    cart = Cart()
    cart.add(CLIPPER)

    assert cart.add(CLIPPER, 3) == 4
    assert len(cart.items) == 1


def test_add_rejects_non_positive_quantity():
    with pytest.raises(ValueError):
        Cart().add(CLIPPER, 0)


@pytest.mark.parametrize("quantity", [0, -1, -10])
def test_update_to_non_positive_quantity_removes_item(quantity):
    cart = Cart()
    cart.add(CLIPPER, 2)
    cart.add(SCISSORS)

    cart.update_quantity("a", quantity)

    assert [item.product.id for item in cart.items] == ["b"]
    assert cart.total == 150


def test_update_quantity_sets_value():
    cart = Cart()
    cart.add(CLIPPER)
    cart.update_quantity("a", 5)
    assert cart.items[0].quantity == 5


def test_update_unknown_product_raises():
    with pytest.raises(ProductNotFound):
        Cart().update_quantity("missing", 2)


def test_line_items_snapshot_prices():
    cart = Cart()
    cart.add(CLIPPER, 2)

    items = cart.line_items()

    assert items[0].product.price == 80
    assert items[0].quantity == 2
    assert items[0].line_total == 160


def test_clear_empties_cart():
    cart = Cart()
    cart.add(CLIPPER)
    cart.clear()
    assert cart.is_empty
    assert cart.total == 0


def test_registry_returns_created_cart_and_rejects_unknown_ids():
    registry = CartRegistry()
    cart = registry.create()

    assert registry.get(cart.cart_id) is cart
    registry.discard(cart.cart_id)
    with pytest.raises(CartNotFound):
        registry.get(cart.cart_id)
