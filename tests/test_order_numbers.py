import random

import pytest

from storefront_service.errors import AllocationFailed, DuplicateOrderNumber, RemoteStoreError
from storefront_service.models import CheckoutForm, LineItem, NewOrder, ProductSnapshot
from storefront_service.order_numbers import (
    ORDER_NUMBER_MAX,
    ORDER_NUMBER_MIN,
    allocate_order_number,
    generate_order_number,
    persist_order_with_unique_number,
)


class NumberStore:
    """Order-number side of the store client, in memory."""

    def __init__(self, existing=(), failures=0, conflicts=0):
        self.numbers = set(existing)
        self.failures = failures
        self.conflicts = conflicts
        self.checks = 0
        self.inserted = []

    def order_number_exists(self, number):
        self.checks += 1
        if self.failures:
            self.failures -= 1
            raise RemoteStoreError("connection reset")
        return number in self.numbers

    def insert_order(self, order):
        if self.conflicts:
            self.conflicts -= 1
            raise DuplicateOrderNumber(order.order_number)
        self.numbers.add(order.order_number)
        self.inserted.append(order)
        return order


def build_order(number):
    item = LineItem(product=ProductSnapshot(id="p1", name="مقص", price=80), quantity=1)
    form = CheckoutForm(customer_name="أحمد", shop_name="صالون", city="كفر قاسم")
    return NewOrder(order_number=number, items=[item], total=80, **form.model_dump())


def test_generated_numbers_are_five_digit_strings():
    rng = random.Random(7)
    for _ in range(1000):
        number = generate_order_number(rng)
        assert len(number) == 5 and number.isdigit()
        assert ORDER_NUMBER_MIN <= int(number) <= ORDER_NUMBER_MAX


def test_allocate_skips_numbers_already_taken():
    taken = generate_order_number(random.Random(3))
    store = NumberStore(existing={taken})

    number = allocate_order_number(store, rng=random.Random(3))

    assert number != taken
    assert store.checks == 2


def test_hundred_allocations_against_empty_store_are_unique():
    store = NumberStore()
    numbers = []
    for _ in range(100):
        number = allocate_order_number(store)
        store.numbers.add(number)
        numbers.append(number)

    assert len(set(numbers)) == 100
    assert all(len(n) == 5 and ORDER_NUMBER_MIN <= int(n) <= ORDER_NUMBER_MAX for n in numbers)


def test_transient_store_error_is_retried():
    store = NumberStore(failures=2)

    number = allocate_order_number(store, max_attempts=5)

    assert store.checks == 3
    assert number.isdigit()


def test_allocation_fails_after_max_attempts():
    store = NumberStore(failures=100)

    with pytest.raises(AllocationFailed) as info:
        allocate_order_number(store, max_attempts=4)

    assert info.value.attempts == 4
    assert store.checks == 4


def test_persist_retries_with_new_number_on_conflict():
    store = NumberStore(conflicts=2)

    order = persist_order_with_unique_number(store, build_order, max_attempts=5)

    assert store.inserted == [order]
    assert order.order_number in store.numbers


def test_persist_gives_up_when_every_insert_conflicts():
    store = NumberStore(conflicts=100)

    with pytest.raises(AllocationFailed):
        persist_order_with_unique_number(store, build_order, max_attempts=3)
    assert store.inserted == []


def test_persist_propagates_other_store_errors():
    class BrokenStore(NumberStore):
        def insert_order(self, order):
            raise RemoteStoreError("HTTP 500")

    with pytest.raises(RemoteStoreError):
        persist_order_with_unique_number(BrokenStore(), build_order)


def test_store_unique_constraint_surfaces_as_duplicate(store):
    store.insert_order(build_order("12345"))

    with pytest.raises(DuplicateOrderNumber):
        store.insert_order(build_order("12345"))
    assert store.order_number_exists("12345")
    assert not store.order_number_exists("54321")
