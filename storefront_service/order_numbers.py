"""
order_numbers.py — Allocation of Human-Readable Order Numbers

Order numbers are random 5-digit strings in [10000, 99999], separate from the
internal record id. The pre-insert existence check keeps collisions rare; the
store's unique constraint on `orders.order_number` is what actually guarantees
uniqueness, so persisting retries with a fresh number when the insert conflicts.
"""

import logging
import random
from typing import Callable, Optional

from .config import ORDER_NUMBER_MAX_ATTEMPTS
from .errors import AllocationFailed, DuplicateOrderNumber, RemoteStoreError
from .models import NewOrder, Order

log = logging.getLogger(__name__)

ORDER_NUMBER_MIN = 10000
ORDER_NUMBER_MAX = 99999


def generate_order_number(rng: Optional[random.Random] = None) -> str:
    """Draws a uniformly random 5-digit order number."""
    rng = rng or random
    return str(rng.randint(ORDER_NUMBER_MIN, ORDER_NUMBER_MAX))


def allocate_order_number(store, max_attempts: int = ORDER_NUMBER_MAX_ATTEMPTS,
                          rng: Optional[random.Random] = None) -> str:
    """
    Returns an order number that no existing order uses at the time of the call.

    A store error during the existence check is not fatal: the number is simply
    not confirmed unique and the next attempt draws a new one.

    Args:
        store: Object providing `order_number_exists(number) -> bool`.
        max_attempts (int): Upper bound on draws before giving up.
        rng (random.Random, optional): Source of randomness (tests pass a seeded one).

    Raises:
        AllocationFailed: If no free number was confirmed within `max_attempts`.
    """
    for attempt in range(1, max_attempts + 1):
        candidate = generate_order_number(rng)
        try:
            if not store.order_number_exists(candidate):
                return candidate
            log.info(f"Bestellnummer {candidate} bereits vergeben (Versuch {attempt}/{max_attempts}).")
        except RemoteStoreError as e:
            log.warning(f"Prüfung der Bestellnummer {candidate} fehlgeschlagen "
                        f"(Versuch {attempt}/{max_attempts}): {e}")

    log.error(f"Keine freie Bestellnummer nach {max_attempts} Versuchen.")
    raise AllocationFailed(max_attempts)


def persist_order_with_unique_number(store, build_order: Callable[[str], NewOrder],
                                     max_attempts: int = ORDER_NUMBER_MAX_ATTEMPTS,
                                     rng: Optional[random.Random] = None) -> Order:
    """
    Allocates a number, inserts the order and retries with a new number on conflict.

    Args:
        store: Store client (`order_number_exists`, `insert_order`).
        build_order: Builds the order row for a given order number.

    Returns:
        Order: The persisted order.

    Raises:
        AllocationFailed: If every attempt hit an existing number.
        RemoteStoreError: If the insert fails for any reason other than a number conflict.
    """
    for attempt in range(1, max_attempts + 1):
        order_number = allocate_order_number(store, max_attempts, rng)
        try:
            return store.insert_order(build_order(order_number))
        except DuplicateOrderNumber:
            # Another checkout took the number between check and insert
            log.warning(f"[Order: {order_number}] Konflikt beim Speichern "
                        f"(Versuch {attempt}/{max_attempts}), neue Nummer wird vergeben.")

    raise AllocationFailed(max_attempts)
