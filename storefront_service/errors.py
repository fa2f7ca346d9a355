"""
errors.py — Exception Types of the Storefront Service

Clients and workflow functions raise these; the API layer in main.py maps
them to HTTP status codes.
"""


class StorefrontError(Exception):
    """Base class for all service errors."""


class RemoteStoreError(StorefrontError):
    """The remote table store could not be reached or rejected the request."""


class DuplicateOrderNumber(RemoteStoreError):
    """Insert violated the unique constraint on orders.order_number."""


class AllocationFailed(StorefrontError):
    """No unique order number could be allocated within the attempt limit."""

    def __init__(self, attempts: int):
        super().__init__(f"Could not allocate a unique order number after {attempts} attempts")
        self.attempts = attempts


class EmptyCartError(StorefrontError):
    """Checkout was attempted with an empty cart."""


class CartNotFound(StorefrontError):
    pass


class ProductNotFound(StorefrontError):
    pass


class OrderNotFound(StorefrontError):
    pass


class AuthenticationError(StorefrontError):
    """Invalid credentials or an invalid/expired admin session."""


class NotificationError(StorefrontError):
    """A notification handler gave up after its retries."""


class InvalidImage(StorefrontError):
    """Uploaded product image is empty, too large or of an unsupported type."""
