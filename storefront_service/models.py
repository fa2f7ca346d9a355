"""
models.py — Data Models for the Storefront

This module defines the data structures used for catalog, cart, checkout, orders,
admin configuration and sales statistics. It uses Pydantic models to ensure type
safety and validation, both for incoming API payloads and for rows read back from
the remote table store.

Models:
    - Product / ProductCreate / ProductUpdate: Catalog entries and admin writes.
    - ProductSnapshot / LineItem: Versioned line-item schema stored inside orders.
    - CheckoutForm: Customer data submitted at checkout.
    - Order / NewOrder / OrderStatus: Persisted orders and their lifecycle.
    - AdminUser / AdminConfig / AdminConfigUpdate / LoginRequest: Admin side.
    - ProductSales / SalesRanking / DashboardStats / Analytics: Sales statistics.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional
import uuid

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator

CATEGORIES = ["ماكينات", "مقصات", "مستحضرات", "مستهلكات", "إكسسوارات"]

LINE_ITEM_SCHEMA_VERSION = 1


def _check_category(value):
    if value is not None and value not in CATEGORIES:
        raise ValueError(f"Unknown category '{value}'")
    return value


Category = Annotated[str, AfterValidator(_check_category)]


# --- Catalog ---

class ProductBase(BaseModel):
    """
    Common product fields.

    Attributes:
        name (str): Display name.
        price (float): Unit price, must not be negative.
        image (str): Image URL.
        description (str): Free-text description.
        category (str): One of CATEGORIES.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    image: str = ""
    description: str = ""
    category: Category


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    """Partial product update. The identifier is immutable and therefore not accepted."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Category] = None


class Product(ProductBase):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Line items (stored as JSON inside orders.items) ---

class ProductSnapshot(BaseModel):
    """
    Copy of the product as it was when the order was placed.
    The price is captured here so later catalog edits never change order totals.
    """
    id: str
    name: str
    price: float = Field(..., ge=0)
    category: str = ""
    image: str = ""

    @classmethod
    def of(cls, product: Product) -> "ProductSnapshot":
        return cls(id=product.id, name=product.name, price=product.price,
                   category=product.category, image=product.image)


class LineItem(BaseModel):
    """
    Represents a single product line in an order.

    Attributes:
        schema_version (int): Version of the line-item layout. Rows written before
            versioning carry no version and are read as version 1.
        product (ProductSnapshot): Product data captured at order time.
        quantity (int): Ordered quantity. Must be greater than zero.
    """
    schema_version: Literal[1] = LINE_ITEM_SCHEMA_VERSION
    product: ProductSnapshot
    quantity: int = Field(..., gt=0)

    @property
    def line_total(self) -> float:
        return self.quantity * self.product.price


# --- Checkout & orders ---

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CheckoutForm(BaseModel):
    """Customer data entered on the checkout form."""
    model_config = ConfigDict(str_strip_whitespace=True)

    customer_name: str = Field(..., min_length=1)
    shop_name: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    notes: str = ""


class NewOrder(BaseModel):
    """Order row as written at checkout, before the store assigns id and timestamp."""
    order_number: str = Field(..., pattern=r"^\d{5}$")
    customer_name: str
    shop_name: str
    city: str
    notes: str = ""
    items: List[LineItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING


class Order(NewOrder):
    id: str
    created_at: datetime
    admin_notes: Optional[str] = None

    @field_validator("notes", mode="before")
    @classmethod
    def _none_notes(cls, value):
        return value or ""


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    note: str = ""


class CheckoutConfirmation(BaseModel):
    """
    Result of a successful checkout.

    Attributes:
        order (Order): The persisted order.
        whatsapp_url (str): App deep link (whatsapp://) with the order summary.
        whatsapp_web_url (str): wa.me fallback link for clients without the app.
    """
    order: Order
    whatsapp_url: str
    whatsapp_web_url: str


class OrderCreatedEvent(BaseModel):
    """Event published after an order was persisted. Consumed by notification handlers."""
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: Literal["order.created"] = "order.created"
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    order: Order


# --- Cart API payloads ---

class CartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)


class CartQuantityUpdate(BaseModel):
    # <= 0 removes the item
    quantity: int


class CartLine(BaseModel):
    product: Product
    quantity: int
    line_total: float


class CartView(BaseModel):
    cart_id: str
    items: List[CartLine]
    total: float
    item_count: int


# --- Admin ---

class AdminUser(BaseModel):
    id: str
    email: str
    password_hash: str
    created_at: Optional[datetime] = None


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    token: str
    email: str
    expires_at: datetime


class AdminConfig(BaseModel):
    id: str
    whatsapp_number: str
    notification_email: Optional[str] = None
    updated_at: Optional[datetime] = None


class AdminConfigUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    whatsapp_number: Optional[str] = Field(None, min_length=5)
    notification_email: Optional[EmailStr] = None

    @field_validator("whatsapp_number")
    @classmethod
    def _number_cannot_be_cleared(cls, value):
        if value is None:
            raise ValueError("whatsapp_number cannot be removed")
        return value

    @field_validator("notification_email", mode="before")
    @classmethod
    def _empty_email_is_none(cls, value):
        # An empty field in the settings form switches email notifications off
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ImageUploadResponse(BaseModel):
    url: str


# --- Statistics ---

class ProductSales(BaseModel):
    product: Product
    units_sold: int
    revenue: float


class SalesRanking(BaseModel):
    top_sellers: List[ProductSales]
    least_sellers: List[ProductSales]


class DashboardStats(BaseModel):
    total_orders: int
    total_revenue: float
    avg_order_value: float
    pending_orders: int
    processing_orders: int
    completed_orders: int
    cancelled_orders: int
    top_sellers: List[ProductSales]
    least_sellers: List[ProductSales]


class CategoryPerformance(BaseModel):
    category: str
    units_sold: int
    revenue: float


class CustomerSummary(BaseModel):
    customer_name: str
    orders: int
    revenue: float
    last_order: datetime


class Analytics(BaseModel):
    total_revenue: float
    total_orders: int
    completed_orders: int
    conversion_rate: float
    monthly_revenue: Dict[str, float]
    categories: List[CategoryPerformance]
    top_customers: List[CustomerSummary]
    top_cities: Dict[str, float]
