"""
main.py — FastAPI Entry Point for the Storefront Service

This module provides the REST API of the barber-supplies storefront.

Responsibilities:
    • Catalog with category filter
    • Carts and checkout (order persistence + merchant notifications)
    • Admin login/logout with server-side sessions
    • Admin order management, product management and image upload, settings and statistics
    • Start of the notification queue listener when RabbitMQ transport is enabled
    • System health information
"""

import threading
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from .auth import AdminSession, SessionManager, authenticate
from .cart import CartRegistry
from .clients import EmailClient, NotificationPublisher, StorageClient, StoreClient, start_notification_listener
from .config import MAX_IMAGE_BYTES, NOTIFICATION_LISTENER, NOTIFICATION_TRANSPORT
from .errors import (
    AllocationFailed,
    AuthenticationError,
    CartNotFound,
    EmptyCartError,
    InvalidImage,
    OrderNotFound,
    ProductNotFound,
    RemoteStoreError,
    StorefrontError,
)
from .logging_config import get_logger, setup_logging
from .models import (
    CATEGORIES,
    AdminConfig,
    AdminConfigUpdate,
    Analytics,
    CartItemRequest,
    CartQuantityUpdate,
    CartView,
    CheckoutConfirmation,
    CheckoutForm,
    DashboardStats,
    ImageUploadResponse,
    LoginRequest,
    LoginResponse,
    Order,
    Product,
    ProductCreate,
    ProductUpdate,
    StatusUpdateRequest,
)
from .notifications import BackgroundDispatcher, NotificationService, QueueDispatcher
from .sales import advanced_analytics, dashboard_stats
from .workflow import change_order_status, process_checkout

# Initialization
# Configure logging and initialize FastAPI app
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="Barber Supplies Storefront")

carts = CartRegistry()
sessions = SessionManager()
_store: Optional[StoreClient] = None
_email_client: Optional[EmailClient] = None
_storage: Optional[StorageClient] = None
_publisher: Optional[NotificationPublisher] = None


# Dependencies
def get_store() -> StoreClient:
    global _store
    if _store is None:
        _store = StoreClient()
    return _store


def get_storage() -> StorageClient:
    global _storage
    if _storage is None:
        _storage = StorageClient()
    return _storage


def get_email_client() -> EmailClient:
    global _email_client
    if _email_client is None:
        _email_client = EmailClient()
    return _email_client


def get_publisher() -> NotificationPublisher:
    global _publisher
    if _publisher is None:
        _publisher = NotificationPublisher()
    return _publisher


def get_carts() -> CartRegistry:
    return carts


def get_sessions() -> SessionManager:
    return sessions


def get_notification_service(store=Depends(get_store),
                             email_client=Depends(get_email_client)) -> NotificationService:
    return NotificationService(store, email_client)


def get_dispatcher(background_tasks: BackgroundTasks,
                   service: NotificationService = Depends(get_notification_service)):
    if NOTIFICATION_TRANSPORT == "rabbitmq":
        return QueueDispatcher(get_publisher())
    return BackgroundDispatcher(background_tasks, service)


def require_admin(authorization: Optional[str] = Header(None),
                  session_manager: SessionManager = Depends(get_sessions)) -> AdminSession:
    """Resolves the `Authorization: Bearer <token>` header to a live admin session."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[len("bearer "):].strip()
    return session_manager.validate(token)


# Error mapping
ERROR_STATUS = [
    (EmptyCartError, 400),
    (InvalidImage, 400),
    (AuthenticationError, 401),
    (CartNotFound, 404),
    (ProductNotFound, 404),
    (OrderNotFound, 404),
    (RemoteStoreError, 502),
    (AllocationFailed, 503),
]


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    status_code = next((code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)), 500)
    if status_code >= 500:
        log.error(f"Anfrage {request.method} {request.url.path} fehlgeschlagen: {exc!r}")
    return JSONResponse(status_code=status_code,
                        content={"error": type(exc).__name__, "detail": str(exc)})


# Startup Event: Launch Notification Listener
@app.on_event("startup")
def on_startup():
    """
    Starts the notification queue listener when RabbitMQ transport is configured
    and no separate notification worker takes over (NOTIFICATION_LISTENER=off).

    The listener runs in a daemon thread and processes order-created events
    (WhatsApp link + email) independently of the checkout requests.
    """
    log.info("Storefront-Service startet...")
    if NOTIFICATION_TRANSPORT == "rabbitmq" and NOTIFICATION_LISTENER != "off":
        service = NotificationService(get_store(), get_email_client())
        listener_thread = threading.Thread(target=start_notification_listener,
                                           args=(service.handle_order_created,), daemon=True)
        listener_thread.start()
        log.info("Notification Listener Thread gestartet.")


# Catalog
@app.get("/api/categories", response_model=List[str])
def list_categories():
    return CATEGORIES


@app.get("/api/products", response_model=List[Product])
def list_products(category: Optional[str] = None, store: StoreClient = Depends(get_store)):
    """Lists the catalog, newest first. `category=all` or no category returns everything."""
    if category in (None, "", "all"):
        return store.list_products()
    if category not in CATEGORIES:
        raise HTTPException(status_code=400, detail=f"Unknown category '{category}'")
    return store.list_products(category)


# Carts
@app.post("/api/carts", response_model=CartView, status_code=201)
def create_cart(registry: CartRegistry = Depends(get_carts)):
    return registry.create().view()


@app.get("/api/carts/{cart_id}", response_model=CartView)
def get_cart(cart_id: str, registry: CartRegistry = Depends(get_carts)):
    return registry.get(cart_id).view()


@app.post("/api/carts/{cart_id}/items", response_model=CartView)
def add_cart_item(cart_id: str, item: CartItemRequest,
                  registry: CartRegistry = Depends(get_carts),
                  store: StoreClient = Depends(get_store)):
    cart = registry.get(cart_id)
    product = store.get_product(item.product_id)
    if product is None:
        raise ProductNotFound(item.product_id)
    cart.add(product, item.quantity)
    return cart.view()


@app.put("/api/carts/{cart_id}/items/{product_id}", response_model=CartView)
def update_cart_item(cart_id: str, product_id: str, update: CartQuantityUpdate,
                     registry: CartRegistry = Depends(get_carts)):
    cart = registry.get(cart_id)
    cart.update_quantity(product_id, update.quantity)
    return cart.view()


@app.delete("/api/carts/{cart_id}/items/{product_id}", response_model=CartView)
def remove_cart_item(cart_id: str, product_id: str, registry: CartRegistry = Depends(get_carts)):
    cart = registry.get(cart_id)
    cart.remove(product_id)
    return cart.view()


@app.delete("/api/carts/{cart_id}", response_model=CartView)
def clear_cart(cart_id: str, registry: CartRegistry = Depends(get_carts)):
    cart = registry.get(cart_id)
    cart.clear()
    return cart.view()


# API Endpoint: Checkout
@app.post("/api/carts/{cart_id}/checkout", response_model=CheckoutConfirmation, status_code=201)
def checkout(cart_id: str, form: CheckoutForm,
             user_agent: Optional[str] = Header(None),
             registry: CartRegistry = Depends(get_carts),
             store: StoreClient = Depends(get_store),
             dispatcher=Depends(get_dispatcher)):
    """
    Places the order for a cart.

    Returns 201 with the persisted order and the WhatsApp links the client
    should open. Email notification runs after the response.

    Raises:
        400: Empty cart.
        502: The order could not be persisted (cart is kept).
        503: No unique order number could be allocated.
    """
    cart = registry.get(cart_id)
    return process_checkout(cart, form, store, dispatcher, user_agent=user_agent)


# Admin: session
@app.post("/api/admin/login", response_model=LoginResponse)
def admin_login(credentials: LoginRequest,
                store: StoreClient = Depends(get_store),
                session_manager: SessionManager = Depends(get_sessions)):
    admin = authenticate(store, credentials.email, credentials.password)
    session = session_manager.issue(admin)
    return LoginResponse(token=session.token, email=session.email, expires_at=session.expires_at)


@app.post("/api/admin/logout", status_code=204)
def admin_logout(session: AdminSession = Depends(require_admin),
                 session_manager: SessionManager = Depends(get_sessions)):
    session_manager.revoke(session.token)


# Admin: orders
@app.get("/api/admin/orders", response_model=List[Order])
def list_orders(search: Optional[str] = None,
                session: AdminSession = Depends(require_admin),
                store: StoreClient = Depends(get_store)):
    """Newest first; `search` matches order number, customer or shop name."""
    orders = store.list_orders()
    if search:
        term = search.strip().lower()
        orders = [o for o in orders
                  if term in o.order_number.lower()
                  or term in o.customer_name.lower()
                  or term in o.shop_name.lower()]
    return orders


@app.get("/api/admin/orders/{order_id}", response_model=Order)
def get_order(order_id: str,
              session: AdminSession = Depends(require_admin),
              store: StoreClient = Depends(get_store)):
    order = store.get_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


@app.patch("/api/admin/orders/{order_id}/status", response_model=Order)
def update_order_status(order_id: str, update: StatusUpdateRequest,
                        session: AdminSession = Depends(require_admin),
                        store: StoreClient = Depends(get_store)):
    log.info(f"Statusänderung für Bestellung {order_id} durch {session.email}: {update.status.value}")
    return change_order_status(store, order_id, update.status, update.note)


# Admin: products
@app.post("/api/admin/products", response_model=Product, status_code=201)
def create_product(data: ProductCreate,
                   session: AdminSession = Depends(require_admin),
                   store: StoreClient = Depends(get_store)):
    return store.create_product(data)


@app.put("/api/admin/products/{product_id}", response_model=Product)
def update_product(product_id: str, data: ProductUpdate,
                   session: AdminSession = Depends(require_admin),
                   store: StoreClient = Depends(get_store)):
    return store.update_product(product_id, data)


@app.delete("/api/admin/products/{product_id}", status_code=204)
def delete_product(product_id: str,
                   session: AdminSession = Depends(require_admin),
                   store: StoreClient = Depends(get_store)):
    store.delete_product(product_id)


@app.post("/api/admin/product-images", response_model=ImageUploadResponse, status_code=201)
async def upload_product_image(request: Request, filename: str,
                               content_type: Optional[str] = Header(None),
                               session: AdminSession = Depends(require_admin),
                               storage: StorageClient = Depends(get_storage)):
    """
    Stores the raw request body as a product image and returns its public URL,
    which is then used as the `image` of a product.
    """
    if not content_type or not content_type.startswith("image/"):
        raise InvalidImage(f"Unsupported content type '{content_type}'")
    content = await request.body()
    if not content:
        raise InvalidImage("Empty image")
    if len(content) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=413, detail=f"Image larger than {MAX_IMAGE_BYTES} bytes")
    url = await run_in_threadpool(storage.upload_product_image, filename, content, content_type)
    return ImageUploadResponse(url=url)


@app.delete("/api/admin/product-images", status_code=204)
def delete_product_image(url: str,
                         session: AdminSession = Depends(require_admin),
                         storage: StorageClient = Depends(get_storage)):
    if not storage.delete_product_image(url):
        raise HTTPException(status_code=404, detail="Image not found")


# Admin: settings
@app.get("/api/admin/config", response_model=Optional[AdminConfig])
def get_config(session: AdminSession = Depends(require_admin),
               store: StoreClient = Depends(get_store)):
    return store.get_admin_config()


@app.put("/api/admin/config", response_model=AdminConfig)
def update_config(data: AdminConfigUpdate,
                  session: AdminSession = Depends(require_admin),
                  store: StoreClient = Depends(get_store)):
    config = store.save_admin_config(data)
    log.info(f"Admin-Konfiguration aktualisiert durch {session.email}.")
    return config


# Admin: statistics
@app.get("/api/admin/stats", response_model=DashboardStats)
def get_stats(session: AdminSession = Depends(require_admin),
              store: StoreClient = Depends(get_store)):
    return dashboard_stats(store.list_orders(), store.list_products())


@app.get("/api/admin/analytics", response_model=Analytics)
def get_analytics(session: AdminSession = Depends(require_admin),
                  store: StoreClient = Depends(get_store)):
    return advanced_analytics(store.list_orders(), store.list_products())


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint.

    Can be used by monitoring systems or container orchestrators
    (e.g., Docker, Kubernetes) to verify that the service is running.
    """
    return {"status": "ok"}
