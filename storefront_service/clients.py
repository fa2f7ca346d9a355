"""
This module provides communication clients for the external systems used by the storefront:
- Remote table store (REST API, PostgREST dialect)
- Object storage for product images (REST API)
- Transactional email function (REST API)
- Notification queue (RabbitMQ) for order-created events
Each class encapsulates its protocol logic, error handling, and connection management.
"""

import logging
import secrets
import time
from typing import Callable, List, Optional

import httpx
import pika
from pydantic import ValidationError
from werkzeug.utils import secure_filename

from .config import (
    DEFAULT_WHATSAPP_NUMBER,
    EMAIL_FUNCTION_KEY,
    EMAIL_FUNCTION_URL,
    NOTIFICATION_QUEUE,
    RABBITMQ_HOST,
    RABBITMQ_PASSWORD,
    RABBITMQ_USER,
    STORE_API_KEY,
    STORE_URL,
)
from .errors import DuplicateOrderNumber, InvalidImage, OrderNotFound, ProductNotFound, RemoteStoreError
from .models import (
    AdminConfig,
    AdminConfigUpdate,
    AdminUser,
    NewOrder,
    Order,
    OrderCreatedEvent,
    OrderStatus,
    Product,
    ProductCreate,
    ProductUpdate,
)

log = logging.getLogger(__name__)

# Postgres error code for unique_violation
UNIQUE_VIOLATION = "23505"


def _default_timeout():
    return httpx.Timeout(5.0, read=8.0)


# --- Store Client (REST) ---
class StoreClient:
    """
    Client for the hosted table store (REST API).
    Covers the collections `products`, `orders`, `admin_users` and `admin_config`.
    """
    def __init__(self, base_url: str = STORE_URL, api_key: str = STORE_API_KEY,
                 client: Optional[httpx.Client] = None):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            base_url (str): Root URL of the store API.
            api_key (str): Key sent as `apikey` and bearer token.
            client (httpx.Client, optional): Preconfigured client, e.g. a test client.
        """
        self.client = client or httpx.Client(base_url=base_url, timeout=_default_timeout())
        self.headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}

    def close(self):
        """Closes the HTTP client session."""
        self.client.close()

    def _request(self, method: str, table: str, params: Optional[dict] = None,
                 payload=None, prefer: Optional[str] = None):
        """
        Sends a request against one table and returns the decoded rows.

        Raises:
            DuplicateOrderNumber: If an insert into `orders` violates the order number constraint.
            RemoteStoreError: For any other HTTP error status or transport failure.
        """
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = self.client.request(method, f"/rest/v1/{table}", params=params,
                                           json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 409 and table == "orders" and self._is_unique_violation(e.response):
                log.warning(f"Store meldet Konflikt bei order_number ({table}): {e.response.text}")
                raise DuplicateOrderNumber(e.response.text) from e
            log.error(f"HTTP-Fehler vom Store ({method} {table}): {status} - {e.response.text}")
            raise RemoteStoreError(f"{method} {table} failed with HTTP {status}") from e
        except httpx.TransportError as e:
            log.error(f"Store nicht erreichbar ({method} {table}): {e}")
            raise RemoteStoreError(f"{method} {table} failed: {e}") from e

        if not response.content:
            return []
        return response.json()

    @staticmethod
    def _is_unique_violation(response: httpx.Response) -> bool:
        try:
            body = response.json()
        except ValueError:
            return False
        return body.get("code") == UNIQUE_VIOLATION

    # Generic table operations
    def select(self, table: str, filters: Optional[dict] = None, order: Optional[str] = None,
               limit: Optional[int] = None, ilike: Optional[dict] = None) -> List[dict]:
        """`filters` match exactly (`eq`); `ilike` maps columns to case-insensitive patterns."""
        params = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        for column, pattern in (ilike or {}).items():
            params[column] = f"ilike.{pattern}"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return self._request("GET", table, params=params)

    def insert(self, table: str, row: dict) -> dict:
        rows = self._request("POST", table, payload=[row], prefer="return=representation")
        if not rows:
            raise RemoteStoreError(f"Insert into {table} returned no row")
        return rows[0]

    def update(self, table: str, filters: dict, changes: dict) -> List[dict]:
        params = {column: f"eq.{value}" for column, value in filters.items()}
        return self._request("PATCH", table, params=params, payload=changes,
                             prefer="return=representation")

    def delete(self, table: str, filters: dict) -> List[dict]:
        params = {column: f"eq.{value}" for column, value in filters.items()}
        return self._request("DELETE", table, params=params, prefer="return=representation")

    # Products
    def list_products(self, category: Optional[str] = None) -> List[Product]:
        filters = {"category": category} if category else None
        rows = self.select("products", filters=filters, order="created_at.desc")
        return [_parse(Product, row, "products") for row in rows]

    def get_product(self, product_id: str) -> Optional[Product]:
        rows = self.select("products", filters={"id": product_id}, limit=1)
        return _parse(Product, rows[0], "products") if rows else None

    def create_product(self, data: ProductCreate) -> Product:
        row = self.insert("products", data.model_dump(mode="json"))
        log.info(f"Produkt angelegt: {row.get('id')} ({data.name})")
        return _parse(Product, row, "products")

    def update_product(self, product_id: str, data: ProductUpdate) -> Product:
        changes = data.model_dump(mode="json", exclude_unset=True)
        rows = self.update("products", {"id": product_id}, changes)
        if not rows:
            raise ProductNotFound(product_id)
        log.info(f"Produkt aktualisiert: {product_id} ({sorted(changes)})")
        return _parse(Product, rows[0], "products")

    def delete_product(self, product_id: str):
        rows = self.delete("products", {"id": product_id})
        if not rows:
            raise ProductNotFound(product_id)
        log.info(f"Produkt gelöscht: {product_id}")

    # Orders
    def list_orders(self) -> List[Order]:
        rows = self.select("orders", order="created_at.desc")
        return [_parse(Order, row, "orders") for row in rows]

    def get_order(self, order_id: str) -> Optional[Order]:
        rows = self.select("orders", filters={"id": order_id}, limit=1)
        return _parse(Order, rows[0], "orders") if rows else None

    def order_number_exists(self, order_number: str) -> bool:
        return bool(self.select("orders", filters={"order_number": order_number}, limit=1))

    def insert_order(self, order: NewOrder) -> Order:
        row = self.insert("orders", order.model_dump(mode="json"))
        return _parse(Order, row, "orders")

    def update_order_status(self, order_id: str, status: OrderStatus, note: str = "") -> Order:
        rows = self.update("orders", {"id": order_id},
                           {"status": status.value, "admin_notes": note})
        if not rows:
            raise OrderNotFound(order_id)
        return _parse(Order, rows[0], "orders")

    # Admin users
    def find_admin_by_email(self, email: str) -> Optional[AdminUser]:
        """Case-insensitive, so rows stored before emails were normalized still match."""
        rows = self.select("admin_users", ilike={"email": escape_like(email)})
        matches = [row for row in rows if str(row.get("email", "")).lower() == email.lower()]
        return _parse(AdminUser, matches[0], "admin_users") if matches else None

    def upsert_admin_user(self, email: str, password_hash: str) -> AdminUser:
        existing = self.find_admin_by_email(email)
        if existing:
            # Also rewrites a legacy mixed-case email to its normalized form
            rows = self.update("admin_users", {"id": existing.id},
                               {"email": email, "password_hash": password_hash})
            if not rows:
                raise RemoteStoreError(f"Admin user {email} vanished during update")
            return _parse(AdminUser, rows[0], "admin_users")
        row = self.insert("admin_users", {"email": email, "password_hash": password_hash})
        return _parse(AdminUser, row, "admin_users")

    # Admin config (singleton)
    def get_admin_config(self) -> Optional[AdminConfig]:
        rows = self.select("admin_config", limit=1)
        return _parse(AdminConfig, rows[0], "admin_config") if rows else None

    def save_admin_config(self, data: AdminConfigUpdate) -> AdminConfig:
        """
        Creates the config record if none exists yet, otherwise updates it.

        A new record without a WhatsApp number gets DEFAULT_WHATSAPP_NUMBER, so the
        stored row is always a complete AdminConfig.
        """
        changes = data.model_dump(mode="json", exclude_unset=True)
        existing = self.get_admin_config()
        if existing is None:
            log.info("Keine Admin-Konfiguration vorhanden, lege neue an.")
            row = self.insert("admin_config", {"whatsapp_number": DEFAULT_WHATSAPP_NUMBER, **changes})
            return _parse(AdminConfig, row, "admin_config")

        rows = self.update("admin_config", {"id": existing.id}, changes)
        if not rows:
            raise RemoteStoreError("Admin config update returned no row")
        return _parse(AdminConfig, rows[0], "admin_config")


def escape_like(value: str) -> str:
    """Escapes the wildcard characters of a LIKE pattern."""
    for ch in ("\\", "%", "_", "*"):
        value = value.replace(ch, "\\" + ch)
    return value


def _parse(model, row: dict, table: str):
    """Validates a row at the store boundary. Malformed rows are a store error, not a cast."""
    try:
        return model.model_validate(row)
    except ValidationError as e:
        log.error(f"Ungültiger Datensatz in '{table}' (id={row.get('id')}): {e}")
        raise RemoteStoreError(f"Malformed row in {table}") from e


# --- Storage Client (REST) ---
PRODUCT_IMAGE_BUCKET = "product-images"
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}


def image_object_name(filename: str) -> str:
    """
    Unique object name for an uploaded image, keeping only its (sanitized) extension.

    Raises:
        InvalidImage: If the file has no supported image extension.
    """
    safe_name = secure_filename(filename or "")
    extension = safe_name.rsplit(".", 1)[-1].lower() if "." in safe_name else ""
    if extension not in IMAGE_EXTENSIONS:
        raise InvalidImage(f"Unsupported image file '{filename}'")
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}.{extension}"


class StorageClient:
    """
    Client for the store's object storage.
    Product images live in a public bucket; products reference them by public URL.
    """
    def __init__(self, base_url: str = STORE_URL, api_key: str = STORE_API_KEY,
                 bucket: str = PRODUCT_IMAGE_BUCKET, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.client = client or httpx.Client(base_url=base_url, timeout=_default_timeout())
        self.headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}

    def close(self):
        self.client.close()

    def public_url(self, name: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{name}"

    def upload_product_image(self, filename: str, content: bytes, content_type: str) -> str:
        """
        Stores an image under a fresh unique name.

        Returns:
            str: Public URL of the stored image.
        Raises:
            InvalidImage: If the file extension is not a supported image type.
            RemoteStoreError: If the storage rejects the upload or is unreachable.
        """
        name = image_object_name(filename)
        headers = {**self.headers, "Content-Type": content_type}
        try:
            response = self.client.post(f"/storage/v1/object/{self.bucket}/{name}",
                                        content=content, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(f"Bild-Upload abgelehnt ({name}): {e.response.status_code} - {e.response.text}")
            raise RemoteStoreError(f"Image upload failed with HTTP {e.response.status_code}") from e
        except httpx.TransportError as e:
            log.error(f"Storage nicht erreichbar beim Upload ({name}): {e}")
            raise RemoteStoreError(f"Image upload failed: {e}") from e

        log.info(f"Produktbild hochgeladen: {name} ({len(content)} Bytes)")
        return self.public_url(name)

    def delete_product_image(self, image_url: str) -> bool:
        """
        Deletes the image an URL points to; only the last path segment is used.

        Returns:
            bool: False if no such image existed.
        """
        name = image_url.rstrip("/").rsplit("/", 1)[-1]
        try:
            response = self.client.request("DELETE", f"/storage/v1/object/{self.bucket}",
                                           json={"prefixes": [name]}, headers=self.headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(f"Bild-Löschung abgelehnt ({name}): {e.response.status_code} - {e.response.text}")
            raise RemoteStoreError(f"Image delete failed with HTTP {e.response.status_code}") from e
        except httpx.TransportError as e:
            log.error(f"Storage nicht erreichbar beim Löschen ({name}): {e}")
            raise RemoteStoreError(f"Image delete failed: {e}") from e

        deleted = bool(response.json())
        log.info(f"Produktbild {name} {'gelöscht' if deleted else 'nicht gefunden'}.")
        return deleted


# --- Email Client (REST) ---
class EmailClient:
    """
    Client for the transactional email function.
    Sends the new-order notification to the merchant.
    """
    def __init__(self, url: str = EMAIL_FUNCTION_URL, api_key: str = EMAIL_FUNCTION_KEY,
                 client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=_default_timeout())
        self.headers = {"Authorization": f"Bearer {api_key}"}

    def close(self):
        self.client.close()

    def send_order_email(self, order: Order, admin_email: str, subject: str, html: str) -> dict:
        """
        Invokes the email function for one order.

        Args:
            order (Order): The persisted order.
            admin_email (str): Recipient address from the admin config.
            subject (str): Email subject line.
            html (str): Rendered HTML body.
        Returns:
            dict: JSON response of the email provider (empty if the body is not JSON).
        Raises:
            httpx.HTTPStatusError: If the function returns an error status (4xx or 5xx).
            httpx.TransportError: If the function is unreachable or times out.
        """
        payload = {
            "order": email_order_payload(order),
            "adminEmail": admin_email,
            "subject": subject,
            "html": html,
        }
        try:
            response = self.client.post(self.url, json=payload, headers=self.headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(f"[Order: {order.order_number}] HTTP-Fehler beim E-Mail-Versand: {e}")
            raise
        except httpx.TransportError as e:
            log.error(f"[Order: {order.order_number}] E-Mail-Funktion nicht erreichbar: {e}")
            raise

        # A 2xx reply means the mail went out, whatever the body looks like
        try:
            return response.json()
        except ValueError:
            log.warning(f"[Order: {order.order_number}] Antwort der E-Mail-Funktion ist kein JSON: "
                        f"{response.text[:200]!r}")
            return {}


def email_order_payload(order: Order) -> dict:
    """Order fields in the camelCase layout the email function expects."""
    return {
        "orderNumber": order.order_number,
        "customerName": order.customer_name,
        "shopName": order.shop_name,
        "city": order.city,
        "total": order.total,
        "items": [
            {"product": {"name": item.product.name, "price": item.product.price},
             "quantity": item.quantity}
            for item in order.items
        ],
        "notes": order.notes or None,
        "date": order.created_at.isoformat(),
    }


# --- Notification Publisher (MQ) ---
def _connection_parameters(heartbeat: Optional[int] = None):
    credentials = pika.PlainCredentials(RABBITMQ_USER, RABBITMQ_PASSWORD)
    return pika.ConnectionParameters(host=RABBITMQ_HOST, credentials=credentials, heartbeat=heartbeat)


class NotificationPublisher:
    """
    Publishes order-created events to RabbitMQ.
    Notification handlers consume them independently of the checkout request.
    """
    def __init__(self, queue: str = NOTIFICATION_QUEUE):
        self.queue = queue
        self.connection = None
        self.channel = None

    def _connect(self):
        """
        Establishes the RabbitMQ connection and declares the durable event queue.
        Raises:
            pika.exceptions.AMQPConnectionError: If the connection fails.
        """
        try:
            self.connection = pika.BlockingConnection(_connection_parameters(heartbeat=60))
            self.channel = self.connection.channel()
            self.channel.queue_declare(queue=self.queue, durable=True)
            log.info("Notification Publisher mit RabbitMQ verbunden.")
        except pika.exceptions.AMQPConnectionError as e:
            log.critical(f"Kann nicht zu RabbitMQ (Notifications) verbinden: {e}")
            raise

    def publish_order_created(self, event: OrderCreatedEvent):
        """
        Sends one order-created event to the notification queue.
        Raises:
            pika.exceptions.AMQPError: If publishing fails.
        """
        order_number = event.order.order_number
        if not self.connection or self.connection.is_closed:
            self._connect()
        try:
            self.channel.basic_publish(
                exchange='',
                routing_key=self.queue,
                body=event.model_dump_json(),
                properties=pika.BasicProperties(delivery_mode=2, content_type="application/json")
            )
            log.info(f"[Order: {order_number}] Event 'order.created' an Queue {self.queue} gesendet.")
        except pika.exceptions.AMQPError as e:
            log.error(f"[Order: {order_number}] FEHLER beim Senden an Notification-Queue: {e}")
            raise

    def close(self):
        if self.connection and self.connection.is_open:
            self.connection.close()


# --- Notification Listener (MQ Consumer) ---
def start_notification_listener(handler: Callable[[OrderCreatedEvent], None],
                                queue: str = NOTIFICATION_QUEUE):
    """
    Consumes order-created events and passes each one to `handler`.

    Intended to run in a background thread. Malformed messages and events whose
    handler raises are rejected without requeue (dead-lettered if the broker is
    configured for it), so one bad event never stalls the queue.
    On connection loss it reconnects after 10 seconds.
    """
    log.info("Notification Listener startet...")
    while True:
        try:
            connection = pika.BlockingConnection(_connection_parameters())
            channel = connection.channel()
            channel.queue_declare(queue=queue, durable=True)

            def callback(ch, method, properties, body):
                try:
                    event = OrderCreatedEvent.model_validate_json(body)
                except ValidationError:
                    log.error(f"[NOTIFY] Ungültige Event-Nachricht erhalten: {body!r}")
                    ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
                    return
                try:
                    handler(event)
                except Exception as e:
                    # Requeueing would redeliver the same event forever and block the queue
                    log.error(f"[NOTIFY] [Order: {event.order.order_number}] Handler fehlgeschlagen, "
                              f"Event {event.event_id} wird verworfen: {e!r}")
                    ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
                    return
                ch.basic_ack(delivery_tag=method.delivery_tag)

            log.info("[NOTIFY] Listener ist aktiv und lauscht auf neue Bestellungen.")
            channel.basic_consume(queue=queue, on_message_callback=callback)
            channel.start_consuming()

        except pika.exceptions.AMQPConnectionError:
            log.warning("Notification Listener: Verbindung zu RabbitMQ verloren. Reconnect in 10s...")
            time.sleep(10)
        except Exception as e:
            log.error(f"Notification Listener: Kritischer Fehler. {e}. Neustart in 10s.")
            time.sleep(10)
