"""
notifications.py — Merchant Notifications for New Orders

Notifications are side effects of a persisted order and never part of the
checkout transaction. The checkout hands an OrderCreatedEvent to a dispatcher:

    • BackgroundDispatcher — runs the handlers in FastAPI background tasks
      after the response has been sent (default).
    • QueueDispatcher — publishes the event to RabbitMQ; the notification
      listener consumes it and runs the handlers.

Handlers:
    • WhatsApp — builds the order summary and the wa.me / whatsapp:// links.
      There is no delivery channel on the server side; the links are logged
      and returned to the client, which opens them.
    • Email — renders the HTML mail and calls the email function, with
      exponential backoff. Only runs when a notification email is configured.
"""

from html import escape
import logging
import time
from typing import Optional
from urllib.parse import quote

import httpx

from .config import DEFAULT_WHATSAPP_NUMBER, EMAIL_BACKOFF_SECONDS, EMAIL_MAX_ATTEMPTS
from .errors import NotificationError, RemoteStoreError
from .models import AdminConfig, Order, OrderCreatedEvent

log = logging.getLogger(__name__)

SHOP_NAME = "متجر أدوات الحلاقة"

_ARABIC_INDIC_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹", "01234567890123456789")


def to_ascii_digits(text: str) -> str:
    """Replaces Arabic-Indic digits with ASCII digits."""
    return text.translate(_ARABIC_INDIC_DIGITS)


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def format_order_date(order: Order) -> str:
    return to_ascii_digits(order.created_at.strftime("%d/%m/%Y %H:%M"))


# --- WhatsApp ---

def build_whatsapp_message(order: Order) -> str:
    lines = [
        f"🆕 طلب جديد - {order.order_number}",
        "",
        f"👤 العميل: {order.customer_name}",
        f"🏪 الصالون: {order.shop_name}",
        f"📍 المدينة: {order.city}",
        f"💰 المبلغ: ₪{format_amount(order.total)}",
        "",
        "📦 المنتجات:",
    ]
    lines += [
        f"• {item.product.name} - الكمية: {item.quantity} - السعر: ₪{format_amount(item.line_total)}"
        for item in order.items
    ]
    if order.notes:
        lines += ["", f"📝 ملاحظات: {order.notes}"]
    lines += ["", f"📅 تاريخ الطلب: {format_order_date(order)}"]
    return "\n".join(lines)


def normalize_phone(number: str) -> str:
    """Digits only, as wa.me expects (no '+', spaces or dashes)."""
    return "".join(ch for ch in to_ascii_digits(number) if ch.isdigit())


def whatsapp_links(phone_number: str, message: str):
    """
    Returns (app_url, web_url) for a prefilled chat.

    The app scheme opens WhatsApp directly on iOS; the wa.me link works
    everywhere and is the fallback when the app does not open.
    """
    phone = normalize_phone(phone_number)
    text = quote(message, safe="")
    return (f"whatsapp://send?phone={phone}&text={text}",
            f"https://wa.me/{phone}?text={text}")


def is_ios(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    return any(device in user_agent for device in ("iPad", "iPhone", "iPod")) and "MSStream" not in user_agent


def preferred_whatsapp_url(phone_number: str, message: str, user_agent: Optional[str] = None) -> str:
    app_url, web_url = whatsapp_links(phone_number, message)
    return app_url if is_ios(user_agent) else web_url


def whatsapp_number(config: Optional[AdminConfig]) -> str:
    if config and config.whatsapp_number:
        return config.whatsapp_number
    return DEFAULT_WHATSAPP_NUMBER


# --- Email ---

def email_subject(order: Order) -> str:
    return f"طلب جديد رقم {order.order_number} من {order.customer_name}"


def render_order_email(order: Order) -> str:
    items = "\n".join(
        f"• {escape(item.product.name)} - الكمية: {item.quantity} - "
        f"السعر: ₪{format_amount(item.line_total)}"
        for item in order.items
    )
    notes = ""
    if order.notes:
        notes = f"""
        <div style="background: #fef3c7; padding: 20px; border-radius: 8px; margin: 20px 0;">
          <h2 style="color: #1f2937; margin-bottom: 15px;">ملاحظات:</h2>
          <p>{escape(order.notes)}</p>
        </div>"""

    return f"""
      <div dir="rtl" style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #1e40af; text-align: center;">طلب جديد - {order.order_number}</h1>

        <div style="background: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">
          <h2 style="color: #1f2937; margin-bottom: 15px;">تفاصيل العميل:</h2>
          <p><strong>الاسم:</strong> {escape(order.customer_name)}</p>
          <p><strong>الصالون:</strong> {escape(order.shop_name)}</p>
          <p><strong>المدينة:</strong> {escape(order.city)}</p>
        </div>

        <div style="background: #f0fdf4; padding: 20px; border-radius: 8px; margin: 20px 0;">
          <h2 style="color: #1f2937; margin-bottom: 15px;">المنتجات المطلوبة:</h2>
          <div style="white-space: pre-line; line-height: 1.6;">{items}</div>
          <hr style="margin: 15px 0;">
          <p style="font-size: 18px; font-weight: bold; color: #059669;">المجموع: ₪{format_amount(order.total)}</p>
        </div>
{notes}
        <div style="background: #e0e7ff; padding: 20px; border-radius: 8px; margin: 20px 0;">
          <p><strong>تاريخ الطلب:</strong> {format_order_date(order)}</p>
        </div>

        <div style="text-align: center; margin-top: 30px;">
          <p style="color: #6b7280;">{SHOP_NAME}</p>
        </div>
      </div>
    """


# --- Handlers ---

class NotificationService:
    """
    Runs all notification handlers for an order-created event.

    Each handler is independent: a failing email never stops the WhatsApp
    handler. Delivery failures (store unreadable, email retries exhausted) are
    logged, not raised; anything else propagates to the runner, which logs it
    (BackgroundTasks) or rejects the event (queue listener).
    """
    def __init__(self, store, email_client, max_attempts: int = EMAIL_MAX_ATTEMPTS,
                 backoff_seconds: float = EMAIL_BACKOFF_SECONDS, sleep=time.sleep):
        self.store = store
        self.email_client = email_client
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def handle_order_created(self, event: OrderCreatedEvent):
        order = event.order
        log_prefix = f"[Order: {order.order_number}]"
        log.info(f"{log_prefix} Verarbeite Benachrichtigungen (Event {event.event_id}).")

        try:
            config = self.store.get_admin_config()
        except RemoteStoreError as e:
            log.error(f"{log_prefix} Admin-Konfiguration nicht lesbar, nutze Standardwerte: {e}")
            config = None

        self.notify_whatsapp(order, config)
        try:
            self.notify_email(order, config)
        except NotificationError as e:
            log.error(f"{log_prefix} E-Mail-Benachrichtigung endgültig fehlgeschlagen: {e}")

    def notify_whatsapp(self, order: Order, config: Optional[AdminConfig]) -> str:
        _, web_url = whatsapp_links(whatsapp_number(config), build_whatsapp_message(order))
        log.info(f"[Order: {order.order_number}] WhatsApp-Link erstellt: {web_url}")
        return web_url

    def notify_email(self, order: Order, config: Optional[AdminConfig]) -> bool:
        """
        Sends the order email with exponential backoff.

        Returns:
            bool: False if no notification email is configured, True once sent.
        Raises:
            NotificationError: If every attempt failed.
        """
        log_prefix = f"[Order: {order.order_number}]"
        if not config or not config.notification_email:
            log.info(f"{log_prefix} Keine Benachrichtigungs-E-Mail konfiguriert, überspringe E-Mail.")
            return False

        subject = email_subject(order)
        html = render_order_email(order)
        delay = self.backoff_seconds
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.email_client.send_order_email(order, config.notification_email, subject, html)
                log.info(f"{log_prefix} E-Mail an {config.notification_email} gesendet.")
                return True
            except (httpx.HTTPStatusError, httpx.TransportError) as e:
                log.warning(f"{log_prefix} E-Mail-Versand fehlgeschlagen "
                            f"(Versuch {attempt}/{self.max_attempts}): {e}")
                if attempt < self.max_attempts:
                    self.sleep(delay)
                    delay *= 2

        raise NotificationError(f"Email for order {order.order_number} failed after {self.max_attempts} attempts")


# --- Dispatchers ---

class BackgroundDispatcher:
    """Runs the notification handlers as FastAPI background tasks."""

    def __init__(self, background_tasks, service: NotificationService):
        self.background_tasks = background_tasks
        self.service = service

    def dispatch(self, event: OrderCreatedEvent):
        self.background_tasks.add_task(self.service.handle_order_created, event)
        log.info(f"[Order: {event.order.order_number}] Benachrichtigung zur Hintergrundverarbeitung eingeplant.")


class QueueDispatcher:
    """Publishes the event to the notification queue."""

    def __init__(self, publisher):
        self.publisher = publisher

    def dispatch(self, event: OrderCreatedEvent):
        self.publisher.publish_order_created(event)
