"""
notification_worker.py — Standalone Consumer for Order-Created Events

Runs the notification handlers (WhatsApp link + email) in their own process,
consuming the RabbitMQ queue the API publishes to when
NOTIFICATION_TRANSPORT=rabbitmq. Useful when the API runs several replicas
and only one consumer should send merchant emails; start the API with its
listener thread disabled in that case (NOTIFICATION_LISTENER=off).

Usage:
    python -m storefront_service.notification_worker
"""

import sys

from .clients import EmailClient, StoreClient, start_notification_listener
from .config import NOTIFICATION_QUEUE
from .logging_config import get_logger, setup_logging
from .notifications import NotificationService

log = get_logger(__name__)


def main():
    setup_logging()
    store = StoreClient()
    email_client = EmailClient()
    service = NotificationService(store, email_client)
    log.info(f"Notification Worker startet (Queue: {NOTIFICATION_QUEUE}).")
    try:
        start_notification_listener(service.handle_order_created, NOTIFICATION_QUEUE)
    except KeyboardInterrupt:
        log.info("Notification Worker beendet.")
    finally:
        store.close()
        email_client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
