"""
config.py — Environment Configuration

All settings are read once from environment variables at import time.
Defaults point at the local mock services (see mock_services/).
"""

import os

# Remote data store (PostgREST-compatible table API)
STORE_URL = os.environ.get("STORE_URL", "http://localhost:8010")
STORE_API_KEY = os.environ.get("STORE_API_KEY", "local-dev-key")

# Transactional email function
EMAIL_FUNCTION_URL = os.environ.get("EMAIL_FUNCTION_URL", "http://localhost:8011/functions/v1/send-order-email")
EMAIL_FUNCTION_KEY = os.environ.get("EMAIL_FUNCTION_KEY", "local-dev-key")

# Notification transport: "background" (FastAPI BackgroundTasks) or "rabbitmq"
NOTIFICATION_TRANSPORT = os.environ.get("NOTIFICATION_TRANSPORT", "background")
NOTIFICATION_QUEUE = os.environ.get("NOTIFICATION_QUEUE", "storefront.orders.created")
# "off" when a separate notification_worker process consumes the queue
NOTIFICATION_LISTENER = os.environ.get("NOTIFICATION_LISTENER", "on")
RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "localhost")
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "storefront")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "storefront")

# Fallback WhatsApp number when no admin config exists
DEFAULT_WHATSAPP_NUMBER = os.environ.get("DEFAULT_WHATSAPP_NUMBER", "+972509617061")

ADMIN_SESSION_TTL_SECONDS = int(os.environ.get("ADMIN_SESSION_TTL_SECONDS", "28800"))
ORDER_NUMBER_MAX_ATTEMPTS = int(os.environ.get("ORDER_NUMBER_MAX_ATTEMPTS", "10"))
EMAIL_MAX_ATTEMPTS = int(os.environ.get("EMAIL_MAX_ATTEMPTS", "3"))
EMAIL_BACKOFF_SECONDS = float(os.environ.get("EMAIL_BACKOFF_SECONDS", "1.0"))

# Upper bound for uploaded product images
MAX_IMAGE_BYTES = int(os.environ.get("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))

LOG_FILE = os.environ.get("LOG_FILE", "storefront.log")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
