"""
logging_config.py — Logging Setup for the Storefront Service

Every module logs through the standard `logging` package under its own
`__name__`. The service entry points (main.py, setup_admin.py) call
`setup_logging()` once; library code never configures handlers itself.

Output:
    • stdout, so container runtimes collect the log stream
    • LOG_FILE (default 'storefront.log'), unless set to an empty value
"""

import logging
import sys

from .config import LOG_FILE, LOG_LEVEL

LOG_FORMAT = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'

# Client libraries that log every request or frame at INFO
NOISY_LOGGERS = ("pika", "httpx", "httpcore")


def setup_logging(level: str = LOG_LEVEL, log_file: str = LOG_FILE):
    """
    Installs the console and file handlers on the root logger.

    Args:
        level (str): Level name such as "INFO" or "DEBUG".
        log_file (str): Path of the persistent log; empty disables file output.
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, handlers=handlers)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name):
    """Returns the logger for a module; use `__name__`."""
    return logging.getLogger(name)
