"""
setup_admin.py — Create or Reset an Admin User

Usage:
    python -m storefront_service.setup_admin admin@example.com
The password is read interactively and stored only as a salted hash.
"""

import argparse
import getpass
import sys

from .auth import setup_admin
from .clients import StoreClient
from .errors import RemoteStoreError
from .logging_config import get_logger, setup_logging

log = get_logger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create or reset a storefront admin user.")
    parser.add_argument("email")
    args = parser.parse_args(argv)

    password = getpass.getpass("Passwort: ")
    if password != getpass.getpass("Passwort wiederholen: "):
        print("Passwörter stimmen nicht überein.", file=sys.stderr)
        return 1

    setup_logging()
    store = StoreClient()
    try:
        admin = setup_admin(store, args.email, password)
    except (ValueError, RemoteStoreError) as e:
        log.error(f"Admin-Einrichtung fehlgeschlagen: {e}")
        return 1
    finally:
        store.close()

    print(f"Admin {admin.email} eingerichtet.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
