"""
auth.py — Admin Authentication and Sessions

Passwords are stored as salted hashes (werkzeug) and verified in the service;
a password is never compared in plaintext. A successful login issues an
AdminSession with a fixed lifetime. Sessions are held by a SessionManager that
the API injects into admin endpoints, so there is no ambient login state.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import secrets
import threading
from typing import Callable, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .config import ADMIN_SESSION_TTL_SECONDS
from .errors import AuthenticationError
from .models import AdminUser

log = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def authenticate(store, email: str, password: str) -> AdminUser:
    """
    Verifies admin credentials against the stored salted hash.

    Unknown email and wrong password produce the same error so the response
    does not reveal which admin emails exist.

    Raises:
        AuthenticationError: If the credentials do not match.
        RemoteStoreError: If the admin table cannot be read.
    """
    normalized = normalize_email(email)
    admin = store.find_admin_by_email(normalized)
    if admin is None:
        log.warning(f"Admin-Login fehlgeschlagen: unbekannte E-Mail {normalized}")
        raise AuthenticationError(INVALID_CREDENTIALS)

    # Legacy plaintext values have no method prefix and never verify
    if not check_password_hash(admin.password_hash, password):
        log.warning(f"Admin-Login fehlgeschlagen: falsches Passwort für {normalized}")
        raise AuthenticationError(INVALID_CREDENTIALS)

    log.info(f"Admin-Login erfolgreich: {normalized}")
    return admin


def setup_admin(store, email: str, password: str) -> AdminUser:
    """Creates an admin user, or resets the password of an existing one."""
    normalized = normalize_email(email)
    if not normalized or not password:
        raise ValueError("email and password are required")
    admin = store.upsert_admin_user(normalized, hash_password(password))
    log.info(f"Admin-Benutzer eingerichtet: {normalized}")
    return admin


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AdminSession:
    token: str
    admin_id: str
    email: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionManager:
    """
    Issues, validates and revokes admin sessions.

    Args:
        ttl_seconds (int): Session lifetime.
        clock (callable): Returns the current aware datetime (tests inject a fake clock).
    """
    def __init__(self, ttl_seconds: int = ADMIN_SESSION_TTL_SECONDS,
                 clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._sessions: Dict[str, AdminSession] = {}
        self._lock = threading.Lock()

    def issue(self, admin: AdminUser) -> AdminSession:
        self.purge_expired()
        now = self.clock()
        session = AdminSession(
            token=secrets.token_urlsafe(32),
            admin_id=admin.id,
            email=admin.email,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._sessions[session.token] = session
        return session

    def validate(self, token: Optional[str]) -> AdminSession:
        """
        Returns the live session for `token`.

        Raises:
            AuthenticationError: If the token is unknown or the session expired.
        """
        if not token:
            raise AuthenticationError("Missing session token")
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and session.is_expired(self.clock()):
                del self._sessions[token]
                log.info(f"Admin-Session abgelaufen: {session.email}")
                session = None
        if session is None:
            raise AuthenticationError("Invalid or expired session")
        return session

    def revoke(self, token: str):
        with self._lock:
            session = self._sessions.pop(token, None)
        if session:
            log.info(f"Admin-Logout: {session.email}")

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for token in expired:
                del self._sessions[token]
        return len(expired)
