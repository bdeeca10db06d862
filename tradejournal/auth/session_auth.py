from __future__ import annotations

import hashlib
import secrets
import time
from datetime import datetime, timezone
from typing import Optional

from tradejournal.journal.models import User, parse_timestamp
from tradejournal.journal.store import JournalStore, session_expiry
from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import AuthenticationError, ValidationError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)

PBKDF2_ITERATIONS = 260000
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str, salt: Optional[str] = None, pepper: str = "") -> str:
    """PBKDF2-HMAC-SHA256, stored as 'iterations$salt$hexdigest'."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", (password + pepper).encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS
    ).hex()
    return f"{PBKDF2_ITERATIONS}${salt}${digest}"


def verify_password(password: str, stored: str, pepper: str = "") -> bool:
    try:
        iterations, salt, digest = stored.split("$", 2)
        candidate = hashlib.pbkdf2_hmac(
            "sha256", (password + pepper).encode("utf-8"), salt.encode("utf-8"), int(iterations)
        ).hex()
    except ValueError:
        return False
    # Timing-safe comparison
    return secrets.compare_digest(candidate, digest)


class SessionAuth:
    def __init__(self, store: JournalStore) -> None:
        self._store = store
        self._settings = get_settings()
        self._failed_logins: dict[str, list[float]] = {}
        self._pepper = self._settings.session_secret
        if not self._pepper:
            logger.warning("security_warning", msg="SESSION_SECRET not set - password hashes are unpeppered")

    def register(self, email: str, password: str, name: Optional[str] = None) -> User:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        user = User(email=email, name=name, password_hash=hash_password(password, pepper=self._pepper))
        self._store.create_user(user)
        logger.info("user_registered", user_id=user.id)
        return user

    def _recent_failures(self, email: str) -> list[float]:
        window_start = time.time() - self._settings.login_window_seconds
        recent = [t for t in self._failed_logins.get(email, []) if t > window_start]
        self._failed_logins[email] = recent
        return recent

    def login(self, email: str, password: str) -> str:
        """Verify credentials and open a session. Returns the session token."""
        email = (email or "").strip().lower()
        if len(self._recent_failures(email)) >= self._settings.max_login_attempts:
            logger.warning("login_rate_limited", email=email[:3] + "***")
            raise AuthenticationError("Too many failed login attempts, try again later", 429)

        user = self._store.get_user_by_email(email)
        if not user or not verify_password(password or "", user.password_hash, self._pepper):
            self._failed_logins.setdefault(email, []).append(time.time())
            logger.warning("login_failed", email=email[:3] + "***",
                           attempts=len(self._failed_logins[email]))
            raise AuthenticationError("Invalid email or password")

        self._failed_logins.pop(email, None)
        token = secrets.token_urlsafe(32)
        self._store.create_session(token, user.id, session_expiry(self._settings.session_expiry_days))
        logger.info("login_succeeded", user_id=user.id)
        return token

    def _live_session(self, token: str) -> Optional[dict]:
        if not token:
            return None
        session = self._store.get_session(token)
        if not session:
            return None
        expires = parse_timestamp(session["expires_at"])
        if expires is None or expires < datetime.now(timezone.utc):
            self._store.delete_session(token)
            return None
        return session

    def validate_session(self, token: str) -> bool:
        return self._live_session(token) is not None

    def get_session_user(self, token: str) -> Optional[User]:
        session = self._live_session(token)
        if not session:
            return None
        return self._store.get_user(session["user_id"])

    def logout(self, token: str) -> None:
        self._store.delete_session(token)
        logger.info("logout")
