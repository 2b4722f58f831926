import enum
import logging
import secrets
import threading
from typing import Optional, Set

from werkzeug.security import check_password_hash, generate_password_hash

GENERATED_PASSWORD_BYTES = 9

security_logger = logging.getLogger("accio.security")


def generate_password() -> str:
    return secrets.token_urlsafe(GENERATED_PASSWORD_BYTES)


class SessionStore:
    """Client IPs that have authenticated since the process started."""

    def __init__(self) -> None:
        self._authorized: Set[str] = set()
        self._lock = threading.Lock()

    def is_authorized(self, ip: str) -> bool:
        with self._lock:
            return ip in self._authorized

    def authorize(self, ip: str) -> None:
        with self._lock:
            self._authorized.add(ip)

    def __len__(self) -> int:
        with self._lock:
            return len(self._authorized)


class AuthDecision(enum.Enum):
    ALLOWED = "allowed"
    REQUIRED = "required"
    FAILED = "failed"


class AuthorizationGate:
    """Password check with a per-IP session cache."""

    def __init__(
        self,
        password: Optional[str],
        password_enabled: bool,
        store: Optional[SessionStore] = None,
    ) -> None:
        self.password_enabled = bool(password_enabled)
        if self.password_enabled and not password:
            raise ValueError("password protection requires a password")
        self._password_hash = generate_password_hash(password) if self.password_enabled else None
        self.store = store if store is not None else SessionStore()

    def admit(self, ip: str, supplied_password: Optional[str] = None) -> AuthDecision:
        if not self.password_enabled:
            return AuthDecision.ALLOWED

        if self.store.is_authorized(ip):
            return AuthDecision.ALLOWED

        if supplied_password is None:
            return AuthDecision.REQUIRED

        if not check_password_hash(self._password_hash, supplied_password):
            security_logger.warning("auth_failed ip=%s", ip)
            return AuthDecision.FAILED

        self.store.authorize(ip)
        security_logger.info("auth_granted ip=%s", ip)
        return AuthDecision.ALLOWED
