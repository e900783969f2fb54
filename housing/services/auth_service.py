"""Simple admin token authentication service."""

from __future__ import annotations

import secrets
import threading
from typing import Optional

from housing.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class AuthService:
    """Validates login credentials and maps bearer tokens to operator names.

    The operator name is what gets recorded as ``allocated_by``,
    ``verified_by`` and ``unverified_by``. Each operator holds one session;
    logging in again replaces it, and the oldest session is dropped once
    ``max_admin_sessions`` are open.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    @property
    def default_operator(self) -> str:
        return self._settings.default_operator

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str, operator: Optional[str] = None) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        operator_name = (operator or "").strip() or self.default_operator
        session_token = secrets.token_urlsafe(32)
        with self._lock:
            for token, name in list(self._sessions.items()):
                if name == operator_name:
                    del self._sessions[token]
            while self._sessions and len(self._sessions) >= self._settings.max_admin_sessions:
                del self._sessions[next(iter(self._sessions))]
            self._sessions[session_token] = operator_name
        return session_token

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def resolve_operator(self, bearer_token: Optional[str]) -> str:
        if not self.auth_enabled:
            return self.default_operator
        if not bearer_token:
            raise InvalidAdminTokenError("Authorization header with Bearer token is required")
        if not self._sessions:
            raise InvalidAdminTokenError("No active session. Login first.")
        operator = self._sessions.get(bearer_token)
        if operator is None:
            raise InvalidAdminTokenError("Invalid bearer token")
        return operator
