"""HMAC-based stateless login sessions with TTL.

Token format: ``{user_id}:{expires_unix}:{hex_hmac}``

The signing secret lives in the options table, so deleting it signs every
browser out at once. No server-side session store is needed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from typing import Any

from albert.options import OptionStore
from albert.users import User, UserStore

__all__ = [
    "SESSION_COOKIE",
    "SESSION_SECRET_OPTION",
    "SessionAuth",
    "create_session_token",
    "verify_session_token",
]

SESSION_COOKIE = "albert_session"
SESSION_SECRET_OPTION = "albert_session_secret"


def create_session_token(secret: str, user_id: int, ttl_hours: int = 24) -> str:
    """Issue a session token for *user_id* that expires after *ttl_hours*."""
    expires = int(time.time()) + ttl_hours * 3600
    sig = _sign(secret, f"{user_id}:{expires}")
    return f"{user_id}:{expires}:{sig}"


def verify_session_token(token: str, secret: str) -> int | None:
    """Return the user id of a valid, unexpired token, else None."""
    parts = token.split(":")
    if len(parts) != 3:
        return None

    user_str, expires_str, sig = parts
    try:
        user_id = int(user_str)
        expires = int(expires_str)
    except ValueError:
        return None

    if time.time() > expires:
        return None

    expected = _sign(secret, f"{user_str}:{expires_str}")
    if not hmac.compare_digest(sig, expected):
        return None
    return user_id


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()


class SessionAuth:
    """Cookie login for the consent screen and admin endpoints."""

    def __init__(self, options: OptionStore, users: UserStore, ttl_hours: int = 24):
        self.options = options
        self.users = users
        self.ttl_hours = ttl_hours

    def _secret(self) -> str:
        return self.options.get_or_add(SESSION_SECRET_OPTION, lambda: secrets.token_hex(32))

    def issue(self, user: User) -> str:
        return create_session_token(self._secret(), user.id, self.ttl_hours)

    def user_from_token(self, token: str | None) -> User | None:
        if not token:
            return None
        user_id = verify_session_token(token, self._secret())
        if user_id is None:
            return None
        return self.users.get_user_by_id(user_id)

    def user_from_request(self, request: Any) -> User | None:
        """Signed-in user of a request carrying the session cookie."""
        cookies = getattr(request, "cookies", None) or {}
        return self.user_from_token(cookies.get(SESSION_COOKIE))
