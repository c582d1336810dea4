# Request-scoped "current user".
# Created: 2026-10-03
#
# The token validator impersonates the token's owner here; abilities and
# permission checks read it back. A ContextVar keeps concurrent requests apart,
# and the API middleware clears it at the start of every request.

from __future__ import annotations

from contextvars import ContextVar, Token

from albert.users import User, user_can

_current_user: ContextVar[User | None] = ContextVar("albert_current_user", default=None)


def get_current_user() -> User | None:
    return _current_user.get()


def get_current_user_id() -> int:
    """Current user's id, or 0 when nobody is signed in."""
    user = _current_user.get()
    return user.id if user else 0


def set_current_user(user: User | None) -> Token:
    return _current_user.set(user)


def reset_current_user(token: Token) -> None:
    _current_user.reset(token)


def current_user_can(capability: str) -> bool:
    return user_can(_current_user.get(), capability)
