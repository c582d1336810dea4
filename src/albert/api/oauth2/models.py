# OAuth2 entity model.
# Created: 2026-10-04
#
# Plain data carriers. Entities only store the host user id, never other user
# attributes.

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime

DEFAULT_SCOPE = "default"
WILDCARD_REDIRECT = "*"


def utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def generate_identifier(length: int = 40) -> str:
    """Random hex identifier of ``2 * length`` characters."""
    return secrets.token_hex(length)


@dataclass
class Client:
    """Registered OAuth2 client.

    ``redirect_uris`` may hold the wildcard ``"*"``, which accepts any redirect
    URI (clients registered dynamically without one get this).
    """

    identifier: str
    name: str
    redirect_uris: list[str] = field(default_factory=list)
    is_confidential: bool = True
    hashed_secret: str | None = field(default=None, repr=False)
    owner_user_id: int | None = None
    created_at: datetime | None = None

    def allows_redirect(self, redirect_uri: str) -> bool:
        if WILDCARD_REDIRECT in self.redirect_uris:
            return True
        return redirect_uri in self.redirect_uris

    def default_redirect_uri(self) -> str | None:
        """The redirect URI to use when a request omits one."""
        concrete = [u for u in self.redirect_uris if u != WILDCARD_REDIRECT]
        return concrete[0] if len(concrete) == 1 else None


@dataclass(frozen=True)
class Scope:
    identifier: str


@dataclass
class AuthCode:
    """Authorization code. The code handed to the client is an encrypted payload."""

    identifier: str = ""
    client_id: str = ""
    user_id: int = 0
    redirect_uri: str | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: datetime = field(default_factory=utcnow)
    revoked: bool = False


@dataclass
class AccessToken:
    """Access token. Serialized to clients as an RS256 JWT keyed by ``identifier``."""

    identifier: str = ""
    client_id: str = ""
    user_id: int | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: datetime = field(default_factory=utcnow)
    revoked: bool = False
    created_at: datetime | None = None


@dataclass
class RefreshToken:
    identifier: str = ""
    access_token_id: str = ""
    expires_at: datetime = field(default_factory=utcnow)
    revoked: bool = False
