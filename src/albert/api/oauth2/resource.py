# OAuth2 resource server.
# Created: 2026-10-04
#
# Validates inbound Bearer access tokens: RS256 signature against the public
# key, expiry against the server clock, and revocation against storage.

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

import jwt

from albert.api.oauth2.exceptions import OAuthServerException
from albert.api.oauth2.keys import KeyManager
from albert.api.oauth2.models import utcnow
from albert.api.oauth2.repositories import AccessTokenRepository
from albert.api.oauth2.server import Clock

logger = logging.getLogger(__name__)

_BEARER_PREFIX = re.compile(r"^\s*Bearer\s+", re.IGNORECASE)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class ResourceServer:
    def __init__(
        self,
        access_tokens: AccessTokenRepository,
        public_key: str,
        clock: Clock | None = None,
    ):
        self.access_tokens = access_tokens
        self.public_key = public_key
        self.clock: Clock = clock or utcnow

    def validate_authenticated_request(self, headers: Mapping[str, str]) -> dict[str, Any]:
        """Validate the request's access token and return its attributes.

        Keys: ``oauth_access_token_id``, ``oauth_client_id``, ``oauth_user_id``
        and ``oauth_scopes``. Raises OAuthServerException on any failure.
        """
        header = _header(headers, "authorization")
        if not header:
            raise OAuthServerException.missing_token()

        token = _BEARER_PREFIX.sub("", header).strip()
        if not token or token == header.strip():
            raise OAuthServerException.invalid_token("Authorization header is not a Bearer token")

        try:
            claims = jwt.decode(
                token,
                self.public_key,
                algorithms=["RS256"],
                options={
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "verify_aud": False,
                    "require": ["jti", "exp"],
                },
            )
        except jwt.InvalidTokenError as exc:
            logger.debug("Access token rejected: %s", exc)
            raise OAuthServerException.invalid_token("Access token could not be verified") from exc

        now = int(self.clock().timestamp())
        if int(claims["exp"]) <= now:
            raise OAuthServerException.invalid_token("Access token is expired")
        if "nbf" in claims and int(claims["nbf"]) > now:
            raise OAuthServerException.invalid_token("Access token is not valid yet")

        token_id = claims["jti"]
        if self.access_tokens.is_access_token_revoked(token_id):
            raise OAuthServerException.invalid_token("Access token has been revoked")

        audience = claims.get("aud", "")
        if isinstance(audience, list):
            audience = audience[0] if audience else ""

        return {
            "oauth_access_token_id": token_id,
            "oauth_client_id": audience,
            "oauth_user_id": claims.get("sub", ""),
            "oauth_scopes": list(claims.get("scopes", [])),
        }


class ResourceServerFactory:
    """Builds the resource server and rebuilds it when the keys change."""

    def __init__(
        self,
        access_tokens: AccessTokenRepository,
        keys: KeyManager,
        clock: Clock | None = None,
    ):
        self.access_tokens = access_tokens
        self.keys = keys
        self.clock = clock
        self._server: ResourceServer | None = None
        self._key_version: str | None = None

    def create(self) -> ResourceServer:
        version = self.keys.get_key_version()
        if self._server is None or version != self._key_version:
            self._server = ResourceServer(
                self.access_tokens, self.keys.get_public_key(), clock=self.clock
            )
            self._key_version = version
        return self._server

    def reset(self) -> None:
        self._server = None
        self._key_version = None
