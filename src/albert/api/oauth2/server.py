# OAuth2 authorization server.
# Created: 2026-10-04
#
# AuthorizationServer dispatches authorization and token requests to the
# enabled grants. AuthorizationServerFactory builds the one configured server
# at startup; it is held by the service container and passed to the routes.

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

import jwt

from albert.api.oauth2.crypt import PayloadCrypt
from albert.api.oauth2.exceptions import OAuthServerException
from albert.api.oauth2.grants import (
    AuthCodeGrant,
    AuthorizationRequest,
    BaseGrant,
    RefreshTokenGrant,
)
from albert.api.oauth2.keys import KeyManager
from albert.api.oauth2.models import Client, utcnow
from albert.api.oauth2.repositories import OAuthRepositories
from albert.db import Database

logger = logging.getLogger(__name__)

# Token lifetimes
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=30)
AUTH_CODE_TTL = timedelta(minutes=10)

Clock = Callable[[], datetime]


class AuthorizationServer:
    """Authorization endpoint and token endpoint logic."""

    def __init__(
        self,
        db: Database,
        repositories: OAuthRepositories,
        private_key: str,
        public_key: str,
        encryption_key: str,
        clock: Clock | None = None,
    ):
        self.db = db
        self.repositories = repositories
        self.private_key = private_key
        self.public_key = public_key
        self.crypt = PayloadCrypt(encryption_key)
        self.clock: Clock = clock or utcnow
        self._grants: dict[str, BaseGrant] = {}

    def enable_grant_type(self, grant: BaseGrant, access_token_ttl: timedelta) -> None:
        grant.bind(self, access_token_ttl)
        self._grants[grant.grant_type] = grant

    @property
    def grant_types(self) -> list[str]:
        return list(self._grants)

    def _auth_code_grant(self) -> AuthCodeGrant:
        grant = self._grants.get("authorization_code")
        if not isinstance(grant, AuthCodeGrant):
            raise OAuthServerException.unsupported_response_type()
        return grant

    def validate_authorization_request(self, params: Mapping[str, Any]) -> AuthorizationRequest:
        grant = self._auth_code_grant()
        if not grant.can_respond_to_authorization_request(params):
            if not params.get("client_id"):
                raise OAuthServerException.invalid_request("client_id")
            raise OAuthServerException.unsupported_response_type()
        return grant.validate_authorization_request(params)

    def complete_authorization_request(self, request: AuthorizationRequest) -> str:
        """Return the redirect location for an approved (or denied) request."""
        return self._auth_code_grant().complete_authorization_request(request)

    def respond_to_access_token_request(
        self, form: Mapping[str, Any], headers: Mapping[str, str]
    ) -> dict[str, Any]:
        grant = self._grants.get(form.get("grant_type") or "")
        if grant is None:
            raise OAuthServerException.unsupported_grant_type()
        return grant.respond_to_access_token_request(form, headers)

    def revoke_token(
        self, token: str, token_type_hint: str | None = None, client: Client | None = None
    ) -> bool:
        """Revoke an access token or refresh token (RFC 7009).

        Revoking either member of a pair revokes the other. Tokens issued to a
        different client than *client* are left alone. Returns True if anything
        was revoked.
        """
        order = ("refresh_token", "access_token")
        if token_type_hint != "refresh_token":
            order = ("access_token", "refresh_token")

        for kind in order:
            if kind == "access_token":
                revoked = self._revoke_access_token(token, client)
            else:
                revoked = self._revoke_refresh_token(token, client)
            if revoked is not None:
                return revoked
        return False

    def _revoke_access_token(self, token: str, client: Client | None) -> bool | None:
        try:
            claims = jwt.decode(
                token,
                self.public_key,
                algorithms=["RS256"],
                options={"verify_exp": False, "verify_nbf": False, "verify_aud": False},
            )
        except jwt.InvalidTokenError:
            return None

        if client is not None and claims.get("aud") != client.identifier:
            return False
        token_id = claims.get("jti", "")
        repos = self.repositories
        with self.db.transaction():
            revoked = repos.access_tokens.revoke_access_token(token_id)
            repos.refresh_tokens.revoke_refresh_tokens_by_access_token(token_id)
        logger.info("Revoked access token %s", token_id[:8])
        return revoked

    def _revoke_refresh_token(self, token: str, client: Client | None) -> bool | None:
        try:
            payload = self.crypt.decrypt(token)
        except ValueError:
            return None

        if client is not None and payload.get("client_id") != client.identifier:
            return False
        repos = self.repositories
        with self.db.transaction():
            revoked = repos.refresh_tokens.revoke_refresh_token(payload.get("refresh_token_id", ""))
            repos.access_tokens.revoke_access_token(payload.get("access_token_id", ""))
        logger.info("Revoked refresh token for client %s", payload.get("client_id"))
        return revoked


class AuthorizationServerFactory:
    """Builds the configured authorization server and keeps it.

    The server is rebuilt when the stored key version differs from the one it
    was built with, which covers a regeneration done by another process.
    ``reset()`` drops it outright.
    """

    def __init__(
        self,
        db: Database,
        repositories: OAuthRepositories,
        keys: KeyManager,
        clock: Clock | None = None,
    ):
        self.db = db
        self.repositories = repositories
        self.keys = keys
        self.clock = clock
        self._server: AuthorizationServer | None = None
        self._key_version: str | None = None

    def create(self) -> AuthorizationServer:
        version = self.keys.get_key_version()
        if self._server is not None and version == self._key_version:
            return self._server

        server = AuthorizationServer(
            db=self.db,
            repositories=self.repositories,
            private_key=self.keys.get_private_key(),
            public_key=self.keys.get_public_key(),
            encryption_key=self.keys.get_encryption_key(),
            clock=self.clock,
        )
        server.enable_grant_type(
            AuthCodeGrant(AUTH_CODE_TTL, refresh_token_ttl=REFRESH_TOKEN_TTL), ACCESS_TOKEN_TTL
        )
        server.enable_grant_type(
            RefreshTokenGrant(refresh_token_ttl=REFRESH_TOKEN_TTL), ACCESS_TOKEN_TTL
        )
        self._server = server
        self._key_version = version
        logger.debug("Authorization server created for key version %s", version)
        return server

    def reset(self) -> None:
        self._server = None
        self._key_version = None
