# OAuth2 grants.
# Created: 2026-10-04
#
# Authorization code grant (RFC 6749 4.1, with PKCE per RFC 7636) and refresh
# token grant (RFC 6749 6, with rotation). The authorization server wires
# repositories, keys and TTLs into each grant via enable_grant_type().

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import jwt

from albert.api.oauth2.exceptions import OAuthServerException, UniqueIdentifierViolation
from albert.api.oauth2.models import (
    DEFAULT_SCOPE,
    AccessToken,
    Client,
    RefreshToken,
    Scope,
    generate_identifier,
)

if TYPE_CHECKING:
    from albert.api.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)

MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS = 10

CODE_CHALLENGE_METHODS = ("S256", "plain")
_PKCE_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")
_BASIC_PATTERN = re.compile(r"^Basic\s+(.+)$", re.IGNORECASE)


def _timestamp(value: datetime) -> int:
    return int(value.timestamp())


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def encode_access_token(token: AccessToken, private_key: str, issued_at: datetime) -> str:
    """Serialize an access token as an RS256 JWT."""
    claims = {
        "aud": token.client_id,
        "jti": token.identifier,
        "iat": _timestamp(issued_at),
        "nbf": _timestamp(issued_at),
        "exp": _timestamp(token.expires_at),
        "sub": str(token.user_id) if token.user_id is not None else "",
        "scopes": token.scopes,
    }
    return jwt.encode(claims, private_key, algorithm="RS256")


def client_credentials(
    form: Mapping[str, Any], headers: Mapping[str, str]
) -> tuple[str | None, str | None, bool]:
    """Client id and secret from HTTP Basic auth or the form body.

    Returns (client_id, client_secret, basic_auth_used).
    """
    header = headers.get("authorization") or headers.get("Authorization") or ""
    match = _BASIC_PATTERN.match(header.strip())
    if match:
        try:
            decoded = base64.b64decode(match.group(1), validate=True).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            decoded = ""
        if ":" in decoded:
            basic_id, basic_secret = decoded.split(":", 1)
            return basic_id, basic_secret or None, True
    return form.get("client_id"), form.get("client_secret"), False


@dataclass
class AuthorizationRequest:
    """A validated authorization request awaiting the user's decision."""

    client: Client
    redirect_uri: str
    grant_type: str = "authorization_code"
    state: str | None = None
    scopes: list[Scope] = field(default_factory=list)
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    user_id: int | None = None
    approved: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serializable form (kept while the consent screen is shown)."""
        return {
            "client_id": self.client.identifier,
            "redirect_uri": self.redirect_uri,
            "grant_type": self.grant_type,
            "state": self.state,
            "scopes": [s.identifier for s in self.scopes],
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], client: Client) -> AuthorizationRequest:
        return cls(
            client=client,
            redirect_uri=data["redirect_uri"],
            grant_type=data.get("grant_type", "authorization_code"),
            state=data.get("state"),
            scopes=[Scope(s) for s in data.get("scopes", [])],
            code_challenge=data.get("code_challenge"),
            code_challenge_method=data.get("code_challenge_method"),
            user_id=data.get("user_id"),
        )


class BaseGrant:
    """Shared client authentication and token issuing."""

    grant_type: str = ""

    def __init__(self):
        self.server: AuthorizationServer | None = None
        self.access_token_ttl = timedelta(hours=1)
        self.refresh_token_ttl = timedelta(days=30)

    def bind(self, server: AuthorizationServer, access_token_ttl: timedelta) -> None:
        self.server = server
        self.access_token_ttl = access_token_ttl

    @property
    def _server(self) -> AuthorizationServer:
        if self.server is None:
            raise RuntimeError(f"Grant {self.grant_type} is not enabled on a server")
        return self.server

    def _now(self) -> datetime:
        return self._server.clock()

    def authenticate_client(self, form: Mapping[str, Any], headers: Mapping[str, str]) -> Client:
        client_id, client_secret, basic_used = client_credentials(form, headers)
        if not client_id:
            raise OAuthServerException.invalid_request("client_id")

        repos = self._server.repositories
        if not repos.clients.validate_client(client_id, client_secret, self.grant_type):
            logger.warning("Client authentication failed for %s", client_id)
            raise OAuthServerException.invalid_client(basic_auth_used=basic_used)

        client = repos.clients.get_client_entity(client_id)
        if client is None:
            raise OAuthServerException.invalid_client()
        return client

    def _with_unique_identifier(self, entity: Any, persist: Callable[[Any], None]) -> None:
        for attempt in range(MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS):
            entity.identifier = generate_identifier()
            try:
                persist(entity)
                return
            except UniqueIdentifierViolation:
                logger.debug("Identifier collision on attempt %d", attempt + 1)
        raise OAuthServerException.server_error("Could not create a unique identifier")

    def issue_access_token(
        self, client: Client, user_id: int | None, scopes: list[Scope]
    ) -> AccessToken:
        repos = self._server.repositories
        token = repos.access_tokens.get_new_token(client, scopes, user_id)
        token.expires_at = self._now() + self.access_token_ttl
        self._with_unique_identifier(token, repos.access_tokens.persist_new_access_token)
        return token

    def issue_refresh_token(self, access_token: AccessToken) -> RefreshToken:
        repos = self._server.repositories
        token = repos.refresh_tokens.get_new_refresh_token()
        token.access_token_id = access_token.identifier
        token.expires_at = self._now() + self.refresh_token_ttl
        self._with_unique_identifier(token, repos.refresh_tokens.persist_new_refresh_token)
        return token

    def token_response(
        self, access_token: AccessToken, refresh_token: RefreshToken
    ) -> dict[str, Any]:
        server = self._server
        refresh_payload = {
            "client_id": access_token.client_id,
            "refresh_token_id": refresh_token.identifier,
            "access_token_id": access_token.identifier,
            "scopes": access_token.scopes,
            "user_id": access_token.user_id,
            "expire_time": _timestamp(refresh_token.expires_at),
        }
        issued_at = access_token.expires_at - self.access_token_ttl
        return {
            "token_type": "Bearer",
            "expires_in": int(self.access_token_ttl.total_seconds()),
            "access_token": encode_access_token(access_token, server.private_key, issued_at),
            "refresh_token": server.crypt.encrypt(refresh_payload),
        }

    def respond_to_access_token_request(
        self, form: Mapping[str, Any], headers: Mapping[str, str]
    ) -> dict[str, Any]:
        raise NotImplementedError


class AuthCodeGrant(BaseGrant):
    """Authorization code grant. Public clients must use PKCE."""

    grant_type = "authorization_code"

    def __init__(self, auth_code_ttl: timedelta, refresh_token_ttl: timedelta | None = None):
        super().__init__()
        self.auth_code_ttl = auth_code_ttl
        if refresh_token_ttl is not None:
            self.refresh_token_ttl = refresh_token_ttl

    def can_respond_to_authorization_request(self, params: Mapping[str, Any]) -> bool:
        return params.get("response_type") == "code" and bool(params.get("client_id"))

    def validate_authorization_request(self, params: Mapping[str, Any]) -> AuthorizationRequest:
        repos = self._server.repositories

        client_id = params.get("client_id")
        if not client_id:
            raise OAuthServerException.invalid_request("client_id")
        client = repos.clients.get_client_entity(client_id)
        if client is None:
            raise OAuthServerException.invalid_client()

        redirect_uri = params.get("redirect_uri")
        if redirect_uri:
            if not client.allows_redirect(redirect_uri):
                logger.warning("Redirect URI %s not allowed for %s", redirect_uri, client_id)
                raise OAuthServerException.invalid_client()
        else:
            redirect_uri = client.default_redirect_uri()
            if not redirect_uri:
                raise OAuthServerException.invalid_request("redirect_uri")

        state = params.get("state")

        scopes: list[Scope] = []
        for identifier in (params.get("scope") or DEFAULT_SCOPE).split():
            scope = repos.scopes.get_scope_entity_by_identifier(identifier)
            if scope is None:
                raise OAuthServerException.invalid_scope(identifier, redirect_uri, state)
            scopes.append(scope)

        code_challenge = params.get("code_challenge")
        code_challenge_method = None
        if code_challenge:
            code_challenge_method = params.get("code_challenge_method") or "plain"
            if code_challenge_method not in CODE_CHALLENGE_METHODS:
                raise OAuthServerException.invalid_request(
                    "code_challenge_method",
                    "Code challenge method must be one of " + ", ".join(
                        f"`{m}`" for m in CODE_CHALLENGE_METHODS
                    ),
                )
            if not _PKCE_PATTERN.match(code_challenge):
                raise OAuthServerException.invalid_request(
                    "code_challenge",
                    "Code challenge must follow the specifications of RFC-7636.",
                )
        elif not client.is_confidential:
            raise OAuthServerException.invalid_request(
                "code_challenge", "Code challenge must be provided for public clients"
            )

        return AuthorizationRequest(
            client=client,
            redirect_uri=redirect_uri,
            grant_type=self.grant_type,
            state=state,
            scopes=scopes,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )

    def complete_authorization_request(self, request: AuthorizationRequest) -> str:
        """Issue the code and return the redirect location.

        Raises ``access_denied`` (carrying the client's redirect URI) when the
        user did not approve.
        """
        if request.user_id is None:
            raise ValueError("The authorization request has no user")

        if not request.approved:
            raise OAuthServerException.access_denied(
                "The user denied the request", request.redirect_uri, request.state
            )

        server = self._server
        repos = server.repositories
        scopes = repos.scopes.finalize_scopes(
            request.scopes, self.grant_type, request.client, request.user_id
        )

        code = repos.auth_codes.get_new_auth_code()
        code.client_id = request.client.identifier
        code.user_id = request.user_id
        code.redirect_uri = request.redirect_uri
        code.scopes = [s.identifier for s in scopes]
        code.expires_at = self._now() + self.auth_code_ttl
        self._with_unique_identifier(code, repos.auth_codes.persist_new_auth_code)

        payload = {
            "client_id": code.client_id,
            "redirect_uri": code.redirect_uri,
            "auth_code_id": code.identifier,
            "scopes": code.scopes,
            "user_id": code.user_id,
            "expire_time": _timestamp(code.expires_at),
            "code_challenge": request.code_challenge,
            "code_challenge_method": request.code_challenge_method,
        }
        params = {"code": server.crypt.encrypt(payload)}
        if request.state is not None:
            params["state"] = request.state
        separator = "&" if "?" in request.redirect_uri else "?"
        logger.info("Issued authorization code for client %s", code.client_id)
        return f"{request.redirect_uri}{separator}{urlencode(params)}"

    def _verify_code_verifier(self, payload: Mapping[str, Any], form: Mapping[str, Any]) -> None:
        challenge = payload.get("code_challenge")
        if not challenge:
            return

        verifier = form.get("code_verifier")
        if not verifier:
            raise OAuthServerException.invalid_request("code_verifier")
        if not _PKCE_PATTERN.match(verifier):
            raise OAuthServerException.invalid_request(
                "code_verifier", "Code verifier must follow the specifications of RFC-7636."
            )

        method = payload.get("code_challenge_method") or "plain"
        expected = s256_challenge(verifier) if method == "S256" else verifier
        if not hmac.compare_digest(expected, challenge):
            raise OAuthServerException.invalid_grant("Failed to verify `code_verifier`.")

    def respond_to_access_token_request(
        self, form: Mapping[str, Any], headers: Mapping[str, str]
    ) -> dict[str, Any]:
        server = self._server
        repos = server.repositories
        client = self.authenticate_client(form, headers)

        encrypted = form.get("code")
        if not encrypted:
            raise OAuthServerException.invalid_request("code")
        try:
            payload = server.crypt.decrypt(encrypted)
        except ValueError as exc:
            raise OAuthServerException.invalid_request(
                "code", "Cannot decrypt the authorization code"
            ) from exc

        if payload.get("client_id") != client.identifier:
            raise OAuthServerException.invalid_request(
                "code", "Authorization code was not issued to this client"
            )

        issued_redirect = payload.get("redirect_uri")
        if issued_redirect:
            redirect_uri = form.get("redirect_uri")
            if redirect_uri is None:
                raise OAuthServerException.invalid_request("redirect_uri")
            if redirect_uri != issued_redirect:
                raise OAuthServerException.invalid_request("redirect_uri", "Invalid redirect URI")

        now = self._now()
        if int(payload.get("expire_time", 0)) < _timestamp(now):
            raise OAuthServerException.invalid_grant("Authorization code has expired")

        self._verify_code_verifier(payload, form)

        scopes = [Scope(s) for s in payload.get("scopes", [])]
        with server.db.transaction():
            if not repos.auth_codes.consume_auth_code(payload["auth_code_id"], now):
                logger.warning("Rejected reused or revoked authorization code")
                raise OAuthServerException.invalid_grant("Authorization code has been revoked")
            access_token = self.issue_access_token(client, payload.get("user_id"), scopes)
            refresh_token = self.issue_refresh_token(access_token)

        logger.info("Issued access token for client %s", client.identifier)
        return self.token_response(access_token, refresh_token)


class RefreshTokenGrant(BaseGrant):
    """Refresh token grant. The presented token and its access token are revoked."""

    grant_type = "refresh_token"

    def __init__(self, refresh_token_ttl: timedelta | None = None):
        super().__init__()
        if refresh_token_ttl is not None:
            self.refresh_token_ttl = refresh_token_ttl

    def respond_to_access_token_request(
        self, form: Mapping[str, Any], headers: Mapping[str, str]
    ) -> dict[str, Any]:
        server = self._server
        repos = server.repositories
        client = self.authenticate_client(form, headers)

        encrypted = form.get("refresh_token")
        if not encrypted:
            raise OAuthServerException.invalid_request("refresh_token")
        try:
            payload = server.crypt.decrypt(encrypted)
        except ValueError as exc:
            raise OAuthServerException.invalid_request(
                "refresh_token", "Cannot decrypt the refresh token"
            ) from exc

        if payload.get("client_id") != client.identifier:
            logger.warning("Refresh token presented by a different client %s", client.identifier)
            raise OAuthServerException.invalid_request(
                "refresh_token", "Token is not linked to client"
            )

        now = self._now()
        if int(payload.get("expire_time", 0)) < _timestamp(now):
            raise OAuthServerException.invalid_grant("Token has expired")

        scopes = [Scope(s) for s in payload.get("scopes", [])]
        with server.db.transaction():
            if not repos.refresh_tokens.consume_refresh_token(payload["refresh_token_id"], now):
                logger.warning("Rejected reused or revoked refresh token")
                raise OAuthServerException.invalid_grant("Token has been revoked")
            repos.access_tokens.revoke_access_token(payload["access_token_id"])
            access_token = self.issue_access_token(client, payload.get("user_id"), scopes)
            refresh_token = self.issue_refresh_token(access_token)

        logger.info("Rotated refresh token for client %s", client.identifier)
        return self.token_response(access_token, refresh_token)
