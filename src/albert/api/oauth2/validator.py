# Bearer token validation for protected endpoints.
# Created: 2026-10-05
#
# Bridges inbound requests to the resource server and converts protocol
# exceptions into ApiError values. Every successful check makes the token's
# owner the current user for the rest of the request.

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from typing import Any

from albert.api.oauth2.exceptions import OAuthServerException
from albert.api.oauth2.resource import ResourceServerFactory
from albert.context import set_current_user
from albert.errors import ApiError, is_error
from albert.security.session_tokens import SessionAuth
from albert.users import User, UserStore

logger = logging.getLogger(__name__)

_BEARER_PATTERN = re.compile(r"^\s*Bearer\s+(.+?)\s*$", re.IGNORECASE)

PermissionCallback = Callable[[Any], "bool | ApiError"]


def _authorization_header(request: Any) -> str | None:
    headers = getattr(request, "headers", None) or {}
    return headers.get("authorization") or headers.get("Authorization")


class TokenValidator:
    """Validates Bearer tokens and resolves them to host users."""

    def __init__(
        self,
        resource_servers: ResourceServerFactory,
        users: UserStore,
        session_auth: SessionAuth | None = None,
    ):
        self.resource_servers = resource_servers
        self.users = users
        self.session_auth = session_auth

    @staticmethod
    def get_bearer_token(request: Any) -> str | None:
        """Token from an ``Authorization: Bearer <token>`` header, if any."""
        header = _authorization_header(request)
        if not header:
            return None
        match = _BEARER_PATTERN.match(header)
        return match.group(1) if match else None

    def _validate(self, request: Any) -> dict[str, Any] | ApiError:
        headers = getattr(request, "headers", None) or {}
        try:
            return self.resource_servers.create().validate_authenticated_request(headers)
        except OAuthServerException as exc:
            logger.debug("Token validation failed: %s (%s)", exc.error_type, exc.hint)
            return ApiError(
                code=f"oauth_{exc.error_type}",
                message=exc.hint or exc.message,
                status=401,
            )
        except Exception as exc:
            logger.exception("Unexpected error while validating an access token")
            return ApiError(code="oauth_error", message=str(exc), status=500)

    def _resolve_user(self, user_id: Any) -> User | ApiError:
        if not user_id:
            return ApiError("oauth_invalid_token", "Invalid token: no user ID", 401)
        user = self.users.get_user_by_id(user_id)
        if user is None:
            return ApiError("oauth_user_not_found", "User not found", 401)
        return user

    def validate_request(self, request: Any) -> User | ApiError:
        """Validate the request's token and return its user."""
        attributes = self._validate(request)
        if is_error(attributes):
            return attributes
        return self._resolve_user(attributes.get("oauth_user_id"))

    def get_token_metadata(self, request: Any) -> dict[str, Any] | ApiError:
        attributes = self._validate(request)
        if is_error(attributes):
            return attributes
        return {
            "user_id": attributes.get("oauth_user_id"),
            "client_id": attributes.get("oauth_client_id"),
            "access_token_id": attributes.get("oauth_access_token_id"),
            "scopes": attributes.get("oauth_scopes", []),
        }

    def has_valid_token(self, request: Any) -> bool:
        return not is_error(self.validate_request(request))

    def permission_callback(self) -> PermissionCallback:
        """Guard accepting a valid token, or an existing login session.

        The session fallback keeps protected endpoints usable from a signed-in
        browser. Without either, the token error is returned.
        """

        def check(request: Any) -> bool | ApiError:
            user = self.validate_request(request)
            if is_error(user):
                if self.session_auth is not None:
                    session_user = self.session_auth.user_from_request(request)
                    if session_user is not None:
                        set_current_user(session_user)
                        return True
                return user
            set_current_user(user)
            return True

        return check

    def require_scopes(self, required_scopes: Iterable[str]) -> PermissionCallback:
        """Guard requiring a valid token that carries every scope listed."""
        required = list(required_scopes)

        def check(request: Any) -> bool | ApiError:
            metadata = self.get_token_metadata(request)
            if is_error(metadata):
                return metadata

            granted = set(metadata["scopes"])
            for scope in required:
                if scope not in granted:
                    return ApiError(
                        "oauth_insufficient_scope",
                        f"Missing required scope: {scope}",
                        403,
                        {"required_scope": scope},
                    )

            user = self._resolve_user(metadata["user_id"])
            if is_error(user):
                return user
            set_current_user(user)
            return True

        return check
