# OAuth2 protocol errors.
# Created: 2026-10-04
#
# Raised by the grants, the authorization server and the resource server.
# Endpoints render them as RFC 6749 error bodies (or error redirects);
# the token validator converts them into ApiError values.

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode


class OAuthServerException(Exception):
    """An OAuth2 error with its wire error type and HTTP status."""

    def __init__(
        self,
        message: str,
        error_type: str,
        http_status: int = 400,
        hint: str | None = None,
        redirect_uri: str | None = None,
        state: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.http_status = http_status
        self.hint = hint
        self.redirect_uri = redirect_uri
        self.state = state
        self.basic_auth_used = False

    def payload(self) -> dict[str, Any]:
        body = {"error": self.error_type, "error_description": self.message}
        if self.hint:
            body["hint"] = self.hint
        return body

    def headers(self) -> dict[str, str]:
        if self.error_type == "invalid_client" and self.basic_auth_used:
            return {"WWW-Authenticate": 'Basic realm="OAuth"'}
        return {}

    def redirect_location(self) -> str | None:
        """Error redirect back to the client, when one is allowed."""
        if not self.redirect_uri:
            return None
        params = self.payload()
        if self.state is not None:
            params["state"] = self.state
        separator = "&" if "?" in self.redirect_uri else "?"
        return f"{self.redirect_uri}{separator}{urlencode(params)}"

    # ------------------------------------------------------------------
    # Named constructors
    # ------------------------------------------------------------------

    @classmethod
    def invalid_request(cls, parameter: str, hint: str | None = None) -> OAuthServerException:
        return cls(
            "The request is missing a required parameter, includes an invalid parameter "
            "value, includes a parameter more than once, or is otherwise malformed.",
            "invalid_request",
            400,
            hint or f"Check the `{parameter}` parameter",
        )

    @classmethod
    def invalid_client(cls, basic_auth_used: bool = False) -> OAuthServerException:
        exc = cls("Client authentication failed", "invalid_client", 401)
        exc.basic_auth_used = basic_auth_used
        return exc

    @classmethod
    def invalid_scope(
        cls, scope: str, redirect_uri: str | None = None, state: str | None = None
    ) -> OAuthServerException:
        return cls(
            "The requested scope is invalid, unknown, or malformed",
            "invalid_scope",
            400,
            f"Check the `{scope}` scope",
            redirect_uri,
            state,
        )

    @classmethod
    def invalid_grant(cls, hint: str | None = None) -> OAuthServerException:
        return cls(
            "The provided authorization grant or refresh token is invalid, expired, "
            "revoked, does not match the redirection URI used in the authorization "
            "request, or was issued to another client.",
            "invalid_grant",
            400,
            hint,
        )

    @classmethod
    def unsupported_grant_type(cls) -> OAuthServerException:
        return cls(
            "The authorization grant type is not supported by the authorization server.",
            "unsupported_grant_type",
            400,
            "Check that all required parameters have been provided",
        )

    @classmethod
    def unsupported_response_type(cls) -> OAuthServerException:
        return cls(
            "The authorization server does not support obtaining an authorization code "
            "using this method.",
            "unsupported_response_type",
            400,
        )

    @classmethod
    def access_denied(
        cls, hint: str | None = None, redirect_uri: str | None = None, state: str | None = None
    ) -> OAuthServerException:
        return cls(
            "The resource owner or authorization server denied the request.",
            "access_denied",
            401,
            hint,
            redirect_uri,
            state,
        )

    @classmethod
    def missing_token(cls) -> OAuthServerException:
        return cls('Missing "Authorization" header', "missing_token", 401)

    @classmethod
    def invalid_token(cls, hint: str | None = None) -> OAuthServerException:
        return cls("The access token is invalid.", "invalid_token", 401, hint)

    @classmethod
    def server_error(cls, hint: str) -> OAuthServerException:
        return cls(
            "The authorization server encountered an unexpected condition which "
            "prevented it from fulfilling the request.",
            "server_error",
            500,
            hint,
        )


class UniqueIdentifierViolation(Exception):
    """A generated code or token identifier already exists in storage."""
