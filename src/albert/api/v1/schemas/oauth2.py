# OAuth2 schemas.
# Created: 2026-10-05

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration request (RFC 7591)."""

    client_name: str = Field(default="MCP Client", max_length=200)
    redirect_uris: list[str] = Field(default_factory=list)
    token_endpoint_auth_method: Literal["client_secret_post", "client_secret_basic", "none"] = (
        "client_secret_post"
    )


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_secret: str | None = None
    client_name: str
    token_endpoint_auth_method: str
    redirect_uris: list[str] | None = None
    client_id_issued_at: int


class ConsentRequest(BaseModel):
    """Consent decision for a pending authorization request."""

    auth_request_id: str
    approve: Literal["yes", "no"]


class AuthorizeResponse(BaseModel):
    """Pending authorization request, for clients rendering their own consent UI."""

    auth_request_id: str
    client: dict[str, str]
    user: dict[str, str]
    scope: str
    approve_url: str


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str
    revocation_endpoint: str
    response_types_supported: list[str] = ["code"]
    grant_types_supported: list[str] = ["authorization_code", "refresh_token"]
    token_endpoint_auth_methods_supported: list[str] = [
        "client_secret_post",
        "client_secret_basic",
        "none",
    ]
    code_challenge_methods_supported: list[str] = ["S256"]
    scopes_supported: list[str] = ["default"]


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata."""

    resource: str
    authorization_servers: list[str]
    scopes_supported: list[str] = ["default"]
    bearer_methods_supported: list[str] = ["header"]
