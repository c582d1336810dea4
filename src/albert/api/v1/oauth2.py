# OAuth2 router: authorize, consent, token, register, revoke, metadata.
# Created: 2026-10-05
#
# The signed-in user approves a client on the consent screen; the pending
# request is parked in a transient for ten minutes between the two steps.

from __future__ import annotations

import asyncio
import html
import logging
import time
import uuid
from typing import Any
from urllib.parse import quote, urlparse

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

from albert.api.oauth2.exceptions import OAuthServerException
from albert.api.oauth2.grants import AuthorizationRequest, client_credentials
from albert.api.oauth2.models import WILDCARD_REDIRECT
from albert.api.services import AlbertServices, get_services
from albert.api.v1.discovery import (
    CACHE_HEADERS,
    authorization_server_metadata,
    protected_resource_metadata,
)
from albert.api.v1.schemas.oauth2 import (
    AuthorizeResponse,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    ConsentRequest,
)
from albert.errors import ApiError
from albert.security.audit import AuditSeverity

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

AUTH_REQUEST_TRANSIENT_PREFIX = "albert_oauth_auth_request_"
AUTH_REQUEST_TTL_SECONDS = 600

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}
_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}

_CONSENT_HTML = """<!DOCTYPE html>
<html><head><title>{site_name} Authorization</title>
<style>
body {{ font-family: system-ui; max-width: 480px; margin: 40px auto; padding: 20px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer; font-size: 16px; }}
.allow {{ background: #2563eb; color: white; }} .allow:hover {{ background: #1d4ed8; }}
.deny {{ background: #e5e7eb; color: #374151; margin-left: 12px; }}
h2 {{ margin-bottom: 8px; }}
.scopes {{ background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0; }}
.scope {{ display: inline-block; background: #dbeafe; padding: 4px 8px;
  border-radius: 4px; margin: 2px; font-size: 14px; }}
</style></head><body>
<h2>Authorize {client_name}</h2>
<p>Signed in as <strong>{display_name}</strong>. This application wants to use the
abilities of {site_name} on your behalf.</p>
<div class="scopes"><strong>Requested access:</strong><br>{scope_badges}</div>
<form method="POST" action="/api/v1/oauth/authorize/consent">
<input type="hidden" name="auth_request_id" value="{auth_request_id}">
<button type="submit" name="approve" value="yes" class="btn allow">Allow</button>
<button type="submit" name="approve" value="no" class="btn deny">Deny</button>
</form></body></html>"""


def _wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "application/json" in accept and "text/html" not in accept


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _oauth_error_response(exc: OAuthServerException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.payload(),
        headers={**exc.headers(), **_NO_STORE},
    )


def _error(code: str, message: str, status: int) -> JSONResponse:
    return JSONResponse(status_code=status, content=ApiError(code, message, status).to_dict())


async def _read_params(request: Request) -> dict[str, Any]:
    """Form-encoded body (the OAuth2 standard) or JSON body."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    return {k: v for k, v in (await request.form()).items() if isinstance(v, str)}


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


@router.get("/oauth/authorize")
async def authorize(request: Request, services: AlbertServices = Depends(get_services)):
    """Validate an authorization request and show the consent screen."""
    user = services.sessions.user_from_request(request)
    if user is None:
        here = request.url.path + (f"?{request.url.query}" if request.url.query else "")
        login_url = f"/api/v1/auth/login?redirect_to={quote(here, safe='')}"
        if _wants_json(request):
            return JSONResponse(
                status_code=401,
                content={
                    "error": "login_required",
                    "message": "Please log in to authorize this application.",
                    "redirect_to": login_url,
                },
            )
        return RedirectResponse(login_url, status_code=302)

    server = services.authorization_servers.create()
    try:
        auth_request = server.validate_authorization_request(dict(request.query_params))
    except OAuthServerException as exc:
        location = exc.redirect_location()
        if location:
            return RedirectResponse(location, status_code=302)
        return _oauth_error_response(exc)

    auth_request.user_id = user.id
    auth_request_id = str(uuid.uuid4())
    services.options.set_transient(
        AUTH_REQUEST_TRANSIENT_PREFIX + auth_request_id,
        auth_request.to_dict(),
        AUTH_REQUEST_TTL_SECONDS,
    )

    scope = " ".join(s.identifier for s in auth_request.scopes)
    if _wants_json(request):
        return AuthorizeResponse(
            auth_request_id=auth_request_id,
            client={"name": auth_request.client.name},
            user={"display_name": user.display_name},
            scope=scope,
            approve_url=f"{services.settings.public_base_url()}/api/v1/oauth/authorize/consent",
        )

    body = _CONSENT_HTML.format(
        site_name=html.escape(services.settings.site_name),
        client_name=html.escape(auth_request.client.name),
        display_name=html.escape(user.display_name),
        scope_badges=" ".join(
            f'<span class="scope">{html.escape(s)}</span>' for s in scope.split()
        ),
        auth_request_id=auth_request_id,
    )
    return HTMLResponse(body)


@router.post("/oauth/authorize/consent")
async def authorize_consent(request: Request, services: AlbertServices = Depends(get_services)):
    """Apply the user's decision and send them back to the client.

    JSON submissions get ``{"redirect_to": ...}``; form submissions a 302.
    """
    user = services.sessions.user_from_request(request)
    if user is None:
        return _error("rest_forbidden", "You must be logged in.", 401)

    try:
        consent = ConsentRequest.model_validate(await _read_params(request))
    except ValidationError:
        return _error("invalid_request", "auth_request_id and approve are required.", 400)

    transient = AUTH_REQUEST_TRANSIENT_PREFIX + consent.auth_request_id
    data = services.options.get_transient(transient)
    if not data:
        return _error("invalid_request", "Authorization request expired or invalid.", 400)
    services.options.delete_transient(transient)

    if data.get("user_id") != user.id:
        logger.warning("Consent submitted by user %s for another user's request", user.id)
        return _error("user_mismatch", "User mismatch.", 403)

    client = services.repositories.clients.get_client_entity(data["client_id"])
    if client is None:
        return _error("invalid_client", "Unknown client.", 400)

    auth_request = AuthorizationRequest.from_dict(data, client)
    auth_request.approved = consent.approve == "yes"

    server = services.authorization_servers.create()
    try:
        location = server.complete_authorization_request(auth_request)
        services.audit.log_event(
            "oauth_authorization_approved", client.identifier, actor=f"user:{user.id}"
        )
    except OAuthServerException as exc:
        if exc.redirect_uri is None:
            exc.redirect_uri = auth_request.redirect_uri
            exc.state = auth_request.state
        location = exc.redirect_location() or auth_request.redirect_uri

    if request.headers.get("content-type", "").startswith("application/json"):
        return {"redirect_to": location}
    return RedirectResponse(location, status_code=302)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@router.post("/oauth/token")
async def token(request: Request, services: AlbertServices = Depends(get_services)):
    """Exchange an authorization code or refresh token for tokens."""
    client_ip = _client_ip(request)
    limit = services.rate_limits.token.check(client_ip)
    if not limit.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "slow_down", "error_description": "Too many requests"},
            headers=limit.headers(),
        )

    form = await _read_params(request)
    headers = request.headers

    def exchange() -> dict[str, Any]:
        server = services.authorization_servers.create()
        return server.respond_to_access_token_request(form, headers)

    try:
        result = await asyncio.to_thread(exchange)
    except OAuthServerException as exc:
        logger.info("Token request rejected: %s (%s)", exc.error_type, exc.hint)
        if exc.error_type == "invalid_grant":
            services.audit.log_event(
                "oauth_token_issued",
                str(form.get("client_id", "")),
                actor=f"ip:{client_ip}",
                status="denied",
                severity=AuditSeverity.ALERT,
                hint=exc.hint,
            )
        return _oauth_error_response(exc)
    except Exception:
        logger.exception("Token endpoint failed")
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "error_description": "The authorization server encountered an unexpected error.",
            },
            headers=_NO_STORE,
        )

    services.audit.log_event(
        "oauth_token_issued",
        client_credentials(form, request.headers)[0] or "",
        actor=f"ip:{client_ip}",
        grant_type=form.get("grant_type"),
    )
    return JSONResponse(result, headers=_NO_STORE)


@router.post("/oauth/revoke")
async def revoke(request: Request, services: AlbertServices = Depends(get_services)):
    """Revoke an access or refresh token (RFC 7009). Always 200 once the client is known."""
    form = await _read_params(request)
    return await asyncio.to_thread(_revoke, services, form, request.headers)


def _revoke(services: AlbertServices, form: dict[str, Any], headers) -> JSONResponse:
    client_id, client_secret, basic_used = client_credentials(form, headers)
    clients = services.repositories.clients
    if not client_id or not clients.validate_client(client_id, client_secret):
        return _oauth_error_response(OAuthServerException.invalid_client(basic_used))

    token_value = form.get("token")
    if not token_value:
        return _oauth_error_response(OAuthServerException.invalid_request("token"))

    server = services.authorization_servers.create()
    revoked = server.revoke_token(
        token_value, form.get("token_type_hint"), clients.get_client_entity(client_id)
    )
    if revoked:
        services.audit.log_event("oauth_token_revoked", client_id, actor=f"client:{client_id}")
    return JSONResponse({}, headers=_NO_STORE)


# ---------------------------------------------------------------------------
# Dynamic client registration (RFC 7591)
# ---------------------------------------------------------------------------


def is_valid_redirect_uri(uri: str) -> bool:
    """HTTPS, or plain HTTP on a loopback host. No fragment."""
    try:
        parsed = urlparse(uri)
    except ValueError:
        return False
    if not parsed.scheme or not parsed.hostname:
        return False
    if parsed.scheme != "https" and parsed.hostname not in _LOOPBACK_HOSTS:
        return False
    return not parsed.fragment


@router.post("/oauth/register", status_code=201)
async def register_client(request: Request, services: AlbertServices = Depends(get_services)):
    """Register a client. Public endpoint."""
    client_ip = _client_ip(request)
    if not services.rate_limits.registration.allow(client_ip):
        return JSONResponse(status_code=429, content={"detail": "Too many requests"})

    try:
        raw = await request.json()
        body = ClientRegistrationRequest.model_validate(raw if raw is not None else {})
    except (ValueError, ValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_client_metadata",
                "error_description": "Client metadata is malformed.",
            },
        )

    for uri in body.redirect_uris:
        if not is_valid_redirect_uri(uri):
            return JSONResponse(
                status_code=400,
                content={
                    "error": "invalid_redirect_uri",
                    "error_description": "Invalid redirect URI provided.",
                },
            )

    is_confidential = body.token_endpoint_auth_method != "none"
    client, secret = await asyncio.to_thread(
        services.repositories.clients.create_client,
        body.client_name,
        body.redirect_uris or [WILDCARD_REDIRECT],
        is_confidential=is_confidential,
    )
    services.audit.log_event(
        "oauth_client_registered",
        client.identifier,
        actor=f"ip:{client_ip}",
        client_name=body.client_name,
        confidential=is_confidential,
    )

    response = ClientRegistrationResponse(
        client_id=client.identifier,
        client_secret=secret,
        client_name=client.name,
        token_endpoint_auth_method=body.token_endpoint_auth_method,
        redirect_uris=body.redirect_uris or None,
        client_id_issued_at=int(time.time()),
    )
    return JSONResponse(
        status_code=201, content=response.model_dump(exclude_none=True), headers=_NO_STORE
    )


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@router.get("/oauth/metadata")
async def metadata(services: AlbertServices = Depends(get_services)):
    body = authorization_server_metadata(services.settings)
    return JSONResponse(body.model_dump(), headers=CACHE_HEADERS)


@router.get("/oauth/resource")
async def resource_metadata(services: AlbertServices = Depends(get_services)):
    body = protected_resource_metadata(services.settings)
    return JSONResponse(body.model_dump(), headers=CACHE_HEADERS)
