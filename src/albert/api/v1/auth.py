# Auth router: password login, logout, current user.
# Created: 2026-10-05
#
# The login session is what the consent screen and the admin routes rely on.
# OAuth clients never see it.

from __future__ import annotations

import asyncio
import html
import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

from albert.api.deps import require_login
from albert.api.services import AlbertServices, get_services
from albert.api.v1.schemas.auth import LoginRequest, LoginResponse, UserInfo
from albert.security.session_tokens import SESSION_COOKIE
from albert.users import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])

_LOGIN_HTML = """<!DOCTYPE html>
<html><head><title>{site_name} Login</title>
<style>
body {{ font-family: system-ui; max-width: 360px; margin: 60px auto; padding: 20px; }}
input {{ width: 100%; padding: 8px; margin: 6px 0 14px; box-sizing: border-box; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer;
  font-size: 16px; background: #2563eb; color: white; }}
.error {{ color: #b91c1c; }}
</style></head><body>
<h2>Log in to {site_name}</h2>
{error}
<form method="POST" action="/api/v1/auth/login">
<label>Username<input name="login" autocomplete="username"></label>
<label>Password<input name="password" type="password" autocomplete="current-password"></label>
<input type="hidden" name="redirect_to" value="{redirect_to}">
<button type="submit" class="btn">Log in</button>
</form></body></html>"""


def _safe_redirect(target: str | None) -> str | None:
    """Only same-site paths are followed after login.

    Browsers read a backslash as a slash and drop tabs and newlines, so
    targets carrying either could turn into a protocol-relative URL.
    """
    if not target or not target.startswith("/"):
        return None
    if any(ch == "\\" or ord(ch) < 0x20 for ch in target):
        return None
    parsed = urlparse(target)
    if parsed.scheme or parsed.netloc:
        return None
    return target


def _user_info(user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        login=user.login,
        display_name=user.display_name,
        capabilities=sorted(user.capabilities),
    )


@router.get("/auth/login")
async def login_page(
    services: AlbertServices = Depends(get_services),
    redirect_to: str = Query(""),
    error: str = Query(""),
):
    """Show the password login form."""
    body = _LOGIN_HTML.format(
        site_name=html.escape(services.settings.site_name),
        redirect_to=html.escape(redirect_to, quote=True),
        error=f'<p class="error">{html.escape(error)}</p>' if error else "",
    )
    return HTMLResponse(body)


@router.post("/auth/login")
async def login(request: Request, services: AlbertServices = Depends(get_services)):
    """Check a password and set the HTTP-only session cookie.

    Accepts a JSON body (answers JSON) or the HTML form (answers with a redirect).
    """
    client_ip = request.client.host if request.client else "unknown"
    if not services.rate_limits.login.allow(client_ip):
        return JSONResponse(status_code=429, content={"detail": "Too many requests"})

    is_json = request.headers.get("content-type", "").startswith("application/json")
    try:
        raw = await request.json() if is_json else dict(await request.form())
        body = LoginRequest.model_validate(raw)
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="login and password are required")

    user = await asyncio.to_thread(services.users.authenticate, body.login, body.password)
    if user is None:
        logger.warning("Failed login for %s from %s", body.login, client_ip)
        services.audit.log_event(
            "login", body.login, actor=f"ip:{client_ip}", status="denied"
        )
        if not is_json:
            return RedirectResponse(
                "/api/v1/auth/login?error=Invalid+username+or+password", status_code=303
            )
        raise HTTPException(status_code=401, detail="Invalid username or password")

    ttl_hours = services.settings.session_token_ttl_hours
    redirect_to = _safe_redirect(body.redirect_to)
    if is_json:
        response = JSONResponse(
            LoginResponse(
                user=_user_info(user), expires_in_hours=ttl_hours, redirect_to=redirect_to
            ).model_dump()
        )
    else:
        response = RedirectResponse(redirect_to or "/api/v1/auth/me", status_code=303)

    response.set_cookie(
        key=SESSION_COOKIE,
        value=services.sessions.issue(user),
        httponly=True,
        samesite="lax",
        path="/",
        max_age=ttl_hours * 3600,
    )
    logger.info("User %s logged in", user.login)
    return response


@router.post("/auth/logout")
async def logout():
    """Clear the session cookie."""
    response = JSONResponse(content={"ok": True})
    response.delete_cookie(key=SESSION_COOKIE, path="/")
    return response


@router.get("/auth/me", response_model=UserInfo)
async def me(user: User = Depends(require_login)):
    return _user_info(user)
