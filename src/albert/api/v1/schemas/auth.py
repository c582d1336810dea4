# Auth schemas.
# Created: 2026-10-05

from __future__ import annotations

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Password login request."""

    login: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    redirect_to: str | None = None


class UserInfo(BaseModel):
    id: int
    login: str
    display_name: str
    capabilities: list[str]


class LoginResponse(BaseModel):
    ok: bool = True
    user: UserInfo
    expires_in_hours: int
    redirect_to: str | None = None
