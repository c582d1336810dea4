# Abilities and connections schemas.
# Created: 2026-10-06

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class AbilityInfo(BaseModel):
    id: str
    label: str
    description: str
    category: str
    group: str
    enabled: bool
    annotations: dict[str, Any] = {}


class AbilityListResponse(BaseModel):
    abilities: list[AbilityInfo]
    categories: dict[str, dict[str, str]]


class AbilityToggleResponse(BaseModel):
    id: str
    enabled: bool


class ConnectionInfo(BaseModel):
    """One live access token held by an MCP client for the current user."""

    token_id: str
    client_id: str
    client_name: str
    scopes: list[str]
    created_at: datetime | None = None
    expires_at: datetime
