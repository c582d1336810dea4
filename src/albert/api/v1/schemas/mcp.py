# MCP schemas.
# Created: 2026-10-06

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class JsonRpcRequest(BaseModel):
    """A single JSON-RPC 2.0 request or notification."""

    jsonrpc: Literal["2.0"]
    method: str = Field(..., min_length=1)
    params: dict[str, Any] = {}
    id: int | str | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


class ToolCallParams(BaseModel):
    name: str
    arguments: dict[str, Any] = {}
