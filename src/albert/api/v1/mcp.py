# MCP router: JSON-RPC over HTTP, gated by OAuth Bearer tokens.
# Created: 2026-10-06
#
# Exposes three adapter tools. Abilities are not listed as tools themselves:
# clients discover them, inspect one, then execute it by name. Every execution
# goes through AbilitiesManager.guarded_execute().

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from albert import __version__
from albert.abilities import BaseAbility
from albert.api.oauth2.validator import TokenValidator
from albert.api.services import AlbertServices, get_services
from albert.api.v1.discovery import resource_metadata_url
from albert.api.v1.schemas.mcp import JsonRpcRequest, ToolCallParams
from albert.context import set_current_user
from albert.errors import ApiError, is_error
from albert.users import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["MCP"])

PROTOCOL_VERSION = "2025-03-26"
SERVER_NAME = "albert"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

DISCOVER_TOOL = "mcp-adapter-discover-abilities"
INFO_TOOL = "mcp-adapter-get-ability-info"
EXECUTE_TOOL = "mcp-adapter-execute-ability"

_READ_ONLY = {"readOnlyHint": True, "destructiveHint": False, "idempotentHint": True}

TOOLS: list[dict[str, Any]] = [
    {
        "name": DISCOVER_TOOL,
        "description": "List the abilities available on this site.",
        "inputSchema": {"type": "object", "properties": {}},
        "annotations": _READ_ONLY,
    },
    {
        "name": INFO_TOOL,
        "description": "Get the description and input/output schemas of one ability.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "ability_name": {"type": "string", "description": "Ability id, e.g. core/site-info"}
            },
            "required": ["ability_name"],
        },
        "annotations": _READ_ONLY,
    },
    {
        "name": EXECUTE_TOOL,
        "description": "Execute an ability with the given parameters.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "ability_name": {"type": "string"},
                "parameters": {"type": "object"},
            },
            "required": ["ability_name"],
        },
        "annotations": {"readOnlyHint": False, "destructiveHint": True, "idempotentHint": False},
    },
]


class ToolError(Exception):
    """A tool failure reported to the client as an ``isError`` result."""

    def __init__(self, error: ApiError):
        super().__init__(error.message)
        self.error = error


def _rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "result": result, "id": request_id}


def _rpc_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": request_id}


def _text_result(data: dict[str, Any], failed: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {
        "content": [{"type": "text", "text": json.dumps(data, default=str)}],
        "structuredContent": data,
    }
    if failed:
        result["isError"] = True
    return result


def is_exposed(ability: BaseAbility) -> bool:
    """Abilities are exposed over MCP unless their meta opts out."""
    return ability.meta.get("mcp", {}).get("public", True) is not False


def _exposed_ability(services: AlbertServices, name: Any) -> BaseAbility:
    if not isinstance(name, str) or not name:
        raise ToolError(ApiError("missing_ability_name", "ability_name is required.", 400))
    ability = services.abilities.get_ability(name)
    if ability is None or not is_exposed(ability):
        raise ToolError(
            ApiError("ability_not_found", f"Ability '{name}' not found.", 404, {"ability": name})
        )
    return ability


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def _discover(services: AlbertServices, arguments: dict[str, Any]) -> dict[str, Any]:
    abilities = [
        {"name": a.id, "label": a.label, "description": a.description}
        for a in services.abilities.get_abilities(include_disabled=False)
        if is_exposed(a)
    ]
    return {"abilities": abilities}


def _ability_info(services: AlbertServices, arguments: dict[str, Any]) -> dict[str, Any]:
    ability = _exposed_ability(services, arguments.get("ability_name"))
    return ability.to_tool_info()


def _execute(services: AlbertServices, arguments: dict[str, Any]) -> dict[str, Any]:
    ability = _exposed_ability(services, arguments.get("ability_name"))
    parameters = arguments.get("parameters") or {}
    if not isinstance(parameters, dict):
        raise ToolError(ApiError("invalid_parameters", "parameters must be an object.", 400))

    result = services.abilities.guarded_execute(ability.id, parameters)
    if is_error(result):
        raise ToolError(result)
    return {"success": True, "data": result}


_TOOL_HANDLERS = {
    DISCOVER_TOOL: _discover,
    INFO_TOOL: _ability_info,
    EXECUTE_TOOL: _execute,
}


def handle_tools_call(services: AlbertServices, params: dict[str, Any]) -> dict[str, Any]:
    call = ToolCallParams.model_validate(params)
    handler = _TOOL_HANDLERS.get(call.name)
    if handler is None:
        raise ToolError(ApiError("unknown_tool", f"Unknown tool: {call.name}", 404))
    try:
        return _text_result(handler(services, call.arguments))
    except ToolError as exc:
        logger.info("Tool %s failed: %s", call.name, exc.error.code)
        return _text_result(exc.error.to_dict(), failed=True)


def handle_initialize(services: AlbertServices, params: dict[str, Any]) -> dict[str, Any]:
    client_info = params.get("clientInfo") or {}
    if isinstance(client_info, dict) and client_info.get("name"):
        logger.info(
            "MCP initialize from %s v%s",
            client_info["name"],
            client_info.get("version", "unknown"),
        )
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {"tools": {"listChanged": False}},
        "serverInfo": {
            "name": SERVER_NAME,
            "title": services.settings.site_name,
            "version": __version__,
        },
    }


def handle_rpc(services: AlbertServices, rpc: JsonRpcRequest) -> dict[str, Any]:
    """Dispatch one JSON-RPC request and build its response envelope."""
    try:
        if rpc.method == "initialize":
            result = handle_initialize(services, rpc.params)
        elif rpc.method == "ping":
            result = {}
        elif rpc.method == "tools/list":
            result = {"tools": TOOLS}
        elif rpc.method == "tools/call":
            result = handle_tools_call(services, rpc.params)
        else:
            return _rpc_error(rpc.id, METHOD_NOT_FOUND, f"Method not found: {rpc.method}")
    except ValidationError as exc:
        return _rpc_error(rpc.id, INVALID_PARAMS, f"Invalid params: {exc.error_count()} error(s)")
    except ToolError as exc:
        return _rpc_error(rpc.id, INVALID_PARAMS, exc.error.message)
    except Exception as exc:
        logger.exception("Error handling MCP method %s", rpc.method)
        return _rpc_error(rpc.id, INTERNAL_ERROR, str(exc))
    return _rpc_result(rpc.id, result)


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


def _authenticate(request: Request, services: AlbertServices) -> User | JSONResponse:
    """The token's user, or the 401 response to send."""
    if not TokenValidator.get_bearer_token(request):
        error = ApiError(
            "oauth_missing_token",
            "OAuth Bearer token required. "
            "Include an Authorization header with a valid Bearer token.",
            401,
        )
        challenge = f'Bearer realm="MCP", resource="{resource_metadata_url(services.settings)}"'
        return JSONResponse(
            status_code=401, content=error.to_dict(), headers={"WWW-Authenticate": challenge}
        )

    user = services.validator.validate_request(request)
    if is_error(user):
        return JSONResponse(status_code=user.status, content=user.to_dict())
    return user


@router.post("/mcp")
async def mcp_endpoint(request: Request, services: AlbertServices = Depends(get_services)):
    """MCP streamable HTTP endpoint (JSON responses only)."""
    user = await asyncio.to_thread(_authenticate, request, services)
    if isinstance(user, JSONResponse):
        return user
    # Set here: a worker thread only changes its own copy of the context.
    set_current_user(user)

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content=_rpc_error(None, PARSE_ERROR, "Parse error"))

    try:
        rpc = JsonRpcRequest.model_validate(body)
    except ValidationError:
        request_id = body.get("id") if isinstance(body, dict) else None
        return JSONResponse(
            status_code=400, content=_rpc_error(request_id, INVALID_REQUEST, "Invalid Request")
        )

    if rpc.is_notification:
        logger.debug("MCP notification %s", rpc.method)
        return Response(status_code=202)

    headers = {}
    if rpc.method == "initialize":
        headers["Mcp-Session-Id"] = uuid.uuid4().hex
    return JSONResponse(await asyncio.to_thread(handle_rpc, services, rpc), headers=headers)
