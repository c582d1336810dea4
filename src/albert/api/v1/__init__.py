# API v1 router aggregation.
# Created: 2026-10-05
#
# mount_v1_routers(app) registers the domain routers at /api/v1/ and the
# discovery router at the site root (/.well-known/...).

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, prefix, tag)
    ("albert.api.v1.auth", "/api/v1", "Auth"),
    ("albert.api.v1.oauth2", "/api/v1", "OAuth2"),
    ("albert.api.v1.mcp", "/api/v1", "MCP"),
    ("albert.api.v1.abilities", "/api/v1", "Abilities"),
    ("albert.api.v1.connections", "/api/v1", "Connections"),
    ("albert.api.v1.discovery", "", "Discovery"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount every router on *app*. An import failure is a startup error."""
    for module_path, prefix, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        app.include_router(mod.router, prefix=prefix)
        logger.debug("Mounted router: %s (%s)", module_path, tag)
