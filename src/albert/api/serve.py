"""Albert API server.

Builds the FastAPI application: the ``/api/v1/`` routers (auth, OAuth2, MCP,
abilities, connections), the root ``/.well-known/`` discovery documents, CORS,
and the per-request current-user reset.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from albert import __version__
from albert.api.oauth2.server import Clock
from albert.api.services import AlbertServices, build_services
from albert.api.v1 import mount_v1_routers
from albert.config import Settings
from albert.context import reset_current_user, set_current_user
from albert.errors import ApiErrorException

logger = logging.getLogger(__name__)


class CurrentUserMiddleware:
    """Start every request with nobody signed in, and restore the slot afterwards."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        token = set_current_user(None)
        try:
            await self.app(scope, receive, send)
        finally:
            reset_current_user(token)


async def _api_error_handler(request: Request, exc: ApiErrorException) -> JSONResponse:
    return JSONResponse(status_code=exc.error.status, content=exc.error.to_dict())


def create_api_app(
    settings: Settings | None = None,
    services: AlbertServices | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Build the FastAPI application with its service container."""
    if services is None:
        services = build_services(settings, clock=clock)

    app = FastAPI(
        title="Albert API",
        description="OAuth 2.0 protected MCP ability server for AI assistants.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )
    app.state.albert = services

    # --- CORS -----------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(services.settings.api_cors_allowed_origins),
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Mcp-Session-Id"],
        expose_headers=["WWW-Authenticate", "Mcp-Session-Id"],
    )
    app.add_middleware(CurrentUserMiddleware)
    app.add_exception_handler(ApiErrorException, _api_error_handler)

    mount_v1_routers(app)
    return app


def run_api_server(host: str = "127.0.0.1", port: int = 8888, dev: bool = False) -> None:
    """Start the API server with uvicorn."""
    import uvicorn

    settings = Settings.load()

    print("\n" + "=" * 50)
    print("ALBERT API SERVER")
    print("=" * 50)
    print(f"\nMCP endpoint: {settings.public_base_url()}/api/v1/mcp")
    print(f"API docs:     http://{host}:{port}/api/v1/docs\n")

    if dev:
        uvicorn.run(
            "albert.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level="debug",
        )
    else:
        app = create_api_app(settings)
        uvicorn.run(app, host=host, port=port)
