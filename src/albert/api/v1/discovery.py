# OAuth discovery documents.
# Created: 2026-10-05
#
# RFC 8414 authorization server metadata and RFC 9728 protected resource
# metadata, served at the site root. The same documents are mirrored under
# /api/v1/oauth/ by the OAuth2 router.

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from albert.api.services import AlbertServices, get_services
from albert.api.v1.schemas.oauth2 import AuthorizationServerMetadata, ProtectedResourceMetadata
from albert.config import Settings

router = APIRouter(tags=["Discovery"])

CACHE_HEADERS = {"Cache-Control": "public, max-age=3600"}

OAUTH_PATH = "/api/v1/oauth"
MCP_PATH = "/api/v1/mcp"


def resource_metadata_url(settings: Settings) -> str:
    return f"{settings.public_base_url()}{OAUTH_PATH}/resource"


def mcp_endpoint_url(settings: Settings) -> str:
    return f"{settings.public_base_url()}{MCP_PATH}"


def authorization_server_metadata(settings: Settings) -> AuthorizationServerMetadata:
    base = settings.public_base_url()
    return AuthorizationServerMetadata(
        issuer=base,
        authorization_endpoint=f"{base}{OAUTH_PATH}/authorize",
        token_endpoint=f"{base}{OAUTH_PATH}/token",
        registration_endpoint=f"{base}{OAUTH_PATH}/register",
        revocation_endpoint=f"{base}{OAUTH_PATH}/revoke",
    )


def protected_resource_metadata(settings: Settings) -> ProtectedResourceMetadata:
    return ProtectedResourceMetadata(
        resource=mcp_endpoint_url(settings),
        authorization_servers=[settings.public_base_url()],
    )


@router.get("/.well-known/oauth-authorization-server")
async def well_known_authorization_server(services: AlbertServices = Depends(get_services)):
    body = authorization_server_metadata(services.settings)
    return JSONResponse(body.model_dump(), headers=CACHE_HEADERS)


@router.get("/.well-known/oauth-protected-resource")
async def well_known_protected_resource(services: AlbertServices = Depends(get_services)):
    body = protected_resource_metadata(services.settings)
    return JSONResponse(body.model_dump(), headers=CACHE_HEADERS)
