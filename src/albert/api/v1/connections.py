# Connections router: the MCP clients a user has authorized.
# Created: 2026-10-06
#
# A connection is a live access token. Disconnecting revokes the access token
# and every refresh token issued with it, so the client cannot silently renew.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from albert.api.deps import require_oauth
from albert.api.services import AlbertServices, get_services
from albert.api.v1.schemas.abilities import ConnectionInfo
from albert.errors import ApiError, ApiErrorException
from albert.users import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Connections"])


@router.get("/connections", response_model=list[ConnectionInfo])
async def list_connections(
    services: AlbertServices = Depends(get_services),
    user: User = Depends(require_oauth),
):
    repos = services.repositories
    names: dict[str, str] = {}
    connections = []
    for token in repos.access_tokens.get_access_tokens_by_user(user.id, services.clock()):
        if token.client_id not in names:
            client = repos.clients.get_client_entity(token.client_id)
            names[token.client_id] = client.name if client else token.client_id
        connections.append(
            ConnectionInfo(
                token_id=token.identifier,
                client_id=token.client_id,
                client_name=names[token.client_id],
                scopes=token.scopes,
                created_at=token.created_at,
                expires_at=token.expires_at,
            )
        )
    return connections


@router.delete("/connections/{token_id}")
async def revoke_connection(
    token_id: str,
    services: AlbertServices = Depends(get_services),
    user: User = Depends(require_oauth),
):
    """Revoke one of the current user's access tokens."""
    repos = services.repositories
    token = repos.access_tokens.get_access_token(token_id)
    if token is None or token.user_id != user.id:
        raise ApiErrorException(ApiError("connection_not_found", "Connection not found.", 404))

    with services.db.transaction():
        repos.access_tokens.revoke_access_token(token_id)
        refresh_revoked = repos.refresh_tokens.revoke_refresh_tokens_by_access_token(token_id)

    logger.info("User %s revoked connection %s", user.id, token_id)
    services.audit.log_event(
        "connection_revoked", token.client_id, actor=f"user:{user.id}", token_id=token_id
    )
    return {"revoked": True, "refresh_tokens_revoked": refresh_revoked}
