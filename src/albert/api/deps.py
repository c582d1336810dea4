# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-05
#
# Each guard resolves the caller and makes it the current user. They are async
# so the current-user context they set is the one the endpoint runs in.

from __future__ import annotations

from fastapi import Depends, Request

from albert.api.services import AlbertServices, get_services
from albert.context import get_current_user, set_current_user
from albert.errors import ApiError, ApiErrorException, is_error
from albert.users import User, user_can


def _current_user_or_raise() -> User:
    user = get_current_user()
    if user is None:
        raise ApiErrorException(ApiError("rest_forbidden", "You must be logged in.", 401))
    return user


async def require_oauth(
    request: Request, services: AlbertServices = Depends(get_services)
) -> User:
    """Bearer token, or an existing login session."""
    result = services.validator.permission_callback()(request)
    if is_error(result):
        raise ApiErrorException(result)
    return _current_user_or_raise()


def require_scopes(*scopes: str):
    """FastAPI dependency requiring a Bearer token carrying every scope listed.

    Usage::

        @router.get("/things", dependencies=[Depends(require_scopes("default"))])
        async def list_things(...): ...
    """

    async def _check(request: Request, services: AlbertServices = Depends(get_services)) -> User:
        result = services.validator.require_scopes(scopes)(request)
        if is_error(result):
            raise ApiErrorException(result)
        return _current_user_or_raise()

    return _check


async def require_login(
    request: Request, services: AlbertServices = Depends(get_services)
) -> User:
    """Browser login session only."""
    user = services.sessions.user_from_request(request)
    if user is None:
        raise ApiErrorException(ApiError("rest_forbidden", "You must be logged in.", 401))
    set_current_user(user)
    return user


async def require_admin(user: User = Depends(require_oauth)) -> User:
    if not user_can(user, "manage_options"):
        raise ApiErrorException(
            ApiError("rest_forbidden", "Sorry, you are not allowed to do that.", 403)
        )
    return user
