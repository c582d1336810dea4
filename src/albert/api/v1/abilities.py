# Abilities router: list abilities and switch them on or off.
# Created: 2026-10-06

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from albert.abilities import BaseAbility
from albert.api.deps import require_admin
from albert.api.services import AlbertServices, get_services
from albert.api.v1.schemas.abilities import (
    AbilityInfo,
    AbilityListResponse,
    AbilityToggleResponse,
)
from albert.errors import ApiError, ApiErrorException
from albert.security.audit import AuditSeverity
from albert.users import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Abilities"], dependencies=[Depends(require_admin)])


def _info(ability: BaseAbility) -> AbilityInfo:
    return AbilityInfo(
        id=ability.id,
        label=ability.label,
        description=ability.description,
        category=ability.category or "core",
        group=ability.group,
        enabled=ability.enabled(),
        annotations=ability.meta.get("annotations", {}),
    )


def _get_or_404(services: AlbertServices, ability_id: str) -> BaseAbility:
    ability = services.abilities.get_ability(ability_id)
    if ability is None:
        raise ApiErrorException(
            ApiError("ability_not_found", f"Ability '{ability_id}' not found.", 404)
        )
    return ability


@router.get("/abilities", response_model=AbilityListResponse)
async def list_abilities(services: AlbertServices = Depends(get_services)):
    """Every registered ability with its enabled state."""
    return AbilityListResponse(
        abilities=[_info(a) for a in services.abilities.get_abilities()],
        categories=services.abilities.get_categories(),
    )


def _toggle(
    services: AlbertServices, user: User, ability_id: str, enabled: bool
) -> AbilityToggleResponse:
    ability = _get_or_404(services, ability_id)
    if enabled:
        services.toggles.enable(ability.id)
    else:
        services.toggles.disable(ability.id)
    services.audit.log_event(
        "ability_toggled",
        ability.id,
        actor=f"user:{user.id}",
        severity=AuditSeverity.WARNING,
        enabled=enabled,
    )
    return AbilityToggleResponse(id=ability.id, enabled=ability.enabled())


@router.post("/abilities/{ability_id:path}/disable", response_model=AbilityToggleResponse)
async def disable_ability(
    ability_id: str,
    services: AlbertServices = Depends(get_services),
    user: User = Depends(require_admin),
):
    return _toggle(services, user, ability_id, enabled=False)


@router.post("/abilities/{ability_id:path}/enable", response_model=AbilityToggleResponse)
async def enable_ability(
    ability_id: str,
    services: AlbertServices = Depends(get_services),
    user: User = Depends(require_admin),
):
    return _toggle(services, user, ability_id, enabled=True)
