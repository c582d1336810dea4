# Abilities manager.
# Created: 2026-10-03
#
# Holds every registered ability, binds them to the hook registry and the
# disabled-ability registry, and is the single entry point the MCP adapter uses
# to run one.

from __future__ import annotations

import logging
from typing import Any

from albert.abilities.base import AbilityResult, BaseAbility
from albert.abilities.toggles import AbilityToggles
from albert.errors import ApiError
from albert.hooks import HookRegistry

logger = logging.getLogger(__name__)

CATEGORIES: dict[str, dict[str, str]] = {
    "content": {"label": "Content", "description": "Posts, pages, and media management."},
    "taxonomy": {"label": "Taxonomies", "description": "Categories, tags, and custom taxonomies."},
    "comments": {"label": "Comments", "description": "Comment management."},
    "commerce": {"label": "Commerce", "description": "Store and order management."},
    "seo": {"label": "SEO", "description": "Search engine optimization."},
    "fields": {"label": "Custom Fields", "description": "Custom field management."},
    "forms": {"label": "Forms", "description": "Form management."},
    "lms": {"label": "Learning", "description": "Learning management."},
    "maintenance": {"label": "Maintenance", "description": "Site maintenance and monitoring."},
    "site": {"label": "Site", "description": "Site information and settings."},
}


class AbilitiesManager:
    """Registry of abilities keyed by id."""

    def __init__(self, hooks: HookRegistry, toggles: AbilityToggles | None = None):
        self.hooks = hooks
        self.toggles = toggles
        self._abilities: dict[str, BaseAbility] = {}

    def add_ability(self, ability: BaseAbility) -> None:
        if ability.id in self._abilities:
            logger.warning("Ability '%s' already registered, overwriting", ability.id)
        ability.bind(self.hooks, self.toggles)
        self._abilities[ability.id] = ability
        logger.debug("Registered ability: %s", ability.id)

    def get_ability(self, ability_id: str) -> BaseAbility | None:
        return self._abilities.get(ability_id)

    def get_abilities(self, include_disabled: bool = True) -> list[BaseAbility]:
        abilities = list(self._abilities.values())
        if include_disabled:
            return abilities
        return [a for a in abilities if a.enabled()]

    def guarded_execute(self, ability_id: str, args: dict[str, Any] | None = None) -> AbilityResult:
        ability = self._abilities.get(ability_id)
        if ability is None:
            return ApiError(
                code="ability_not_found",
                message=f"Ability '{ability_id}' not found.",
                status=404,
                data={"ability": ability_id},
            )
        return ability.guarded_execute(args or {})

    def get_settings_data(self) -> dict[str, dict[str, str]]:
        """Settings-page rows for every ability, keyed by id."""
        return {a.id: a.get_settings_data() for a in self._abilities.values()}

    def get_categories(self) -> dict[str, dict[str, str]]:
        return dict(CATEGORIES)
