# Albert abilities.
# Created: 2026-10-03

from albert.abilities.base import ANNOTATIONS, AbilityResult, BaseAbility
from albert.abilities.manager import CATEGORIES, AbilitiesManager
from albert.abilities.site import SiteInfoAbility
from albert.abilities.toggles import DISABLED_ABILITIES_OPTION, AbilityToggles

__all__ = [
    "ANNOTATIONS",
    "AbilityResult",
    "AbilitiesManager",
    "AbilityToggles",
    "BaseAbility",
    "CATEGORIES",
    "DISABLED_ABILITIES_OPTION",
    "SiteInfoAbility",
]
