# Disabled-ability registry.
# Created: 2026-10-03

from __future__ import annotations

import logging

from albert.options import OptionStore

logger = logging.getLogger(__name__)

DISABLED_ABILITIES_OPTION = "albert_disabled_abilities"


class AbilityToggles:
    """Set of disabled ability ids, stored as an option.

    Nothing is cached: every check reads the option so an admin toggle takes
    effect on the very next call.
    """

    def __init__(self, options: OptionStore):
        self.options = options

    def disabled(self) -> set[str]:
        return set(self.options.get_option(DISABLED_ABILITIES_OPTION, []) or [])

    def is_enabled(self, ability_id: str) -> bool:
        return ability_id not in self.disabled()

    def disable(self, ability_id: str) -> None:
        current = self.disabled()
        current.add(ability_id)
        self.options.update_option(DISABLED_ABILITIES_OPTION, sorted(current))
        logger.info("Disabled ability %s", ability_id)

    def enable(self, ability_id: str) -> None:
        current = self.disabled()
        current.discard(ability_id)
        self.options.update_option(DISABLED_ABILITIES_OPTION, sorted(current))
        logger.info("Enabled ability %s", ability_id)
