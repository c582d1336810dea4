# Ability protocol and guarded execution.
# Created: 2026-10-03
#
# An ability is a named, schema-described operation an AI assistant can invoke.
# Every invocation goes through BaseAbility.guarded_execute(), which applies the
# enable/disable registry and fires the before/after execution hooks.

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from albert.context import current_user_can, get_current_user_id
from albert.errors import ApiError, is_error
from albert.hooks import AbilityEvent, HookRegistry

if TYPE_CHECKING:
    from albert.abilities.toggles import AbilityToggles

logger = logging.getLogger(__name__)

AbilityResult = dict[str, Any] | ApiError

# MCP tool annotations by kind of operation.
ANNOTATIONS: dict[str, dict[str, bool]] = {
    "read": {"readonly": True, "destructive": False, "idempotent": True},
    "create": {"readonly": False, "destructive": False, "idempotent": False},
    "update": {"readonly": False, "destructive": False, "idempotent": True},
    "delete": {"readonly": False, "destructive": True, "idempotent": True},
    "action": {"readonly": False, "destructive": False, "idempotent": False},
}

_default_hooks = HookRegistry()


def get_default_hooks() -> HookRegistry:
    """Hook registry used by abilities not bound to a manager."""
    return _default_hooks


class BaseAbility(ABC):
    """Base class for abilities.

    Subclasses set the descriptive attributes and implement ``execute``.
    ``check_permission`` defaults to requiring the ``manage_options`` capability.
    """

    id: str = ""
    label: str = ""
    description: str = ""
    category: str = ""
    group: str = ""
    input_schema: dict[str, Any] = {"type": "object", "properties": {}}
    output_schema: dict[str, Any] = {"type": "object", "properties": {}}
    meta: dict[str, Any] = {}

    def __init__(self):
        self.hooks: HookRegistry | None = None
        self.toggles: AbilityToggles | None = None

    def bind(self, hooks: HookRegistry, toggles: AbilityToggles | None) -> None:
        """Attach the hook registry and disabled-ability registry."""
        self.hooks = hooks
        self.toggles = toggles

    @abstractmethod
    def execute(self, args: dict[str, Any]) -> AbilityResult:
        """Run the ability. Return a result mapping or an ApiError."""
        ...

    def check_permission(self) -> bool | ApiError:
        return current_user_can("manage_options")

    def enabled(self) -> bool:
        if self.toggles is None:
            return True
        return self.toggles.is_enabled(self.id)

    def guarded_execute(self, args: dict[str, Any]) -> AbilityResult:
        """Execute behind the enable check, the hooks and the permission check.

        A disabled ability returns ``ability_disabled`` before anything else
        runs, so hooks never observe it. A failed permission check returns
        without running ``execute`` or the after hooks. Otherwise the result of
        ``execute`` is returned as-is, error or not.
        """
        if not self.enabled():
            logger.info("Blocked disabled ability %s", self.id)
            return ApiError(
                code="ability_disabled",
                message=f"The ability '{self.id}' is currently disabled.",
                status=403,
                data={"ability": self.id},
            )

        hooks = self.hooks or _default_hooks
        user_id = get_current_user_id()

        hooks.dispatch(AbilityEvent.before(self.id, args, user_id))

        permitted = self.check_permission()
        if is_error(permitted):
            return permitted
        if not permitted:
            return ApiError(
                code="ability_permission_denied",
                message=f"You are not allowed to use the ability '{self.id}'.",
                status=403,
                data={"ability": self.id},
            )

        result = self.execute(args)

        hooks.dispatch(AbilityEvent.after(self.id, args, result, user_id))
        return result

    def get_settings_data(self) -> dict[str, str]:
        return {
            "label": self.label,
            "description": self.description,
            "group": self.group,
        }

    def to_tool_info(self) -> dict[str, Any]:
        """Describe the ability for MCP discovery."""
        return {
            "name": self.id,
            "label": self.label,
            "description": self.description,
            "category": self.category or "core",
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
            "meta": self.meta,
        }
