# Extensibility hooks.
# Created: 2026-10-03
#
# Plain named actions (``do_action``) plus typed ability events. An ability
# event is dispatched once on its topic; listeners registered on the bare topic
# receive the ability id as the first argument, listeners registered as
# ``<topic>/<ability_id>`` only see events for that ability and do not receive
# the id. Dispatch is synchronous: generic listeners first, then scoped ones.

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

BEFORE_EXECUTE = "albert/abilities/before_execute"
AFTER_EXECUTE = "albert/abilities/after_execute"

ABILITY_TOPICS = (BEFORE_EXECUTE, AFTER_EXECUTE)

_NO_RESULT = object()


@dataclass(frozen=True)
class AbilityEvent:
    """One before/after execution event for an ability."""

    topic: str
    ability_id: str
    args: dict[str, Any]
    user_id: int
    result: Any = _NO_RESULT

    @property
    def scoped_hook(self) -> str:
        return f"{self.topic}/{self.ability_id}"

    def _tail(self) -> tuple[Any, ...]:
        if self.result is _NO_RESULT:
            return (self.args, self.user_id)
        return (self.args, self.result, self.user_id)

    def generic_payload(self) -> tuple[Any, ...]:
        return (self.ability_id, *self._tail())

    def scoped_payload(self) -> tuple[Any, ...]:
        return self._tail()

    @classmethod
    def before(cls, ability_id: str, args: dict[str, Any], user_id: int) -> AbilityEvent:
        return cls(BEFORE_EXECUTE, ability_id, args, user_id)

    @classmethod
    def after(
        cls, ability_id: str, args: dict[str, Any], result: Any, user_id: int
    ) -> AbilityEvent:
        return cls(AFTER_EXECUTE, ability_id, args, user_id, result)


@dataclass(order=True)
class _Listener:
    priority: int
    seq: int
    callback: Callable[..., Any] = field(compare=False)
    ability_id: str | None = field(default=None, compare=False)


def _split_hook(hook: str) -> tuple[str, str | None]:
    """Map ``<ability topic>/<ability id>`` to (topic, ability id)."""
    for topic in ABILITY_TOPICS:
        if hook.startswith(topic + "/"):
            return topic, hook[len(topic) + 1 :]
    return hook, None


class HookRegistry:
    """Registry of named actions and their listeners.

    Usage::

        hooks = HookRegistry()
        hooks.add_action("albert/abilities/before_execute", audit_everything)
        hooks.add_action("albert/abilities/after_execute/core/site-info", on_site_info)
    """

    def __init__(self):
        self._listeners: dict[str, list[_Listener]] = {}
        self._seq = 0

    def add_action(self, hook: str, callback: Callable[..., Any], priority: int = 10) -> None:
        topic, ability_id = _split_hook(hook)
        self._seq += 1
        self._listeners.setdefault(topic, []).append(
            _Listener(priority, self._seq, callback, ability_id)
        )
        self._listeners[topic].sort()

    def remove_action(self, hook: str, callback: Callable[..., Any]) -> bool:
        topic, ability_id = _split_hook(hook)
        listeners = self._listeners.get(topic, [])
        for listener in listeners:
            if listener.callback is callback and listener.ability_id == ability_id:
                listeners.remove(listener)
                return True
        return False

    def has_action(self, hook: str) -> bool:
        topic, ability_id = _split_hook(hook)
        return any(lst.ability_id == ability_id for lst in self._listeners.get(topic, []))

    def do_action(self, hook: str, *args: Any) -> None:
        """Call every listener of *hook* that is not ability-scoped."""
        for listener in list(self._listeners.get(hook, [])):
            if listener.ability_id is None:
                listener.callback(*args)

    def dispatch(self, event: AbilityEvent) -> None:
        """Deliver an ability event: generic listeners, then scoped listeners."""
        listeners = list(self._listeners.get(event.topic, []))
        for listener in listeners:
            if listener.ability_id is None:
                listener.callback(*event.generic_payload())
        for listener in listeners:
            if listener.ability_id == event.ability_id:
                listener.callback(*event.scoped_payload())
        logger.debug("Dispatched %s", event.scoped_hook)
