# Site info ability.
# Created: 2026-10-03

from __future__ import annotations

import platform
from collections.abc import Callable
from typing import Any

from albert import __version__
from albert.abilities.base import ANNOTATIONS, BaseAbility
from albert.config import Settings
from albert.context import current_user_can


class SiteInfoAbility(BaseAbility):
    """Lets AI assistants read basic information about this server."""

    id = "core/site-info"
    label = "Site Info"
    description = "Retrieve site information and settings."
    category = "site"
    group = "site"
    input_schema = {"type": "object", "properties": {}}
    output_schema = {
        "type": "object",
        "properties": {
            "site": {"type": "object", "description": "Site information object."},
        },
    }
    meta = {"annotations": ANNOTATIONS["read"], "mcp": {"public": True}}

    def __init__(self, settings_provider: Callable[[], Settings]):
        super().__init__()
        self._settings_provider = settings_provider

    def check_permission(self) -> bool:
        return current_user_can("read")

    def execute(self, args: dict[str, Any]) -> dict[str, Any]:
        settings = self._settings_provider()
        return {
            "site": {
                "name": settings.site_name,
                "url": settings.public_base_url(),
                "albert_version": __version__,
                "python_version": platform.python_version(),
                "developer_mode": settings.developer_mode,
            }
        }
