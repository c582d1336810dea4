# Service container.
# Created: 2026-10-05
#
# Everything the routes need is built once by build_services() when the app
# starts and stored on app.state.albert. Routes receive it through the
# get_services dependency; nothing is a module-level singleton.

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fastapi import Request

from albert.abilities import AbilitiesManager, AbilityToggles, SiteInfoAbility
from albert.api.oauth2.keys import KeyManager
from albert.api.oauth2.models import utcnow
from albert.api.oauth2.repositories import OAuthRepositories
from albert.api.oauth2.resource import ResourceServerFactory
from albert.api.oauth2.server import AuthorizationServerFactory, Clock
from albert.api.oauth2.validator import TokenValidator
from albert.config import Settings, get_config_dir
from albert.db import Database
from albert.errors import is_error
from albert.hooks import AFTER_EXECUTE, HookRegistry
from albert.options import OptionStore
from albert.security.audit import AuditLogger, AuditSeverity
from albert.security.rate_limiter import RateLimits
from albert.security.session_tokens import SessionAuth
from albert.users import UserStore

logger = logging.getLogger(__name__)


@dataclass
class AlbertServices:
    settings: Settings
    db: Database
    options: OptionStore
    users: UserStore
    keys: KeyManager
    repositories: OAuthRepositories
    authorization_servers: AuthorizationServerFactory
    resource_servers: ResourceServerFactory
    validator: TokenValidator
    hooks: HookRegistry
    toggles: AbilityToggles
    abilities: AbilitiesManager
    sessions: SessionAuth
    audit: AuditLogger
    rate_limits: RateLimits = field(default_factory=RateLimits)
    clock: Clock = utcnow

    def regenerate_keys(self, actor: str = "system") -> None:
        """Replace the OAuth keys. Every issued code and token stops working."""
        self.keys.regenerate_keys()
        self.authorization_servers.reset()
        self.resource_servers.reset()
        self.audit.log_event(
            "oauth_keys_regenerated", "oauth_keys", actor=actor, severity=AuditSeverity.CRITICAL
        )


def _audit_ability_executions(services: AlbertServices) -> None:
    def on_after_execute(ability_id, args, result, user_id) -> None:
        status = "error" if is_error(result) else "success"
        services.audit.log_event(
            "ability_executed", ability_id, actor=f"user:{user_id}", status=status
        )

    services.hooks.add_action(AFTER_EXECUTE, on_after_execute, priority=100)


def build_services(settings: Settings | None = None, clock: Clock | None = None) -> AlbertServices:
    """Create the database schema and wire every service."""
    settings = settings or Settings.load()

    db = Database(settings.resolved_db_path())
    db.install()

    options = OptionStore(db)
    users = UserStore(db)
    keys = KeyManager(options)
    repositories = OAuthRepositories.for_database(db)
    sessions = SessionAuth(options, users, ttl_hours=settings.session_token_ttl_hours)
    resource_servers = ResourceServerFactory(repositories.access_tokens, keys, clock=clock)

    hooks = HookRegistry()
    toggles = AbilityToggles(options)
    abilities = AbilitiesManager(hooks, toggles)
    abilities.add_ability(SiteInfoAbility(lambda: settings))

    services = AlbertServices(
        settings=settings,
        db=db,
        options=options,
        users=users,
        keys=keys,
        repositories=repositories,
        authorization_servers=AuthorizationServerFactory(db, repositories, keys, clock=clock),
        resource_servers=resource_servers,
        validator=TokenValidator(resource_servers, users, sessions),
        hooks=hooks,
        toggles=toggles,
        abilities=abilities,
        sessions=sessions,
        audit=AuditLogger(get_config_dir() / "audit.jsonl", enabled=settings.audit_enabled),
        clock=clock or utcnow,
    )
    _audit_ability_executions(services)
    logger.debug("Services built for %s", db.path)
    return services


def get_services(request: Request) -> AlbertServices:
    """FastAPI dependency returning the app's service container."""
    return request.app.state.albert
