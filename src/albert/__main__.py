"""Albert entry point.

Subcommands:
  serve             Run the API server (OAuth, MCP, admin routes).
  install           Create the database and the OAuth keys.
  create-user       Add a user who can sign in and authorize MCP clients.
  regenerate-keys   Replace the OAuth keys, invalidating every token.
  cleanup           Delete expired codes, tokens and transients.
  audit             Show recent security events.
  list-users / list-clients
  delete-client     Remove an OAuth client and revoke its tokens.
  uninstall         Drop every table, keys included.
  disable-ability / enable-ability
"""

from __future__ import annotations

import argparse
import getpass
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from albert.config import Settings, get_config_path
from albert.errors import StorageError
from albert.logging_setup import setup_logging
from albert.security.audit import AuditSeverity
from albert.users import ADMIN_CAPABILITIES

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("albert")
    except PackageNotFoundError:
        from albert import __version__

        return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="albert",
        description="Albert - OAuth 2.0 protected MCP ability server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  albert install                     Create the database and OAuth keys
  albert create-user alice --admin   Add an administrator
  albert serve --port 8888           Start the server
  albert disable-ability core/site-info
""",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve.add_argument("--port", type=int, default=8888, help="Port to listen on")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on code changes")

    sub.add_parser("install", help="Create the database and OAuth keys")

    create_user = sub.add_parser("create-user", help="Add a user")
    create_user.add_argument("login")
    create_user.add_argument("--password", help="Password (prompted when omitted)")
    create_user.add_argument("--display-name", default="")
    create_user.add_argument("--email", default="")
    create_user.add_argument(
        "--admin", action="store_true", help="Grant manage_options (admin routes, all abilities)"
    )

    sub.add_parser("regenerate-keys", help="Replace the OAuth keys (revokes every token)")
    sub.add_parser("cleanup", help="Delete expired codes, tokens and transients")
    audit = sub.add_parser("audit", help="Show the most recent audit events")
    audit.add_argument("--limit", type=int, default=20)

    sub.add_parser("list-users", help="List users")
    sub.add_parser("list-clients", help="List registered OAuth clients")

    delete_client = sub.add_parser("delete-client", help="Remove an OAuth client")
    delete_client.add_argument("client_id")

    uninstall = sub.add_parser("uninstall", help="Drop every table, keys included")
    uninstall.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    for name in ("disable-ability", "enable-ability"):
        toggle = sub.add_parser(name, help=f"{name.split('-')[0].title()} an ability")
        toggle.add_argument("ability_id")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = _build_parser().parse_args(argv)
    settings = Settings.load()
    setup_logging(level=args.log_level or settings.log_level)

    if args.command == "serve":
        from albert.api.serve import run_api_server

        try:
            run_api_server(host=args.host, port=args.port, dev=args.dev)
        except KeyboardInterrupt:
            logger.info("Albert stopped.")
        return

    from albert.api.services import build_services

    services = build_services(settings)

    if args.command == "install":
        if not get_config_path().exists():
            settings.save()
            print(f"Wrote {get_config_path()}")
        services.keys.get_encryption_key()
        services.keys.get_private_key()
        print(f"Database ready at {services.db.path}")
        print(f"MCP endpoint: {settings.public_base_url()}/api/v1/mcp")

    elif args.command == "create-user":
        password = args.password or getpass.getpass("Password: ")
        if not password:
            raise SystemExit("A password is required.")
        if services.users.get_user_by_login(args.login) is not None:
            raise SystemExit(f"User '{args.login}' already exists.")
        try:
            user = services.users.create_user(
                args.login,
                password,
                display_name=args.display_name,
                email=args.email,
                capabilities=ADMIN_CAPABILITIES if args.admin else None,
            )
        except StorageError as exc:
            raise SystemExit(f"Could not create user: {exc}") from exc
        print(f"Created user {user.login} (id={user.id})")

    elif args.command == "regenerate-keys":
        services.regenerate_keys(actor="cli")
        print("OAuth keys regenerated. Every connected client must authorize again.")

    elif args.command == "cleanup":
        counts = services.repositories.cleanup(services.clock())
        counts["transients"] = services.options.cleanup_transients()
        for name, count in counts.items():
            print(f"{name}: {count} removed")

    elif args.command == "audit":
        for event in services.audit.recent(args.limit):
            print(
                f"{event['timestamp']}  {event['severity']:<8}  {event['action']:<28}  "
                f"{event['target']}  {event['actor']}  {event['status']}"
            )

    elif args.command == "list-users":
        for user in services.users.list_users():
            role = "admin" if "manage_options" in user.capabilities else "user"
            print(f"{user.id}\t{user.login}\t{role}")

    elif args.command == "list-clients":
        for client in services.repositories.clients.get_clients_by_user():
            kind = "confidential" if client.is_confidential else "public"
            print(f"{client.identifier}\t{client.name}\t{kind}")

    elif args.command == "delete-client":
        repositories = services.repositories
        with services.db.transaction():
            revoked = repositories.access_tokens.revoke_tokens_by_client(args.client_id)
            deleted = repositories.clients.delete_client(args.client_id)
        if not deleted:
            raise SystemExit(f"Unknown client: {args.client_id}")
        services.audit.log_event(
            "oauth_client_deleted",
            args.client_id,
            actor="cli",
            severity=AuditSeverity.WARNING,
            tokens_revoked=revoked,
        )
        print(f"Deleted client {args.client_id} ({revoked} tokens revoked)")

    elif args.command == "uninstall":
        if not args.yes and input("Drop every Albert table? [y/N] ").strip().lower() != "y":
            print("Aborted.")
            return
        services.db.uninstall()
        print(f"Removed all tables from {services.db.path}")

    elif args.command in ("disable-ability", "enable-ability"):
        if services.abilities.get_ability(args.ability_id) is None:
            raise SystemExit(f"Unknown ability: {args.ability_id}")
        if args.command == "disable-ability":
            services.toggles.disable(args.ability_id)
        else:
            services.toggles.enable(args.ability_id)
        services.audit.log_event(
            "ability_toggled",
            args.ability_id,
            actor="cli",
            severity=AuditSeverity.WARNING,
            enabled=args.command == "enable-ability",
        )
        state = "enabled" if args.command == "enable-ability" else "disabled"
        print(f"{args.ability_id}: {state}")


if __name__ == "__main__":
    main()
