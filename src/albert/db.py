# SQLite storage and schema installer.
# Created: 2026-10-02
#
# One connection per unit of work. Inside ``Database.transaction()`` every
# ``connect()`` made from the same context reuses the transaction connection,
# so repository calls can be composed into one atomic step.

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path

from albert.errors import StorageError

logger = logging.getLogger(__name__)

DB_VERSION = 1
DB_VERSION_OPTION = "albert_oauth_db_version"

_DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

TABLES = {
    "clients": "albert_oauth_clients",
    "access_tokens": "albert_oauth_access_tokens",
    "refresh_tokens": "albert_oauth_refresh_tokens",
    "auth_codes": "albert_oauth_auth_codes",
    "options": "albert_options",
    "users": "albert_users",
}

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLES["clients"]} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id TEXT NOT NULL UNIQUE,
    client_secret TEXT DEFAULT NULL,
    name TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    user_id INTEGER DEFAULT NULL,
    is_confidential INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_clients_user ON {TABLES["clients"]} (user_id);

CREATE TABLE IF NOT EXISTS {TABLES["access_tokens"]} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token_id TEXT NOT NULL UNIQUE,
    client_id TEXT NOT NULL,
    user_id INTEGER DEFAULT NULL,
    scopes TEXT DEFAULT NULL,
    revoked INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_access_tokens_user ON {TABLES["access_tokens"]} (user_id);
CREATE INDEX IF NOT EXISTS idx_access_tokens_expiry ON {TABLES["access_tokens"]} (expires_at);

CREATE TABLE IF NOT EXISTS {TABLES["refresh_tokens"]} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token_id TEXT NOT NULL UNIQUE,
    access_token_id TEXT NOT NULL,
    revoked INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_refresh_tokens_access
    ON {TABLES["refresh_tokens"]} (access_token_id);

CREATE TABLE IF NOT EXISTS {TABLES["auth_codes"]} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code_id TEXT NOT NULL UNIQUE,
    client_id TEXT NOT NULL,
    user_id INTEGER NOT NULL,
    scopes TEXT DEFAULT NULL,
    revoked INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS {TABLES["users"]} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    login TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    display_name TEXT NOT NULL DEFAULT '',
    email TEXT NOT NULL DEFAULT '',
    capabilities TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

_OPTIONS_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLES["options"]} (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def to_db_time(value: datetime) -> str:
    """Format an aware datetime as a UTC column value."""
    return value.astimezone(UTC).strftime(_DB_TIME_FORMAT)


def from_db_time(value: str) -> datetime:
    return datetime.strptime(value, _DB_TIME_FORMAT).replace(tzinfo=UTC)


class Database:
    """SQLite database holding clients, tokens, options and users."""

    def __init__(self, path: Path | str):
        self.path = str(path)
        self._active: ContextVar[sqlite3.Connection | None] = ContextVar(
            f"albert_db_{id(self)}", default=None
        )

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            timeout=30,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection (the open transaction's one, if any)."""
        active = self._active.get()
        if active is not None:
            yield active
            return

        conn = self._open()
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"Database operation failed: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one ``BEGIN IMMEDIATE`` transaction.

        The write lock is taken up front, so two concurrent check-and-revoke
        sequences serialize instead of both reading the row as unrevoked.
        Nested calls join the outer transaction.
        """
        active = self._active.get()
        if active is not None:
            yield active
            return

        conn = self._open()
        token = self._active.set(conn)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StorageError(f"Transaction failed: {exc}") from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            self._active.reset(token)
            conn.close()

    # ------------------------------------------------------------------
    # Installer
    # ------------------------------------------------------------------

    def installed_version(self) -> int:
        with self.connect() as conn:
            conn.executescript(_OPTIONS_SCHEMA)
            row = conn.execute(
                f"SELECT value FROM {TABLES['options']} WHERE name = ?",
                (DB_VERSION_OPTION,),
            ).fetchone()
        return int(row["value"]) if row else 0

    def install(self) -> bool:
        """Create tables when the stored schema version is older. Returns True if run."""
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        if self.installed_version() >= DB_VERSION:
            return False

        with self.connect() as conn:
            conn.executescript(_SCHEMA)
            conn.execute(
                f"INSERT OR REPLACE INTO {TABLES['options']} (name, value) VALUES (?, ?)",
                (DB_VERSION_OPTION, str(DB_VERSION)),
            )
        logger.info("Installed database schema v%d at %s", DB_VERSION, self.path)
        return True

    def uninstall(self) -> None:
        """Drop every table (including options, so keys go too)."""
        with self.connect() as conn:
            for table in TABLES.values():
                conn.execute(f"DROP TABLE IF EXISTS {table}")
        logger.info("Dropped all tables in %s", self.path)
