# Persistent key-value options store.
# Created: 2026-10-02
#
# Values are JSON-encoded. Transients are options with an expiry, used for
# short-lived state such as pending authorization requests.

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

from albert.db import TABLES, Database

_TABLE = TABLES["options"]
_TRANSIENT_PREFIX = "_transient_"


class OptionStore:
    """Named values persisted in the options table."""

    def __init__(self, db: Database):
        self.db = db

    def get_option(self, name: str, default: Any = None) -> Any:
        with self.db.connect() as conn:
            row = conn.execute(f"SELECT value FROM {_TABLE} WHERE name = ?", (name,)).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def update_option(self, name: str, value: Any) -> None:
        with self.db.connect() as conn:
            conn.execute(
                f"INSERT INTO {_TABLE} (name, value) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
                (name, json.dumps(value)),
            )

    def add_option(self, name: str, value: Any) -> bool:
        """Insert only if absent. Returns True if this call stored the value."""
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO {_TABLE} (name, value) VALUES (?, ?)",
                (name, json.dumps(value)),
            )
            return cursor.rowcount > 0

    def delete_option(self, name: str) -> bool:
        with self.db.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {_TABLE} WHERE name = ?", (name,))
            return cursor.rowcount > 0

    def get_or_add(self, name: str, factory: Callable[[], Any]) -> Any:
        """Return the stored value, creating it with *factory* on first use.

        Concurrent first calls may each run *factory*, but only one value is
        stored and every caller gets that one back.
        """
        value = self.get_option(name)
        if value is not None:
            return value
        self.add_option(name, factory())
        return self.get_option(name)

    # ------------------------------------------------------------------
    # Transients
    # ------------------------------------------------------------------

    def set_transient(self, name: str, value: Any, ttl_seconds: int) -> None:
        self.update_option(
            _TRANSIENT_PREFIX + name,
            {"value": value, "expires": time.time() + ttl_seconds},
        )

    def get_transient(self, name: str) -> Any:
        record = self.get_option(_TRANSIENT_PREFIX + name)
        if not record:
            return None
        if time.time() > record["expires"]:
            self.delete_option(_TRANSIENT_PREFIX + name)
            return None
        return record["value"]

    def delete_transient(self, name: str) -> bool:
        return self.delete_option(_TRANSIENT_PREFIX + name)

    def cleanup_transients(self) -> int:
        """Delete expired transients. Returns count removed."""
        now = time.time()
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT name, value FROM {_TABLE} WHERE name LIKE ?",
                (_TRANSIENT_PREFIX + "%",),
            ).fetchall()
            expired = [r["name"] for r in rows if json.loads(r["value"])["expires"] < now]
            for name in expired:
                conn.execute(f"DELETE FROM {_TABLE} WHERE name = ?", (name,))
        return len(expired)
