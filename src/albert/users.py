# Host user directory.
# Created: 2026-10-03
#
# OAuth entities only ever store the numeric user id; everything else about a
# person (login, capabilities) is resolved here at request time.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

import bcrypt

from albert.db import TABLES, Database

logger = logging.getLogger(__name__)

_TABLE = TABLES["users"]

ADMIN_CAPABILITIES = frozenset({"manage_options", "edit_posts", "read"})
DEFAULT_CAPABILITIES = frozenset({"read"})


@dataclass
class User:
    """A host account."""

    id: int
    login: str
    display_name: str = ""
    email: str = ""
    capabilities: set[str] = field(default_factory=set)
    password_hash: str = field(default="", repr=False)


def user_can(user: User | None, capability: str) -> bool:
    return user is not None and capability in user.capabilities


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class UserStore:
    """CRUD for host users."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _hydrate(row) -> User:
        return User(
            id=int(row["id"]),
            login=row["login"],
            display_name=row["display_name"],
            email=row["email"],
            capabilities=set(json.loads(row["capabilities"])),
            password_hash=row["password_hash"],
        )

    def create_user(
        self,
        login: str,
        password: str,
        display_name: str = "",
        email: str = "",
        capabilities: set[str] | frozenset[str] | None = None,
    ) -> User:
        caps = sorted(capabilities if capabilities is not None else DEFAULT_CAPABILITIES)
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO {_TABLE} (login, password_hash, display_name, email, capabilities) "
                "VALUES (?, ?, ?, ?, ?)",
                (login, hash_password(password), display_name or login, email, json.dumps(caps)),
            )
            user_id = cursor.lastrowid
        logger.info("Created user %s (id=%s)", login, user_id)
        user = self.get_user_by_id(user_id)
        assert user is not None
        return user

    def get_user_by_id(self, user_id: int | str | None) -> User | None:
        try:
            uid = int(user_id)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        with self.db.connect() as conn:
            row = conn.execute(f"SELECT * FROM {_TABLE} WHERE id = ?", (uid,)).fetchone()
        return self._hydrate(row) if row else None

    def get_user_by_login(self, login: str) -> User | None:
        with self.db.connect() as conn:
            row = conn.execute(f"SELECT * FROM {_TABLE} WHERE login = ?", (login,)).fetchone()
        return self._hydrate(row) if row else None

    def authenticate(self, login: str, password: str) -> User | None:
        """Return the user if the password matches."""
        user = self.get_user_by_login(login)
        if user is None or not check_password(password, user.password_hash):
            return None
        return user

    def delete_user(self, user_id: int) -> bool:
        with self.db.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {_TABLE} WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    def list_users(self) -> list[User]:
        with self.db.connect() as conn:
            rows = conn.execute(f"SELECT * FROM {_TABLE} ORDER BY id").fetchall()
        return [self._hydrate(r) for r in rows]
