# OAuth2 repositories.
# Created: 2026-10-04
#
# Translate between entities and the SQLite tables. Unknown codes and tokens
# are reported as revoked. The consume_* methods are the atomic
# check-and-revoke steps used for single-use codes and refresh rotation.

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime

from albert.api.oauth2.exceptions import UniqueIdentifierViolation
from albert.api.oauth2.models import (
    DEFAULT_SCOPE,
    WILDCARD_REDIRECT,
    AccessToken,
    AuthCode,
    Client,
    RefreshToken,
    Scope,
    utcnow,
)
from albert.db import TABLES, Database, from_db_time, to_db_time
from albert.users import check_password, hash_password

logger = logging.getLogger(__name__)

CLIENT_ID_PREFIX = "albert_"


def _encode_redirect_uris(redirect_uris: list[str]) -> str:
    if redirect_uris == [WILDCARD_REDIRECT]:
        return WILDCARD_REDIRECT
    return json.dumps(redirect_uris)


def _decode_redirect_uris(value: str) -> list[str]:
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return [value]
    if isinstance(decoded, str):
        return [decoded]
    return list(decoded)


def _insert_unique(db: Database, sql: str, params: tuple) -> None:
    with db.connect() as conn:
        try:
            conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            raise UniqueIdentifierViolation(str(exc)) from exc


class ClientRepository:
    def __init__(self, db: Database):
        self.db = db
        self.table = TABLES["clients"]

    @staticmethod
    def _hydrate(row) -> Client:
        return Client(
            identifier=row["client_id"],
            name=row["name"],
            redirect_uris=_decode_redirect_uris(row["redirect_uri"]),
            is_confidential=bool(row["is_confidential"]),
            hashed_secret=row["client_secret"],
            owner_user_id=int(row["user_id"]) if row["user_id"] else None,
            created_at=from_db_time(row["created_at"]) if row["created_at"] else None,
        )

    def get_client_entity(self, client_id: str) -> Client | None:
        with self.db.connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE client_id = ?", (client_id,)
            ).fetchone()
        return self._hydrate(row) if row else None

    def validate_client(
        self, client_id: str, client_secret: str | None, grant_type: str | None = None
    ) -> bool:
        """Check client credentials. Public clients pass without a secret."""
        client = self.get_client_entity(client_id)
        if client is None:
            return False
        if not client.is_confidential:
            return True
        if not client_secret or not client.hashed_secret:
            return False
        return check_password(client_secret, client.hashed_secret)

    def create_client(
        self,
        name: str,
        redirect_uris: list[str],
        is_confidential: bool = True,
        user_id: int | None = None,
        client_secret: str | None = None,
    ) -> tuple[Client, str | None]:
        """Register a client. Returns the client and its plaintext secret.

        The secret is only ever available here; storage keeps a bcrypt hash.
        Public clients get no secret.
        """
        plain_secret = None
        hashed_secret = None
        if is_confidential:
            plain_secret = client_secret or secrets.token_hex(32)
            hashed_secret = hash_password(plain_secret)

        client_id = CLIENT_ID_PREFIX + secrets.token_hex(16)
        _insert_unique(
            self.db,
            f"INSERT INTO {self.table} "
            "(client_id, client_secret, name, redirect_uri, user_id, is_confidential) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                client_id,
                hashed_secret,
                name,
                _encode_redirect_uris(redirect_uris),
                user_id,
                1 if is_confidential else 0,
            ),
        )
        logger.info("Registered OAuth client %s (%s)", client_id, name)
        client = self.get_client_entity(client_id)
        assert client is not None
        return client, plain_secret

    def delete_client(self, client_id: str) -> bool:
        with self.db.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE client_id = ?", (client_id,))
            return cursor.rowcount > 0

    def get_clients_by_user(self, user_id: int | None = None) -> list[Client]:
        with self.db.connect() as conn:
            if user_id is None:
                rows = conn.execute(
                    f"SELECT * FROM {self.table} ORDER BY created_at DESC, id DESC"
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT * FROM {self.table} WHERE user_id = ? "
                    "ORDER BY created_at DESC, id DESC",
                    (user_id,),
                ).fetchall()
        return [self._hydrate(r) for r in rows]


class ScopeRepository:
    """Single-scope repository: only ``default`` exists and it is always granted."""

    def get_scope_entity_by_identifier(self, identifier: str) -> Scope | None:
        if identifier == DEFAULT_SCOPE:
            return Scope(DEFAULT_SCOPE)
        return None

    def finalize_scopes(
        self,
        scopes: list[Scope],
        grant_type: str,
        client: Client,
        user_id: int | None = None,
    ) -> list[Scope]:
        return [Scope(DEFAULT_SCOPE)]


class AuthCodeRepository:
    def __init__(self, db: Database):
        self.db = db
        self.table = TABLES["auth_codes"]

    def get_new_auth_code(self) -> AuthCode:
        return AuthCode()

    def persist_new_auth_code(self, code: AuthCode) -> None:
        _insert_unique(
            self.db,
            f"INSERT INTO {self.table} (code_id, client_id, user_id, scopes, revoked, expires_at) "
            "VALUES (?, ?, ?, ?, 0, ?)",
            (
                code.identifier,
                code.client_id,
                code.user_id,
                json.dumps(code.scopes),
                to_db_time(code.expires_at),
            ),
        )

    def revoke_auth_code(self, code_id: str) -> None:
        with self.db.connect() as conn:
            conn.execute(f"UPDATE {self.table} SET revoked = 1 WHERE code_id = ?", (code_id,))

    def is_auth_code_revoked(self, code_id: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                f"SELECT revoked FROM {self.table} WHERE code_id = ?", (code_id,)
            ).fetchone()
        return row is None or bool(row["revoked"])

    def consume_auth_code(self, code_id: str, now: datetime | None = None) -> bool:
        """Revoke a live code in one statement. False if already used, unknown or expired."""
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE {self.table} SET revoked = 1 "
                "WHERE code_id = ? AND revoked = 0 AND expires_at > ?",
                (code_id, to_db_time(now or utcnow())),
            )
            return cursor.rowcount == 1

    def cleanup_expired_codes(self, now: datetime | None = None) -> int:
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM {self.table} WHERE expires_at < ?", (to_db_time(now or utcnow()),)
            )
            return cursor.rowcount


class AccessTokenRepository:
    def __init__(self, db: Database):
        self.db = db
        self.table = TABLES["access_tokens"]

    @staticmethod
    def _hydrate(row) -> AccessToken:
        return AccessToken(
            identifier=row["token_id"],
            client_id=row["client_id"],
            user_id=int(row["user_id"]) if row["user_id"] is not None else None,
            scopes=json.loads(row["scopes"]) if row["scopes"] else [],
            expires_at=from_db_time(row["expires_at"]),
            revoked=bool(row["revoked"]),
            created_at=from_db_time(row["created_at"]) if row["created_at"] else None,
        )

    def get_new_token(
        self, client: Client, scopes: list[Scope], user_id: int | None = None
    ) -> AccessToken:
        return AccessToken(
            client_id=client.identifier,
            user_id=user_id,
            scopes=[s.identifier for s in scopes],
        )

    def persist_new_access_token(self, token: AccessToken) -> None:
        _insert_unique(
            self.db,
            f"INSERT INTO {self.table} (token_id, client_id, user_id, scopes, revoked, expires_at) "
            "VALUES (?, ?, ?, ?, 0, ?)",
            (
                token.identifier,
                token.client_id,
                token.user_id,
                json.dumps(token.scopes),
                to_db_time(token.expires_at),
            ),
        )

    def get_access_token(self, token_id: str) -> AccessToken | None:
        with self.db.connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE token_id = ?", (token_id,)
            ).fetchone()
        return self._hydrate(row) if row else None

    def revoke_access_token(self, token_id: str) -> bool:
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE {self.table} SET revoked = 1 WHERE token_id = ? AND revoked = 0",
                (token_id,),
            )
            return cursor.rowcount > 0

    def is_access_token_revoked(self, token_id: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                f"SELECT revoked FROM {self.table} WHERE token_id = ?", (token_id,)
            ).fetchone()
        return row is None or bool(row["revoked"])

    def get_access_tokens_by_user(
        self, user_id: int, now: datetime | None = None
    ) -> list[AccessToken]:
        """Live (unrevoked, unexpired) tokens of a user, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {self.table} "
                "WHERE user_id = ? AND revoked = 0 AND expires_at > ? "
                "ORDER BY created_at DESC, id DESC",
                (user_id, to_db_time(now or utcnow())),
            ).fetchall()
        return [self._hydrate(r) for r in rows]

    def revoke_tokens_by_client(self, client_id: str) -> int:
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE {self.table} SET revoked = 1 WHERE client_id = ? AND revoked = 0",
                (client_id,),
            )
            return cursor.rowcount

    def cleanup_expired_tokens(self, now: datetime | None = None) -> int:
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM {self.table} WHERE expires_at < ?", (to_db_time(now or utcnow()),)
            )
            return cursor.rowcount


class RefreshTokenRepository:
    def __init__(self, db: Database):
        self.db = db
        self.table = TABLES["refresh_tokens"]

    def get_new_refresh_token(self) -> RefreshToken:
        return RefreshToken()

    def persist_new_refresh_token(self, token: RefreshToken) -> None:
        _insert_unique(
            self.db,
            f"INSERT INTO {self.table} (token_id, access_token_id, revoked, expires_at) "
            "VALUES (?, ?, 0, ?)",
            (token.identifier, token.access_token_id, to_db_time(token.expires_at)),
        )

    def revoke_refresh_token(self, token_id: str) -> bool:
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE {self.table} SET revoked = 1 WHERE token_id = ? AND revoked = 0",
                (token_id,),
            )
            return cursor.rowcount > 0

    def is_refresh_token_revoked(self, token_id: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                f"SELECT revoked FROM {self.table} WHERE token_id = ?", (token_id,)
            ).fetchone()
        return row is None or bool(row["revoked"])

    def consume_refresh_token(self, token_id: str, now: datetime | None = None) -> bool:
        """Revoke a live refresh token in one statement. False if it was not live."""
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE {self.table} SET revoked = 1 "
                "WHERE token_id = ? AND revoked = 0 AND expires_at > ?",
                (token_id, to_db_time(now or utcnow())),
            )
            return cursor.rowcount == 1

    def revoke_refresh_tokens_by_access_token(self, access_token_id: str) -> int:
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE {self.table} SET revoked = 1 WHERE access_token_id = ? AND revoked = 0",
                (access_token_id,),
            )
            return cursor.rowcount

    def cleanup_expired_tokens(self, now: datetime | None = None) -> int:
        with self.db.connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM {self.table} WHERE expires_at < ?", (to_db_time(now or utcnow()),)
            )
            return cursor.rowcount


@dataclass
class OAuthRepositories:
    """The five repositories over one database."""

    clients: ClientRepository
    scopes: ScopeRepository
    auth_codes: AuthCodeRepository
    access_tokens: AccessTokenRepository
    refresh_tokens: RefreshTokenRepository

    @classmethod
    def for_database(cls, db: Database) -> OAuthRepositories:
        return cls(
            clients=ClientRepository(db),
            scopes=ScopeRepository(),
            auth_codes=AuthCodeRepository(db),
            access_tokens=AccessTokenRepository(db),
            refresh_tokens=RefreshTokenRepository(db),
        )

    def cleanup(self, now: datetime | None = None) -> dict[str, int]:
        """Delete expired codes and tokens. Returns counts per table."""
        return {
            "auth_codes": self.auth_codes.cleanup_expired_codes(now),
            "access_tokens": self.access_tokens.cleanup_expired_tokens(now),
            "refresh_tokens": self.refresh_tokens.cleanup_expired_tokens(now),
        }
