# Encrypted payloads for authorization codes and refresh tokens.
# Created: 2026-10-04

from __future__ import annotations

import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken


class PayloadCrypt:
    """Fernet (AES-CBC + HMAC) envelope around a JSON object."""

    def __init__(self, key: str):
        self._fernet = Fernet(key.encode("ascii"))

    def encrypt(self, payload: dict[str, Any]) -> str:
        return self._fernet.encrypt(json.dumps(payload).encode("utf-8")).decode("ascii")

    def decrypt(self, value: str) -> dict[str, Any]:
        """Decrypt a payload. Raises ValueError if it was not produced with this key."""
        try:
            data = json.loads(self._fernet.decrypt(value.encode("ascii")))
        except (InvalidToken, UnicodeEncodeError, json.JSONDecodeError) as exc:
            raise ValueError("Payload could not be decrypted") from exc
        if not isinstance(data, dict):
            raise ValueError("Payload is not an object")
        return data
