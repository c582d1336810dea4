# Structured error values.
# Created: 2026-10-02
#
# ApiError is returned, not raised: permission callbacks, abilities and the
# execution guard hand it back to the caller, which decides how to render it.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ApiError:
    """An error with a machine-readable code and an HTTP status."""

    code: str
    message: str
    status: int = 400
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        data = {"status": self.status, **self.data}
        body["data"] = data
        return body


def is_error(value: Any) -> bool:
    return isinstance(value, ApiError)


class StorageError(Exception):
    """Raised when the relational store fails."""


class ApiErrorException(Exception):
    """Carries an ApiError out of a FastAPI dependency to the error handler."""

    def __init__(self, error: ApiError):
        super().__init__(error.message)
        self.error = error
