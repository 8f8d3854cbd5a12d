"""Error taxonomy shared by models, sessions and database collaborators."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


class CosaError(RuntimeError):
    """Base class for errors raised by cosa.

    ``type`` is a stable discriminator callers can branch on and
    ``status_code`` is the HTTP-style classification of the failure.
    """

    type = "Cosa"
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ConfigurationError(CosaError):
    """Raised at definition time for structurally invalid definitions."""

    type = "Configuration"
    default_message = "Invalid configuration"


class ValidationError(CosaError):
    """Raised when a document fails its compiled schema."""

    type = "Validation"
    status_code = 400
    default_message = "Document failed validation"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.details = tuple(details)


class ConflictError(CosaError):
    """Raised when an etag guarded write matches no document."""

    type = "Conflict"
    status_code = 409
    default_message = "Document conflict"


class UsageError(CosaError):
    """Raised on programmer misuse of the API."""

    type = "Usage"
    status_code = 400
    default_message = "Invalid usage"


class MutationError(UsageError, AttributeError):
    """Raised when code attempts to modify an immutable instance."""

    type = "Mutation"


class DatabaseError(CosaError):
    """Raised by database collaborators when a driver operation fails."""

    type = "Database"
    default_message = "Database operation failed"


class DuplicateKeyError(DatabaseError):
    """Raised by database collaborators on a uniqueness violation."""

    type = "DuplicateKey"
    status_code = 409
    default_message = "Duplicate key"

    def __init__(
        self,
        message: str | None = None,
        *,
        key: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.key = dict(key or {})


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "CosaError",
    "DatabaseError",
    "DuplicateKeyError",
    "MutationError",
    "UsageError",
    "ValidationError",
]
