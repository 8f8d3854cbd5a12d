"""Immutable document models with optimistic concurrency and transactional hooks."""

from cosa.config import CosaSettings
from cosa.connection import Connection, close, init
from cosa.cursor import Cursor
from cosa.definitions import ModelDefinition, PropertyDefinition
from cosa.errors import (
    ConfigurationError,
    ConflictError,
    CosaError,
    DatabaseError,
    DuplicateKeyError,
    MutationError,
    UsageError,
    ValidationError,
)
from cosa.immutable import Immutable, create, is_immutable, is_immutable_type, use
from cosa.model import Model, ModelHooks, define, wait_for_background_hooks
from cosa.session import Session, create_session

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "Connection",
    "CosaError",
    "CosaSettings",
    "Cursor",
    "DatabaseError",
    "DuplicateKeyError",
    "Immutable",
    "Model",
    "ModelDefinition",
    "ModelHooks",
    "MutationError",
    "PropertyDefinition",
    "Session",
    "UsageError",
    "ValidationError",
    "close",
    "create",
    "create_session",
    "define",
    "init",
    "is_immutable",
    "is_immutable_type",
    "use",
    "wait_for_background_hooks",
]
