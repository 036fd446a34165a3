"""
Structured error types for the Nexus store.

Provides a small hierarchy of typed errors with metadata for logging and for
deciding which failure kind an operation hit. Errors in this package are
rarely raised across a public boundary: migration operations return them
inside :class:`~nexus.core.result.Err` so callers and tests can assert on the
exact kind without catching anything.

Manifesto:
    - **Typed error hierarchy:** One subclass per failure kind of the
      migration engine (resource, statement, introspection, guard, timeout,
      import, rebuild)
    - **Rich context:** Errors carry the table, statement, path and phase
      that failed
    - **Error chaining:** The underlying ``sqlite3`` exception is preserved
      as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        NexusError                             │
        │              (category, context, cause)                       │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError          DatabaseError                           │
        │                            │                                  │
        │                      MigrationError                           │
        │      ┌──────────────┬──────┴───────┬──────────────────┐       │
        │  ResourceNotFound  StatementFailure IntrospectionFailure      │
        │  ImportGuardError  ImportTimeout   ImportFailure  RebuildError│
        │      │                                                        │
        │  LegacyStoreMissing  LegacyStoreTooLarge  SelfImport          │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = StatementFailureError("no such column: profile_id")
    >>> error.with_context(table="tabs", statement="CREATE INDEX ...")
    StatementFailureError('no such column: profile_id', category=DATABASE)
    >>> error.context.table
    'tabs'

Tags:
    error-handling, exception-hierarchy, error-context, migrations, nexus-core
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    DATABASE = "DATABASE"         # Statement, catalog, attach failures
    STORAGE = "STORAGE"           # Legacy file missing/oversized
    CONFIG = "CONFIG"             # Missing resource, closed factory
    ORCHESTRATION = "ORCHESTRATION"  # Background import timeout
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        phase: Engine phase (``schema``, ``structural``, ``legacy_import``)
        table: Table involved, possibly qualified (``olddb.settings``)
        column: Column involved
        statement: SQL statement that failed
        path: Filesystem path involved (schema script, legacy store)
        metadata: Additional key-value pairs
    """

    phase: str | None = None
    table: str | None = None
    column: str | None = None
    statement: str | None = None
    path: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["phase", "table", "column", "statement", "path"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class NexusError(Exception):
    """
    Base exception for all Nexus store errors.

    Subclasses set ``default_category`` so construction stays terse:
    ``SelfImportError("legacy store is the live store")``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> NexusError:
        """
        Add context to this error (fluent API).

        Usage:
            return Err(StatementFailureError(str(exc), cause=exc).with_context(
                table="profile", column="is_guest"
            ))
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION / DATABASE
# =============================================================================


class ConfigError(NexusError):
    """Configuration error (bad store URL, closed factory)."""

    default_category = ErrorCategory.CONFIG


class DatabaseError(NexusError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# MIGRATION ENGINE
# =============================================================================


class MigrationError(DatabaseError):
    """Base class for every failure kind of the migration engine."""

    pass


class ResourceNotFoundError(MigrationError):
    """Schema script not found at any lookup location.

    Disables schema application for the current run.
    """

    default_category = ErrorCategory.CONFIG

    def __init__(self, message: str, *, searched: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.searched = searched or []


class StatementFailureError(MigrationError):
    """A single DDL/DML statement failed; sibling statements still run."""

    pass


class IntrospectionFailureError(MigrationError):
    """Catalog query failed; callers treat the columns as absent."""

    pass


class RebuildError(MigrationError):
    """A rename/create/copy/drop rebuild step failed.

    ``temp_table`` names the table still holding the prior rows when the
    failure happened after the rename.
    """

    def __init__(self, message: str, *, step: str, temp_table: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.step = step
        self.temp_table = temp_table

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["step"] = self.step
        if self.temp_table:
            result["temp_table"] = self.temp_table
        return result


class ImportGuardError(MigrationError):
    """A legacy import guard failed; the import is skipped, not failed."""

    default_category = ErrorCategory.STORAGE


class LegacyStoreMissingError(ImportGuardError):
    """No legacy store file at the configured path."""

    pass


class LegacyStoreTooLargeError(ImportGuardError):
    """Legacy store file exceeds the auto-import size threshold."""

    def __init__(self, message: str, *, size: int, limit: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.size = size
        self.limit = limit


class SelfImportError(ImportGuardError):
    """The legacy store is the file already backing the live store."""

    pass


class ImportTimeoutError(MigrationError):
    """The background import exceeded its time budget and was cancelled."""

    default_category = ErrorCategory.ORCHESTRATION

    def __init__(self, message: str, *, timeout: float, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ImportFailureError(MigrationError):
    """Attach, copy, normalize or detach raised during the legacy import."""

    pass


def is_import_skip(error: Exception) -> bool:
    """Check whether an import error means "skipped" rather than "failed"."""
    return isinstance(error, ImportGuardError)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "NexusError",
    "ConfigError",
    "DatabaseError",
    "MigrationError",
    "ResourceNotFoundError",
    "StatementFailureError",
    "IntrospectionFailureError",
    "RebuildError",
    "ImportGuardError",
    "LegacyStoreMissingError",
    "LegacyStoreTooLargeError",
    "SelfImportError",
    "ImportTimeoutError",
    "ImportFailureError",
    "is_import_skip",
]
