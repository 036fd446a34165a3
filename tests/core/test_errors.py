"""Tests for nexus.core.errors module."""

import sqlite3

import pytest

from nexus.core.errors import (
    ConfigError,
    DatabaseError,
    ErrorCategory,
    ErrorContext,
    ImportFailureError,
    ImportGuardError,
    ImportTimeoutError,
    IntrospectionFailureError,
    LegacyStoreMissingError,
    LegacyStoreTooLargeError,
    MigrationError,
    NexusError,
    RebuildError,
    ResourceNotFoundError,
    SelfImportError,
    StatementFailureError,
    is_import_skip,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.table is None
        assert ctx.statement is None
        assert ctx.metadata == {}

    def test_to_dict_excludes_none(self):
        ctx = ErrorContext(phase="structural", table="tabs")
        assert ctx.to_dict() == {"phase": "structural", "table": "tabs"}

    def test_to_dict_merges_metadata(self):
        ctx = ErrorContext(table="settings", metadata={"step": "copy"})
        assert ctx.to_dict() == {"table": "settings", "step": "copy"}


class TestNexusError:
    """Test base NexusError."""

    def test_default_category_is_internal(self):
        assert NexusError("boom").category == ErrorCategory.INTERNAL

    def test_explicit_category_overrides_default(self):
        error = StatementFailureError("x", category=ErrorCategory.STORAGE)
        assert error.category == ErrorCategory.STORAGE

    def test_cause_is_chained(self):
        cause = sqlite3.OperationalError("no such table: tabs")
        error = StatementFailureError("failed", cause=cause)
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_with_context_sets_known_fields(self):
        error = StatementFailureError("failed").with_context(
            table="profile", column="is_guest"
        )
        assert error.context.table == "profile"
        assert error.context.column == "is_guest"

    def test_with_context_unknown_keys_go_to_metadata(self):
        error = ImportFailureError("failed").with_context(step="attach")
        assert error.context.metadata == {"step": "attach"}

    def test_to_dict(self):
        error = StatementFailureError(
            "no such column", cause=sqlite3.OperationalError("no such column: x")
        ).with_context(statement="SELECT x FROM t")
        d = error.to_dict()
        assert d["error_type"] == "StatementFailureError"
        assert d["category"] == "DATABASE"
        assert d["context"] == {"statement": "SELECT x FROM t"}
        assert d["cause"] == "no such column: x"

    def test_repr(self):
        assert repr(ConfigError("closed")) == "ConfigError('closed', category=CONFIG)"


class TestTaxonomy:
    """Every migration failure kind is a MigrationError with a fitting category."""

    @pytest.mark.parametrize(
        "error_cls",
        [
            ResourceNotFoundError,
            StatementFailureError,
            IntrospectionFailureError,
            ImportGuardError,
            LegacyStoreMissingError,
            SelfImportError,
            ImportFailureError,
        ],
    )
    def test_is_migration_error(self, error_cls):
        error = error_cls("x")
        assert isinstance(error, MigrationError)
        assert isinstance(error, DatabaseError)

    def test_categories(self):
        assert ResourceNotFoundError("x").category == ErrorCategory.CONFIG
        assert StatementFailureError("x").category == ErrorCategory.DATABASE
        assert LegacyStoreMissingError("x").category == ErrorCategory.STORAGE
        assert ImportTimeoutError("x", timeout=30).category == ErrorCategory.ORCHESTRATION

    def test_resource_not_found_keeps_searched_locations(self):
        error = ResourceNotFoundError("missing", searched=["a/init.sql", "b/init.sql"])
        assert error.searched == ["a/init.sql", "b/init.sql"]

    def test_too_large_keeps_sizes(self):
        error = LegacyStoreTooLargeError("big", size=60, limit=50)
        assert (error.size, error.limit) == (60, 50)

    def test_rebuild_error_reports_temp_table(self):
        error = RebuildError("copy failed", step="copy", temp_table="tabs_old")
        d = error.to_dict()
        assert d["step"] == "copy"
        assert d["temp_table"] == "tabs_old"

    def test_rebuild_error_without_temp_table(self):
        d = RebuildError("rename failed", step="rename").to_dict()
        assert "temp_table" not in d


class TestIsImportSkip:
    def test_guard_errors_are_skips(self):
        assert is_import_skip(LegacyStoreMissingError("x"))
        assert is_import_skip(LegacyStoreTooLargeError("x", size=2, limit=1))
        assert is_import_skip(SelfImportError("x"))

    def test_failures_are_not_skips(self):
        assert not is_import_skip(ImportFailureError("x"))
        assert not is_import_skip(ImportTimeoutError("x", timeout=1))
        assert not is_import_skip(ValueError("x"))
