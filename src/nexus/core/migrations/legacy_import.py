"""Legacy store import.

Copies the most relevant ``settings`` row out of an older store file into
the live store, then canonicalizes the free-text theme so the application
does not start in an inconsistent visual state.

Manifesto:
    The import is advisory enrichment. A missing, oversized or
    self-referential legacy file is a skip, not an error; anything that goes
    wrong between ATTACH and DETACH is logged and returned as
    ``Err(ImportFailureError)``. DETACH always runs.

Architecture:
    ::

        guards (exists / size / not the live file)
            │ Err(ImportGuardError) ──► skipped, nothing attached
            ▼
        PRAGMA busy_timeout → ATTACH ? AS olddb
            ▼
        introspect main.settings + olddb.settings
            ▼
        INSERT OR REPLACE INTO settings (<live cols>)
            SELECT <olddb col | NULL AS col> ... WHERE user_id = ? ORDER BY id DESC LIMIT 1
            ▼
        normalize theme → dark-mode flag → high_contrast   (each fails soft)
            ▼
        DETACH olddb  (finally)

Examples:
    >>> canonical_theme("Dark Mode")
    'dark'
    >>> canonical_theme("Light")
    'main'
    >>> canonical_theme("Solarized")
    'solarized'

Tags:
    migrations, legacy-import, sqlite-attach, normalization, nexus-core
"""

from __future__ import annotations

import os
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path

from nexus.core.errors import (
    ImportFailureError,
    LegacyStoreMissingError,
    LegacyStoreTooLargeError,
    SelfImportError,
)
from nexus.core.logging import LogContext, get_logger
from nexus.core.migrations.introspection import (
    ColumnIntrospector,
    fold_columns,
    quote_identifier,
    require_simple_identifier,
)
from nexus.core.result import Err, Ok, Result
from nexus.core.settings import NexusSettings

logger = get_logger(__name__)

ATTACH_ALIAS = "olddb"
IMPORT_TABLE = "settings"
DEFAULT_MAX_BYTES = 50 * 1024 * 1024

# First one present on the live table is kept in sync with the theme
DARK_MODE_COLUMNS = ("dark_mode", "enable_dark_mode", "use_dark_theme")

_THEME_FUNCTION = "nexus_canonical_theme"


def canonical_theme(value: str | None) -> str:
    """Map a free-text theme onto ``dark``, ``main`` or its lower-cased self."""
    lowered = (value or "").lower()
    if "dark" in lowered:
        return "dark"
    if "light" in lowered or lowered == "":
        return "main"
    return lowered


@dataclass(frozen=True)
class ImportSelection:
    """Which legacy row is "most relevant": latest by key, in the default user scope."""

    user_id: int = 1
    order_by: str = "id"
    descending: bool = True
    limit: int = 1

    def clause(self, source_columns: list[str]) -> tuple[str, tuple]:
        """SQL tail and parameters; filters on columns the source actually has."""
        source = fold_columns(source_columns)
        parts: list[str] = []
        params: tuple = ()
        if "user_id" in source:
            parts.append(f"WHERE {quote_identifier(source['user_id'])} = ?")
            params = (self.user_id,)
        order_by = source.get(self.order_by.lower())
        if order_by:
            parts.append(f"ORDER BY {quote_identifier(order_by)} {'DESC' if self.descending else 'ASC'}")
        parts.append(f"LIMIT {int(self.limit)}")
        return " ".join(parts), params


@dataclass(frozen=True)
class LegacyImportPlan:
    """Target table plus, per live column, the legacy column to copy or ``None`` for NULL.

    ``columns`` is built from the live column list only, so the generated
    statement never names a column the target lacks.
    """

    target_table: str
    source_table: str
    columns: tuple[tuple[str, str | None], ...]

    @classmethod
    def build(
        cls,
        target_columns: list[str],
        source_columns: list[str],
        *,
        table: str = IMPORT_TABLE,
        alias: str = ATTACH_ALIAS,
    ) -> LegacyImportPlan:
        source = fold_columns(source_columns)
        return cls(
            target_table=table,
            source_table=f"{alias}.{table}",
            columns=tuple((col, source.get(col.lower())) for col in target_columns),
        )

    @property
    def target_columns(self) -> list[str]:
        return [col for col, _ in self.columns]

    @property
    def copied_columns(self) -> list[str]:
        return [col for col, source in self.columns if source is not None]

    def insert_sql(self, selection: ImportSelection, source_columns: list[str]) -> tuple[str, tuple]:
        names = ", ".join(quote_identifier(col) for col in self.target_columns)
        exprs = ", ".join(
            f"{self.source_table}.{quote_identifier(source)}"
            if source is not None
            else f"NULL AS {quote_identifier(col)}"
            for col, source in self.columns
        )
        tail, params = selection.clause(source_columns)
        sql = (
            f"INSERT OR REPLACE INTO main.{self.target_table} ({names}) "
            f"SELECT {exprs} FROM {self.source_table} {tail}"
        )
        return sql, params


@dataclass
class ImportReport:
    """What one import attempt did."""

    legacy_path: str
    attached: bool = False
    detached: bool = False
    rows_copied: int = 0
    copy_skipped: str | None = None
    plan: LegacyImportPlan | None = None
    normalized: list[str] = field(default_factory=list)
    normalization_failures: list[str] = field(default_factory=list)


class ImportCancelled(Exception):
    """Raised inside the importer when the supervising scheduler gave up."""


class LegacyStoreImporter:
    """Attach, copy, normalize, detach.

    Parameters
    ----------
    max_bytes
        Legacy files larger than this are skipped.
    busy_timeout_ms
        ``PRAGMA busy_timeout`` attempted before ATTACH.
    selection
        Which legacy row to copy.
    """

    def __init__(
        self,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        busy_timeout_ms: int = 1000,
        selection: ImportSelection | None = None,
        introspector: ColumnIntrospector | None = None,
        alias: str = ATTACH_ALIAS,
        table: str = IMPORT_TABLE,
    ) -> None:
        self.max_bytes = max_bytes
        self.busy_timeout_ms = busy_timeout_ms
        self.selection = selection or ImportSelection()
        self._introspector = introspector or ColumnIntrospector()
        # both are interpolated into SQL unquoted
        self._alias = require_simple_identifier(alias)
        self._table = require_simple_identifier(table)

    @classmethod
    def from_settings(cls, settings: NexusSettings) -> LegacyStoreImporter:
        return cls(
            max_bytes=settings.legacy_max_bytes,
            busy_timeout_ms=settings.busy_timeout_ms,
            selection=ImportSelection(user_id=settings.default_user_id),
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def check_guards(self, conn: sqlite3.Connection, legacy_path: str | Path) -> Result[Path]:
        """Return the resolved legacy path, or the guard that failed."""
        path = Path(legacy_path).expanduser()
        if not path.is_file():
            return Err(
                LegacyStoreMissingError("No legacy store found").with_context(
                    phase="legacy_import", path=str(path.absolute())
                )
            )

        size = path.stat().st_size
        if size > self.max_bytes:
            return Err(
                LegacyStoreTooLargeError(
                    f"Legacy store too large for automatic import ({size} bytes)",
                    size=size,
                    limit=self.max_bytes,
                ).with_context(phase="legacy_import", path=str(path.absolute()))
            )

        live = _main_database_file(conn)
        if live and _same_file(live, path):
            return Err(
                SelfImportError("Live store already uses the legacy file").with_context(
                    phase="legacy_import", path=str(path.absolute())
                )
            )

        return Ok(path.resolve())

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def run(
        self,
        conn: sqlite3.Connection,
        legacy_path: str | Path,
        cancel_event: threading.Event | None = None,
    ) -> Result[ImportReport]:
        """Import from ``legacy_path`` into the store behind ``conn``.

        Guard failures come back as ``Err(ImportGuardError)`` before anything
        is attached; attach/copy/normalize/detach failures as
        ``Err(ImportFailureError)``.
        """
        guarded = self.check_guards(conn, legacy_path)
        if guarded.is_err():
            logger.info(
                "legacy_import.skipped",
                reason=type(guarded.error).__name__,
                message=str(guarded.error),
                path=guarded.error.context.path,
            )
            return guarded

        path = guarded.unwrap()
        report = ImportReport(legacy_path=str(path))

        with LogContext(phase="legacy_import"):
            try:
                conn.commit()
                self._set_busy_timeout(conn)
                logger.info("legacy_import.attaching", path=str(path))
                conn.execute(f"ATTACH DATABASE ? AS {self._alias}", (str(path),))
                report.attached = True
            except Exception as exc:
                logger.error("legacy_import.attach_failed", path=str(path), error=str(exc))
                return Err(self._failure("attach", exc, path))

            failure: ImportFailureError | None = None
            try:
                self._check_cancelled(cancel_event)
                source_columns = self._copy(conn, report)
                self._check_cancelled(cancel_event)
                self._normalize(conn, report, source_columns, cancel_event)
                conn.commit()
            except Exception as exc:
                _rollback_quietly(conn)
                failure = self._failure("copy", exc, path)
                logger.error("legacy_import.failed", path=str(path), error=str(exc))
            finally:
                detach_error = self._detach(conn, report)

            if failure is not None:
                return Err(failure)
            if detach_error is not None:
                return Err(self._failure("detach", detach_error, path))

        logger.info(
            "legacy_import.completed",
            path=str(path),
            rows=report.rows_copied,
            normalized=report.normalized,
        )
        return Ok(report)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_busy_timeout(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        except sqlite3.Error as exc:
            logger.debug("legacy_import.busy_timeout_unsupported", error=str(exc))

    def _copy(self, conn: sqlite3.Connection, report: ImportReport) -> list[str]:
        target_columns = self._introspector.columns(conn, f"main.{self._table}")
        source_columns = self._introspector.columns(conn, f"{self._alias}.{self._table}")

        if not target_columns:
            report.copy_skipped = "target table has no columns"
        elif not source_columns:
            report.copy_skipped = "source table has no columns"
        if report.copy_skipped:
            logger.warning("legacy_import.copy_skipped", reason=report.copy_skipped)
            return source_columns

        plan = LegacyImportPlan.build(
            target_columns, source_columns, table=self._table, alias=self._alias
        )
        report.plan = plan
        sql, params = plan.insert_sql(self.selection, source_columns)
        cursor = conn.execute(sql, params)
        report.rows_copied = max(cursor.rowcount, 0)
        logger.info(
            "legacy_import.rows_copied",
            rows=report.rows_copied,
            columns=plan.copied_columns,
            nulled=[c for c, s in plan.columns if s is None],
        )
        return source_columns

    def _normalize(
        self,
        conn: sqlite3.Connection,
        report: ImportReport,
        source_columns: list[str],
        cancel_event: threading.Event | None,
    ) -> None:
        live = fold_columns(self._introspector.columns(conn, f"main.{self._table}"))
        if "theme" not in live:
            logger.debug("legacy_import.normalize_skipped", reason="no theme column")
            return

        table = f"main.{self._table}"
        theme = quote_identifier(live["theme"])
        steps: list[tuple[str, str]] = [
            ("theme", f"UPDATE {table} SET {theme} = {_THEME_FUNCTION}({theme})"),
        ]
        dark_column = next((live[c] for c in DARK_MODE_COLUMNS if c in live), None)
        if dark_column:
            steps.append(
                (
                    dark_column,
                    f"UPDATE {table} SET {quote_identifier(dark_column)} = "
                    f"CASE WHEN {theme} = 'dark' THEN 1 ELSE 0 END",
                )
            )
        # Only a legacy high-contrast signal may move high_contrast.
        if "high_contrast" in live and "high_contrast" in fold_columns(source_columns):
            high_contrast = quote_identifier(live["high_contrast"])
            steps.append(
                (
                    "high_contrast",
                    f"UPDATE {table} SET {high_contrast} = "
                    f"CASE WHEN {theme} = 'dark' THEN 1 ELSE {high_contrast} END",
                )
            )

        try:
            conn.create_function(_THEME_FUNCTION, 1, canonical_theme, deterministic=True)
        except sqlite3.Error as exc:
            report.normalization_failures.append("theme")
            logger.warning("legacy_import.normalize_failed", step="theme", error=str(exc))
            return

        for name, statement in steps:
            self._check_cancelled(cancel_event)
            try:
                conn.execute(statement)
                report.normalized.append(name)
            except sqlite3.Error as exc:
                report.normalization_failures.append(name)
                logger.warning("legacy_import.normalize_failed", step=name, error=str(exc))
        self._check_cancelled(cancel_event)

        logger.info("legacy_import.normalized", steps=report.normalized)

    def _detach(self, conn: sqlite3.Connection, report: ImportReport) -> sqlite3.Error | None:
        try:
            conn.execute(f"DETACH DATABASE {self._alias}")
            report.detached = True
            logger.debug("legacy_import.detached")
            return None
        except sqlite3.Error as exc:
            logger.error("legacy_import.detach_failed", error=str(exc))
            return exc

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ImportCancelled("Legacy import cancelled")

    def _failure(self, step: str, exc: Exception, path: Path) -> ImportFailureError:
        return ImportFailureError(str(exc), cause=exc).with_context(
            phase="legacy_import",
            table=f"{self._alias}.{self._table}",
            path=str(path),
            step=step,
        )


def _main_database_file(conn: sqlite3.Connection) -> str | None:
    try:
        for _seq, name, filename in conn.execute("PRAGMA database_list").fetchall():
            if name == "main":
                return filename or None
    except sqlite3.Error as exc:
        logger.debug("legacy_import.database_list_failed", error=str(exc))
    return None


def _same_file(live: str, legacy: Path) -> bool:
    try:
        return os.path.samefile(live, legacy)
    except OSError:
        return Path(live).resolve() == legacy.resolve()


def _rollback_quietly(conn: sqlite3.Connection) -> None:
    try:
        conn.rollback()
    except sqlite3.Error as exc:
        logger.debug("legacy_import.rollback_failed", error=str(exc))


__all__ = [
    "ATTACH_ALIAS",
    "DARK_MODE_COLUMNS",
    "ImportCancelled",
    "ImportReport",
    "ImportSelection",
    "LegacyImportPlan",
    "LegacyStoreImporter",
    "canonical_theme",
]
