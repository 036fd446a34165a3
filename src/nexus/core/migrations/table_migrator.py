"""Column-presence-driven structural migration.

For each declared table, compare the live column set with the expected one
and pick exactly one of:

    ┌─────────────┬───────────────────────────────────────────────────────┐
    │ NOOP        │ every expected column present, or table absent        │
    │ ADD_COLUMNS │ ALTER TABLE t ADD COLUMN c ... per missing column     │
    │ REBUILD     │ rename → create → copy → drop → re-index              │
    └─────────────┴───────────────────────────────────────────────────────┘

A rebuild that fails after the rename leaves the prior rows in the
temporary table and reports its name; renames are not rolled back
automatically.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import Enum

from nexus.core.errors import NexusError, RebuildError, StatementFailureError
from nexus.core.logging import get_logger
from nexus.core.migrations.expected import EXPECTED_TABLES, ColumnSpec, TableSpec
from nexus.core.migrations.introspection import ColumnIntrospector, fold_columns, quote_identifier
from nexus.core.result import Err, Ok, Result

logger = get_logger(__name__)

TEMP_SUFFIX = "_old"


class DecisionKind(str, Enum):
    NOOP = "noop"
    ADD_COLUMNS = "add_columns"
    REBUILD = "rebuild"


@dataclass(frozen=True)
class MigrationDecision:
    """What one table needs, derived only from its live columns."""

    table: str
    kind: DecisionKind
    add: tuple[ColumnSpec, ...] = ()
    mapping: dict[str, str] = field(default_factory=dict)
    """REBUILD only: new column -> source column in the old table."""
    carry: tuple[str, ...] = ()
    """REBUILD only: undeclared live columns kept as-is on the new table."""


def decide(spec: TableSpec, live_columns: list[str] | tuple[str, ...]) -> MigrationDecision:
    """Pure decision for ``spec`` given its live column names.

    Names are compared case-insensitively; the mapping and ``carry`` use the
    live spelling.
    """
    live = fold_columns(live_columns)
    if not live:
        # Creating missing tables is the schema applier's job.
        return MigrationDecision(spec.name, DecisionKind.NOOP)

    if spec.rebuild is not None and spec.rebuild.triggered_by(live):
        mapping: dict[str, str] = {}
        for col in spec.column_names:
            for source in spec.rebuild.sources_for(col):
                if source.lower() in live:
                    mapping[col] = live[source.lower()]
                    break
        consumed = {c.lower() for c in spec.column_names}
        consumed.update(s.lower() for s in mapping.values())
        consumed.add(spec.rebuild.present.lower())
        carry = tuple(actual for key, actual in live.items() if key not in consumed)
        return MigrationDecision(spec.name, DecisionKind.REBUILD, mapping=mapping, carry=carry)

    missing = tuple(c for c in spec.columns if c.name.lower() not in live)
    if not missing:
        return MigrationDecision(spec.name, DecisionKind.NOOP)
    return MigrationDecision(spec.name, DecisionKind.ADD_COLUMNS, add=missing)


@dataclass
class TableMigrationReport:
    """Outcome of migrating one table."""

    table: str
    decision: MigrationDecision
    added: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[StatementFailureError] = field(default_factory=list)
    carried: list[str] = field(default_factory=list)
    rows_copied: int | None = None

    @property
    def success(self) -> bool:
        return len(self.failed) == 0


@dataclass
class StructuralMigrationReport:
    """Outcome of migrating every declared table."""

    tables: dict[str, TableMigrationReport] = field(default_factory=dict)
    errors: dict[str, NexusError] = field(default_factory=dict)

    @property
    def changed(self) -> list[str]:
        return [
            name
            for name, report in self.tables.items()
            if report.added or report.rows_copied is not None
        ]

    @property
    def success(self) -> bool:
        return not self.errors and all(r.success for r in self.tables.values())


class TableMigrator:
    """Brings existing tables to their declared shape.

    Parameters
    ----------
    tables
        Declared shapes, in migration order. Defaults to ``EXPECTED_TABLES``.
    introspector
        Column reader; a fresh ``ColumnIntrospector`` when omitted.

    Example::

        migrator = TableMigrator()
        report = migrator.migrate_all(conn)
        for name, table in report.tables.items():
            print(name, table.decision.kind)
    """

    def __init__(
        self,
        tables: tuple[TableSpec, ...] | list[TableSpec] = EXPECTED_TABLES,
        introspector: ColumnIntrospector | None = None,
    ) -> None:
        self._tables = tuple(tables)
        self._introspector = introspector or ColumnIntrospector()

    @property
    def tables(self) -> tuple[TableSpec, ...]:
        return self._tables

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def plan(self, conn: sqlite3.Connection, spec: TableSpec) -> MigrationDecision:
        return decide(spec, self._introspector.columns(conn, spec.name))

    def migrate_table(self, conn: sqlite3.Connection, spec: TableSpec) -> Result[TableMigrationReport]:
        """Decide and apply the migration for one table."""
        decision = self.plan(conn, spec)
        report = TableMigrationReport(table=spec.name, decision=decision)

        if decision.kind is DecisionKind.NOOP:
            logger.debug("migrator.noop", table=spec.name)
            return Ok(report)

        if decision.kind is DecisionKind.ADD_COLUMNS:
            self._add_columns(conn, spec, decision, report)
            return Ok(report)

        return self._rebuild(conn, spec, decision, report)

    def migrate_all(self, conn: sqlite3.Connection) -> StructuralMigrationReport:
        """Migrate every declared table; one table's failure does not stop the rest."""
        result = StructuralMigrationReport()
        for spec in self._tables:
            try:
                outcome = self.migrate_table(conn, spec)
            except sqlite3.Error as exc:
                outcome = Err(
                    StatementFailureError(str(exc), cause=exc).with_context(
                        phase="structural", table=spec.name
                    )
                )

            if outcome.is_ok():
                result.tables[spec.name] = outcome.unwrap()
            else:
                result.errors[spec.name] = outcome.error
                logger.error("migrator.table_failed", table=spec.name, error=str(outcome.error))

        logger.info(
            "migrator.completed",
            changed=result.changed,
            failed=sorted(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _add_columns(
        self,
        conn: sqlite3.Connection,
        spec: TableSpec,
        decision: MigrationDecision,
        report: TableMigrationReport,
    ) -> None:
        for column in decision.add:
            if not column.can_add:
                report.skipped.append(column.name)
                logger.warning(
                    "migrator.column_unsafe",
                    table=spec.name,
                    column=column.name,
                )
                continue

            statement = f"ALTER TABLE {spec.name} ADD COLUMN {column.add_definition()}"
            try:
                conn.execute(statement)
                report.added.append(column.name)
                logger.info("migrator.column_added", table=spec.name, column=column.name)
            except sqlite3.Error as exc:
                # e.g. added concurrently by another process
                report.failed.append(
                    StatementFailureError(str(exc), cause=exc).with_context(
                        phase="structural", table=spec.name, column=column.name, statement=statement
                    )
                )
                logger.warning(
                    "migrator.column_add_failed",
                    table=spec.name,
                    column=column.name,
                    error=str(exc),
                )
        conn.commit()

    def _rebuild(
        self,
        conn: sqlite3.Connection,
        spec: TableSpec,
        decision: MigrationDecision,
        report: TableMigrationReport,
    ) -> Result[TableMigrationReport]:
        temp = f"{spec.name}{TEMP_SUFFIX}"
        logger.info(
            "migrator.rebuild_started",
            table=spec.name,
            temp_table=temp,
            mapping=decision.mapping,
            carry=list(decision.carry),
        )
        carried_types = self._declared_types(conn, spec.name) if decision.carry else {}

        # 1. rename
        try:
            conn.execute("PRAGMA legacy_alter_table = ON")
            conn.execute(f"ALTER TABLE {spec.name} RENAME TO {temp}")
            conn.commit()
        except sqlite3.Error as exc:
            return Err(self._rebuild_error(spec, "rename", exc, temp_table=None))
        finally:
            conn.execute("PRAGMA legacy_alter_table = OFF")

        # 2. create, plus the undeclared columns being carried over
        statement = spec.create_sql()
        try:
            conn.execute(statement)
            for column in decision.carry:
                statement = (
                    f"ALTER TABLE {spec.name} ADD COLUMN "
                    f"{quote_identifier(column)} {carried_types.get(column, '')}".rstrip()
                )
                conn.execute(statement)
                report.carried.append(column)
            conn.commit()
        except sqlite3.Error as exc:
            return Err(self._rebuild_error(spec, "create", exc, temp_table=temp, statement=statement))
        if report.carried:
            logger.info("migrator.columns_carried", table=spec.name, columns=report.carried)

        # 3. copy
        targets = list(decision.mapping) + list(decision.carry)
        sources = list(decision.mapping.values()) + list(decision.carry)
        copy_sql = (
            f"INSERT INTO {spec.name} ({', '.join(quote_identifier(c) for c in targets)}) "
            f"SELECT {', '.join(quote_identifier(c) for c in sources)} FROM {temp}"
        )
        try:
            conn.execute(copy_sql)
            before = conn.execute(f"SELECT COUNT(*) FROM {temp}").fetchone()[0]
            after = conn.execute(f"SELECT COUNT(*) FROM {spec.name}").fetchone()[0]
            if before != after:
                conn.rollback()
                return Err(
                    RebuildError(
                        f"Row count mismatch after copy: {before} != {after}",
                        step="copy",
                        temp_table=temp,
                    ).with_context(phase="structural", table=spec.name, statement=copy_sql)
                )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            return Err(self._rebuild_error(spec, "copy", exc, temp_table=temp, statement=copy_sql))

        # 4. drop
        try:
            conn.execute(f"DROP TABLE {temp}")
            conn.commit()
        except sqlite3.Error as exc:
            return Err(self._rebuild_error(spec, "drop", exc, temp_table=temp))

        # 5. indexes
        for index_sql in spec.indexes:
            try:
                conn.execute(index_sql)
            except sqlite3.Error as exc:
                report.failed.append(
                    StatementFailureError(str(exc), cause=exc).with_context(
                        phase="structural", table=spec.name, statement=index_sql
                    )
                )
                logger.warning("migrator.index_failed", table=spec.name, error=str(exc))
        conn.commit()

        report.rows_copied = after
        logger.info("migrator.rebuild_completed", table=spec.name, rows=after)
        return Ok(report)

    @staticmethod
    def _declared_types(conn: sqlite3.Connection, table: str) -> dict[str, str]:
        rows = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()
        return {row[1]: row[2] or "" for row in rows}

    @staticmethod
    def _rebuild_error(
        spec: TableSpec,
        step: str,
        exc: sqlite3.Error,
        *,
        temp_table: str | None,
        statement: str | None = None,
    ) -> RebuildError:
        error = RebuildError(str(exc), step=step, temp_table=temp_table, cause=exc)
        error.with_context(phase="structural", table=spec.name, statement=statement)
        logger.error(
            "migrator.rebuild_failed",
            table=spec.name,
            step=step,
            temp_table=temp_table,
            error=str(exc),
        )
        return error


__all__ = [
    "DecisionKind",
    "MigrationDecision",
    "TableMigrationReport",
    "StructuralMigrationReport",
    "TableMigrator",
    "decide",
]
