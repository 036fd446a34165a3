"""Live column introspection.

The engine keeps no migration-version table: what a table looks like right
now, read from the SQLite catalog, is the only input to every migration
decision. ``ColumnIntrospector`` reads that shape with ``PRAGMA table_info``,
for the main database or for an attached one (``olddb.settings``).
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass, field

from nexus.core.errors import IntrospectionFailureError
from nexus.core.logging import get_logger
from nexus.core.result import Err, Ok, Result

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class TableSchema:
    """A table name plus the ordered live column names.

    An empty ``columns`` tuple means the table does not exist.
    """

    name: str
    columns: tuple[str, ...] = field(default_factory=tuple)

    @property
    def exists(self) -> bool:
        return bool(self.columns)


def fold_columns(columns) -> dict[str, str]:
    """Map each lower-cased column name to its live spelling.

    SQLite column names are case-insensitive, so every membership test the
    engine makes goes through this map.
    """
    folded: dict[str, str] = {}
    for column in columns:
        folded.setdefault(column.lower(), column)
    return folded


def split_qualified_name(name: str) -> tuple[str | None, str]:
    """Split ``schema.table`` into ``(schema, table)``; unqualified gives ``(None, table)``."""
    schema, sep, table = name.strip().rpartition(".")
    if not sep:
        return None, table
    return schema or None, table


def quote_identifier(name: str) -> str:
    """Quote a table/column/schema identifier for interpolation into SQL.

    Column names read back from the catalog may be anything SQLite accepts in
    double quotes (``"zoom-level"``), so embedded quotes are doubled rather
    than the name being rejected.
    """
    if not name or "\x00" in name:
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def require_simple_identifier(name: str) -> str:
    """Return ``name`` if it is a bare identifier safe to use unquoted.

    Used for the fixed names the engine writes into SQL itself, such as the
    attach alias.
    """
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Not a simple SQL identifier: {name!r}")
    return name


class ColumnIntrospector:
    """Reads live column sets from the catalog.

    Example::

        introspector = ColumnIntrospector()
        introspector.columns(conn, "tabs")           # ['id', 'user_id', ...]
        introspector.columns(conn, "olddb.settings") # attached database
        introspector.columns(conn, "no_such_table")  # []
    """

    def table_schema(self, conn: sqlite3.Connection, name: str) -> Result[TableSchema]:
        """Introspect ``name``; a missing table is ``Ok`` with no columns.

        A qualified name is tried as ``PRAGMA schema.table_info('table')``
        first and falls back to the unqualified ``PRAGMA table_info('name')``
        if the qualified form is rejected.
        """
        schema, table = split_qualified_name(name)
        try:
            quoted_table = quote_identifier(table)
            quoted_schema = quote_identifier(schema) if schema else None
        except ValueError as exc:
            return Err(IntrospectionFailureError(str(exc), cause=exc).with_context(table=name))

        if quoted_schema is None:
            statement = f"PRAGMA table_info({quoted_table})"
        else:
            statement = f"PRAGMA {quoted_schema}.table_info({quoted_table})"

        try:
            rows = conn.execute(statement).fetchall()
        except sqlite3.Error as exc:
            if schema is None:
                return Err(
                    IntrospectionFailureError(str(exc), cause=exc).with_context(
                        table=name, statement=statement
                    )
                )
            logger.debug("introspect.qualified_rejected", table=name, error=str(exc))
            fallback = f"PRAGMA table_info({quote_identifier(f'{schema}.{table}')})"
            try:
                rows = conn.execute(fallback).fetchall()
            except sqlite3.Error as exc2:
                return Err(
                    IntrospectionFailureError(str(exc2), cause=exc2).with_context(
                        table=name, statement=statement
                    )
                )

        # table_info rows: (cid, name, type, notnull, dflt_value, pk)
        columns = tuple(row[1] for row in sorted(rows, key=lambda r: r[0]))
        return Ok(TableSchema(name=name, columns=columns))

    def columns(self, conn: sqlite3.Connection, name: str) -> list[str]:
        """Live column names of ``name``, empty when the table is absent.

        An introspection failure is logged and treated as "no columns".
        """
        result = self.table_schema(conn, name)
        if result.is_ok():
            return list(result.unwrap().columns)
        logger.warning("introspect.failed", table=name, error=str(result.error))
        return []


__all__ = [
    "ColumnIntrospector",
    "TableSchema",
    "fold_columns",
    "split_qualified_name",
    "quote_identifier",
    "require_simple_identifier",
]
