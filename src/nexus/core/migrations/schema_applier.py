"""Base schema application.

Runs the idempotent ``init.sql`` script against a connection one statement
at a time. A failing statement is logged and recorded; the statements after
it still run. Partial schema presence is preferable to none.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path

from nexus.core.errors import ResourceNotFoundError, StatementFailureError
from nexus.core.logging import get_logger
from nexus.core.result import Err, Ok, Result

logger = get_logger(__name__)

# Packaged script, looked up first
SCHEMA_PACKAGE = "nexus.core"
SCHEMA_RESOURCE = "schema/init.sql"

# Working-directory fallback
FALLBACK_SCHEMA_PATH = Path("schema") / "init.sql"


def split_statements(sql: str) -> list[str]:
    """Split a SQL script into individual statements.

    Splits on ``;`` outside string literals, drops ``--`` and ``/* */``
    comments, and drops statements that are empty after trimming whitespace.
    An unterminated block comment runs to the end of the script.
    """
    statements: list[str] = []
    current: list[str] = []
    in_quote: str | None = None
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if in_quote:
            current.append(ch)
            if ch == in_quote:
                # doubled quote is an escaped quote
                if i + 1 < n and sql[i + 1] == in_quote:
                    current.append(sql[i + 1])
                    i += 1
                else:
                    in_quote = None
        elif ch in ("'", '"'):
            in_quote = ch
            current.append(ch)
        elif ch == "-" and sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = n if newline == -1 else newline
            continue
        elif ch == "/" and sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            current.append(" ")
            continue
        elif ch == ";":
            stmt = "".join(current).strip()
            if stmt:
                statements.append(stmt)
            current = []
        else:
            current.append(ch)
        i += 1

    # Remaining unterminated statement
    stmt = "".join(current).strip()
    if stmt:
        statements.append(stmt)
    return statements


def _packaged_script() -> Traversable:
    return resources.files(SCHEMA_PACKAGE).joinpath(SCHEMA_RESOURCE)


def load_schema_script(
    primary: Path | Traversable | None = None,
    fallback: Path | None = None,
) -> Result[tuple[str, str]]:
    """Read the schema script, returning ``Ok((sql, source))``.

    Parameters
    ----------
    primary
        First location tried. Defaults to the ``init.sql`` shipped inside
        the package.
    fallback
        Second location tried. Defaults to ``schema/init.sql`` relative to
        the working directory.

    Returns ``Err(ResourceNotFoundError)`` when neither location is readable.
    """
    candidates = [
        primary if primary is not None else _packaged_script(),
        fallback if fallback is not None else FALLBACK_SCHEMA_PATH,
    ]
    searched: list[str] = []
    for candidate in candidates:
        searched.append(str(candidate))
        try:
            if candidate.is_file():
                return Ok((candidate.read_text(encoding="utf-8"), str(candidate)))
        except OSError as exc:
            logger.debug("schema.lookup_failed", path=str(candidate), error=str(exc))

    return Err(
        ResourceNotFoundError(
            "Schema script not found", searched=searched
        ).with_context(phase="schema", path=searched[0])
    )


@dataclass
class SchemaApplyReport:
    """Outcome of one schema application."""

    source: str | None = None
    executed: list[str] = field(default_factory=list)
    failed: list[StatementFailureError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.failed) == 0


class SchemaApplier:
    """Applies the base schema, best-effort per statement.

    Parameters
    ----------
    script_path
        Explicit schema script; the packaged ``init.sql`` when ``None``.
    fallback_path
        Second lookup location; ``schema/init.sql`` under the working
        directory when ``None``.

    Example::

        applier = SchemaApplier()
        report = applier.apply(conn).unwrap()
        print(f"{len(report.executed)} statements, {len(report.failed)} failed")
    """

    def __init__(
        self,
        script_path: Path | Traversable | None = None,
        fallback_path: Path | None = None,
    ) -> None:
        self._script_path = script_path
        self._fallback_path = fallback_path

    def apply(self, conn: sqlite3.Connection, script: str | None = None) -> Result[SchemaApplyReport]:
        """Execute every statement of ``script`` (or the loaded schema script).

        Returns ``Err(ResourceNotFoundError)`` when no script could be found;
        otherwise ``Ok`` with per-statement failures listed in the report.
        """
        source = "<inline>"
        if script is None:
            loaded = load_schema_script(self._script_path, self._fallback_path)
            if loaded.is_err():
                logger.error(
                    "schema.resource_missing",
                    searched=getattr(loaded.error, "searched", []),
                )
                return loaded
            script, source = loaded.unwrap()

        report = SchemaApplyReport(source=source)
        for statement in split_statements(script):
            try:
                conn.execute(statement)
                report.executed.append(statement)
            except sqlite3.Error as exc:
                error = StatementFailureError(str(exc), cause=exc).with_context(
                    phase="schema", statement=statement
                )
                report.failed.append(error)
                logger.warning("schema.statement_failed", statement=statement, error=str(exc))

        try:
            conn.commit()
        except sqlite3.Error as exc:
            logger.warning("schema.commit_failed", error=str(exc))

        logger.info(
            "schema.applied",
            source=source,
            executed=len(report.executed),
            failed=len(report.failed),
        )
        return Ok(report)


__all__ = [
    "SchemaApplier",
    "SchemaApplyReport",
    "split_statements",
    "load_schema_script",
]
