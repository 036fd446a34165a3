"""
Test support utilities for nexus tests.

Helpers that don't fit as pytest fixtures but are useful across multiple
test files.
"""

from __future__ import annotations

import sqlite3


def columns_of(conn: sqlite3.Connection, table: str) -> list[str]:
    """Live column names straight from the catalog."""
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def attached_databases(conn: sqlite3.Connection) -> list[str]:
    """Schema names currently attached to ``conn`` (``main``, ``temp``, aliases)."""
    return [row[1] for row in conn.execute("PRAGMA database_list").fetchall()]


def row_count(conn: sqlite3.Connection, table: str) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def index_names(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA index_list({table})").fetchall()}
