"""
Shared pytest fixtures and configuration for nexus tests.

This module provides:
- Temporary live store files and connection factories
- A builder for legacy store files
- Settings cache isolation

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_import(live_conn, legacy_store):
        path = legacy_store(rows=[{"id": 3, "user_id": 1, "theme": "Dark Mode"}])
        ...
"""

import os
import sqlite3
import sys
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

# Ensure nexus package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from nexus.core.connection import ConnectionFactory
from nexus.core.settings import clear_settings_cache


LEGACY_SETTINGS_DDL = """
CREATE TABLE settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    theme TEXT,
    dark_mode INTEGER DEFAULT 0
)
"""


# =============================================================================
# Settings Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep NEXUS_* variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("NEXUS_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Live Store Fixtures
# =============================================================================


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Path for a fresh live store file."""
    return tmp_path / "live" / "identifier.sqlite"


@pytest.fixture
def factory(store_path: Path) -> Generator[ConnectionFactory, None, None]:
    """Connection factory over a temporary live store."""
    f = ConnectionFactory(store_path)
    yield f
    f.close()


@pytest.fixture
def live_conn(factory: ConnectionFactory) -> Generator[sqlite3.Connection, None, None]:
    """Connection to the temporary live store."""
    conn = factory.connect()
    yield conn
    conn.close()


@pytest.fixture
def memory_conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory SQLite connection."""
    conn = sqlite3.connect(":memory:")
    yield conn
    conn.close()


# =============================================================================
# Legacy Store Builder
# =============================================================================


@pytest.fixture
def legacy_store(tmp_path: Path) -> Callable[..., Path]:
    """Build a legacy store file.

    Usage:
        path = legacy_store(rows=[{"id": 3, "user_id": 1, "theme": "Dark Mode"}])
        path = legacy_store(ddl="CREATE TABLE settings (id INTEGER, theme TEXT)")
    """

    def _build(
        rows: list[dict[str, Any]] | None = None,
        *,
        ddl: str = LEGACY_SETTINGS_DDL,
        name: str = "legacy.sqlite",
    ) -> Path:
        path = tmp_path / "cwd" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path)
        try:
            if ddl:
                conn.execute(ddl)
            for row in rows or []:
                cols = ", ".join(row)
                marks = ", ".join("?" for _ in row)
                conn.execute(f"INSERT INTO settings ({cols}) VALUES ({marks})", tuple(row.values()))
            conn.commit()
        finally:
            conn.close()
        return path

    return _build

