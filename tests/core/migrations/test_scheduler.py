"""Tests for startup migration scheduling."""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path

import pytest

from nexus.core.connection import ConnectionFactory
from nexus.core.errors import (
    ConfigError,
    ImportFailureError,
    ImportTimeoutError,
    RebuildError,
)
from nexus.core.migrations.expected import EXPECTED_TABLES
from nexus.core.migrations.legacy_import import ImportReport
from nexus.core.migrations.scheduler import MigrationScheduler, MigrationState
from nexus.core.result import Err, Ok
from nexus.core.settings import NexusSettings
from tests._support import columns_of


SYNC_STATES = [
    MigrationState.NOT_STARTED,
    MigrationState.SCHEMA_APPLIED,
    MigrationState.STRUCTURALLY_MIGRATED,
]


# ── Fakes ─────────────────────────────────────────────────────────────


class BlockingImporter:
    """Importer that holds the worker until released or cancelled."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.saw_cancel = False

    def run(self, conn, legacy_path, cancel_event=None):
        self.started.set()
        while not self.release.is_set():
            if cancel_event is not None and cancel_event.is_set():
                self.saw_cancel = True
                break
            time.sleep(0.01)
        return Ok(ImportReport(legacy_path=str(legacy_path)))


class SlowQueryImporter:
    """Importer stuck inside one long-running statement on its connection."""

    SLOW_SQL = (
        "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 1000000000) "
        "SELECT count(*) FROM c"
    )

    def __init__(self) -> None:
        self.started = threading.Event()
        self.interrupted = threading.Event()

    def run(self, conn, legacy_path, cancel_event=None):
        self.started.set()
        try:
            conn.execute(self.SLOW_SQL).fetchone()
        except sqlite3.OperationalError as exc:
            if "interrupt" in str(exc).lower():
                self.interrupted.set()
            return Err(ImportFailureError(str(exc), cause=exc))
        return Ok(ImportReport(legacy_path=str(legacy_path)))


class ExplodingImporter:
    def run(self, conn, legacy_path, cancel_event=None):
        raise RuntimeError("worker blew up")


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture()
def missing_legacy(tmp_path: Path) -> Path:
    return tmp_path / "cwd" / "identifier.sqlite"


def _scheduler(factory: ConnectionFactory, legacy: Path, **kwargs) -> MigrationScheduler:
    kwargs.setdefault("import_timeout", 5.0)
    return MigrationScheduler(factory, legacy_path=legacy, **kwargs)


# ── Synchronous phase ────────────────────────────────────────────────


class TestSynchronousPhase:
    def test_schema_ready_when_run_returns(self, factory, missing_legacy):
        importer = BlockingImporter()
        scheduler = _scheduler(factory, missing_legacy, importer=importer)
        try:
            state = scheduler.run()

            assert state is MigrationState.IMPORT_SCHEDULED
            assert scheduler.history == SYNC_STATES + [MigrationState.IMPORT_SCHEDULED]
            with factory.connection() as conn:
                for spec in EXPECTED_TABLES:
                    assert columns_of(conn, spec.name) == spec.column_names
        finally:
            importer.release.set()
            scheduler.wait(5)

    def test_structural_migration_runs_before_return(self, factory, missing_legacy):
        with factory.connection() as conn:
            conn.execute("CREATE TABLE tabs (id INTEGER PRIMARY KEY, user_id INTEGER, title TEXT)")
            conn.execute("INSERT INTO tabs VALUES (1, 4, 'Home')")

        scheduler = _scheduler(factory, missing_legacy, import_enabled=False)
        scheduler.run()

        assert scheduler.structural_report.tables["tabs"].rows_copied == 1
        with factory.connection() as conn:
            assert conn.execute("SELECT id, profile_id, title FROM tabs").fetchall() == [(1, 4, "Home")]

    def test_phase_errors_recorded_and_state_advances(self, factory, missing_legacy):
        with factory.connection() as conn:
            conn.execute("CREATE TABLE tabs (id INTEGER PRIMARY KEY, user_id INTEGER)")
            conn.execute("CREATE TABLE tabs_old (x INTEGER)")

        scheduler = _scheduler(factory, missing_legacy, import_enabled=False)
        state = scheduler.run()

        assert state is MigrationState.IMPORT_SKIPPED
        assert any(isinstance(e, RebuildError) for e in scheduler.errors)

    def test_second_run_does_nothing(self, factory, missing_legacy):
        scheduler = _scheduler(factory, missing_legacy, import_enabled=False)
        scheduler.run()
        history = scheduler.history

        assert scheduler.run() is MigrationState.IMPORT_SKIPPED
        assert scheduler.history == history

    def test_closed_factory_never_raises(self, factory, missing_legacy):
        factory.close()
        scheduler = _scheduler(factory, missing_legacy)

        scheduler.run()

        assert scheduler.wait(5)
        assert scheduler.state is MigrationState.IMPORT_FAILED
        assert any(isinstance(e, ConfigError) for e in scheduler.errors)


# ── Background import ────────────────────────────────────────────────


class TestImportOutcomes:
    def test_disabled_import_is_skipped(self, factory, missing_legacy):
        scheduler = _scheduler(factory, missing_legacy, import_enabled=False)
        assert scheduler.run() is MigrationState.IMPORT_SKIPPED
        assert scheduler.wait(0)
        assert scheduler.history == SYNC_STATES + [MigrationState.IMPORT_SKIPPED]

    def test_missing_legacy_file_is_skipped(self, factory, missing_legacy):
        scheduler = _scheduler(factory, missing_legacy)
        scheduler.run()

        assert scheduler.wait(5)
        assert scheduler.state is MigrationState.IMPORT_SKIPPED
        assert scheduler.errors == []

    def test_successful_import_completes(self, factory, legacy_store):
        legacy = legacy_store(rows=[{"id": 3, "user_id": 1, "theme": "Dark Mode", "dark_mode": 0}])
        scheduler = _scheduler(factory, legacy)
        scheduler.run()

        assert scheduler.wait(5)
        assert scheduler.history == SYNC_STATES + [
            MigrationState.IMPORT_SCHEDULED,
            MigrationState.IMPORT_COMPLETED,
        ]
        assert scheduler.import_result.unwrap().rows_copied == 1
        with factory.connection() as conn:
            assert conn.execute("SELECT theme, dark_mode FROM settings").fetchall() == [("dark", 1)]

    def test_timeout_cancels_and_records(self, factory, missing_legacy):
        importer = BlockingImporter()
        scheduler = _scheduler(factory, missing_legacy, importer=importer, import_timeout=0.2)

        started = time.monotonic()
        scheduler.run()
        assert scheduler.wait(5)
        elapsed = time.monotonic() - started

        assert scheduler.state is MigrationState.IMPORT_TIMED_OUT
        assert scheduler.cancel_requested is True
        assert elapsed < 3.0
        timeout_errors = [e for e in scheduler.errors if isinstance(e, ImportTimeoutError)]
        assert len(timeout_errors) == 1
        assert timeout_errors[0].timeout == 0.2

        # the worker observes cancellation and stops on its own
        deadline = time.monotonic() + 5
        while not importer.saw_cancel and time.monotonic() < deadline:
            time.sleep(0.01)
        assert importer.saw_cancel is True
        assert scheduler.state is MigrationState.IMPORT_TIMED_OUT

    def test_timeout_interrupts_running_statement(self, factory, missing_legacy):
        importer = SlowQueryImporter()
        scheduler = _scheduler(factory, missing_legacy, importer=importer, import_timeout=0.5)

        scheduler.run()
        assert importer.started.wait(5)
        assert scheduler.wait(5)
        assert scheduler.state is MigrationState.IMPORT_TIMED_OUT

        # the statement is aborted rather than left to run to completion
        assert importer.interrupted.wait(10)
        assert scheduler.state is MigrationState.IMPORT_TIMED_OUT

    def test_worker_exception_is_failure(self, factory, missing_legacy):
        scheduler = _scheduler(factory, missing_legacy, importer=ExplodingImporter())
        scheduler.run()

        assert scheduler.wait(5)
        assert scheduler.state is MigrationState.IMPORT_FAILED
        failure = scheduler.errors[-1]
        assert isinstance(failure, ImportFailureError)
        assert isinstance(failure.cause, RuntimeError)

    def test_threads_are_daemon(self, factory, missing_legacy):
        importer = BlockingImporter()
        scheduler = _scheduler(factory, missing_legacy, importer=importer)
        try:
            scheduler.run()
            assert importer.started.wait(5)
            named = {t.name: t for t in threading.enumerate()}
            assert named["nexus-migration-scheduler"].daemon is True
            assert named["nexus-legacy-import"].daemon is True
        finally:
            importer.release.set()
            scheduler.wait(5)

    def test_from_settings(self, factory, tmp_path: Path):
        settings = NexusSettings(
            app_dir=tmp_path,
            legacy_db_path=tmp_path / "absent.sqlite",
            import_enabled=False,
        )
        scheduler = MigrationScheduler.from_settings(factory, settings)
        assert scheduler.run() is MigrationState.IMPORT_SKIPPED


class TestMigrationState:
    def test_terminal_states(self):
        terminal = {s for s in MigrationState if s.terminal}
        assert terminal == {
            MigrationState.IMPORT_COMPLETED,
            MigrationState.IMPORT_TIMED_OUT,
            MigrationState.IMPORT_FAILED,
            MigrationState.IMPORT_SKIPPED,
        }

    def test_value_round_trip(self):
        assert MigrationState("import_timed_out") is MigrationState.IMPORT_TIMED_OUT


def test_worker_connection_is_separate(factory, missing_legacy):
    seen: list[sqlite3.Connection] = []

    class RecordingImporter:
        def run(self, conn, legacy_path, cancel_event=None):
            seen.append(conn)
            return Ok(ImportReport(legacy_path=str(legacy_path)))

    scheduler = _scheduler(factory, missing_legacy, importer=RecordingImporter())
    scheduler.run()
    assert scheduler.wait(5)
    assert len(seen) == 1
    assert isinstance(seen[0], sqlite3.Connection)
