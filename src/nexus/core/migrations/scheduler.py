"""Startup migration scheduling.

State machine::

    NOT_STARTED ─► SCHEMA_APPLIED ─► STRUCTURALLY_MIGRATED ─► IMPORT_SCHEDULED
                                                                   │
               IMPORT_COMPLETED | IMPORT_TIMED_OUT | IMPORT_FAILED | IMPORT_SKIPPED

Schema application and structural migration run on the caller's thread and
finish before ``run()`` returns. The legacy import runs on a daemon worker
thread watched by a daemon supervisor thread; neither keeps the process
alive. On timeout the supervisor sets the cancellation event and interrupts
the worker's connection, then records ``IMPORT_TIMED_OUT``.

A read of ``settings`` right after ``run()`` may or may not see imported
legacy values: the import is applied eventually, not before startup
continues.
"""

from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from pathlib import Path

from nexus.core.connection import ConnectionFactory
from nexus.core.errors import (
    ImportFailureError,
    ImportTimeoutError,
    NexusError,
    StatementFailureError,
    is_import_skip,
)
from nexus.core.logging import LogContext, get_logger
from nexus.core.migrations.legacy_import import ImportReport, LegacyStoreImporter
from nexus.core.migrations.schema_applier import SchemaApplier, SchemaApplyReport
from nexus.core.migrations.table_migrator import StructuralMigrationReport, TableMigrator
from nexus.core.result import Result
from nexus.core.settings import NexusSettings

logger = get_logger(__name__)


class MigrationState(str, Enum):
    NOT_STARTED = "not_started"
    SCHEMA_APPLIED = "schema_applied"
    STRUCTURALLY_MIGRATED = "structurally_migrated"
    IMPORT_SCHEDULED = "import_scheduled"
    IMPORT_COMPLETED = "import_completed"
    IMPORT_TIMED_OUT = "import_timed_out"
    IMPORT_FAILED = "import_failed"
    IMPORT_SKIPPED = "import_skipped"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {
        MigrationState.IMPORT_COMPLETED,
        MigrationState.IMPORT_TIMED_OUT,
        MigrationState.IMPORT_FAILED,
        MigrationState.IMPORT_SKIPPED,
    }
)


class MigrationScheduler:
    """Runs the startup migration once per process.

    Parameters
    ----------
    factory
        Source of connections; every phase and thread opens its own.
    applier, migrator, importer
        Phase implementations; defaults are built when omitted.
    legacy_path
        Legacy store file, relative paths against the working directory.
    import_timeout
        Seconds the supervisor waits for the import before cancelling it.
    import_enabled
        ``False`` goes straight to ``IMPORT_SKIPPED``.

    Example::

        scheduler = MigrationScheduler(factory, legacy_path="identifier.sqlite")
        scheduler.run()            # returns once the schema is usable
        scheduler.wait(timeout=35) # optional: block until the import settles
    """

    def __init__(
        self,
        factory: ConnectionFactory,
        *,
        applier: SchemaApplier | None = None,
        migrator: TableMigrator | None = None,
        importer: LegacyStoreImporter | None = None,
        legacy_path: str | Path = "identifier.sqlite",
        import_timeout: float = 30.0,
        import_enabled: bool = True,
    ) -> None:
        self._factory = factory
        self._applier = applier or SchemaApplier()
        self._migrator = migrator or TableMigrator()
        self._importer = importer or LegacyStoreImporter()
        self._legacy_path = Path(legacy_path)
        self._import_timeout = import_timeout
        self._import_enabled = import_enabled

        self._lock = threading.Lock()
        self._state = MigrationState.NOT_STARTED
        self._history: list[MigrationState] = [MigrationState.NOT_STARTED]
        self._errors: list[NexusError] = []
        self._started = False

        self._done = threading.Event()
        self._cancel = threading.Event()
        self._worker_conn: sqlite3.Connection | None = None
        self._supervisor: threading.Thread | None = None

        self.schema_report: SchemaApplyReport | None = None
        self.structural_report: StructuralMigrationReport | None = None
        self.import_result: Result[ImportReport] | None = None

    @classmethod
    def from_settings(
        cls, factory: ConnectionFactory, settings: NexusSettings
    ) -> MigrationScheduler:
        return cls(
            factory,
            applier=SchemaApplier(script_path=settings.schema_script),
            importer=LegacyStoreImporter.from_settings(settings),
            legacy_path=settings.legacy_db_path,
            import_timeout=settings.import_timeout_seconds,
            import_enabled=settings.import_enabled,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def factory(self) -> ConnectionFactory:
        return self._factory

    @property
    def state(self) -> MigrationState:
        with self._lock:
            return self._state

    @property
    def history(self) -> list[MigrationState]:
        with self._lock:
            return list(self._history)

    @property
    def errors(self) -> list[NexusError]:
        with self._lock:
            return list(self._errors)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> MigrationState:
        """Run the synchronous phase, schedule the import, return immediately.

        Never raises; failures are logged and kept in ``errors``. Only the
        first call does anything.
        """
        with self._lock:
            if self._started:
                return self._state
            self._started = True

        with LogContext(phase="schema"):
            self._run_schema_phase()
        with LogContext(phase="structural"):
            self._run_structural_phase()
        self._schedule_import()
        return self.state

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the import reached a terminal state; ``False`` on timeout."""
        return self._done.wait(timeout)

    # ------------------------------------------------------------------
    # Synchronous phase
    # ------------------------------------------------------------------

    def _run_schema_phase(self) -> None:
        try:
            conn = self._factory.connect()
        except Exception as exc:
            self._record_error(self._wrap(exc, "schema"))
            logger.error("scheduler.connect_failed", phase="schema", error=str(exc))
            self._transition(MigrationState.SCHEMA_APPLIED)
            return

        try:
            outcome = self._applier.apply(conn)
            if outcome.is_ok():
                self.schema_report = outcome.unwrap()
                for failure in self.schema_report.failed:
                    self._record_error(failure)
            else:
                self._record_error(outcome.error)
        except Exception as exc:
            self._record_error(self._wrap(exc, "schema"))
            logger.error("scheduler.schema_failed", error=str(exc))
        finally:
            conn.close()
        self._transition(MigrationState.SCHEMA_APPLIED)

    def _run_structural_phase(self) -> None:
        try:
            conn = self._factory.connect()
        except Exception as exc:
            self._record_error(self._wrap(exc, "structural"))
            logger.error("scheduler.connect_failed", phase="structural", error=str(exc))
            self._transition(MigrationState.STRUCTURALLY_MIGRATED)
            return

        try:
            report = self._migrator.migrate_all(conn)
            self.structural_report = report
            for error in report.errors.values():
                self._record_error(error)
            for table in report.tables.values():
                for failure in table.failed:
                    self._record_error(failure)
        except Exception as exc:
            self._record_error(self._wrap(exc, "structural"))
            logger.error("scheduler.structural_failed", error=str(exc))
        finally:
            conn.close()
        self._transition(MigrationState.STRUCTURALLY_MIGRATED)

    # ------------------------------------------------------------------
    # Background import
    # ------------------------------------------------------------------

    def _schedule_import(self) -> None:
        if not self._import_enabled:
            logger.info("scheduler.import_disabled")
            self._finish(MigrationState.IMPORT_SKIPPED)
            return

        self._transition(MigrationState.IMPORT_SCHEDULED)
        self._supervisor = threading.Thread(
            target=self._supervise,
            name="nexus-migration-scheduler",
            daemon=True,
        )
        self._supervisor.start()
        logger.info(
            "scheduler.import_scheduled",
            legacy_path=str(self._legacy_path),
            timeout=self._import_timeout,
        )

    def _supervise(self) -> None:
        future: Future[Result[ImportReport]] = Future()
        worker = threading.Thread(
            target=self._work,
            args=(future,),
            name="nexus-legacy-import",
            daemon=True,
        )
        worker.start()

        try:
            result = future.result(timeout=self._import_timeout)
        except FutureTimeoutError:
            self._cancel.set()
            self._interrupt_worker()
            logger.warning(
                "scheduler.import_timed_out",
                timeout=self._import_timeout,
                legacy_path=str(self._legacy_path),
            )
            self._finish(
                MigrationState.IMPORT_TIMED_OUT,
                ImportTimeoutError(
                    f"Legacy import exceeded {self._import_timeout}s and was cancelled",
                    timeout=self._import_timeout,
                ).with_context(phase="legacy_import", path=str(self._legacy_path)),
            )
            return
        except Exception as exc:
            logger.error("scheduler.import_crashed", error=str(exc))
            self._finish(MigrationState.IMPORT_FAILED, self._wrap(exc, "legacy_import"))
            return

        self.import_result = result
        if result.is_ok():
            report = result.unwrap()
            logger.info("scheduler.import_completed", rows=report.rows_copied)
            self._finish(MigrationState.IMPORT_COMPLETED)
        elif is_import_skip(result.error):
            self._finish(MigrationState.IMPORT_SKIPPED)
        else:
            logger.error("scheduler.import_failed", error=str(result.error))
            self._finish(MigrationState.IMPORT_FAILED, result.error)

    def _work(self, future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            conn = self._factory.connect()
        except Exception as exc:
            future.set_exception(exc)
            return

        with self._lock:
            self._worker_conn = conn
        try:
            with LogContext(phase="legacy_import"):
                result = self._importer.run(conn, self._legacy_path, cancel_event=self._cancel)
            future.set_result(result)
        except Exception as exc:
            future.set_exception(exc)
        finally:
            with self._lock:
                self._worker_conn = None
            conn.close()

    def _interrupt_worker(self) -> None:
        with self._lock:
            conn = self._worker_conn
            if conn is None:
                return
            try:
                conn.interrupt()
            except sqlite3.Error as exc:
                logger.debug("scheduler.interrupt_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(self, state: MigrationState) -> None:
        with self._lock:
            previous = self._state
            self._state = state
            self._history.append(state)
        logger.debug("scheduler.transition", previous=previous.value, state=state.value)

    def _finish(self, state: MigrationState, error: Exception | None = None) -> None:
        with self._lock:
            if self._state.terminal:
                return
            self._state = state
            self._history.append(state)
            if error is not None:
                self._errors.append(error)
        logger.info("scheduler.finished", state=state.value)
        self._done.set()

    def _record_error(self, error: Exception) -> None:
        with self._lock:
            self._errors.append(error)

    @staticmethod
    def _wrap(exc: Exception, phase: str) -> NexusError:
        if isinstance(exc, NexusError):
            return exc
        if phase == "legacy_import":
            return ImportFailureError(str(exc), cause=exc).with_context(phase=phase)
        return StatementFailureError(str(exc), cause=exc).with_context(phase=phase)


__all__ = ["MigrationScheduler", "MigrationState"]
