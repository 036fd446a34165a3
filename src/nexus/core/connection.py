"""Connection factory: hands out SQLite connections for the live store.

This is the **single entry point** for opening the live store. The factory is
an explicit value built once by the composition root and passed to every
component that needs a connection; there is no module-level singleton.

Supported locations
-------------------
==================  ==========================================
Form                Example
==================  ==========================================
``sqlite``          ``sqlite:///path/to/identifier.sqlite``
``jdbc``            ``jdbc:sqlite:/path/to/identifier.sqlite``
``(file path)``     ``./data/identifier.sqlite``
``memory``          ``:memory:`` (tests only, not shared)
==================  ==========================================

Usage
-----
::

    from nexus.core.connection import ConnectionFactory

    factory = ConnectionFactory.from_settings(settings)
    with factory.connection() as conn:
        conn.execute("SELECT theme FROM settings").fetchone()

    factory.close()

Design
------
Each operation and each thread obtains its own ``sqlite3.Connection``.
``connection()`` commits on success, rolls back on error and always closes;
``connect()`` returns a bare connection the caller owns.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from nexus.core.errors import ConfigError
from nexus.core.logging import get_logger
from nexus.core.settings import NexusSettings

logger = get_logger(__name__)


# ── ConnectionInfo ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about the live store."""

    backend: str
    """Always ``"sqlite"``."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path the factory was built from."""

    resolved_path: str | None = None
    """For file-based stores, the resolved absolute path."""

    def __repr__(self) -> str:
        parts = [f"backend={self.backend!r}", f"persistent={self.persistent}"]
        if self.resolved_path:
            parts.append(f"path={self.resolved_path!r}")
        else:
            parts.append(f"url={self.url!r}")
        return f"ConnectionInfo({', '.join(parts)})"


# ── URL parsing ──────────────────────────────────────────────────────────


def _parse_url(db: str) -> tuple[str, str]:
    """Parse a store URL into (scheme, target).

    ``scheme`` is one of ``"memory"``, ``"sqlite"`` or ``"file"``.
    """
    db = db.strip()
    if db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://", "jdbc:sqlite:"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if "://" in db:
        raise ConfigError(f"Unsupported store URL: {db!r}").with_context(url=db)

    return "file", db


def resolve_store_path(settings: NexusSettings) -> tuple[str, bool]:
    """Resolve the live store location once for the process.

    Returns ``(target, from_override)``. The override wins when set;
    otherwise the store lives in ``settings.app_dir`` which is created on
    first use.
    """
    if settings.db_url:
        scheme, target = _parse_url(settings.db_url)
        if scheme != "memory":
            target = str(Path(target).expanduser())
        return target, True

    app_dir = settings.app_dir.expanduser()
    if not app_dir.exists():
        app_dir.mkdir(parents=True, exist_ok=True)
        logger.info("store.app_dir_created", path=str(app_dir))
    return str(app_dir / settings.db_filename), False


# ── Factory ──────────────────────────────────────────────────────────────


class ConnectionFactory:
    """Produces independent connections to one live store.

    Constructed once per process; ``close()`` at shutdown. Calls to
    ``connect()`` after ``close()`` raise :class:`ConfigError`.
    """

    def __init__(self, target: str | Path, *, url: str | None = None):
        target = str(target)
        scheme, path = _parse_url(target)
        self._lock = threading.Lock()
        self._closed = False

        if scheme == "memory":
            self._path = ":memory:"
            self.info = ConnectionInfo(backend="sqlite", persistent=False, url=url or target)
        else:
            resolved = Path(path).expanduser().resolve()
            resolved.parent.mkdir(parents=True, exist_ok=True)
            self._path = str(resolved)
            self.info = ConnectionInfo(
                backend="sqlite",
                persistent=True,
                url=url or target,
                resolved_path=self._path,
            )

    @classmethod
    def from_settings(cls, settings: NexusSettings) -> ConnectionFactory:
        target, overridden = resolve_store_path(settings)
        factory = cls(target, url=settings.db_url if overridden else None)
        logger.debug("store.resolved", info=repr(factory.info), override=overridden)
        return factory

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self) -> sqlite3.Connection:
        """Open a new connection the caller owns and must close."""
        with self._lock:
            if self._closed:
                raise ConfigError("Connection factory is closed").with_context(
                    path=self._path
                )
        # Background workers open their own connection on their own thread.
        return sqlite3.connect(self._path, check_same_thread=False)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Scoped connection: commit on success, rollback on error, always close."""
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self) -> None:
        with self._lock:
            self._closed = True
        logger.debug("store.factory_closed", path=self._path)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"ConnectionFactory({self._path!r}, {state})"


__all__ = ["ConnectionFactory", "ConnectionInfo", "resolve_store_path"]
