"""Nexus Core -- the live store and its startup migration engine.

Manifesto:
    Every repository in the browser (bookmarks, history, downloads,
    settings, tabs, profiles) assumes the store already has the tables and
    columns it reads. ``nexus.core`` guarantees that before the first query
    and never lets a migration problem stop the application from starting.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (NexusError, MigrationError)
        result.py          Result[T] envelope (Ok / Err)

    Layer 2 -- Configuration & Storage
        settings.py        NexusSettings (pydantic-settings, NEXUS_ prefix)
        logging.py         structlog configuration
        connection.py      ConnectionFactory (one connection per operation)
        schema/            init.sql base schema

    Layer 3 -- Migration Engine
        migrations/        introspection, schema applier, table migrator,
                           legacy importer, scheduler
        bootstrap.py       initialize_store() composition root

Tags:
    nexus-core, sqlite, migrations, startup
"""

from nexus.core.bootstrap import initialize_store
from nexus.core.connection import ConnectionFactory, ConnectionInfo
from nexus.core.errors import MigrationError, NexusError
from nexus.core.result import Err, Ok, Result
from nexus.core.settings import NexusSettings, get_settings

__all__ = [
    "ConnectionFactory",
    "ConnectionInfo",
    "Err",
    "MigrationError",
    "NexusError",
    "NexusSettings",
    "Ok",
    "Result",
    "get_settings",
    "initialize_store",
]
