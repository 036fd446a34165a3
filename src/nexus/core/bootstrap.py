"""Composition root for the live store.

``initialize_store()`` is what application startup calls: it builds the
connection factory once, runs the synchronous migration phase and hands the
legacy import to the background, returning the scheduler so the caller can
keep the factory for its repositories and, optionally, wait on the import.
"""

from __future__ import annotations

from nexus.core.connection import ConnectionFactory
from nexus.core.logging import configure_logging, get_logger
from nexus.core.migrations.scheduler import MigrationScheduler
from nexus.core.settings import NexusSettings, get_settings

logger = get_logger(__name__)


def initialize_store(
    settings: NexusSettings | None = None,
    *,
    factory: ConnectionFactory | None = None,
    configure_logs: bool = False,
) -> MigrationScheduler | None:
    """Bring the live store to its current shape.

    Returns the scheduler after its synchronous phase, or ``None`` when the
    store location could not be resolved. Never raises.
    """
    try:
        settings = settings or get_settings()
    except Exception as exc:
        logger.error("store.settings_invalid", error=str(exc))
        return None

    if configure_logs:
        configure_logging(
            level=settings.log_level,
            json_format=settings.log_format == "json",
        )

    if factory is None:
        try:
            factory = ConnectionFactory.from_settings(settings)
        except Exception as exc:
            logger.error("store.unavailable", error=str(exc), db_url=settings.db_url)
            return None

    scheduler = MigrationScheduler.from_settings(factory, settings)
    state = scheduler.run()
    logger.info(
        "store.initialized",
        path=factory.path,
        state=state.value,
        errors=len(scheduler.errors),
    )
    return scheduler


__all__ = ["initialize_store"]
