"""Settings for the Nexus store and its migration engine.

The live store location, the legacy import guards and the background import
budget are all environment-driven so operators can relocate the store or turn
the legacy import off without touching code.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    The original ``db.url`` system property becomes ``NEXUS_DB_URL``; every
    other knob the engine used to hard-code is a validated field with the
    same default.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads ``NEXUS_*`` env vars and ``.env`` files
    - **Sensible defaults:** ``~/.nexus/identifier.sqlite``, 50 MiB, 30 s

Examples:
    >>> from nexus.core.settings import NexusSettings
    >>> settings = NexusSettings(db_url="sqlite:///tmp/nexus.db")
    >>> settings.import_timeout_seconds
    30.0

Tags:
    settings, configuration, pydantic, environment, nexus-core
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NexusSettings(BaseSettings):
    """Store location, legacy import and logging settings.

    Fields
    ──────
    db_url                 : Override of the live store location
    app_dir                : Per-user directory holding the live store
    db_filename            : Live store filename inside ``app_dir``
    legacy_db_path         : Legacy store, relative to the working directory
    legacy_max_bytes       : Legacy files larger than this are not imported
    import_timeout_seconds : Budget for the background legacy import
    import_enabled         : Turn the legacy import off entirely
    busy_timeout_ms        : ``PRAGMA busy_timeout`` issued before ATTACH
    default_user_id        : User scope for the imported settings row
    schema_script          : Explicit base schema script path
    log_level / log_format : Structlog configuration
    """

    model_config = SettingsConfigDict(
        env_prefix="NEXUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Live store ───────────────────────────────────────────────
    db_url: str | None = None
    app_dir: Path = Field(
        default_factory=lambda: Path.home() / ".nexus",
        description="Per-user directory, created on first use",
    )
    db_filename: str = "identifier.sqlite"

    # ── Legacy import ────────────────────────────────────────────
    legacy_db_path: Path = Path("identifier.sqlite")
    legacy_max_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    import_timeout_seconds: float = Field(default=30.0, gt=0)
    import_enabled: bool = True
    busy_timeout_ms: int = Field(default=1000, ge=0)
    default_user_id: int = 1

    # ── Schema ───────────────────────────────────────────────────
    schema_script: Path | None = None

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "console"

    @field_validator("db_url")
    @classmethod
    def _blank_url_is_unset(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {value!r}")
        return value

    @property
    def default_store_path(self) -> Path:
        """Live store path when no override is configured."""
        return self.app_dir.expanduser() / self.db_filename


@lru_cache(maxsize=1)
def get_settings() -> NexusSettings:
    """Process-wide settings, read once from the environment."""
    return NexusSettings()


def clear_settings_cache() -> None:
    """Forget the cached settings (tests, reconfiguration)."""
    get_settings.cache_clear()


__all__ = ["NexusSettings", "get_settings", "clear_settings_cache"]
