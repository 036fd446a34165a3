"""Tests for core.settings module.

Covers:
- NexusSettings instantiation with defaults
- NEXUS_* environment variable override
- Field validation
- Cached accessor
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from nexus.core.settings import NexusSettings, clear_settings_cache, get_settings


class TestNexusSettingsDefaults:
    def test_no_override(self):
        assert NexusSettings().db_url is None

    def test_default_app_dir_is_home_nexus(self):
        s = NexusSettings()
        assert s.app_dir == Path.home() / ".nexus"

    def test_default_store_path(self):
        s = NexusSettings()
        assert s.default_store_path == Path.home() / ".nexus" / "identifier.sqlite"

    def test_legacy_defaults(self):
        s = NexusSettings()
        assert s.legacy_db_path == Path("identifier.sqlite")
        assert s.legacy_max_bytes == 50 * 1024 * 1024
        assert s.import_timeout_seconds == 30.0
        assert s.import_enabled is True
        assert s.busy_timeout_ms == 1000
        assert s.default_user_id == 1

    def test_logging_defaults(self):
        s = NexusSettings()
        assert s.log_level == "INFO"
        assert s.log_format == "console"


class TestNexusSettingsEnvOverride:
    def test_db_url_from_env(self, monkeypatch):
        monkeypatch.setenv("NEXUS_DB_URL", "sqlite:///tmp/nexus.db")
        assert NexusSettings().db_url == "sqlite:///tmp/nexus.db"

    def test_blank_db_url_is_unset(self, monkeypatch):
        monkeypatch.setenv("NEXUS_DB_URL", "   ")
        assert NexusSettings().db_url is None

    def test_timeout_from_env(self, monkeypatch):
        monkeypatch.setenv("NEXUS_IMPORT_TIMEOUT_SECONDS", "2.5")
        assert NexusSettings().import_timeout_seconds == 2.5

    def test_import_disabled_from_env(self, monkeypatch):
        monkeypatch.setenv("NEXUS_IMPORT_ENABLED", "false")
        assert NexusSettings().import_enabled is False

    def test_unprefixed_vars_ignored(self, monkeypatch):
        monkeypatch.setenv("DB_URL", "sqlite:///elsewhere.db")
        assert NexusSettings().db_url is None


class TestNexusSettingsValidation:
    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            NexusSettings(import_timeout_seconds=0)

    def test_rejects_non_positive_size_limit(self):
        with pytest.raises(ValidationError):
            NexusSettings(legacy_max_bytes=0)

    def test_log_format_normalized(self):
        assert NexusSettings(log_format="JSON").log_format == "json"

    def test_unknown_log_format_rejected(self):
        with pytest.raises(ValidationError):
            NexusSettings(log_format="xml")


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_clear_cache_rereads_env(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("NEXUS_DEFAULT_USER_ID", "7")
        clear_settings_cache()
        second = get_settings()
        assert second is not first
        assert second.default_user_id == 7
