"""
Unit tests for server configuration.

Tests cover:
- Defaults
- Loading from environment variables
- Validation errors
"""

import pytest

from cms.folio_server.config import (
    ServerConfig,
    StorageBackend,
    StorageConfig,
    TimeoutConfig,
)


class TestTimeoutConfig:
    """Tests for time budgets."""

    def test_default_budgets(self):
        """Budgets are the constant times each coefficient."""
        timeouts = TimeoutConfig()

        assert timeouts.get_budget_ms == 8000
        assert timeouts.put_budget_ms == 20000
        assert timeouts.publish_budget_ms == 20000

    def test_from_env(self, monkeypatch):
        """The constant and coefficients come from the environment."""
        monkeypatch.setenv("TIMEOUT_CONSTANT_MS", "100")
        monkeypatch.setenv("TIMEOUT_GET_COEFFICIENT", "3")

        timeouts = TimeoutConfig.from_env()

        assert timeouts.get_budget_ms == 300
        assert timeouts.put_budget_ms == 500


class TestStorageConfig:
    """Tests for storage configuration."""

    def test_defaults_to_memory(self, monkeypatch):
        """Without STORAGE_BACKEND the in-memory engine is used."""
        monkeypatch.delenv("STORAGE_BACKEND", raising=False)

        assert StorageConfig.from_env().backend == StorageBackend.MEMORY

    def test_sqlite_from_env(self, monkeypatch, tmp_path):
        """SQLite settings are read from the environment."""
        monkeypatch.setenv("STORAGE_BACKEND", "SQLite")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")

        config = StorageConfig.from_env()

        assert config.backend == StorageBackend.SQLITE
        assert config.data_dir == str(tmp_path)
        assert config.wal_mode is False

    def test_invalid_backend(self, monkeypatch):
        """Unknown backends are rejected with the allowed values."""
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")

        with pytest.raises(ValueError, match="memory, sqlite"):
            StorageConfig.from_env()


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_sites_from_env(self, monkeypatch):
        """SITES is a comma separated list of slug=host[/path]."""
        monkeypatch.setenv("SITES", "www=example.com, blog=example.com/blog,")

        config = ServerConfig.from_env()

        assert config.sites == ("www=example.com", "blog=example.com/blog")

    def test_invalid_site_rejected(self):
        """Site entries need a slug and a host."""
        config = ServerConfig(sites=("example.com",))

        with pytest.raises(ValueError, match="Invalid SITES entry"):
            config.validate()

    def test_non_positive_timeout_rejected(self):
        """Budgets must be positive."""
        config = ServerConfig(timeouts=TimeoutConfig(constant_ms=0))

        with pytest.raises(ValueError, match="TIMEOUT_CONSTANT_MS"):
            config.validate()

    def test_schedule_settings(self, monkeypatch):
        """Schedule loop can be disabled and tuned."""
        monkeypatch.setenv("SCHEDULE_ENABLED", "false")
        monkeypatch.setenv("SCHEDULE_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("SCHEDULE_JITTER_SECONDS", "0")

        config = ServerConfig.from_env()

        assert config.schedule.enabled is False
        assert config.schedule.interval_seconds == 5.0
        assert config.schedule.jitter_seconds == 0.0

    def test_negative_jitter_rejected(self, monkeypatch):
        """Jitter cannot be negative."""
        monkeypatch.setenv("SCHEDULE_JITTER_SECONDS", "-1")

        with pytest.raises(ValueError, match="SCHEDULE_JITTER_SECONDS"):
            ServerConfig.from_env()
