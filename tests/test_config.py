"""
test_config.py - Tests for settings loaded from the environment.
"""

import pytest

from station_sync.config import (
    BACKUP_RETENTION,
    POLL_INTERVAL,
    RemoteConfig,
    SyncConfig,
)


class TestSyncConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("STATION_SYNC_DB", "/var/lib/station/local.db")
        for name in ("POLL_INTERVAL", "SNAPSHOT_TABLES", "PROBE_PORT", "BACKUP_RETENTION"):
            monkeypatch.delenv(f"STATION_SYNC_{name}", raising=False)

        config = SyncConfig.from_env()

        assert config.local_path == "/var/lib/station/local.db"
        assert config.poll_interval == POLL_INTERVAL
        assert config.backup_retention == BACKUP_RETENTION
        assert config.snapshot_tables == []
        assert config.network_probe_port is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("STATION_SYNC_DB", "local.db")
        monkeypatch.setenv("STATION_SYNC_POLL_INTERVAL", "2.5")
        monkeypatch.setenv("STATION_SYNC_SNAPSHOT_TABLES", "products, pumps,")
        monkeypatch.setenv("STATION_SYNC_PROBE_PORT", "6432")

        config = SyncConfig.from_env()

        assert config.poll_interval == 2.5
        assert config.snapshot_tables == ["products", "pumps"]
        assert config.network_probe_port == 6432

    def test_missing_db_path(self, monkeypatch):
        monkeypatch.delenv("STATION_SYNC_DB", raising=False)

        with pytest.raises(ValueError):
            SyncConfig.from_env()


class TestRemoteConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STATION_SYNC_DSN", "postgresql://pos@central/station")
        monkeypatch.setenv("STATION_SYNC_POOL_SIZE", "5")

        config = RemoteConfig.from_env()

        assert config.dsn == "postgresql://pos@central/station"
        assert config.max_pool_size == 5

    def test_missing_dsn(self, monkeypatch):
        monkeypatch.delenv("STATION_SYNC_DSN", raising=False)

        with pytest.raises(ValueError):
            RemoteConfig.from_env()
