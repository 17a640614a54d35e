"""Tests for core configuration classes."""

from __future__ import annotations

from recordsync.core.config import (
    DEFAULT_FOREGROUND_COOLDOWN,
    DEFAULT_MAX_ITEM_ATTEMPTS,
    DEFAULT_MAX_QUEUE_SIZE,
    DEFAULT_UPLOAD_RETRIES,
    SyncConfig,
)


class TestSyncConfig:
    """Tests for SyncConfig class."""

    def test_defaults(self) -> None:
        """Should initialize with local storage and default policies."""
        config = SyncConfig()
        assert config.storage_type == "local"
        assert config.foreground_cooldown == DEFAULT_FOREGROUND_COOLDOWN
        assert config.max_queue_size == DEFAULT_MAX_QUEUE_SIZE
        assert config.upload_retries == DEFAULT_UPLOAD_RETRIES
        assert config.max_item_attempts == DEFAULT_MAX_ITEM_ATTEMPTS

    def test_prefix_slashes_stripped(self) -> None:
        config = SyncConfig(prefix="/accounts/alice/")
        assert config.prefix == "accounts/alice"

    def test_is_configured_local(self) -> None:
        assert not SyncConfig().is_configured
        assert SyncConfig(local_path="/tmp/remote").is_configured

    def test_is_configured_s3(self) -> None:
        assert not SyncConfig(storage_type="s3").is_configured
        assert SyncConfig(storage_type="s3", bucket="b").is_configured

    def test_storage_options(self) -> None:
        config = SyncConfig(storage_type="s3", bucket="b", region="eu-west-3")
        options = config.storage_options
        assert options["type"] == "s3"
        assert options["bucket"] == "b"
        assert options["region"] == "eu-west-3"

    def test_dict_round_trip(self) -> None:
        config = SyncConfig(local_path="/data", device_name="Tablet", simulator=True)
        assert SyncConfig.from_dict(config.to_dict()) == config

    def test_from_dict_ignores_unknown_keys(self) -> None:
        """Configs written by newer versions should still load."""
        config = SyncConfig.from_dict({"local_path": "/data", "future_option": 1})
        assert config.local_path == "/data"
