"""Tests for ConfigManager."""

from pathlib import Path

import pytest
import yaml

from podsync.config.manager import ConfigManager
from podsync.config.schema import GlobalConfig
from podsync.utils.errors import InvalidConfigError


class TestConfigManager:
    """Tests for ConfigManager class."""

    def test_init_with_custom_dir(self, tmp_path: Path) -> None:
        """Test ConfigManager initialization with custom directory."""
        manager = ConfigManager(config_dir=tmp_path)
        assert manager.config_dir == tmp_path
        assert manager.config_file == tmp_path / "config.yaml"

    def test_load_config_creates_default_if_missing(self, tmp_path: Path) -> None:
        """Test that load_config creates default config if file doesn't exist."""
        manager = ConfigManager(config_dir=tmp_path)
        config = manager.load_config()

        assert isinstance(config, GlobalConfig)
        assert config == GlobalConfig()
        assert manager.config_file.exists()

    def test_load_config_from_existing_file(self, tmp_path: Path) -> None:
        """Test loading config from existing file."""
        data = {
            "version": "1",
            "log_level": "DEBUG",
            "gateway": {"url": "https://gateway.example/"},
            "sync": {"max_batch_size": 50000, "min_confirmations": 5},
        }
        (tmp_path / "config.yaml").write_text(yaml.safe_dump(data))

        config = ConfigManager(config_dir=tmp_path).load_config()

        assert config.log_level == "DEBUG"
        assert config.gateway.url == "https://gateway.example"
        assert config.sync.max_batch_size == 50000
        assert config.sync.min_confirmations == 5
        assert config.publish.tag_prefix == "podsync"

    def test_load_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        """Test that an empty config file yields the default config."""
        (tmp_path / "config.yaml").write_text("")
        assert ConfigManager(config_dir=tmp_path).load_config() == GlobalConfig()

    def test_load_invalid_config_raises(self, tmp_path: Path) -> None:
        """Test that invalid values are reported as InvalidConfigError."""
        (tmp_path / "config.yaml").write_text(yaml.safe_dump({"log_level": "TRACE"}))

        with pytest.raises(InvalidConfigError, match="Invalid configuration"):
            ConfigManager(config_dir=tmp_path).load_config()

    def test_save_config(self, tmp_path: Path) -> None:
        """Test saving configuration."""
        manager = ConfigManager(config_dir=tmp_path / "nested")
        manager.save_config(GlobalConfig(log_level="DEBUG"))

        with open(manager.config_file) as f:
            data = yaml.safe_load(f)
        assert data["log_level"] == "DEBUG"
        assert data["sync"]["max_batch_size"] == GlobalConfig().sync.max_batch_size


class TestSetValue:
    """Tests for ConfigManager.set_value."""

    def test_set_nested_value(self, tmp_path: Path) -> None:
        manager = ConfigManager(config_dir=tmp_path)

        config = manager.set_value("sync.min_confirmations", "10")

        assert config.sync.min_confirmations == 10
        assert manager.load_config().sync.min_confirmations == 10

    def test_set_null_disables_partitioning(self, tmp_path: Path) -> None:
        manager = ConfigManager(config_dir=tmp_path)
        assert manager.set_value("sync.max_batch_size", "null").sync.max_batch_size is None

    def test_set_top_level_value(self, tmp_path: Path) -> None:
        manager = ConfigManager(config_dir=tmp_path)
        assert manager.set_value("log_level", "WARNING").log_level == "WARNING"

    @pytest.mark.parametrize("key", ["unknown", "sync.unknown", "log_level.nested"])
    def test_unknown_key_raises(self, tmp_path: Path, key: str) -> None:
        with pytest.raises(InvalidConfigError, match="Unknown config key"):
            ConfigManager(config_dir=tmp_path).set_value(key, "1")

    def test_invalid_value_raises_and_keeps_file(self, tmp_path: Path) -> None:
        manager = ConfigManager(config_dir=tmp_path)

        with pytest.raises(InvalidConfigError, match="Invalid value for sync.max_batch_size"):
            manager.set_value("sync.max_batch_size", "-5")

        assert manager.load_config().sync.max_batch_size == GlobalConfig().sync.max_batch_size
