"""Configuration manager for loading and saving podsync config."""

from pathlib import Path
from typing import Any

import yaml

from podsync.config.schema import GlobalConfig
from podsync.utils.errors import InvalidConfigError
from podsync.utils.paths import get_config_dir, get_config_file


class ConfigManager:
    """Manages the podsync configuration file."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize the config manager.

        Args:
            config_dir: Optional custom config directory. Defaults to XDG config dir.
        """
        if config_dir is None:
            self.config_dir = get_config_dir()
            self.config_file = get_config_file()
        else:
            self.config_dir = config_dir
            self.config_file = config_dir / "config.yaml"

    def load_config(self) -> GlobalConfig:
        """Load and validate global configuration.

        A default config file is written on first use.

        Returns:
            Validated GlobalConfig instance

        Raises:
            InvalidConfigError: If config is invalid
        """
        if not self.config_file.exists():
            config = GlobalConfig()
            self.save_config(config)
            return config

        try:
            with open(self.config_file) as f:
                data = yaml.safe_load(f) or {}
            return GlobalConfig(**data)
        except Exception as e:
            raise InvalidConfigError(
                f"Invalid configuration in {self.config_file}: {e}"
            ) from e

    def save_config(self, config: GlobalConfig) -> None:
        """Save global configuration.

        Args:
            config: GlobalConfig instance to save
        """
        data = config.model_dump(mode="json")

        self.config_dir.mkdir(parents=True, exist_ok=True)

        with open(self.config_file, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def set_value(self, key: str, value: str) -> GlobalConfig:
        """Set a config value by dotted key, e.g. ``sync.max_batch_size``.

        Values are parsed as YAML scalars, so ``null``, numbers and booleans
        get their natural types.

        Raises:
            InvalidConfigError: If the key is unknown or the value invalid
        """
        data: dict[str, Any] = self.load_config().model_dump(mode="json")

        *parents, leaf = key.split(".")
        node = data
        for part in parents:
            if not isinstance(node.get(part), dict):
                raise InvalidConfigError(f"Unknown config key: {key}")
            node = node[part]
        if leaf not in node:
            raise InvalidConfigError(f"Unknown config key: {key}")

        node[leaf] = yaml.safe_load(value)
        try:
            config = GlobalConfig(**data)
        except Exception as e:
            raise InvalidConfigError(f"Invalid value for {key}: {e}") from e

        self.save_config(config)
        return config
