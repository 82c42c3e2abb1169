"""Configuration loader for data sources."""

import yaml
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError


class Config:
    """Configuration manager that loads from YAML files."""

    def __init__(self, config_path: str | None = None):
        if config_path is None:
            config_path = Path(__file__).parent.parent / "config" / "sources.yaml"

        self._config_path = Path(config_path)
        self._config: dict[str, Any] = {}
        self._load()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Build a config from an in-memory mapping (useful for testing)."""
        config = cls.__new__(cls)
        config._config_path = None
        config._config = data
        return config

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self._config_path}")

        with open(self._config_path) as f:
            self._config = yaml.safe_load(f) or {}

    def get_source_config(self, source_name: str) -> dict[str, Any]:
        """Get configuration for a specific data source."""
        sources = self._config.get('sources', {})
        if source_name not in sources:
            raise ConfigurationError(
                f"Source '{source_name}' not found in configuration",
                config_key=f"sources.{source_name}",
            )
        return sources[source_name] or {}

    def get_enabled_sources(self) -> list[str]:
        """Get list of enabled data source names, in file order."""
        sources = self._config.get('sources', {})
        return [name for name, cfg in sources.items() if (cfg or {}).get('enabled', False)]

    def get_global_config(self) -> dict[str, Any]:
        """Get global configuration settings."""
        return self._config.get('global', {})

    def get_data_path(self) -> Path:
        """Directory holding curated seed files (summary levels, concepts, ...)."""
        data_path = self.get_global_config().get('data_path')
        if data_path:
            return Path(data_path)
        return Path(__file__).parent.parent / "data"

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level config value."""
        return self._config.get(key, default)
