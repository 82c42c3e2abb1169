"""Registry mapping source names (as used in config/sources.yaml) to classes."""

from typing import Type

from .base import BaseDataSource
from core.container import Container


class SourceRegistry:
    """Registry for data source classes."""

    def __init__(self):
        self._sources: dict[str, Type[BaseDataSource]] = {}

    def register(self, source_class: Type[BaseDataSource]) -> Type[BaseDataSource]:
        """Register a data source class. Can be used as a decorator.

        Raises:
            ValueError: If another class already uses the same name.
        """
        existing = self._sources.get(source_class.name)
        if existing is not None and existing is not source_class:
            raise ValueError(
                f"Source name '{source_class.name}' already registered by {existing.__name__}"
            )
        self._sources[source_class.name] = source_class
        return source_class

    def get(self, name: str) -> Type[BaseDataSource] | None:
        """Get a data source class by name."""
        return self._sources.get(name)

    def get_all(self) -> dict[str, Type[BaseDataSource]]:
        """Get all registered source classes."""
        return self._sources.copy()

    def create_source(self, name: str, container: Container) -> BaseDataSource:
        """Create an instance of a data source.

        Raises:
            KeyError: If source name is not registered.
            ConfigurationError: If the source has no configuration section.
        """
        source_class = self._sources.get(name)
        if source_class is None:
            raise KeyError(f"Data source '{name}' not found in registry")
        return source_class(container)

    def create_enabled_sources(self, container: Container) -> list[BaseDataSource]:
        """Create instances of all enabled data sources, in configuration order."""
        enabled_names = container.get_config().get_enabled_sources()
        return [
            self.create_source(name, container)
            for name in enabled_names
            if name in self._sources
        ]


# Global registry instance
_registry = SourceRegistry()


def get_registry() -> SourceRegistry:
    """Get the global source registry."""
    return _registry


def register(source_class: Type[BaseDataSource]) -> Type[BaseDataSource]:
    """Decorator to register a data source class."""
    return _registry.register(source_class)
