#!/usr/bin/env python3
"""Unified import runner for the census reference store."""

import argparse
import sys
from typing import Any

from core.container import Container
from core.config import Config
from core.exceptions import ConfigurationError
from sources.base import BaseDataSource, PipelineContext
from sources.registry import get_registry
from database import init_db

# Import sources to register them
import sources.reference
import sources.geography
import sources.catalog

SUMMARY_KEYS = ('source', 'success', 'error', 'error_code', 'duration_seconds')


def contexts_for(source: BaseDataSource, year: int | None,
                 state: str | None) -> list[PipelineContext]:
    """Explicit year/state from the command line, else the configured defaults."""
    if year is not None:
        return [PipelineContext(year=year, state_code=state)]

    contexts = source.default_contexts()
    if state is not None:
        contexts = [context.with_values(state_code=state) for context in contexts]
    return contexts


def run_source(source: BaseDataSource, year: int | None = None,
               state: str | None = None) -> list[dict[str, Any]]:
    contexts = contexts_for(source, year, state)
    if not contexts:
        print(f"No years configured for {source.name}; pass --year")
        return []
    return [source.run(context) for context in contexts]


def run_all_sources(container: Container, year: int | None = None,
                    state: str | None = None) -> list[dict[str, Any]]:
    """Run all enabled sources in configuration order."""
    registry = get_registry()
    sources = registry.create_enabled_sources(container)

    if not sources:
        print("No enabled sources found in configuration")
        return []

    results = []
    for source in sources:
        print(f"\nRunning {source.name}...")
        results.extend(run_source(source, year, state))

    return results


def run_single_source(container: Container, source_name: str, year: int | None = None,
                      state: str | None = None) -> list[dict[str, Any]]:
    registry = get_registry()

    try:
        source = registry.create_source(source_name, container)
    except (KeyError, ConfigurationError) as e:
        print(f"Error: {e}")
        print(f"Available sources: {list(registry.get_all().keys())}")
        sys.exit(1)

    return run_source(source, year, state)


def list_sources(container: Container) -> None:
    """List all available sources and their status."""
    registry = get_registry()
    config = container.get_config()

    print("\nAvailable Data Sources:")
    print("-" * 50)

    for name, source_class in registry.get_all().items():
        try:
            source_config = config.get_source_config(name)
            enabled = source_config.get('enabled', False)
            status = "enabled" if enabled else "disabled"
            desc = source_config.get('description', source_class.description)
        except ConfigurationError:
            status = "not configured"
            desc = source_class.description

        print(f"  {name}: {desc}")
        print(f"    Status: {status}")
        print()


def print_summary(results: list[dict[str, Any]]) -> None:
    print("\n" + "=" * 60)
    print("Import Summary")
    print("=" * 60)

    for result in results:
        status = "SUCCESS" if result.get('success') else "FAILED"
        print(f"\n{result['source']}: {status}")

        if result.get('success'):
            for key, value in result.items():
                if key not in SUMMARY_KEYS:
                    print(f"  {key.capitalize()}: {value}")
            print(f"  Duration: {result.get('duration_seconds', 0):.2f}s")
        else:
            print(f"  Error: {result.get('error', 'Unknown error')}")


def main():
    parser = argparse.ArgumentParser(
        description="Import census geographies and the dataset catalog"
    )
    parser.add_argument(
        '--source', '-s',
        help="Run specific source (default: all enabled sources)"
    )
    parser.add_argument(
        '--list', '-l',
        action='store_true',
        help="List available sources"
    )
    parser.add_argument(
        '--config', '-c',
        help="Path to configuration file"
    )
    parser.add_argument(
        '--year', '-y',
        type=int,
        help="Data year to import (default: years from configuration)"
    )
    parser.add_argument(
        '--state',
        help="Two digit state FIPS code for per-state geography types"
    )
    parser.add_argument(
        '--init-db',
        action='store_true',
        help="Create extensions and tables, then exit"
    )

    args = parser.parse_args()

    # Initialize container
    config = Config(args.config) if args.config else Config()
    container = Container(config)

    if args.list:
        list_sources(container)
        return

    # Initialize database tables
    init_db(container.get_db_session_factory())
    if args.init_db:
        return

    state = args.state.zfill(2) if args.state else None

    # Run pipelines
    if args.source:
        results = run_single_source(container, args.source, args.year, state)
    else:
        results = run_all_sources(container, args.year, state)

    print_summary(results)

    if not all(result.get('success') for result in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
