"""Prefect flows for scheduled imports and cache maintenance.

Sources never retry on their own; retries and backoff for failed fetches
live on the tasks below. Every task re-runs a whole source, which is safe
because all writes are idempotent.
"""

import logging
from typing import Any

from prefect import flow, task

from core.config import Config
from core.container import Container
from database import init_db
from services.cache import ResponseCache, optimize_database
from sources.base import PipelineContext
from sources.geography import IMPORT_ORDER
from sources.loading import flagged_import_years
from sources.registry import get_registry

# Import sources to register them
import sources.reference
import sources.catalog

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

REFERENCE_SOURCES = ('summary_levels', 'years')
CATALOG_SOURCES = ('programs', 'components', 'datasets', 'topics', 'dataset_topics', 'data_tables')


def _container(config_path: str | None = None) -> Container:
    return Container(Config(config_path) if config_path else Config())


def _enabled(container: Container, names: tuple[str, ...]) -> list[str]:
    enabled = set(container.get_config().get_enabled_sources())
    return [name for name in names if name in enabled]


def geography_years(container: Container) -> list[int]:
    """Years flagged import_geographies, else the global `years` list."""
    with container.get_db_session_factory().get_session() as session:
        flagged = flagged_import_years(session)
    return flagged or [int(year) for year in container.get_config().get_global_config().get('years', [])]


@task(name="Run Import Source", retries=3, retry_delay_seconds=60)
def run_source_task(name: str, year: int | None = None, state_code: str | None = None,
                    config_path: str | None = None) -> dict[str, Any]:
    """Run one source to completion, raising so Prefect can retry it."""
    container = _container(config_path)
    source = get_registry().create_source(name, container)
    context = PipelineContext(year=year, state_code=state_code)

    logger.info(f"Running {name} ({context.describe()})")
    result = source.execute(context)
    logger.info(f"{name} complete: {result}")
    return {'source': name, 'year': year, **result}


@task(name="Initialize Database")
def init_database_task(config_path: str | None = None) -> None:
    init_db(_container(config_path).get_db_session_factory())


@flow(name="Census Reference Import", log_prints=True)
def census_reference_flow(years: list[int] | None = None,
                          config_path: str | None = None) -> list[dict[str, Any]]:
    """Seed reference data, import geographies in dependency order, build the catalog."""
    logger.info("=" * 50)
    logger.info("Starting Census Reference Import")
    logger.info("=" * 50)

    container = _container(config_path)

    init_database_task(config_path)

    results = []
    for name in _enabled(container, REFERENCE_SOURCES):
        results.append(run_source_task(name, config_path=config_path))

    # Years flagged for geography import, once the years seed has run
    years = years or geography_years(container)
    logger.info(f"Importing geographies for {years}")

    for year in years:
        for name in _enabled(container, IMPORT_ORDER):
            results.append(run_source_task(name, year=year, config_path=config_path))

    for name in _enabled(container, CATALOG_SOURCES):
        results.append(run_source_task(name, config_path=config_path))

    logger.info("=" * 50)
    logger.info(f"Import completed: {len(results)} source runs")
    logger.info("=" * 50)
    return results


@task(name="Clean Up Expired Cache Entries", retries=2, retry_delay_seconds=30)
def cleanup_cache_task(config_path: str | None = None) -> int:
    return ResponseCache.from_container(_container(config_path)).cleanup_expired()


@task(name="Optimize Database")
def optimize_database_task(config_path: str | None = None) -> list[str]:
    return optimize_database(_container(config_path).get_db_session_factory().engine)


@flow(name="Census Cache Maintenance", log_prints=True)
def cache_maintenance_flow(config_path: str | None = None) -> dict[str, Any]:
    """Reclaim expired cache entries, then refresh planner statistics."""
    deleted = cleanup_cache_task(config_path)
    optimized = optimize_database_task(config_path)
    return {'deleted': deleted, 'optimized_tables': optimized}


if __name__ == "__main__":
    census_reference_flow()
