"""Base class for all data sources with dependency injection."""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from core.container import Container
from core.exceptions import CensusStoreError


@dataclass(frozen=True)
class PipelineContext:
    """Run parameters threaded explicitly through every pipeline stage.

    A new context is created per run (and per state for fanned-out runs);
    stages never share mutable state across runs.
    """
    year: int | None = None
    year_id: int | None = None
    state_code: str | None = None

    def with_values(self, **changes: Any) -> 'PipelineContext':
        return PipelineContext(**{**self.__dict__, **changes})

    def describe(self) -> str:
        parts = []
        if self.year is not None:
            parts.append(f"year={self.year}")
        if self.state_code is not None:
            parts.append(f"state={self.state_code}")
        return ', '.join(parts) or 'no parameters'


class BaseDataSource(ABC):
    """Abstract base class for data sources with dependency injection.

    A run is Extract -> Transform -> Validate -> Load for every unit of the
    fetch plan, followed by PostProcess, all inside one database session.
    Any exception rolls the whole run back.
    """

    # Subclasses must define these
    name: str
    description: str

    def __init__(self, container: Container):
        """Initialize with dependency container."""
        self.container = container
        self.config = container.get_config().get_source_config(self.name)
        self.logger = container.get_logger(f"sources.{self.name}")
        self.http_client = container.get_http_client()
        self.db_factory = container.get_db_session_factory()

    @abstractmethod
    def extract(self, context: PipelineContext) -> Any:
        """Extract raw data from the source.

        Returns:
            Raw payload as delivered by the API or seed file.
        """
        ...

    @abstractmethod
    def transform(self, raw_data: Any, context: PipelineContext) -> list[dict[str, Any]]:
        """Transform raw data into normalized records.

        Args:
            raw_data: Raw payload from the extract phase.
            context: Run parameters.

        Returns:
            List of transformed records ready for validation.
        """
        ...

    def validate(self, data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        """Validate data quality. Raise to abort the run.

        Args:
            data: Transformed records.
            context: Run parameters.

        Returns:
            List of valid records.
        """
        return data

    @abstractmethod
    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        """Load data into the database.

        Args:
            session: Session shared by every stage of the run.
            data: Validated records.
            context: Run parameters.

        Returns:
            Counts such as 'inserted' and 'total'.
        """
        ...

    def post_process(self, session: Session, context: PipelineContext) -> dict[str, int]:
        """Run once after every unit of the plan has been loaded."""
        return {}

    def prepare_context(self, session: Session, context: PipelineContext) -> PipelineContext:
        """Resolve anything the run needs from the database before extracting."""
        return context

    def plan(self, session: Session, context: PipelineContext) -> Iterable[PipelineContext]:
        """Units of work for one run; a single unit by default."""
        return [context]

    def default_contexts(self) -> list[PipelineContext]:
        """Contexts to run when the caller gives none (from configuration)."""
        return [PipelineContext()]

    def execute(self, context: PipelineContext | None = None) -> dict[str, int]:
        """Run the pipeline, raising on failure.

        Returns:
            Summed counts from every load and the post-process stage.
        """
        context = context or PipelineContext()
        totals: Counter[str] = Counter()

        with self.db_factory.get_session() as session:
            context = self.prepare_context(session, context)

            for unit in self.plan(session, context):
                # Extract
                raw_data = self.extract(unit)

                # Transform
                transformed_data = self.transform(raw_data, unit)

                # Validate
                valid_data = self.validate(transformed_data, unit)

                # Load
                totals.update(self.load(session, valid_data, unit))

            # Post-process
            totals.update(self.post_process(session, context))

        return dict(totals)

    def run(self, context: PipelineContext | None = None) -> dict[str, Any]:
        """Execute the full ETL pipeline.

        Returns:
            Summary of the ETL run including counts and timing. Failures are
            reported in the summary rather than raised.
        """
        context = context or PipelineContext()

        self.logger.info("=" * 60)
        self.logger.info(f"Starting {self.description} ETL Pipeline ({context.describe()})")
        self.logger.info("=" * 60)

        start_time = datetime.now(timezone.utc)

        try:
            result = self.execute(context)

            duration = (datetime.now(timezone.utc) - start_time).total_seconds()

            self.logger.info("=" * 60)
            self.logger.info(f"ETL Pipeline completed in {duration:.2f}s")
            self.logger.info(f"Summary: {result}")
            self.logger.info("=" * 60)

            return {
                'source': self.name,
                'success': True,
                'duration_seconds': duration,
                **result
            }

        except CensusStoreError as e:
            self.logger.error(f"ETL Pipeline failed: {e.message}")
            return {
                'source': self.name,
                'success': False,
                'error': e.message,
                'error_code': e.error_code,
            }
        except Exception as e:
            self.logger.exception(f"ETL Pipeline failed: {str(e)}")
            return {
                'source': self.name,
                'success': False,
                'error': str(e)
            }

    def is_enabled(self) -> bool:
        """Check if this source is enabled in configuration."""
        return self.config.get('enabled', False)

    def configured_years(self) -> list[int]:
        """Years from the source section, falling back to the global list."""
        years = self.config.get('years')
        if years is None:
            years = self.container.get_config().get_global_config().get('years', [])
        return [int(year) for year in years]
