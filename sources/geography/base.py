"""Shared pipeline for geography importers.

Each geography type is a GeographySource subclass that declares its geoinfo
fields, a fetch plan and the for/in parameter builders. Everything else
(validation, idempotent insert, year association and parent backfill) is
common.
"""

from abc import abstractmethod
from enum import Enum
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import Geography, GeographyYear

from ..base import BaseDataSource, PipelineContext
from ..loading import create_geography_year, flagged_import_years, get_or_create_year, insert_or_skip
from .fields import BASE_FIELDS, GeographyType, get_geography_type, transform_geography_rows
from .hierarchy import backfill_parent_links
from .regions import DIVISION_TO_REGION, STATE_CODES, STATE_TO_REGION_DIVISION

DEFAULT_BASE_URL = 'https://api.census.gov/data'

# Geography import runs carry a year, its primary key and (per-state runs) a state
GeographyContext = PipelineContext


class FetchPlan(Enum):
    """How a geography type is requested from the geoinfo endpoint."""
    SINGLE = 'single'          # one request for the whole country
    PER_STATE = 'per_state'    # one request per containing state


class GeographySource(BaseDataSource):
    """Base class for one geography type."""

    geography_type: str
    fetch_plan: FetchPlan = FetchPlan.SINGLE
    # Fields requested with get=, in request order
    fields: tuple[str, ...] = BASE_FIELDS + ('INTPTLAT', 'INTPTLON')

    @property
    def geography(self) -> GeographyType:
        return get_geography_type(self.geography_type)

    # -- per-type hooks ------------------------------------------------------

    @abstractmethod
    def for_param(self, record: dict[str, Any]) -> str:
        """API ``for`` fragment identifying this one geography."""
        ...

    def in_param(self, record: dict[str, Any]) -> str | None:
        """API ``in`` fragment naming the containing geography, if any."""
        return None

    def assign_derived_fields(self, records: list[dict[str, Any]]) -> None:
        """Fill in codes the geoinfo endpoint does not return. Mutates records."""

    # -- pipeline ------------------------------------------------------------

    def default_contexts(self) -> list[PipelineContext]:
        return [GeographyContext(year=year) for year in self.import_years()]

    def import_years(self) -> list[int]:
        """The source's own `years` setting, else years flagged for geography
        import in the database, else the global `years` list.
        """
        if self.config.get('years') is not None:
            return self.configured_years()

        with self.db_factory.get_session() as session:
            flagged = flagged_import_years(session)
        return flagged or self.configured_years()

    def prepare_context(self, session: Session, context: PipelineContext) -> PipelineContext:
        if context.year is None:
            raise ValidationError(
                f"A year is required to import {self.geography_type}",
                geography_type=self.geography_type, rule='year',
            )
        if context.year_id is None:
            context = context.with_values(year_id=get_or_create_year(session, context.year))
        return context

    def plan(self, session: Session, context: PipelineContext) -> Iterable[PipelineContext]:
        if self.fetch_plan is FetchPlan.SINGLE:
            return [context]

        if context.state_code is not None:
            state_codes = [context.state_code]
        else:
            state_codes = self.state_codes(session, context)

        self.logger.info(f"Fetching {self.geography_type} for {len(state_codes)} state(s)")
        return [context.with_values(state_code=code) for code in state_codes]

    def state_codes(self, session: Session, context: PipelineContext) -> list[str]:
        """States to fan out over: configured list, stored states, or all 50 + DC."""
        configured = self.config.get('states')
        if configured:
            return [str(code).zfill(2) for code in configured]

        stored = session.execute(
            select(Geography.state_code)
            .join(GeographyYear, GeographyYear.geography_id == Geography.id)
            .where(
                Geography.summary_level_code == get_geography_type('state').summary_level,
                GeographyYear.year_id == context.year_id,
                Geography.state_code.is_not(None),
            )
            .distinct()
            .order_by(Geography.state_code)
        ).scalars().all()
        return list(stored) or list(STATE_CODES)

    def build_params(self, context: PipelineContext) -> dict[str, str]:
        params = {
            'get': ','.join(self.fields),
            'for': f"{self.geography.query_name}:*",
        }
        if self.fetch_plan is FetchPlan.PER_STATE:
            params['in'] = f"state:{context.state_code}"
        return params

    def extract(self, context: PipelineContext) -> Any:
        api_config = self.config.get('api', {})
        base_url = api_config.get('base_url', DEFAULT_BASE_URL).rstrip('/')
        timeout = api_config.get('timeout', 30)

        url = f"{base_url}/{context.year}/geoinfo"
        params = self.build_params(context)

        self.logger.info(f"Fetching {self.geography_type} geographies: {url} {params}")
        return self.http_client.get(url, params=params, timeout=timeout)

    def transform(self, raw_data: Any, context: PipelineContext) -> list[dict[str, Any]]:
        # A state can legitimately have none of a nested type; the API answers 204
        if self.fetch_plan is FetchPlan.PER_STATE and _is_empty_response(raw_data):
            self.logger.info(f"No {self.geography_type} geographies in state {context.state_code}")
            return []

        records = transform_geography_rows(raw_data, self.geography_type)
        self.assign_derived_fields(records)

        for record in records:
            record['year'] = context.year
            record['for_param'] = self.for_param(record)
            record['in_param'] = self.in_param(record)

        return records

    def validate(self, data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        seen: set[str] = set()
        unique = []
        for record in data:
            if record['ucgid_code'] in seen:
                self.logger.warning(f"Duplicate UCGID in response: {record['ucgid_code']}")
                continue
            seen.add(record['ucgid_code'])
            unique.append(record)
        return unique

    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        self.logger.info(f"Loading {len(data)} {self.geography_type} records to database")

        inserted = insert_or_skip(session, Geography, data, 'ucgid_code')

        # Pre-existing rows are associated with the year as well
        ucgids = [record['ucgid_code'] for record in data]
        geography_ids = session.execute(
            select(Geography.id).where(Geography.ucgid_code.in_(ucgids))
        ).scalars().all() if ucgids else []

        associated = sum(
            create_geography_year(session, geography_id, context.year_id)
            for geography_id in geography_ids
        )

        self.logger.info(
            f"Seeded {inserted} {self.geography_type} record(s) for {context.year} "
            f"({len(data) - inserted} already present)"
        )
        return {'inserted': inserted, 'associated': associated, 'total': len(data)}

    def post_process(self, session: Session, context: PipelineContext) -> dict[str, int]:
        linked = backfill_parent_links(session, self.geography_type)
        self.logger.info(f"Linked {linked} {self.geography_type} record(s) to their parent")
        return {'linked': linked}


class StateContainedSource(GeographySource):
    """Geographies nested in a state; region/division come from the state."""

    def territories(self) -> set[str]:
        """State codes allowed to load without a region/division (global `territories`)."""
        configured = self.container.get_config().get_global_config().get('territories') or []
        return {str(code).zfill(2) for code in configured}

    def assign_derived_fields(self, records: list[dict[str, Any]]) -> None:
        territories = self.territories()
        for record in records:
            state_code = record.get('state_code')
            if not state_code:
                raise ValidationError(
                    f"Missing state_code for {self.geography_type}: {record.get('ucgid_code')}",
                    geography_type=self.geography_type, rule='state_code',
                )

            region_division = STATE_TO_REGION_DIVISION.get(state_code)
            if region_division is None:
                if state_code not in territories:
                    raise ValidationError(
                        f"No region/division data found for {self.geography_type} in state "
                        f"{state_code}: {record.get('ucgid_code')}",
                        geography_type=self.geography_type, rule='state_region',
                    )
                self.logger.warning(
                    f"Loading territory {state_code} without region/division "
                    f"({self.geography_type} {record.get('ucgid_code')})"
                )
                record['region_code'] = None
                record['division_code'] = None
                continue

            record['region_code'], record['division_code'] = region_division


def _is_empty_response(raw_data: Any) -> bool:
    """No content (HTTP 204), or a header row with no data rows."""
    return raw_data is None or (isinstance(raw_data, list) and len(raw_data) <= 1)


def region_for_division(division_code: str | None, geography_type: str = 'division') -> str:
    """Region containing a division; unmapped divisions cannot be classified."""
    if not division_code:
        raise ValidationError("Missing division_code for record",
                              geography_type=geography_type, rule='division_code')
    try:
        return DIVISION_TO_REGION[division_code]
    except KeyError:
        raise ValidationError(f"No region code found for division: {division_code}",
                              geography_type=geography_type, rule='division_region')
