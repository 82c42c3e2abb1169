"""Datasets from the Census API discovery document (https://api.census.gov/data/)."""

import calendar
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import Component, Dataset

from ..base import BaseDataSource, PipelineContext
from ..loading import get_or_create_year, insert_or_skip
from ..registry import register

DEFAULT_DISCOVERY_URL = 'https://api.census.gov/data/'


def parse_temporal_range(temporal: str | None) -> tuple[date | None, date | None]:
    """Parse 'YYYY[-MM]/YYYY[-MM]' into first-of-month start and last-of-month end.

    Unparseable values give (None, None).
    """
    if not temporal:
        return None, None

    try:
        start, end = temporal.split('/')

        start_parts = start.split('-')
        start_date = date(int(start_parts[0]), int(start_parts[1]) if len(start_parts) > 1 else 1, 1)

        end_parts = end.split('-')
        end_year = int(end_parts[0])
        end_month = int(end_parts[1]) if len(end_parts) > 1 else 12
        end_date = date(end_year, end_month, calendar.monthrange(end_year, end_month)[1])
    except (ValueError, IndexError):
        return None, None

    if start_date > end_date:
        return None, None
    return start_date, end_date


def determine_dataset_type(item: dict[str, Any]) -> str:
    if item.get('c_isAggregate'):
        return 'aggregate'
    if item.get('c_isTimeseries'):
        return 'timeseries'
    if item.get('c_isMicrodata'):
        return 'microdata'
    raise ValidationError(f"Dataset {item.get('identifier')} has no type flag set",
                          rule='dataset_type')


def find_component_id(components: list[tuple[int, str]], dataset_param: str) -> int | None:
    """Component whose API endpoint is the longest prefix of the dataset path.

    acs/acs1/subject belongs to the subject-table component, not acs/acs1.
    Ties go to the lowest id.
    """
    matches = [
        (len(api_endpoint), -component_id, component_id)
        for component_id, api_endpoint in components
        if dataset_param == api_endpoint or dataset_param.startswith(api_endpoint + '/')
    ]
    return max(matches)[2] if matches else None


@register
class DatasetsSource(BaseDataSource):
    """Dataset vintages listed by the Census API."""

    name = "datasets"
    description = "Census API Datasets"

    def extract(self, context: PipelineContext) -> Any:
        api_config = self.config.get('api', {})
        url = api_config.get('base_url', DEFAULT_DISCOVERY_URL)
        timeout = api_config.get('timeout', 60)

        self.logger.info(f"Fetching dataset discovery document from {url}")
        return self.http_client.get(url, timeout=timeout)

    def transform(self, raw_data: Any, context: PipelineContext) -> list[dict[str, Any]]:
        entries = raw_data.get('dataset', []) if isinstance(raw_data, dict) else []
        self.logger.info(f"Received {len(entries)} dataset entries")

        transformed = []
        for item in entries:
            if not isinstance(item, dict) or not item.get('c_dataset'):
                continue
            if not all(item.get(key) for key in ('title', 'identifier')):
                continue

            try:
                dataset_type = determine_dataset_type(item)
            except ValidationError as e:
                self.logger.warning(f"Excluding dataset: {e.message}")
                continue

            temporal_start, temporal_end = parse_temporal_range(item.get('temporal'))
            if item.get('temporal') and temporal_start is None:
                self.logger.warning(f"Failed to parse temporal string: {item['temporal']}")

            transformed.append({
                'dataset_id': item['identifier'].rstrip('/').split('/')[-1],
                'dataset_param': '/'.join(item['c_dataset']),
                'name': item['title'],
                'description': item.get('description') or '',
                'type': dataset_type,
                'temporal_start': temporal_start,
                'temporal_end': temporal_end,
                'vintage': item.get('c_vintage'),
            })

        return transformed

    def validate(self, data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        deduped: dict[str, dict[str, Any]] = {}
        duplicates: set[str] = set()
        for record in data:
            if record['dataset_id'] in deduped:
                duplicates.add(record['dataset_id'])
            deduped[record['dataset_id']] = record

        if duplicates:
            self.logger.warning(
                f"Found {len(duplicates)} duplicate dataset_id(s); keeping last occurrence of each: "
                f"{', '.join(sorted(duplicates))}"
            )
        return list(deduped.values())

    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        components = session.execute(
            select(Component.id, Component.api_endpoint).order_by(Component.id)
        ).tuples().all()

        records = []
        for record in data:
            record = dict(record)
            vintage = record.pop('vintage')
            if vintage is None:
                self.logger.warning(f"No year found for dataset: {record['dataset_id']}")
                record['year_id'] = None
            else:
                record['year_id'] = get_or_create_year(session, vintage)

            record['component_id'] = find_component_id(components, record['dataset_param'])
            if record['component_id'] is None:
                self.logger.warning(f"No component found for dataset_param: {record['dataset_param']}")
            records.append(record)

        inserted = insert_or_skip(session, Dataset, records, 'dataset_id')
        self.logger.info(f"Seeded {inserted} dataset(s), {len(records) - inserted} already present")
        return {'inserted': inserted, 'total': len(records)}
