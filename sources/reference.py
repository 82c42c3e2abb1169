"""Reference seeds loaded from curated JSON files: summary levels and years."""

import json
import re
from pathlib import Path
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, aliased

from core.exceptions import ValidationError
from models import SummaryLevel, Year

from .base import BaseDataSource, PipelineContext
from .loading import insert_or_skip
from .registry import register

SUMMARY_LEVEL_CODE = re.compile(r'^\d{3}$')


class JsonSeedSource(BaseDataSource):
    """Seed source reading ``{data_key: [...]}`` from a file in the data directory."""

    file_name: str
    data_key: str

    def seed_path(self) -> Path:
        file_name = self.config.get('file', self.file_name)
        return self.container.get_config().get_data_path() / file_name

    def extract(self, context: PipelineContext) -> list[dict[str, Any]]:
        path = self.seed_path()
        self.logger.info(f"Reading {self.data_key} from {path}")

        with open(path) as f:
            content = json.load(f)

        records = content.get(self.data_key) if isinstance(content, dict) else None
        if not isinstance(records, list):
            raise ValidationError(f"{path.name} must contain a '{self.data_key}' list",
                                  rule='seed_shape')
        return records


@register
class SummaryLevelsSource(JsonSeedSource):
    """Geography summary levels and their parent relationships."""

    name = "summary_levels"
    description = "Geography Summary Levels"
    file_name = "summary_levels.json"
    data_key = "summary_levels"

    required = ('name', 'get_variable', 'query_name', 'on_spine', 'code')

    def transform(self, raw_data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        records = []
        for index, item in enumerate(raw_data, start=1):
            missing = [key for key in self.required if item.get(key) in (None, '')]
            if missing:
                raise ValidationError(
                    f"Summary level {index} is missing {', '.join(missing)}", rule='required_fields'
                )

            code = str(item['code'])
            parent = item.get('parent_summary_level')
            for value in filter(None, (code, parent)):
                if not SUMMARY_LEVEL_CODE.match(str(value)):
                    raise ValidationError(
                        f"Summary level {index}: '{value}' is not a 3 digit code", rule='code'
                    )

            records.append({
                'name': item['name'],
                'description': item.get('description'),
                'get_variable': item['get_variable'],
                'query_name': item['query_name'],
                'on_spine': bool(item['on_spine']),
                'code': code,
                'parent_summary_level': parent,
                'hierarchy_level': item.get('hierarchy_level', 99),
            })

        self.logger.info(f"Validation passed for {len(records)} records")
        return records

    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        inserted = insert_or_skip(session, SummaryLevel, data, 'code')
        return {'inserted': inserted, 'total': len(data)}

    def post_process(self, session: Session, context: PipelineContext) -> dict[str, int]:
        parent = aliased(SummaryLevel, name='parent')
        parent_id = (
            select(parent.id)
            .where(parent.code == SummaryLevel.parent_summary_level)
            .correlate(SummaryLevel)
            .scalar_subquery()
        )
        session.execute(
            update(SummaryLevel)
            .where(SummaryLevel.parent_summary_level.is_not(None))
            .values(parent_summary_level_id=parent_id)
            .execution_options(synchronize_session=False)
        )

        total, with_parent, should_have_parent = session.execute(
            select(
                func.count(SummaryLevel.id),
                func.count(SummaryLevel.parent_summary_level_id),
                func.count(SummaryLevel.parent_summary_level),
            )
        ).one()
        self.logger.info(
            f"Summary levels: {total} total, {with_parent}/{should_have_parent} with parents"
        )

        if with_parent != should_have_parent:
            orphans = session.execute(
                select(SummaryLevel.code, SummaryLevel.parent_summary_level).where(
                    SummaryLevel.parent_summary_level.is_not(None),
                    SummaryLevel.parent_summary_level_id.is_(None),
                )
            ).all()
            self.logger.warning(f"Orphaned summary levels: {[tuple(row) for row in orphans]}")

        return {'linked': with_parent}


@register
class YearsSource(JsonSeedSource):
    """Data vintages, flagged for geography import."""

    name = "years"
    description = "Data Years"
    file_name = "years.json"
    data_key = "years"

    def transform(self, raw_data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        records = []
        for item in raw_data:
            try:
                year = int(item['year'])
            except (KeyError, TypeError, ValueError):
                raise ValidationError(f"Invalid year entry: {item!r}", rule='year')
            if year < 1776:
                raise ValidationError(f"Year {year} predates 1776", rule='year')
            records.append({
                'year': year,
                'import_geographies': bool(item.get('import_geographies', False)),
            })
        return records

    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        inserted = insert_or_skip(session, Year, data, 'year')
        return {'inserted': inserted, 'total': len(data)}
