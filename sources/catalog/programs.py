"""Survey programs and their components from the curated program file."""

from typing import Any

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import Component, Program

from ..base import BaseDataSource, PipelineContext
from ..loading import insert_or_skip
from ..registry import register

PROGRAM_COLUMNS = ('PROGRAM_STRING', 'PROGRAM_LABEL')
COMPONENT_COLUMNS = (
    'COMPONENT_STRING', 'COMPONENT_LABEL', 'COMPONENT_DESCRIPTION', 'API_SHORT_NAME',
    'PROGRAM_STRING',
)


def _require_columns(rows: list[dict[str, Any]], columns: tuple[str, ...], kind: str) -> None:
    for index, row in enumerate(rows):
        missing = [column for column in columns if not row.get(column)]
        if missing:
            raise ValidationError(f"{kind} row {index} is missing {', '.join(missing)}",
                                  rule='required_fields')


def transform_programs(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """One program per acronym; the first row seen wins."""
    _require_columns(rows, PROGRAM_COLUMNS, 'Program')

    programs: dict[str, dict[str, Any]] = {}
    for row in rows:
        programs.setdefault(row['PROGRAM_STRING'], {
            'acronym': row['PROGRAM_STRING'],
            'label': row['PROGRAM_LABEL'],
        })
    return list(programs.values())


def transform_components(rows: list[dict[str, Any]], program_ids: dict[str, int]) -> list[dict[str, Any]]:
    """One component per component string, linked to its program's primary key.

    Raises:
        ValidationError: If programs are not loaded or a row names an unknown one.
    """
    _require_columns(rows, COMPONENT_COLUMNS, 'Component')

    if not program_ids:
        raise ValidationError("No programs loaded; seed programs before components",
                              rule='program_reference')

    components: dict[str, dict[str, Any]] = {}
    missing_programs: set[str] = set()

    for row in rows:
        program_id = program_ids.get(row['PROGRAM_STRING'])
        if program_id is None:
            missing_programs.add(row['PROGRAM_STRING'])
            continue

        components.setdefault(row['COMPONENT_STRING'], {
            'component_id': row['COMPONENT_STRING'],
            'label': row['COMPONENT_LABEL'],
            'description': row['COMPONENT_DESCRIPTION'],
            'api_endpoint': row['API_SHORT_NAME'],
            'program_id': program_id,
        })

    if missing_programs:
        raise ValidationError(
            f"Components reference unknown programs: {', '.join(sorted(missing_programs))}",
            rule='program_reference',
        )

    return list(components.values())


class ProgramFileSource(BaseDataSource):

    def extract(self, context: PipelineContext) -> list[dict[str, Any]]:
        path = self.container.get_config().get_data_path() / self.config.get(
            'file', 'components-programs.csv'
        )
        self.logger.info(f"Reading {path}")
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        return df.to_dict('records')


@register
class ProgramsSource(ProgramFileSource):
    name = "programs"
    description = "Survey Programs"

    def transform(self, raw_data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        programs = transform_programs(raw_data)
        self.logger.info(f"Found {len(programs)} programs in {len(raw_data)} rows")
        return programs

    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        inserted = insert_or_skip(session, Program, data, 'acronym')
        return {'inserted': inserted, 'total': len(data)}


@register
class ComponentsSource(ProgramFileSource):
    """Components are linked to programs, so programs must be loaded first."""

    name = "components"
    description = "Survey Components"

    def transform(self, raw_data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        # Program ids are resolved at load time, inside the run's session
        _require_columns(raw_data, COMPONENT_COLUMNS, 'Component')
        return raw_data

    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        program_ids = dict(session.execute(select(Program.acronym, Program.id)).tuples().all())
        components = transform_components(data, program_ids)

        inserted = insert_or_skip(session, Component, components, 'component_id')
        return {'inserted': inserted, 'total': len(components)}
