"""Data table catalog: deduplicated tables plus every table/dataset occurrence.

The concept file has one row per (table, dataset) pair with an all-caps
label. Tables are deduplicated on their id; relationships are not, since the
same table legitimately appears under many datasets and years.
"""

import re
import warnings
from dataclasses import dataclass, field
from typing import Any, Iterable

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import UnresolvedReferenceWarning, ValidationError
from models import DataTable, DataTableDataset, Dataset

from ..base import BaseDataSource, PipelineContext
from ..loading import insert_or_skip
from ..registry import register

RELATIONSHIP_BATCH_SIZE = 5000
LOOKUP_BATCH_SIZE = 500

CONCEPT_COLUMNS = ('CONCEPT_LABEL', 'CONCEPT_STRING', 'DATASET_STRING')

MINOR_WORDS = frozenset({
    'a', 'an', 'and', 'as', 'at', 'but', 'by', 'for', 'from', 'if', 'in', 'into',
    'nor', 'of', 'on', 'or', 'over', 'per', 'the', 'to', 'via', 'vs', 'with',
})

WORD = re.compile(r"[a-z0-9]+(?:'[a-z]+)?", re.IGNORECASE)


def title_case(label: str) -> str:
    """Title-case a census label: 'SEX BY AGE' -> 'Sex by Age'.

    Minor words stay lowercase except at the start of the label or after a
    colon.
    """
    text = label.strip().lower()
    result = []
    position = 0

    for index, match in enumerate(WORD.finditer(text)):
        word = match.group()
        preceding = text[position:match.start()]
        starts_clause = index == 0 or preceding.rstrip().endswith(':')

        if word in MINOR_WORDS and not starts_clause:
            result.append(preceding + word)
        else:
            result.append(preceding + word[0].upper() + word[1:])
        position = match.end()

    result.append(text[position:])
    return ''.join(result)


def _fold(label: str) -> str:
    return ' '.join(label.split()).casefold()


@dataclass(frozen=True)
class TableRelationship:
    data_table_id: str
    dataset_id: str
    label: str
    # Set only when the label differs from the table's canonical label
    label_override: str | None = None


@dataclass
class TableCatalog:
    tables: dict[str, str] = field(default_factory=dict)
    relationships: list[TableRelationship] = field(default_factory=list)


def build_table_catalog(rows: Iterable[dict[str, Any]]) -> TableCatalog:
    """Deduplicate concept rows into tables and relationships.

    The canonical label of a table is the normalized label of the first row
    seen for its id. Every input row yields exactly one relationship.
    """
    catalog = TableCatalog()

    for index, row in enumerate(rows):
        missing = [column for column in CONCEPT_COLUMNS if not isinstance(row.get(column), str)]
        if missing:
            raise ValidationError(
                f"Concept row {index} is missing {', '.join(missing)}: {row!r}",
                rule='concept_row',
            )

        table_id = row['CONCEPT_STRING'].strip()
        label = title_case(row['CONCEPT_LABEL'])
        canonical = catalog.tables.setdefault(table_id, label)

        catalog.relationships.append(TableRelationship(
            data_table_id=table_id,
            dataset_id=row['DATASET_STRING'].strip(),
            label=label,
            label_override=label if _fold(label) != _fold(canonical) else None,
        ))

    return catalog


def _chunks(values: list[Any], size: int) -> Iterable[list[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _id_map(session: Session, key_column, values: set[str]) -> dict[str, int]:
    """Map natural keys to primary keys for the rows that exist."""
    model = key_column.class_
    mapping: dict[str, int] = {}
    for chunk in _chunks(sorted(values), LOOKUP_BATCH_SIZE):
        rows = session.execute(select(key_column, model.id).where(key_column.in_(chunk)))
        mapping.update({key: primary_key for key, primary_key in rows})
    return mapping


@register
class DataTablesSource(BaseDataSource):
    """Data tables and their dataset occurrences from the concept file."""

    name = "data_tables"
    description = "Data Table Catalog"

    def extract(self, context: PipelineContext) -> list[dict[str, Any]]:
        path = self.container.get_config().get_data_path() / self.config.get('file', 'concept.csv')
        self.logger.info(f"Reading concept rows from {path}")

        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        return df.to_dict('records')

    def transform(self, raw_data: list[dict[str, Any]], context: PipelineContext) -> TableCatalog:
        catalog = build_table_catalog(raw_data)
        overrides = sum(1 for rel in catalog.relationships if rel.label_override)
        self.logger.info(
            f"Built {len(catalog.tables)} data tables and {len(catalog.relationships)} "
            f"relationships ({overrides} with dataset-specific labels)"
        )
        return catalog

    def load(self, session: Session, data: TableCatalog,
             context: PipelineContext) -> dict[str, int]:
        tables = [
            {'data_table_id': table_id, 'label': label}
            for table_id, label in data.tables.items()
        ]
        tables_inserted = insert_or_skip(session, DataTable, tables, 'data_table_id')

        if not data.relationships:
            self.logger.info("No data_table <-> dataset relationships to insert")
            return {'tables': tables_inserted, 'relationships': 0, 'skipped': 0}

        table_ids = _id_map(session, DataTable.data_table_id,
                            {rel.data_table_id for rel in data.relationships})
        dataset_ids = _id_map(session, Dataset.dataset_id,
                              {rel.dataset_id for rel in data.relationships})

        records = []
        skipped = 0
        for rel in data.relationships:
            table_pk = table_ids.get(rel.data_table_id)
            dataset_pk = dataset_ids.get(rel.dataset_id)
            if table_pk is None or dataset_pk is None:
                missing = 'data_table_id' if table_pk is None else 'dataset_id'
                value = rel.data_table_id if table_pk is None else rel.dataset_id
                self.logger.warning(f"Could not find numeric ID for {missing}: {value}")
                skipped += 1
                continue
            records.append({'data_table_id': table_pk, 'dataset_id': dataset_pk, 'label': rel.label})

        if skipped:
            warnings.warn(
                f"{skipped} data_table <-> dataset relationships reference unknown rows",
                UnresolvedReferenceWarning,
                stacklevel=2,
            )

        self.logger.info(
            f"Processing {len(records)} relationships in batches of {RELATIONSHIP_BATCH_SIZE}"
        )
        inserted = insert_or_skip(
            session, DataTableDataset, records, ['dataset_id', 'data_table_id'],
            batch_size=RELATIONSHIP_BATCH_SIZE,
        )

        self.logger.info(
            f"Inserted {inserted} data_table <-> dataset relationships ({skipped} unresolved)"
        )
        return {'tables': tables_inserted, 'relationships': inserted, 'skipped': skipped}
