"""Topic taxonomy and the datasets filed under each topic.

Topics come from a curated JSON seed and nest through ``parent_topic_string``;
parent ids are linked after the insert. Dataset assignments come from a CSV
with one row per dataset and a comma separated list of topic strings.
"""

import re
import warnings
from typing import Any

import pandas as pd
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, aliased

from core.exceptions import UnresolvedReferenceWarning, ValidationError
from models import Dataset, DatasetTopic, Topic

from ..base import BaseDataSource, PipelineContext
from ..loading import insert_or_skip
from ..reference import JsonSeedSource
from ..registry import register

TOPIC_STRING = re.compile(r'^[A-Za-z0-9]+(_[A-Za-z0-9]+)*$')

TOPIC_MAPPINGS = {
    'TOPIC_STRING': 'topic_string',
    'TOPIC_LABEL': 'name',
    'PARENT_TOPIC_STRING': 'parent_topic_string',
    'DESCRIPTION': 'description',
}


def transform_topics(raw_topics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Validate raw topic entries and map them to topic columns.

    Raises:
        ValidationError: If an entry lacks a field or a topic string is not
            underscore separated alphanumerics.
    """
    records = []
    for index, item in enumerate(raw_topics):
        missing = [key for key in ('TOPIC_STRING', 'TOPIC_LABEL', 'DESCRIPTION')
                   if not isinstance(item.get(key), str)]
        if missing:
            raise ValidationError(f"Topic {index} is missing {', '.join(missing)}",
                                  rule='required_fields')

        for key in ('TOPIC_STRING', 'PARENT_TOPIC_STRING'):
            value = item.get(key)
            if value is not None and not TOPIC_STRING.match(str(value)):
                raise ValidationError(f"Topic {index}: invalid {key.lower()} '{value}'",
                                      rule='topic_string')

        record = {column: item.get(key) for key, column in TOPIC_MAPPINGS.items()}
        records.append(record)
    return records


def parse_topic_list(value: str | None) -> list[str]:
    return [topic.strip() for topic in (value or '').split(',') if topic.strip()]


@register
class TopicsSource(JsonSeedSource):
    """Topics and their parent topics."""

    name = "topics"
    description = "Topic Taxonomy"
    file_name = "topics.json"
    data_key = "topics"

    def transform(self, raw_data: list[dict[str, Any]], context: PipelineContext) -> list[dict[str, Any]]:
        records = transform_topics(raw_data)
        self.logger.info(f"Validation passed for {len(records)} topics")
        return records

    def load(self, session: Session, data: list[dict[str, Any]],
             context: PipelineContext) -> dict[str, int]:
        inserted = insert_or_skip(session, Topic, data, 'topic_string')
        return {'inserted': inserted, 'total': len(data)}

    def post_process(self, session: Session, context: PipelineContext) -> dict[str, int]:
        parent = aliased(Topic, name='parent')
        parent_id = (
            select(parent.id)
            .where(parent.topic_string == Topic.parent_topic_string)
            .correlate(Topic)
            .scalar_subquery()
        )
        session.execute(
            update(Topic)
            .where(Topic.parent_topic_string.is_not(None))
            .values(parent_topic_id=parent_id)
            .execution_options(synchronize_session=False)
        )

        with_parent, should_have_parent = session.execute(
            select(func.count(Topic.parent_topic_id), func.count(Topic.parent_topic_string))
        ).one()
        if with_parent != should_have_parent:
            orphans = session.execute(
                select(Topic.topic_string, Topic.parent_topic_string).where(
                    Topic.parent_topic_string.is_not(None),
                    Topic.parent_topic_id.is_(None),
                )
            ).all()
            self.logger.warning(f"Orphaned topics: {[tuple(row) for row in orphans]}")

        return {'linked': with_parent}


@register
class DatasetTopicsSource(BaseDataSource):
    """Dataset to topic assignments; datasets and topics must be loaded first."""

    name = "dataset_topics"
    description = "Dataset Topics"

    def extract(self, context: PipelineContext) -> list[dict[str, Any]]:
        path = self.container.get_config().get_data_path() / self.config.get(
            'file', 'dataset_topics.csv'
        )
        self.logger.info(f"Reading dataset topics from {path}")
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        return df.to_dict('records')

    def transform(self, raw_data: list[dict[str, Any]], context: PipelineContext) -> list[tuple[str, list[str]]]:
        assignments = []
        for row in raw_data:
            dataset_id = (row.get('DATASET_STRING') or '').strip()
            topics = parse_topic_list(row.get('TOPIC_STRINGS'))
            if not dataset_id or not topics:
                self.logger.warning(f"No topics found for dataset: {dataset_id or row!r}, skipping")
                continue
            assignments.append((dataset_id, topics))

        self.logger.info(f"Seeding dataset-topic relationships from {len(assignments)} datasets")
        return assignments

    def load(self, session: Session, data: list[tuple[str, list[str]]],
             context: PipelineContext) -> dict[str, int]:
        dataset_ids = dict(session.execute(select(Dataset.dataset_id, Dataset.id)).tuples().all())
        topic_ids = dict(session.execute(select(Topic.topic_string, Topic.id)).tuples().all())

        records = []
        datasets_skipped = topics_skipped = 0
        for dataset_id, topics in data:
            dataset_pk = dataset_ids.get(dataset_id)
            if dataset_pk is None:
                self.logger.warning(f"Dataset not found: {dataset_id}, skipping")
                datasets_skipped += 1
                continue

            for topic in topics:
                topic_pk = topic_ids.get(topic)
                if topic_pk is None:
                    self.logger.warning(f"Topic {topic!r} not found for dataset {dataset_id}, skipping")
                    topics_skipped += 1
                    continue
                records.append({'dataset_id': dataset_pk, 'topic_id': topic_pk})

        if datasets_skipped or topics_skipped:
            warnings.warn(
                f"{datasets_skipped} datasets and {topics_skipped} topics in dataset topic "
                f"assignments reference unknown rows",
                UnresolvedReferenceWarning,
                stacklevel=2,
            )

        inserted = insert_or_skip(session, DatasetTopic, records, ['dataset_id', 'topic_id'])
        self.logger.info(
            f"Dataset-topic relationships seeded: {inserted} inserted, "
            f"{datasets_skipped} datasets skipped, {topics_skipped} topics skipped"
        )
        return {
            'inserted': inserted,
            'total': len(records),
            'datasets_skipped': datasets_skipped,
            'topics_skipped': topics_skipped,
        }
