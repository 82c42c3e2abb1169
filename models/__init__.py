from .base import Base, TimestampMixin, utcnow
from .geography import Geography, GeographyYear, SummaryLevel, Year
from .catalog import (
    DATASET_TYPES,
    Component,
    DataTable,
    DataTableDataset,
    Dataset,
    DatasetTopic,
    Program,
    Topic,
)
from .cache import CacheEntry

__all__ = [
    'Base',
    'TimestampMixin',
    'utcnow',
    'Geography',
    'GeographyYear',
    'SummaryLevel',
    'Year',
    'DATASET_TYPES',
    'Program',
    'Component',
    'Dataset',
    'DataTable',
    'DataTableDataset',
    'Topic',
    'DatasetTopic',
    'CacheEntry',
]
