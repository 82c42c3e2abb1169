from .base import FetchPlan, GeographyContext, GeographySource
from .fields import GEOGRAPHY_TYPES, transform_geography_rows
from .hierarchy import backfill_parent_links
from .importers import IMPORT_ORDER

__all__ = [
    'FetchPlan',
    'GeographyContext',
    'GeographySource',
    'GEOGRAPHY_TYPES',
    'IMPORT_ORDER',
    'backfill_parent_links',
    'transform_geography_rows',
]
