from .data_tables import TableCatalog, TableRelationship, build_table_catalog, title_case
from .datasets import determine_dataset_type, parse_temporal_range
from .programs import transform_components, transform_programs
from .topics import parse_topic_list, transform_topics

__all__ = [
    'TableCatalog',
    'TableRelationship',
    'build_table_catalog',
    'determine_dataset_type',
    'parse_temporal_range',
    'parse_topic_list',
    'title_case',
    'transform_components',
    'transform_programs',
    'transform_topics',
]
