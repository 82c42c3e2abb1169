from .base import BaseDataSource, PipelineContext
from .registry import SourceRegistry, get_registry

__all__ = ['BaseDataSource', 'PipelineContext', 'SourceRegistry', 'get_registry']
