from .config import Config
from .container import Container
from .exceptions import (
    CensusStoreError,
    ConfigurationError,
    ExternalFetchError,
    UnresolvedReferenceWarning,
    ValidationError,
)
from .protocols import DatabaseSessionFactory, HttpClient

__all__ = [
    'Config',
    'Container',
    'HttpClient',
    'DatabaseSessionFactory',
    'CensusStoreError',
    'ConfigurationError',
    'ExternalFetchError',
    'UnresolvedReferenceWarning',
    'ValidationError',
]
