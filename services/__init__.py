from .cache import CacheDuration, CacheRequest, CacheStats, CachedResponse, ResponseCache, cache_key
from .search import SearchService, spherical_distance_km

__all__ = [
    'CacheDuration',
    'CacheRequest',
    'CacheStats',
    'CachedResponse',
    'ResponseCache',
    'SearchService',
    'cache_key',
    'spherical_distance_km',
]
