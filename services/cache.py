"""Content-addressed cache of aggregate query responses.

Entries are keyed by a SHA-256 digest of the query's defining parameters.
Concurrent writers race on the unique digest: the loser of a put() gets
False back and reads the winner's row instead of failing.

Reads do not refresh last_accessed; only touch_if_stale() does, and at most
once an hour per entry. Any LRU-style eviction built on last_accessed has to
call touch_if_stale() on hits.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

import pandas as pd
from sqlalchemy import Text, cast, delete, func, select, text, update
from sqlalchemy.engine import Engine

from core.container import Container, SQLAlchemySessionFactory
from core.exceptions import ConfigurationError
from models import CacheEntry, utcnow
from sources.loading import insert_or_skip

CACHE_KEY_VERSION = 'v1'
STALE_AFTER = timedelta(hours=1)
DURATION_UNITS = ('year', 'month', 'day', 'hour')
OPTIMIZE_TABLES = ('geographies', 'geography_years', 'census_data_cache')


def _canonical_geography(geography_spec: Any) -> Any:
    # JSON text and the equivalent mapping hash the same
    if isinstance(geography_spec, str):
        try:
            return json.loads(geography_spec)
        except ValueError:
            return geography_spec
    return geography_spec


def cache_key(dataset: str, group: str | None, year: int,
              variables: Iterable[str] | None, geography_spec: Any) -> str:
    """Deterministic digest of a query's defining parameters.

    The input is a JSON array, so argument boundaries are unambiguous.
    Variables keep their given order; mapping keys in the geography
    filter are sorted.
    """
    payload = [
        CACHE_KEY_VERSION,
        dataset,
        group,
        int(year),
        list(variables or []),
        _canonical_geography(geography_spec),
    ]
    serialized = json.dumps(payload, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class CacheDuration:
    """A time-to-live such as CacheDuration(1, 'day')."""
    n: int
    unit: str

    def __post_init__(self):
        if isinstance(self.n, bool) or not isinstance(self.n, int) or self.n < 1:
            raise ConfigurationError(f"Cache duration must be a positive integer, got {self.n!r}",
                                     config_key='cache.ttl')
        if self.unit not in DURATION_UNITS:
            raise ConfigurationError(
                f"Cache duration unit must be one of {', '.join(DURATION_UNITS)}, got {self.unit!r}",
                config_key='cache.ttl',
            )

    @classmethod
    def parse(cls, value: str | dict[str, Any]) -> 'CacheDuration':
        """Build from config: '6 months' or {'n': 6, 'unit': 'month'}."""
        if isinstance(value, dict):
            return cls(value.get('n'), value.get('unit'))
        try:
            n, unit = str(value).split()
            return cls(int(n), unit.rstrip('s'))
        except ValueError:
            raise ConfigurationError(f"Invalid cache duration: {value!r}", config_key='cache.ttl')

    def expires_at(self, now: datetime | None = None) -> datetime:
        now = now or utcnow()
        offset = pd.DateOffset(**{f"{self.unit}s": self.n})
        return (pd.Timestamp(now) + offset).to_pydatetime()


@dataclass(frozen=True)
class CacheRequest:
    """Defining parameters of a cached aggregate query."""
    dataset_code: str
    year: int
    variables: tuple[str, ...] = ()
    geography_spec: Any = None
    group: str | None = None

    @property
    def request_hash(self) -> str:
        return cache_key(self.dataset_code, self.group, self.year, self.variables, self.geography_spec)


@dataclass(frozen=True)
class CachedResponse:
    request_hash: str
    response_data: Any
    row_count: int | None
    created_at: datetime
    expires_at: datetime | None
    last_accessed: datetime


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    expired_entries: int
    payload_size: int
    avg_payload_size: float
    most_cached_dataset: str | None


def _to_response(entry: CacheEntry) -> CachedResponse:
    return CachedResponse(
        request_hash=entry.request_hash,
        response_data=entry.response_data,
        row_count=entry.row_count,
        created_at=entry.created_at,
        expires_at=entry.expires_at,
        last_accessed=entry.last_accessed,
    )


class ResponseCache:
    """Response cache backed by the census_data_cache table."""

    def __init__(self, session_factory: SQLAlchemySessionFactory,
                 default_ttl: CacheDuration | None = None,
                 logger: logging.Logger | None = None):
        self.session_factory = session_factory
        self.default_ttl = default_ttl
        self.logger = logger or logging.getLogger('services.cache')

    @classmethod
    def from_container(cls, container: Container) -> 'ResponseCache':
        ttl = container.get_config().get_global_config().get('cache', {}).get('ttl')
        return cls(
            container.get_db_session_factory(),
            default_ttl=CacheDuration.parse(ttl) if ttl else None,
            logger=container.get_logger('services.cache'),
        )

    def get(self, request_hash: str, now: datetime | None = None) -> CachedResponse | None:
        """Return the live entry for a digest, or None. Expired entries are never served."""
        now = now or utcnow()
        with self.session_factory.get_session() as session:
            entry = session.execute(
                select(CacheEntry).where(
                    CacheEntry.request_hash == request_hash,
                    (CacheEntry.expires_at.is_(None)) | (CacheEntry.expires_at >= now),
                )
            ).scalar_one_or_none()
            return _to_response(entry) if entry is not None else None

    def put(self, request: CacheRequest, payload: Any, expires_at: datetime | None = None,
            row_count: int | None = None, now: datetime | None = None) -> bool:
        """Store a response.

        Returns:
            True if stored, False if an entry with the same digest already
            existed (a concurrent writer won; read it instead).
        """
        now = now or utcnow()
        if expires_at is None and self.default_ttl is not None:
            expires_at = self.default_ttl.expires_at(now)
        if row_count is None and isinstance(payload, list):
            row_count = len(payload)

        record = {
            'request_hash': request.request_hash,
            'dataset_code': request.dataset_code,
            'group': request.group,
            'year': int(request.year),
            'variables': list(request.variables),
            'geography_spec': _canonical_geography(request.geography_spec),
            'response_data': payload,
            'row_count': row_count,
            'expires_at': expires_at,
            'created_at': now,
            'last_accessed': now,
        }

        with self.session_factory.get_session() as session:
            inserted = insert_or_skip(session, CacheEntry, [record], 'request_hash')

        if not inserted:
            self.logger.debug(f"Cache entry {record['request_hash'][:12]} already present")
        return inserted == 1

    def get_or_put(self, request: CacheRequest, produce: Callable[[], Any],
                   expires_at: datetime | None = None) -> CachedResponse:
        """Serve a cached response, computing and storing it on a miss."""
        request_hash = request.request_hash
        cached = self.get(request_hash)
        if cached is not None:
            self.touch_if_stale(request_hash)
            return cached

        payload = produce()
        if not self.put(request, payload, expires_at=expires_at):
            self.logger.info(f"Lost cache write race for {request_hash[:12]}; reading stored entry")

        cached = self.get(request_hash)
        if cached is None:
            # Stored entry expired between the write and the read
            now = utcnow()
            return CachedResponse(request_hash, payload, None, now, expires_at, now)
        return cached

    def touch_if_stale(self, request_hash: str, now: datetime | None = None) -> bool:
        """Refresh last_accessed if it is more than an hour old.

        Returns:
            True if the entry was updated.
        """
        now = now or utcnow()
        with self.session_factory.get_session() as session:
            result = session.execute(
                update(CacheEntry)
                .where(
                    CacheEntry.request_hash == request_hash,
                    CacheEntry.last_accessed < now - STALE_AFTER,
                )
                .values(last_accessed=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete entries that expired strictly before now. Never-expiring entries stay."""
        now = now or utcnow()
        with self.session_factory.get_session() as session:
            result = session.execute(
                delete(CacheEntry)
                .where(CacheEntry.expires_at.is_not(None), CacheEntry.expires_at < now)
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount or 0

        self.logger.info(f"Removed {deleted} expired cache entries")
        return deleted

    def stats(self, now: datetime | None = None) -> CacheStats:
        now = now or utcnow()
        with self.session_factory.get_session() as session:
            total, payload_size = session.execute(
                select(
                    func.count(CacheEntry.id),
                    func.coalesce(func.sum(func.length(cast(CacheEntry.response_data, Text))), 0),
                )
            ).one()

            expired = session.execute(
                select(func.count(CacheEntry.id)).where(CacheEntry.expires_at < now)
            ).scalar_one()

            most_cached = session.execute(
                select(CacheEntry.dataset_code)
                .group_by(CacheEntry.dataset_code)
                .order_by(func.count(CacheEntry.id).desc(), CacheEntry.dataset_code)
                .limit(1)
            ).scalar_one_or_none()

        return CacheStats(
            total_entries=total,
            expired_entries=expired,
            payload_size=int(payload_size),
            avg_payload_size=payload_size / total if total else 0.0,
            most_cached_dataset=most_cached,
        )


def optimize_database(engine: Engine, logger: logging.Logger | None = None) -> list[str]:
    """VACUUM ANALYZE the hot tables. PostgreSQL only; returns the tables processed."""
    logger = logger or logging.getLogger('services.cache')
    if engine.dialect.name != 'postgresql':
        logger.info(f"Skipping optimize on {engine.dialect.name}")
        return []

    # VACUUM cannot run inside a transaction block
    with engine.connect().execution_options(isolation_level='AUTOCOMMIT') as connection:
        for table in OPTIMIZE_TABLES:
            connection.execute(text(f"VACUUM ANALYZE {table}"))
            logger.info(f"Optimized {table}")

    return list(OPTIMIZE_TABLES)
