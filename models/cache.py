"""Response cache table."""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index
from sqlalchemy.dialects.postgresql import ARRAY, JSONB

from .base import Base, utcnow

# Native array/JSONB on PostgreSQL, plain JSON everywhere else
TextArray = JSON().with_variant(ARRAY(Text), 'postgresql')
JsonDocument = JSON().with_variant(JSONB(), 'postgresql')


class CacheEntry(Base):
    """Content-addressed result of a previously computed aggregate query.

    Entries whose expires_at has passed are never served and are reclaimed
    by ResponseCache.cleanup_expired(). A null expires_at never expires.
    """
    __tablename__ = 'census_data_cache'

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_hash = Column(String(64), nullable=False, unique=True)

    # Defining parameters, kept for observability
    dataset_code = Column(String(100), nullable=False)
    group = Column(String(50))
    year = Column(Integer, nullable=False)
    variables = Column(TextArray)
    geography_spec = Column(JsonDocument, nullable=False)

    # Payload
    response_data = Column(JsonDocument, nullable=False)
    row_count = Column(Integer)

    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_accessed = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_census_data_cache_expires', 'expires_at'),
        Index('idx_census_data_cache_accessed', 'last_accessed'),
        Index('idx_census_data_cache_dataset_year', 'dataset_code', 'year'),
    )

    def __repr__(self):
        return f"<CacheEntry({self.request_hash[:12]} {self.dataset_code}/{self.year}: {self.row_count} rows)>"
