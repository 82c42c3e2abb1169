"""Declarative base and shared column mixins."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware current time used for all timestamp defaults."""
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Adds created_at/updated_at columns maintained on the Python side."""

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
