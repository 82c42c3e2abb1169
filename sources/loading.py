"""Idempotent write helpers shared by every data source.

All writes are ``INSERT ... ON CONFLICT DO NOTHING`` so that repeated or
interleaved runs converge on the same rows without locking.
"""

from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from core.exceptions import ConfigurationError
from models import GeographyYear, Year

DEFAULT_BATCH_SIZE = 1000


def _dialect_insert(session: Session, model: Any):
    """Return the dialect-specific insert construct supporting ON CONFLICT."""
    table = getattr(model, '__table__', model)
    dialect = session.get_bind().dialect.name
    if dialect == 'postgresql':
        return postgresql.insert(table)
    if dialect == 'sqlite':
        return sqlite.insert(table)
    raise ConfigurationError(f"Unsupported database dialect for upserts: {dialect}")


def _batches(records: list[dict[str, Any]], batch_size: int) -> Iterable[list[dict[str, Any]]]:
    for start in range(0, len(records), batch_size):
        yield records[start:start + batch_size]


def insert_or_skip(
    session: Session,
    model: Any,
    records: list[dict[str, Any]],
    conflict_column: str | list[str],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Insert records, skipping rows whose conflict key already exists.

    Existing rows are never updated; the first-seen values are retained.

    Args:
        session: Open database session.
        model: Declarative model (or Table) to insert into.
        records: Row dicts sharing the shape of the first record.
        conflict_column: Column (or columns) carrying the unique constraint.
        batch_size: Maximum rows per INSERT statement.

    Returns:
        Number of rows actually inserted.

    Raises:
        ConfigurationError: If the conflict column is absent from the records.
    """
    if not conflict_column:
        raise ConfigurationError("A conflict column is required for insert_or_skip",
                                 config_key='conflict_column')
    if not records:
        return 0

    conflict_columns = [conflict_column] if isinstance(conflict_column, str) else list(conflict_column)
    columns = list(records[0].keys())
    missing = [column for column in conflict_columns if column not in columns]
    if missing:
        raise ConfigurationError(
            f"Conflict column '{', '.join(missing)}' not found in data. "
            f"Available columns: {', '.join(columns)}",
            config_key='conflict_column',
        )

    inserted = 0
    for batch in _batches(records, batch_size):
        statement = _dialect_insert(session, model).values(batch)
        statement = statement.on_conflict_do_nothing(index_elements=conflict_columns)
        result = session.execute(statement)
        inserted += max(result.rowcount or 0, 0)

    return inserted


def create_geography_year(session: Session, geography_id: int, year_id: int) -> bool:
    """Associate a geography with a vintage.

    Returns:
        True if a new row was created, False if the pair already existed.
    """
    statement = _dialect_insert(session, GeographyYear).values(
        geography_id=geography_id, year_id=year_id
    ).on_conflict_do_nothing(index_elements=['geography_id', 'year_id'])
    result = session.execute(statement)
    return bool(result.rowcount)


def get_or_create_year(session: Session, vintage: int | str) -> int:
    """Return the primary key for a vintage, inserting it when missing."""
    try:
        year = int(vintage)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid year value: {vintage}", config_key='year')

    insert_or_skip(session, Year, [{'year': year}], 'year')
    return session.execute(select(Year.id).where(Year.year == year)).scalar_one()


def flagged_import_years(session: Session) -> list[int]:
    """Vintages flagged for geography import, oldest first."""
    return list(session.execute(
        select(Year.year).where(Year.import_geographies.is_(True)).order_by(Year.year)
    ).scalars())
