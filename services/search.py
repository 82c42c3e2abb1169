"""Read-only ranked search over geographies, summary levels and the table catalog.

Trigram similarity and full text search need PostgreSQL with pg_trgm.
Every method opens its own session and writes nothing.
"""

import logging
import math
from typing import Any

from sqlalchemy import Float, case, cast, func, or_, select
from sqlalchemy.orm import Session

from core.container import Container, SQLAlchemySessionFactory
from models import DataTable, DataTableDataset, Dataset, Geography, SummaryLevel, Year

EARTH_RADIUS_KM = 6371.0
MAX_COORDINATE_RESULTS = 10
DEFAULT_SIMILARITY_THRESHOLD = 0.3
TEXT_SEARCH_CONFIG = 'english'


def spherical_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance by the spherical law of cosines.

    An approximation on a sphere of radius 6371 km, not a geodesic distance.
    The cosine is clamped to [-1, 1] so rounding never leaves acos' domain.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    delta = math.radians(lon2) - math.radians(lon1)
    cosine = math.cos(phi1) * math.cos(phi2) * math.cos(delta) + math.sin(phi1) * math.sin(phi2)
    return EARTH_RADIUS_KM * math.acos(max(-1.0, min(1.0, cosine)))


def _distance_expression(lat: float, lon: float):
    """SQL counterpart of spherical_distance_km against Geography's coordinates."""
    cosine = (
        func.cos(func.radians(lat)) * func.cos(func.radians(Geography.latitude))
        * func.cos(func.radians(Geography.longitude) - func.radians(lon))
        + func.sin(func.radians(lat)) * func.sin(func.radians(Geography.latitude))
    )
    return EARTH_RADIUS_KM * func.acos(func.greatest(-1.0, func.least(1.0, cosine)))


def _contains(column, term: str):
    return column.ilike(f"%{term}%")


def _rows(session: Session, statement) -> list[dict[str, Any]]:
    return [dict(row._mapping) for row in session.execute(statement)]


class SearchService:
    """Ranked lookups used by the query-serving layer."""

    def __init__(self, session_factory: SQLAlchemySessionFactory,
                 logger: logging.Logger | None = None):
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger('services.search')

    @classmethod
    def from_container(cls, container: Container) -> 'SearchService':
        return cls(container.get_db_session_factory(), container.get_logger('services.search'))

    def search_places(self, term: str, state_filter: str | None = None,
                      type_filter: list[str] | None = None, limit: int = 10) -> list[dict[str, Any]]:
        """Full text search on name plus alternate name.

        Ranked by ts_rank, then population (unknown population last).
        ``type_filter`` holds summary level codes.
        """
        document = func.to_tsvector(
            TEXT_SEARCH_CONFIG, Geography.name + ' ' + func.coalesce(Geography.full_name, '')
        )
        query = func.plainto_tsquery(TEXT_SEARCH_CONFIG, term)
        rank = func.ts_rank(document, query)

        statement = (
            select(
                Geography.id, Geography.name, Geography.full_name,
                Geography.summary_level_code, Geography.state_code, Geography.ucgid_code,
                Geography.latitude, Geography.longitude, Geography.population,
                rank.label('rank'),
            )
            .where(document.op('@@')(query))
            .order_by(rank.desc(), Geography.population.desc().nulls_last())
            .limit(limit)
        )
        if state_filter:
            statement = statement.where(Geography.state_code == state_filter)
        if type_filter:
            statement = statement.where(Geography.summary_level_code.in_(type_filter))

        with self.session_factory.get_session() as session:
            return _rows(session, statement)

    def fuzzy_search_places(self, term: str,
                            similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
                            limit: int = 10) -> list[dict[str, Any]]:
        """Trigram match on name or alternate name, for misspelled or partial input."""
        name_similarity = func.similarity(Geography.name, term)
        full_name_similarity = func.similarity(func.coalesce(Geography.full_name, ''), term)

        statement = (
            select(
                Geography.id, Geography.name, Geography.full_name,
                Geography.summary_level_code, Geography.state_code, Geography.population,
                name_similarity.label('similarity_score'),
            )
            .where(or_(name_similarity > similarity_threshold,
                       full_name_similarity > similarity_threshold))
            .order_by(name_similarity.desc(), Geography.population.desc().nulls_last())
            .limit(limit)
        )

        with self.session_factory.get_session() as session:
            return _rows(session, statement)

    def resolve_by_coordinates(self, latitude: float, longitude: float,
                               max_distance_km: float = 50.0) -> list[dict[str, Any]]:
        """Geographies within max_distance_km of a point, nearest first (at most 10)."""
        distance = _distance_expression(latitude, longitude).label('distance_km')
        candidates = (
            select(
                Geography.id, Geography.name, Geography.summary_level_code,
                Geography.state_code, Geography.ucgid_code, distance,
            )
            .where(Geography.latitude.is_not(None), Geography.longitude.is_not(None))
            .subquery()
        )
        statement = (
            select(candidates)
            .where(candidates.c.distance_km <= max_distance_km)
            .order_by(candidates.c.distance_km)
            .limit(MAX_COORDINATE_RESULTS)
        )

        with self.session_factory.get_session() as session:
            return _rows(session, statement)

    def search_geographies(self, term: str, limit: int = 10) -> list[dict[str, Any]]:
        """Unscoped geography search boosted toward common summary levels."""
        similarity = func.similarity(Geography.name, term)
        boost = 1.0 - cast(func.coalesce(SummaryLevel.hierarchy_level, 99), Float) / 100.0
        weighted_score = (similarity + boost).label('weighted_score')

        statement = (
            select(
                Geography.id, Geography.name,
                SummaryLevel.name.label('summary_level_name'),
                Geography.latitude, Geography.longitude,
                Geography.for_param, Geography.in_param,
                weighted_score,
            )
            .outerjoin(SummaryLevel, Geography.summary_level_code == SummaryLevel.code)
            .where(or_(similarity > DEFAULT_SIMILARITY_THRESHOLD, _contains(Geography.name, term)))
            .order_by(weighted_score.desc(), func.length(Geography.name), Geography.name)
            .limit(limit)
        )

        with self.session_factory.get_session() as session:
            return _rows(session, statement)

    def search_geographies_by_summary_level(self, term: str, summary_level_code: str,
                                            limit: int = 10) -> list[dict[str, Any]]:
        """Geographies of one summary level matching by trigram or substring.

        Ordered by similarity, then shorter names, then name.
        """
        similarity = func.similarity(Geography.name, term)

        statement = (
            select(
                Geography.id, Geography.name,
                SummaryLevel.name.label('summary_level_name'),
                Geography.latitude, Geography.longitude,
                Geography.for_param, Geography.in_param,
                similarity.label('similarity'),
            )
            .outerjoin(SummaryLevel, Geography.summary_level_code == SummaryLevel.code)
            .where(
                Geography.summary_level_code == summary_level_code,
                or_(similarity > DEFAULT_SIMILARITY_THRESHOLD, _contains(Geography.name, term)),
            )
            .order_by(similarity.desc(), func.length(Geography.name), Geography.name)
            .limit(limit)
        )

        with self.session_factory.get_session() as session:
            return _rows(session, statement)

    def search_summary_levels(self, term: str, limit: int = 1) -> list[dict[str, Any]]:
        """Summary level by code ('50' -> '050'), exact name, or fuzzy name."""
        term = term.strip()
        padded = term.zfill(3)
        name = func.lower(SummaryLevel.name)
        similarity = func.similarity(name, term.lower())

        exact_code = SummaryLevel.code == padded
        exact_name = name == term.lower()

        statement = (
            select(SummaryLevel.code, SummaryLevel.name)
            .where(or_(exact_code, exact_name, similarity > DEFAULT_SIMILARITY_THRESHOLD))
            .order_by(
                case((or_(exact_code, exact_name), 1.0), else_=similarity).desc(),
                case((exact_code, 1), (exact_name, 2), else_=3),
            )
            .limit(limit)
        )

        with self.session_factory.get_session() as session:
            return _rows(session, statement)

    def search_data_tables(self, data_table_id: str | None = None, label_query: str | None = None,
                           dataset_id: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        """Data tables with the datasets/years they appear in.

        Label queries match the canonical label, or the dataset-specific label
        when scoped to a dataset. Each table carries a ``datasets`` list
        ordered by year; an entry has a ``label`` only when its label differs
        from the canonical one (ignoring case and surrounding whitespace).
        Results are ranked by similarity when a label query is given, else by
        table id.

        Raises:
            ValueError: If no search parameter is given.
        """
        if not (data_table_id or label_query or dataset_id):
            raise ValueError(
                "At least one search parameter must be provided: "
                "data_table_id, label_query, or dataset_id."
            )

        conditions = []
        if data_table_id:
            # Wildcards in the id are literal characters
            conditions.append(DataTable.data_table_id.istartswith(data_table_id, autoescape=True))
        if dataset_id:
            conditions.append(Dataset.dataset_id == dataset_id)

        if label_query and dataset_id:
            label_similarity = func.similarity(DataTableDataset.label, label_query)
            conditions.append(label_similarity > DEFAULT_SIMILARITY_THRESHOLD)
            score = func.max(label_similarity)
        elif label_query:
            label_similarity = func.similarity(DataTable.label, label_query)
            conditions.append(label_similarity > DEFAULT_SIMILARITY_THRESHOLD)
            score = label_similarity
        else:
            score = None

        joined = (
            select(DataTable.id, DataTable.data_table_id, DataTable.label)
            .join(DataTableDataset, DataTableDataset.data_table_id == DataTable.id)
            .join(Dataset, Dataset.id == DataTableDataset.dataset_id)
            .where(*conditions)
            .group_by(DataTable.id, DataTable.data_table_id, DataTable.label)
        )
        ordering = [DataTable.data_table_id]
        if score is not None:
            ordering.insert(0, score.desc())
        tables_statement = joined.order_by(*ordering).limit(limit)

        with self.session_factory.get_session() as session:
            tables = session.execute(tables_statement).all()
            if not tables:
                return []

            occurrences = session.execute(
                select(
                    DataTableDataset.data_table_id.label('table_pk'),
                    Dataset.dataset_id,
                    Year.year,
                    DataTableDataset.label,
                )
                .join(Dataset, Dataset.id == DataTableDataset.dataset_id)
                .outerjoin(Year, Year.id == Dataset.year_id)
                .join(DataTable, DataTable.id == DataTableDataset.data_table_id)
                .where(
                    DataTableDataset.data_table_id.in_([table.id for table in tables]),
                    *conditions,
                )
            ).all()

        grouped: dict[int, list[dict[str, Any]]] = {table.id: [] for table in tables}
        labels = {table.id: table.label for table in tables}
        for row in sorted(occurrences, key=lambda r: (r.year is None, r.year or 0, r.dataset_id)):
            entry: dict[str, Any] = {'dataset_id': row.dataset_id, 'year': row.year}
            if row.label.strip().lower() != labels[row.table_pk].strip().lower():
                entry['label'] = row.label
            grouped[row.table_pk].append(entry)

        return [
            {'data_table_id': table.data_table_id, 'label': table.label, 'datasets': grouped[table.id]}
            for table in tables
        ]
