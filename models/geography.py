"""Geography reference tables: geographies, summary levels and vintages."""

from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, ForeignKey,
    Index, UniqueConstraint, CheckConstraint
)

from .base import Base, TimestampMixin


class SummaryLevel(Base, TimestampMixin):
    """Granularity tier of a geography (nation, state, county, ...).

    parent_summary_level holds the parent's code as it appears in the seed
    file; parent_summary_level_id is resolved from it after loading.
    """
    __tablename__ = 'summary_levels'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    get_variable = Column(String(20), nullable=False)
    query_name = Column(String(255), nullable=False, unique=True)
    on_spine = Column(Boolean, nullable=False)
    code = Column(String(3), nullable=False, unique=True)
    parent_summary_level = Column(String(3))
    parent_summary_level_id = Column(Integer, ForeignKey('summary_levels.id'), index=True)
    hierarchy_level = Column(Integer, nullable=False, default=99)

    __table_args__ = (
        Index(
            'idx_summary_levels_name_trgm', 'name',
            postgresql_using='gin', postgresql_ops={'name': 'gin_trgm_ops'},
        ),
    )

    def __repr__(self):
        return f"<SummaryLevel({self.code}: {self.name})>"


class Year(Base, TimestampMixin):
    """Data vintage."""
    __tablename__ = 'years'

    id = Column(Integer, primary_key=True, autoincrement=True)
    year = Column(Integer, nullable=False, unique=True)
    import_geographies = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint('year >= 1776', name='valid_year'),
    )

    def __repr__(self):
        return f"<Year({self.year})>"


class Geography(Base, TimestampMixin):
    """A single geographic entity identified by its UCGID."""
    __tablename__ = 'geographies'

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Display information
    name = Column(String(255), nullable=False)
    full_name = Column(String(500))                 # Alternate name used by search

    # Identifiers
    ucgid_code = Column(String(25), nullable=False, unique=True)   # 0500000US06037
    summary_level_code = Column(String(3), nullable=False)         # 050
    year = Column(Integer)

    # Containment codes
    region_code = Column(String(1))
    division_code = Column(String(1))
    state_code = Column(String(2))
    county_code = Column(String(3))
    place_code = Column(String(5))
    county_subdivision_code = Column(String(5))
    zip_code_tabulation_area = Column(String(5))

    # Location
    latitude = Column(Float)
    longitude = Column(Float)
    population = Column(Integer)

    # API geography restriction fragments, e.g. for=county:037 in=state:06
    for_param = Column(String(100), nullable=False)
    in_param = Column(String(100))

    # Hierarchy
    parent_geography_id = Column(Integer, ForeignKey('geographies.id'), index=True)

    __table_args__ = (
        UniqueConstraint('summary_level_code', 'year', 'ucgid_code',
                         name='uq_geographies_level_year_ucgid'),
        Index('idx_geographies_summary_level', 'summary_level_code'),
        Index('idx_geographies_state_county', 'state_code', 'county_code'),
        Index('idx_geographies_region', 'region_code'),
        Index('idx_geographies_division', 'division_code'),
        Index('idx_geographies_lat_lon', 'latitude', 'longitude'),
        Index(
            'idx_geographies_name_trgm', 'name',
            postgresql_using='gin', postgresql_ops={'name': 'gin_trgm_ops'},
        ),
    )

    def __repr__(self):
        return f"<Geography({self.summary_level_code}/{self.ucgid_code}: {self.name})>"


class GeographyYear(Base, TimestampMixin):
    """Associates a geography with a data vintage."""
    __tablename__ = 'geography_years'

    id = Column(Integer, primary_key=True, autoincrement=True)
    geography_id = Column(Integer, ForeignKey('geographies.id', ondelete='CASCADE'),
                          nullable=False, index=True)
    year_id = Column(Integer, ForeignKey('years.id', ondelete='CASCADE'),
                     nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('geography_id', 'year_id', name='uq_geography_years'),
    )

    def __repr__(self):
        return f"<GeographyYear(geography={self.geography_id}, year={self.year_id})>"
