"""Survey taxonomy: programs, components, datasets, data tables and topics."""

from sqlalchemy import (
    Column, Integer, String, Text, Date, ForeignKey,
    Index, UniqueConstraint, CheckConstraint
)

from .base import Base, TimestampMixin

DATASET_TYPES = ('aggregate', 'microdata', 'timeseries')


class Program(Base, TimestampMixin):
    """Top-level survey program (ACS, DEC, ...)."""
    __tablename__ = 'programs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    acronym = Column(String(15), nullable=False, unique=True)
    label = Column(String(75), nullable=False)
    description = Column(Text)

    def __repr__(self):
        return f"<Program({self.acronym}: {self.label})>"


class Component(Base, TimestampMixin):
    """A product line of a program, e.g. ACS 1-Year Estimates."""
    __tablename__ = 'components'

    id = Column(Integer, primary_key=True, autoincrement=True)
    component_id = Column(String(60), nullable=False, unique=True)
    label = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    api_endpoint = Column(String(60), nullable=False, unique=True)   # acs/acs1
    program_id = Column(Integer, ForeignKey('programs.id', ondelete='CASCADE'),
                        nullable=False, index=True)

    def __repr__(self):
        return f"<Component({self.component_id}: {self.api_endpoint})>"


class Dataset(Base, TimestampMixin):
    """A specific dataset vintage exposed by the Census API."""
    __tablename__ = 'datasets'

    id = Column(Integer, primary_key=True, autoincrement=True)
    dataset_id = Column(String(255), nullable=False, unique=True)    # ACSDT1Y2022
    dataset_param = Column(String(255))                              # acs/acs1
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(30), nullable=False)
    temporal_start = Column(Date)
    temporal_end = Column(Date)
    year_id = Column(Integer, ForeignKey('years.id', ondelete='CASCADE'), index=True)
    component_id = Column(Integer, ForeignKey('components.id', ondelete='CASCADE'), index=True)

    __table_args__ = (
        CheckConstraint(
            "type IN ('aggregate', 'microdata', 'timeseries')", name='datasets_type_check'
        ),
        CheckConstraint(
            'temporal_start IS NULL OR temporal_end IS NULL OR temporal_start <= temporal_end',
            name='valid_temporal_range',
        ),
        Index('idx_datasets_type', 'type'),
    )

    def __repr__(self):
        return f"<Dataset({self.dataset_id}: {self.type})>"


class DataTable(Base, TimestampMixin):
    """Canonical census variable table (B01001, S1701, ...)."""
    __tablename__ = 'data_tables'

    id = Column(Integer, primary_key=True, autoincrement=True)
    data_table_id = Column(String(20), nullable=False, unique=True)
    label = Column(Text, nullable=False)

    __table_args__ = (
        Index(
            'idx_data_tables_label_trgm', 'label',
            postgresql_using='gin', postgresql_ops={'label': 'gin_trgm_ops'},
        ),
    )

    def __repr__(self):
        return f"<DataTable({self.data_table_id}: {self.label})>"


class DataTableDataset(Base, TimestampMixin):
    """Occurrence of a data table within a dataset, with its label there."""
    __tablename__ = 'data_table_datasets'

    id = Column(Integer, primary_key=True, autoincrement=True)
    data_table_id = Column(Integer, ForeignKey('data_tables.id', ondelete='CASCADE'),
                           nullable=False, index=True)
    dataset_id = Column(Integer, ForeignKey('datasets.id', ondelete='CASCADE'),
                        nullable=False)
    label = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint('dataset_id', 'data_table_id', name='data_table_datasets_unique'),
        Index(
            'idx_dtd_label_trgm', 'label',
            postgresql_using='gin', postgresql_ops={'label': 'gin_trgm_ops'},
        ),
    )

    def __repr__(self):
        return f"<DataTableDataset(table={self.data_table_id}, dataset={self.dataset_id})>"


class Topic(Base, TimestampMixin):
    """Subject area in the topic taxonomy; topics nest under a parent topic."""
    __tablename__ = 'topics'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    topic_string = Column(String(255), nullable=False, unique=True)     # AGE_AND_SEX
    parent_topic_string = Column(String(255))
    description = Column(Text, nullable=False)
    parent_topic_id = Column(Integer, ForeignKey('topics.id', ondelete='SET NULL'), index=True)

    def __repr__(self):
        return f"<Topic({self.topic_string}: {self.name})>"


class DatasetTopic(Base, TimestampMixin):
    """Assignment of a dataset to a topic."""
    __tablename__ = 'dataset_topics'

    id = Column(Integer, primary_key=True, autoincrement=True)
    dataset_id = Column(Integer, ForeignKey('datasets.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    topic_id = Column(Integer, ForeignKey('topics.id', ondelete='CASCADE'),
                      nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('dataset_id', 'topic_id', name='dataset_topics_unique'),
    )

    def __repr__(self):
        return f"<DatasetTopic(dataset={self.dataset_id}, topic={self.topic_id})>"
