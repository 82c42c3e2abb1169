"""Schema bootstrap for the census reference store."""

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine

from core.container import SQLAlchemySessionFactory
from models import Base

logger = logging.getLogger(__name__)

POSTGRES_EXTENSIONS = ('pg_trgm',)


def create_extensions(engine: Engine) -> None:
    """Install the PostgreSQL extensions the search functions rely on."""
    if engine.dialect.name != 'postgresql':
        return

    with engine.begin() as connection:
        for extension in POSTGRES_EXTENSIONS:
            connection.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension}"))


def init_db(session_factory: SQLAlchemySessionFactory | None = None) -> SQLAlchemySessionFactory:
    """Create extensions and all tables, returning the factory used."""
    session_factory = session_factory or SQLAlchemySessionFactory()
    create_extensions(session_factory.engine)
    session_factory.init_tables(Base)
    logger.info("Database tables created successfully")
    return session_factory


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
