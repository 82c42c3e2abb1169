"""Shared fixtures: an in-memory SQLite store and a container wired to it."""

import os
from pathlib import Path
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from core.config import Config
from core.container import Container, SQLAlchemySessionFactory
from database import init_db

# Import sources to register them
import sources.reference
import sources.geography
import sources.catalog

DATA_DIR = Path(__file__).parent.parent / "data"


class FakeHttpClient:
    """Answers GET requests from a callable and records every call."""

    def __init__(self, responder: Callable[[str, dict[str, Any]], Any] | None = None):
        self.responder = responder or (lambda url, params: [])
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def get(self, url: str, params: dict[str, Any] | None = None, timeout: int = 30) -> Any:
        params = dict(params or {})
        self.calls.append((url, params))
        return self.responder(url, params)


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    factory = init_db(SQLAlchemySessionFactory(engine=engine))
    yield factory
    engine.dispose()


@pytest.fixture
def make_container(session_factory):
    def _make(sources: dict[str, Any] | None = None,
              http_client: FakeHttpClient | None = None,
              **global_config: Any) -> Container:
        config = Config.from_dict({
            'global': {'data_path': str(DATA_DIR), **global_config},
            'sources': sources or {},
        })
        container = Container(config)
        container.set_db_session_factory(session_factory)
        container.set_http_client(http_client or FakeHttpClient())
        return container

    return _make


@pytest.fixture
def postgres_factory():
    """Session factory on a real PostgreSQL database (TEST_DATABASE_URL)."""
    database_url = os.getenv('TEST_DATABASE_URL')
    if not database_url:
        pytest.skip("TEST_DATABASE_URL not set")

    from models import Base

    factory = SQLAlchemySessionFactory(database_url)
    Base.metadata.drop_all(factory.engine)
    init_db(factory)
    yield factory
    Base.metadata.drop_all(factory.engine)
    factory.engine.dispose()
