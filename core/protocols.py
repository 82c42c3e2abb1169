"""Structural types for the dependencies injected into sources and services."""

from typing import Any, ContextManager, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session


class HttpClient(Protocol):
    """Fetches decoded JSON from the Census API.

    One attempt per call; any failure surfaces as ExternalFetchError. An
    empty body (204 No Content) comes back as None.
    """

    def get(self, url: str, params: dict[str, Any] | None = None,
            timeout: int = 30) -> Any:
        ...


class DatabaseSessionFactory(Protocol):
    """Hands out sessions that commit on success and roll back on error."""

    engine: Engine

    def get_session(self) -> ContextManager[Session]:
        ...
