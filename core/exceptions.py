"""Error taxonomy for import, catalog and cache operations."""

from typing import Any


class CensusStoreError(Exception):
    """Base exception for all census reference store errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ValidationError(CensusStoreError):
    """Raised when source data is malformed or incomplete.

    Fatal to the current import batch; nothing from the batch is persisted.
    """

    def __init__(
        self,
        message: str,
        geography_type: str | None = None,
        rule: str | None = None,
    ):
        super().__init__(
            message, "VALIDATION_ERROR", {"geography_type": geography_type, "rule": rule}
        )
        self.geography_type = geography_type
        self.rule = rule


class ConfigurationError(CensusStoreError):
    """Raised when a required parameter is absent, before any database work."""

    def __init__(self, message: str, config_key: str | None = None):
        super().__init__(message, "CONFIGURATION_ERROR", {"config_key": config_key})
        self.config_key = config_key


class ExternalFetchError(CensusStoreError):
    """Raised when the upstream Census API request fails."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(
            message, "EXTERNAL_FETCH_ERROR", {"url": url, "status_code": status_code}
        )
        self.url = url
        self.status_code = status_code


class UnresolvedReferenceWarning(UserWarning):
    """A relationship row references a table or dataset that does not exist.

    Emitted once per catalog load that skipped relationships; each
    offending relationship is also logged and never inserted.
    """
