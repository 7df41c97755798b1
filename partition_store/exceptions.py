"""
Custom exceptions for partition-scoped data access.

Every failure surfaced by the store is one of these types, each carrying an
HTTP-like status code and the original provider exception as its cause.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ErrorRecord:
    """Flat, loggable view of a classified failure."""

    kind: str
    http_status: int
    message: str
    cause: BaseException | None = None


class DataAccessError(Exception):
    """Base exception for all data access errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause
        if cause is not None:
            self.details.setdefault("cause", str(cause))

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_record(self) -> ErrorRecord:
        """Return the error as an ErrorRecord."""
        return ErrorRecord(
            kind=self.kind,
            http_status=self.status_code,
            message=self.message,
            cause=self.cause,
        )


class ValidationError(DataAccessError):
    """Raised when caller input is rejected before reaching the provider."""

    status_code = 400

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class NotFoundError(DataAccessError):
    """Raised when the addressed item or resource does not exist."""

    status_code = 404


class PartitionNotFoundError(NotFoundError):
    """Raised when the partition directory has no entry for a partition."""

    def __init__(self, partition_id: str):
        super().__init__(
            f"Partition not found: {partition_id}", {"partition_id": partition_id}
        )
        self.partition_id = partition_id


class ConflictError(DataAccessError):
    """Raised when an item with the same id already exists."""

    status_code = 409


class ThrottledError(DataAccessError):
    """Raised when the provider rejects a request for exceeding its rate limit."""

    status_code = 429


class ServiceError(DataAccessError):
    """Raised for provider failures that have no more specific classification."""

    status_code = 500

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        cause: BaseException | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, details, cause)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(DataAccessError):
    """Raised when settings are missing or invalid.

    Note: raised at startup, never from a data operation.
    """

    def __init__(self, setting: str, reason: str):
        super().__init__(
            f"Invalid configuration for {setting}: {reason}",
            {"setting": setting, "reason": reason},
        )
        self.setting = setting
        self.reason = reason
