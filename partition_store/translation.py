"""
Provider error translation.

Maps Azure Cosmos DB failures onto the stable error taxonomy in
``partition_store.exceptions``. Translation classifies, it never drops the
original exception: the provider error is always kept as ``cause``.
"""

from __future__ import annotations

from azure.cosmos.exceptions import (
    CosmosHttpResponseError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)

from .exceptions import (
    ConflictError,
    DataAccessError,
    NotFoundError,
    ServiceError,
    ThrottledError,
)

HTTP_OK = 200
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_ERROR = 500

DEFAULT_MESSAGES = {
    NotFoundError: "Item was unexpectedly not found",
    ConflictError: "Resource with specified id or name already exists",
    ThrottledError: "Request rate is too large",
    ServiceError: "Unexpectedly encountered error calling Cosmos DB",
}


class ErrorTranslator:
    """Stateless classifier for provider exceptions."""

    def status_of(self, exc: BaseException) -> int:
        """Return the HTTP-like status code carried by an exception (500 if none).

        For a classified error the provider status of its cause wins, so that
        dependency records show what the service actually answered.
        """
        if isinstance(exc, DataAccessError):
            if exc.cause is not None and not isinstance(exc.cause, DataAccessError):
                return self.status_of(exc.cause)
            return exc.status_code
        if isinstance(exc, CosmosResourceNotFoundError):
            return HTTP_NOT_FOUND
        if isinstance(exc, CosmosResourceExistsError):
            return HTTP_CONFLICT
        if isinstance(exc, CosmosHttpResponseError) and exc.status_code:
            return int(exc.status_code)
        return HTTP_INTERNAL_ERROR

    def is_throttle(self, exc: BaseException) -> bool:
        return self.status_of(exc) == HTTP_TOO_MANY_REQUESTS

    def classify(self, exc: BaseException) -> type[DataAccessError]:
        """Return the taxonomy type an exception maps to."""
        if isinstance(exc, DataAccessError):
            return type(exc)
        status = self.status_of(exc)
        if status == HTTP_NOT_FOUND:
            return NotFoundError
        if status == HTTP_CONFLICT:
            return ConflictError
        if status == HTTP_TOO_MANY_REQUESTS:
            return ThrottledError
        return ServiceError

    def translate(
        self,
        exc: BaseException,
        message: str | None = None,
        details: dict | None = None,
    ) -> DataAccessError:
        """Translate a provider exception into a taxonomy error.

        Args:
            exc: Exception raised by the provider or a collaborator
            message: Optional message overriding the default for the kind
            details: Extra context attached to the error

        Returns:
            The classified error. Errors that are already classified are
            returned unchanged.
        """
        if isinstance(exc, DataAccessError):
            return exc

        error_type = self.classify(exc)
        text = message or DEFAULT_MESSAGES[error_type]
        context = dict(details or {})
        context["provider_status"] = self.status_of(exc)
        return error_type(text, context, cause=exc)

    def translate_bulk(self, exc: BaseException, operation: str) -> DataAccessError:
        """Translate a failure to submit a bulk call.

        Throttling keeps its own kind; every other submission failure is a
        ServiceError regardless of the provider status.
        """
        if isinstance(exc, DataAccessError):
            return exc
        details = {"operation": operation, "provider_status": self.status_of(exc)}
        if self.is_throttle(exc):
            return ThrottledError("Cosmos DB request limit reached", details, cause=exc)
        return ServiceError(
            f"Unexpectedly failed to bulk {operation} documents", details, cause=exc
        )
