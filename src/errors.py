"""Error taxonomy shared by the API, the service layer and the job worker."""

from __future__ import annotations

from typing import Any


class CatalogError(Exception):
    """Base class for application errors."""


class ValidationError(CatalogError):
    """Bad client input, reported as a 422 with field-level messages."""

    def __init__(self, message: str, *, field: str | None = None, location: str = "body") -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.location = location

    def errors(self) -> list[dict[str, Any]]:
        loc = [self.location] if self.field is None else [self.location, self.field]
        return [{"loc": loc, "msg": self.message, "type": "value_error"}]


class InvalidSortFieldError(ValidationError):
    def __init__(self, sort_by: str, allowed: tuple[str, ...]) -> None:
        super().__init__(
            f"Invalid sort field. Allowed fields are: {', '.join(allowed)}",
            field="sortBy",
            location="query",
        )
        self.sort_by = sort_by
        self.allowed = allowed


class NotFoundError(CatalogError):
    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class PersistenceError(CatalogError):
    """A database operation failed; surfaced as an internal error."""


class ImageStoreError(CatalogError):
    """Raised when the image host returns an error response."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body[:500] if body else None  # Trim body for logging
        super().__init__(message)


class JobExecutionError(CatalogError):
    """One attempt of a background job failed; the queue decides whether to retry."""

    def __init__(self, job_id: int, attempt: int, cause: BaseException) -> None:
        super().__init__(f"job {job_id} attempt {attempt} failed: {cause}")
        self.job_id = job_id
        self.attempt = attempt
        self.cause = cause
