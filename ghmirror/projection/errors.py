"""Projection store error types."""

from __future__ import annotations


class TimezoneAwareRequiredError(ValueError):
    """Raised when a datetime bound to the store lacks timezone information."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error indicating a bound column value was naive."""
        return cls("projection datetime values")


class RepositoryNotFoundError(LookupError):
    """Raised when a repository id is not present in the projection store."""

    def __init__(self, repository_id: int) -> None:
        """Record the missing repository id."""
        self.repository_id = repository_id
        super().__init__(f"repository {repository_id} is not connected")


class WriteTimeoutError(TimeoutError):
    """Raised when a projection write exceeds its time bound."""

    @classmethod
    def for_kind(cls, kind: str, timeout_s: float) -> WriteTimeoutError:
        """Return an error naming the entity kind that timed out."""
        return cls(f"projection write for {kind} exceeded {timeout_s:g}s")
