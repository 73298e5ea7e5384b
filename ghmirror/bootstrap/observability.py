"""Structured lifecycle events and error categories for bootstrap runs.

Usage
-----
>>> events = BootstrapEventLogger()
>>> events.log_run_started(repo_slug="octo/reef", lock_key="repo-bootstrap:1:2")

"""

from __future__ import annotations

import enum
import typing as typ

import httpx
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from ghmirror.github.errors import GitHubAPIError, GitHubAuthError, GitHubConfigError
from ghmirror.logging import get_logger, log_error, log_info, log_warning
from ghmirror.projection.errors import RepositoryNotFoundError, WriteTimeoutError

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)

_HTTP_SERVER_ERROR_THRESHOLD = 500
_HTTP_UNAUTHORIZED = 401


class BootstrapEventType(enum.StrEnum):
    """Structured log event types for bootstrap runs."""

    RUN_STARTED = "bootstrap.run.started"
    RUN_COMPLETED = "bootstrap.run.completed"
    RUN_FAILED = "bootstrap.run.failed"
    STAGE_COMPLETED = "bootstrap.stage.completed"
    CHUNK_COMPLETED = "bootstrap.chunk.completed"
    PAGE_DEAD_LETTERED = "bootstrap.page.dead_lettered"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts and retry decisions."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    CLIENT_ERROR = "client_error"
    CONFIGURATION = "configuration"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


RETRYABLE_CATEGORIES = frozenset(
    {
        ErrorCategory.TRANSIENT,
        ErrorCategory.RATE_LIMITED,
        ErrorCategory.DATABASE_CONNECTIVITY,
        ErrorCategory.UNKNOWN,
    }
)

_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (GitHubAuthError, ErrorCategory.AUTHENTICATION),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (RepositoryNotFoundError, ErrorCategory.CONFIGURATION),
    (WriteTimeoutError, ErrorCategory.TRANSIENT),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def _categorize_api_error(exc: GitHubAPIError) -> ErrorCategory:
    if exc.rate_limited:
        return ErrorCategory.RATE_LIMITED
    if exc.status_code is None or exc.status_code >= _HTTP_SERVER_ERROR_THRESHOLD:
        return ErrorCategory.TRANSIENT
    if exc.status_code == _HTTP_UNAUTHORIZED:
        return ErrorCategory.AUTHENTICATION
    return ErrorCategory.CLIENT_ERROR


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting and retry purposes."""
    if isinstance(exc, GitHubAPIError):
        return _categorize_api_error(exc)

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` when the job queue should retry after ``exc``."""
    return categorize_error(exc) in RETRYABLE_CATEGORIES


class BootstrapEventLogger:
    """Emit structured bootstrap events via femtologging."""

    def log_run_started(self, *, repo_slug: str, lock_key: str) -> None:
        """Log the start or resumption of a bootstrap run."""
        log_info(
            logger,
            "[%s] repo_slug=%s lock_key=%s",
            BootstrapEventType.RUN_STARTED,
            repo_slug,
            lock_key,
        )

    def log_run_completed(
        self, *, repo_slug: str, items_fetched: int, duration: dt.timedelta
    ) -> None:
        """Log a finished bootstrap run with its total item count."""
        log_info(
            logger,
            "[%s] repo_slug=%s items_fetched=%d duration_seconds=%.3f",
            BootstrapEventType.RUN_COMPLETED,
            repo_slug,
            items_fetched,
            duration.total_seconds(),
        )

    def log_run_failed(
        self,
        *,
        repo_slug: str,
        stage: str | None,
        error: BaseException,
        duration: dt.timedelta,
    ) -> None:
        """Log a failed bootstrap run with error categorization."""
        log_error(
            logger,
            "[%s] repo_slug=%s stage=%s duration_seconds=%.3f "
            "error_type=%s error_category=%s error_message=%s",
            BootstrapEventType.RUN_FAILED,
            repo_slug,
            stage,
            duration.total_seconds(),
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_stage_completed(self, *, repo_slug: str, stage: str, items: int) -> None:
        """Log a completed stage."""
        log_info(
            logger,
            "[%s] repo_slug=%s stage=%s items=%d",
            BootstrapEventType.STAGE_COMPLETED,
            repo_slug,
            stage,
            items,
        )

    def log_chunk_completed(
        self,
        *,
        repo_slug: str,
        stage: str,
        count: int,
        next_cursor: str | None,
    ) -> None:
        """Log one chunk invocation and whether more pages remain."""
        log_info(
            logger,
            "[%s] repo_slug=%s stage=%s count=%d next_cursor=%s",
            BootstrapEventType.CHUNK_COMPLETED,
            repo_slug,
            stage,
            count,
            next_cursor,
        )

    def log_page_dead_lettered(
        self, *, repo_slug: str, kind: str, page: int | str, skipped: int
    ) -> None:
        """Log elements of a page that failed validation."""
        log_warning(
            logger,
            "[%s] repo_slug=%s kind=%s page=%s skipped=%d",
            BootstrapEventType.PAGE_DEAD_LETTERED,
            repo_slug,
            kind,
            page,
            skipped,
        )
