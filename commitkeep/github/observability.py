"""Observability primitives for commit-history ingestion.

Provides structured logging and error categorisation for ingestion runs,
page merges, fetch retries and rate-limit suspensions. Every event is a
pre-formatted ``[event] key=value`` line emitted through femtologging so log
aggregators can parse it without a schema.

Usage
-----
>>> event_logger = IngestionEventLogger()
>>> event_logger.log_run_started(scope, cursor_state="start")

"""

from __future__ import annotations

import enum
import typing as typ

from sqlalchemy.exc import SQLAlchemyError

from commitkeep.logging import get_logger, log_error, log_info, log_warning
from commitkeep.store.errors import StorageFailure

from .errors import (
    FetchFailed,
    FetchFatal,
    GitHubAPIError,
    GitHubConfigError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
    GitHubTransportError,
)

if typ.TYPE_CHECKING:
    import datetime as dt

    from .models import IngestionScope

logger = get_logger(__name__)

_HTTP_SERVER_ERROR_THRESHOLD = 500


class IngestionEventType(enum.StrEnum):
    """Structured log event types for ingestion observability."""

    RUN_STARTED = "ingestion.run.started"
    RUN_COMPLETED = "ingestion.run.completed"
    RUN_PAUSED = "ingestion.run.paused"
    RUN_FAILED = "ingestion.run.failed"
    PAGE_MERGED = "ingestion.page.merged"
    FETCH_RETRY = "ingestion.fetch.retry"
    RATE_LIMIT_SUSPENDED = "ingestion.ratelimit.suspended"
    MERGE_CONFLICT = "ingestion.merge.conflict"


class ErrorCategory(enum.StrEnum):
    """Error taxonomy shared by fetch retries, outcomes and alerts."""

    TRANSIENT_TRANSPORT = "transient_transport"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal"
    STORAGE_FAILURE = "storage_failure"
    CANCEL_REQUESTED = "cancel_requested"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (GitHubRateLimitError, ErrorCategory.RATE_LIMITED),
    (GitHubTransportError, ErrorCategory.TRANSIENT_TRANSPORT),
    (GitHubResponseShapeError, ErrorCategory.FATAL),
    (GitHubNotFoundError, ErrorCategory.FATAL),
    (GitHubConfigError, ErrorCategory.FATAL),
    (StorageFailure, ErrorCategory.STORAGE_FAILURE),
    (SQLAlchemyError, ErrorCategory.STORAGE_FAILURE),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorise an exception for outcomes and alert routing.

    Fetch errors are categorised by the failure that caused them.
    """
    if isinstance(exc, FetchFatal):
        return ErrorCategory.FATAL
    if isinstance(exc, FetchFailed):
        if exc.last_error is None:
            return ErrorCategory.TRANSIENT_TRANSPORT
        return categorize_error(exc.last_error)

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    # Plain GitHubAPIError: 5xx is transient, anything else is permanent.
    if isinstance(exc, GitHubAPIError):
        if (
            exc.status_code is not None
            and exc.status_code >= _HTTP_SERVER_ERROR_THRESHOLD
        ):
            return ErrorCategory.TRANSIENT_TRANSPORT
        return ErrorCategory.FATAL

    return ErrorCategory.UNKNOWN


class IngestionEventLogger:
    """Emit structured ingestion events via femtologging.

    Events are emitted at INFO for progress, WARNING for retries, suspensions,
    conflicts and pauses, and ERROR for failed runs.
    """

    def log_run_started(self, scope: IngestionScope, *, cursor_state: str) -> None:
        """Log the start of an ingestion run for ``scope``."""
        log_info(
            logger,
            "[%s] scope=%s repo_slug=%s branch=%s author=%s cursor_state=%s",
            IngestionEventType.RUN_STARTED,
            scope.key,
            scope.slug,
            scope.branch,
            scope.author,
            cursor_state,
        )

    def log_page_merged(  # noqa: PLR0913
        self,
        scope: IngestionScope,
        *,
        page_number: int,
        inserted: int,
        unchanged: int,
        conflicts: int,
        has_next_page: bool,
    ) -> None:
        """Log a page that was merged and whose cursor was saved."""
        log_info(
            logger,
            "[%s] scope=%s page=%d inserted=%d unchanged=%d conflicts=%d "
            "has_next_page=%s",
            IngestionEventType.PAGE_MERGED,
            scope.key,
            page_number,
            inserted,
            unchanged,
            conflicts,
            has_next_page,
        )

    def log_run_completed(
        self,
        scope: IngestionScope,
        *,
        pages: int,
        inserted: int,
        duration: dt.timedelta,
    ) -> None:
        """Log a run that reached the end of the scope's history."""
        log_info(
            logger,
            "[%s] scope=%s pages=%d commits_inserted=%d duration_seconds=%.3f",
            IngestionEventType.RUN_COMPLETED,
            scope.key,
            pages,
            inserted,
            duration.total_seconds(),
        )

    def log_run_paused(
        self,
        scope: IngestionScope,
        *,
        reason: str,
        cursor_state: str,
        duration: dt.timedelta,
        error: BaseException | None = None,
    ) -> None:
        """Log a run that stopped early but can be resumed."""
        log_warning(
            logger,
            "[%s] scope=%s reason=%s cursor_state=%s duration_seconds=%.3f "
            "error_type=%s error_message=%s",
            IngestionEventType.RUN_PAUSED,
            scope.key,
            reason,
            cursor_state,
            duration.total_seconds(),
            type(error).__name__ if error is not None else None,
            str(error) if error is not None else None,
        )

    def log_run_failed(
        self,
        scope: IngestionScope,
        error: BaseException,
        duration: dt.timedelta,
    ) -> None:
        """Log a run that failed permanently, with error categorisation."""
        log_error(
            logger,
            "[%s] scope=%s duration_seconds=%.3f error_type=%s "
            "error_category=%s error_message=%s",
            IngestionEventType.RUN_FAILED,
            scope.key,
            duration.total_seconds(),
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_fetch_retry(  # noqa: PLR0913
        self,
        scope: IngestionScope,
        *,
        attempt: int,
        category: ErrorCategory,
        delay: float,
        error: BaseException,
    ) -> None:
        """Log a transient fetch failure that will be retried after ``delay``."""
        log_warning(
            logger,
            "[%s] scope=%s attempt=%d error_category=%s delay_seconds=%.3f "
            "error_message=%s",
            IngestionEventType.FETCH_RETRY,
            scope.key,
            attempt,
            category,
            delay,
            str(error),
        )

    def log_rate_limit_suspended(
        self,
        scope: IngestionScope,
        *,
        seconds: float,
        reset_at: dt.datetime | None,
    ) -> None:
        """Log a fetch suspended until the rate-limit budget resets."""
        log_warning(
            logger,
            "[%s] scope=%s suspend_seconds=%.3f reset_at=%s",
            IngestionEventType.RATE_LIMIT_SUSPENDED,
            scope.key,
            seconds,
            reset_at.isoformat() if reset_at is not None else None,
        )

    def log_merge_conflict(
        self, scope: IngestionScope, *, page_number: int, conflicts: int
    ) -> None:
        """Log commits whose stored content differs from the incoming page."""
        log_warning(
            logger,
            "[%s] scope=%s page=%d conflicts=%d",
            IngestionEventType.MERGE_CONFLICT,
            scope.key,
            page_number,
            conflicts,
        )
