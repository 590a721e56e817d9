"""Resumable, page-at-a-time ingestion of one scope's commit history.

For each page the ingestor fetches, merges into the commit store and then
saves the advanced cursor, strictly in that order. A cursor therefore never
points past data that is not durably stored; a crash between the merge and the
cursor save re-fetches and re-merges at most one page, which the idempotent
merge absorbs.
"""

from __future__ import annotations

import dataclasses
import typing as typ

from commitkeep.common.time import utcnow
from commitkeep.github.errors import FetchFailed, FetchFatal
from commitkeep.github.observability import IngestionEventLogger, categorize_error
from commitkeep.store.cursors import Start, advance_cursor, cursor_state
from commitkeep.store.errors import StorageFailure

from .outcomes import Completed, Failed, Paused, PauseReason

if typ.TYPE_CHECKING:
    import asyncio
    import collections.abc as cabc
    import datetime as dt

    from commitkeep.github.fetcher import PageFetcher
    from commitkeep.github.models import IngestionScope
    from commitkeep.github.ratelimit import RateLimitState
    from commitkeep.store.commits import CommitStore
    from commitkeep.store.cursors import Cursor, CursorStore

    from .outcomes import IngestionOutcome


@dataclasses.dataclass(slots=True)
class _RunProgress:
    """Mutable bookkeeping for one run."""

    scope: IngestionScope
    started_at: dt.datetime
    cursor: Cursor | None = None
    pages: int = 0
    inserted: int = 0


class HistoryIngestor:
    """Drive one scope from its stored cursor to the end of its history."""

    def __init__(  # noqa: PLR0913
        self,
        fetcher: PageFetcher,
        commit_store: CommitStore,
        cursor_store: CursorStore,
        rate_limit: RateLimitState,
        *,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
        event_logger: IngestionEventLogger | None = None,
    ) -> None:
        """Bind the ingestor to its fetcher, stores and shared rate limit."""
        self._fetcher = fetcher
        self._commits = commit_store
        self._cursors = cursor_store
        self._rate_limit = rate_limit
        self._clock = clock
        self._event_logger = event_logger or IngestionEventLogger()

    @property
    def cursor_store(self) -> CursorStore:
        """Return the cursor store this ingestor advances."""
        return self._cursors

    async def run(
        self, scope: IngestionScope, *, cancel: asyncio.Event | None = None
    ) -> IngestionOutcome:
        """Ingest ``scope`` until its history is exhausted or the run stops.

        Parameters
        ----------
        scope
            The branch, optionally filtered to one author, to ingest.
        cancel
            Optional event checked before each page. Setting it stops the run
            at the next page boundary with a ``Paused`` outcome.

        Returns
        -------
        IngestionOutcome
            ``Completed`` when the final page was merged, ``Paused`` when the
            run can be resumed later, or ``Failed`` on a permanent error.

        """
        progress = _RunProgress(scope=scope, started_at=self._clock())

        try:
            progress.cursor = await self._load_or_start(scope)
        except StorageFailure as exc:
            return self._paused(progress, PauseReason.STORAGE_FAILURE, exc)

        self._event_logger.log_run_started(
            scope, cursor_state=cursor_state(progress.cursor)
        )

        while progress.cursor.has_next_page:
            if cancel is not None and cancel.is_set():
                return self._paused(progress, PauseReason.CANCELLED)

            outcome = await self._ingest_next_page(progress)
            if outcome is not None:
                return outcome

        duration = self._clock() - progress.started_at
        self._event_logger.log_run_completed(
            scope, pages=progress.pages, inserted=progress.inserted, duration=duration
        )
        return Completed(pages=progress.pages, inserted=progress.inserted)

    async def _load_or_start(self, scope: IngestionScope) -> Cursor:
        cursor = await self._cursors.load(scope)
        if cursor is None:
            cursor = Start()
            await self._cursors.save(scope, cursor)
        return cursor

    async def _ingest_next_page(self, progress: _RunProgress) -> IngestionOutcome | None:
        """Fetch, merge and advance one page; return an outcome if the run stops."""
        scope = progress.scope
        cursor = typ.cast("Cursor", progress.cursor)

        try:
            page = await self._fetcher.fetch(
                scope, cursor.token, rate_limit=self._rate_limit
            )
        except FetchFailed as exc:
            return self._paused(progress, PauseReason.RETRIES_EXHAUSTED, exc)
        except FetchFatal as exc:
            return self._failed(progress, exc)

        try:
            result = await self._commits.merge(scope, page.records)
            advanced = advance_cursor(cursor, page, self._clock())
            await self._cursors.save(scope, advanced)
        except StorageFailure as exc:
            return self._paused(progress, PauseReason.STORAGE_FAILURE, exc)

        progress.cursor = advanced
        progress.pages += 1
        progress.inserted += result.inserted
        if result.conflicts:
            self._event_logger.log_merge_conflict(
                scope, page_number=progress.pages, conflicts=result.conflicts
            )
        self._event_logger.log_page_merged(
            scope,
            page_number=progress.pages,
            inserted=result.inserted,
            unchanged=result.unchanged,
            conflicts=result.conflicts,
            has_next_page=page.has_next_page,
        )
        return None

    def _paused(
        self,
        progress: _RunProgress,
        reason: PauseReason,
        error: BaseException | None = None,
    ) -> Paused:
        self._event_logger.log_run_paused(
            progress.scope,
            reason=reason,
            cursor_state=cursor_state(progress.cursor),
            duration=self._clock() - progress.started_at,
            error=error,
        )
        return Paused(
            reason=reason,
            cursor=progress.cursor,
            error=str(error) if error is not None else None,
        )

    def _failed(self, progress: _RunProgress, error: FetchFatal) -> Failed:
        self._event_logger.log_run_failed(
            progress.scope, error, self._clock() - progress.started_at
        )
        return Failed(reason=str(error.error), category=categorize_error(error))
