"""Ingestion lag and health query services.

Provides on-demand computation of lag metrics per ingestion scope from the
stored cursors, so operators can spot scopes that are still paging through
history or that have stopped making progress.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

from commitkeep.common.time import utcnow
from commitkeep.store.cursors import Done, Start

if typ.TYPE_CHECKING:
    from commitkeep.store.cursors import CursorRecord, CursorStore


@dataclasses.dataclass(frozen=True, slots=True)
class IngestionHealthConfig:
    """Configuration for ingestion health thresholds."""

    stalled_threshold: dt.timedelta = dataclasses.field(
        default_factory=lambda: dt.timedelta(hours=1)
    )


@dataclasses.dataclass(frozen=True, slots=True)
class IngestionLagMetrics:
    """Computed lag metrics for one ingestion scope."""

    scope_key: str
    repo_slug: str
    branch: str
    author: str | None
    cursor_state: str
    time_since_last_page_seconds: float | None
    is_pending: bool
    is_stalled: bool


def _compute_lag_metrics(
    record: CursorRecord,
    now: dt.datetime,
    stalled_threshold: dt.timedelta,
) -> IngestionLagMetrics:
    """Compute lag metrics from a stored cursor."""
    cursor = record.cursor
    advanced_at = None if isinstance(cursor, Start) else cursor.advanced_at
    time_since_last = (
        (now - advanced_at).total_seconds() if advanced_at is not None else None
    )
    is_pending = not isinstance(cursor, Done)

    # A pending scope is stalled when nothing was merged within the threshold;
    # scopes that never merged a page are measured from their last cursor write.
    last_activity = advanced_at or record.updated_at
    is_stalled = is_pending and (now - last_activity) > stalled_threshold

    return IngestionLagMetrics(
        scope_key=record.scope.key,
        repo_slug=record.scope.slug,
        branch=record.scope.branch,
        author=record.scope.author,
        cursor_state=cursor.state.value,
        time_since_last_page_seconds=time_since_last,
        is_pending=is_pending,
        is_stalled=is_stalled,
    )


class IngestionHealthService:
    """Query ingestion lag and health status per scope."""

    def __init__(
        self,
        cursor_store: CursorStore,
        *,
        config: IngestionHealthConfig | None = None,
    ) -> None:
        """Create a health service reading from ``cursor_store``."""
        self._cursor_store = cursor_store
        self._config = config or IngestionHealthConfig()

    async def get_all_scope_lags(
        self, *, now: dt.datetime | None = None
    ) -> list[IngestionLagMetrics]:
        """Compute lag metrics for every scope with a stored cursor."""
        records = await self._cursor_store.list_cursors()
        reference = now or utcnow()
        return [
            _compute_lag_metrics(record, reference, self._config.stalled_threshold)
            for record in records
        ]

    async def get_pending_scopes(
        self, *, now: dt.datetime | None = None
    ) -> list[IngestionLagMetrics]:
        """Return scopes whose history has not been fully ingested."""
        return [lag for lag in await self.get_all_scope_lags(now=now) if lag.is_pending]

    async def get_stalled_scopes(
        self, *, now: dt.datetime | None = None
    ) -> list[IngestionLagMetrics]:
        """Return pending scopes that have not merged a page within the threshold.

        Completed scopes are never stalled, however old their last page is.
        """
        return [lag for lag in await self.get_all_scope_lags(now=now) if lag.is_stalled]
