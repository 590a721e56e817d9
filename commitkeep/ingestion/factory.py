"""Assemble the ingestion pipeline from configuration.

Usage
-----
Build a scheduler for a database session factory and GitHub client::

    from commitkeep.ingestion.factory import build_scheduler

    scheduler = build_scheduler(session_factory, client)
    outcomes = await scheduler.run_all(scopes)

"""

from __future__ import annotations

import typing as typ

from commitkeep.github.fetcher import PageFetcher
from commitkeep.github.observability import IngestionEventLogger
from commitkeep.github.ratelimit import RateLimitState
from commitkeep.store.commits import CommitStore
from commitkeep.store.cursors import CursorStore

from .config import IngestionConfig
from .ingestor import HistoryIngestor
from .scheduler import InFlightRegistry, IngestionScheduler

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from commitkeep.github.client import GitHubGraphQLClient

__all__ = ["build_scheduler"]


def build_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    client: GitHubGraphQLClient,
    *,
    config: IngestionConfig | None = None,
    rate_limit: RateLimitState | None = None,
    registry: InFlightRegistry | None = None,
) -> IngestionScheduler:
    """Build a scheduler wired to the stores, fetcher and shared rate limit.

    Parameters
    ----------
    session_factory
        Async session factory for the commit and cursor stores.
    client
        GitHub GraphQL client used by the page fetcher.
    config
        Ingestion configuration; read from the environment when omitted.
    rate_limit
        Shared rate-limit state. Pass one instance to every scheduler that
        talks to GitHub with the same token.
    registry
        In-flight registry. Pass one instance to every scheduler that may be
        asked to ingest the same scopes.

    Returns
    -------
    IngestionScheduler
        Scheduler ready to run scopes.

    """
    resolved = config or IngestionConfig.from_env()
    event_logger = IngestionEventLogger()
    fetcher = PageFetcher(
        client,
        page_size=resolved.page_size,
        retry_policy=resolved.retry_policy(),
        rate_limit_floor=resolved.rate_limit_floor,
        event_logger=event_logger,
    )
    ingestor = HistoryIngestor(
        fetcher,
        CommitStore(session_factory),
        CursorStore(session_factory),
        rate_limit or RateLimitState(),
        event_logger=event_logger,
    )
    return IngestionScheduler(
        ingestor, max_concurrency=resolved.max_concurrency, registry=registry
    )
