"""Dramatiq actor for queued commit-history ingestion.

Usage
-----
Queue an ingestion run for two scopes:

>>> ingest_scopes_job.send(
...     database_url="postgresql+asyncpg://...",
...     scope_keys=["acme/widgets@main", "acme/widgets@main~octocat"],
... )

The worker reads GitHub credentials and ingestion settings from the
environment (``COMMITKEEP_GITHUB_TOKEN`` and the ``COMMITKEEP_*`` ingestion
variables).
"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from commitkeep.github.client import GitHubGraphQLClient, GitHubGraphQLConfig
from commitkeep.github.models import IngestionScope
from commitkeep.github.ratelimit import RateLimitState
from commitkeep.store.storage import init_storage

from ._broker import ensure_broker_configured
from .config import IngestionConfig
from .factory import build_scheduler
from .scheduler import InFlightRegistry

if typ.TYPE_CHECKING:
    import collections.abc as cabc

type SessionFactory = async_sessionmaker[AsyncSession]

# Reused across actor invocations in one worker process
_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()

# One GitHub budget and one set of in-flight scopes per worker process, shared
# by every job whatever thread or event loop it runs on
_RATE_LIMIT = RateLimitState()
_IN_FLIGHT = InFlightRegistry()


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return a cached session factory for ``database_url``.

    Thread-safe: Dramatiq runs actors on several worker threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            engine = _ENGINE_CACHE.setdefault(
                database_url, create_async_engine(database_url)
            )
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


def _parse_scope_keys(
    scope_keys: cabc.Sequence[str], *, default_branch: str
) -> list[IngestionScope]:
    """Parse scope keys, rejecting the whole job if any key is malformed."""
    return [
        IngestionScope.from_key(key, default_branch=default_branch)
        for key in scope_keys
    ]


async def _ingest_scopes_async(  # noqa: PLR0913
    session_factory: SessionFactory,
    client: GitHubGraphQLClient,
    scopes: cabc.Sequence[IngestionScope],
    *,
    full_resync: bool = False,
    config: IngestionConfig | None = None,
    rate_limit: RateLimitState | None = None,
    registry: InFlightRegistry | None = None,
) -> dict[str, str]:
    """Run the scheduler for ``scopes`` and return outcome labels by scope key.

    Parameters
    ----------
    session_factory
        Async session factory for the commit and cursor stores.
    client
        GitHub GraphQL client used for page fetches.
    scopes
        Scopes to ingest.
    full_resync
        Reset every scope's cursor before ingesting.
    config
        Ingestion configuration; read from the environment when omitted.
    rate_limit
        Rate-limit state; the worker process's shared state when omitted.
    registry
        In-flight registry; the worker process's shared registry when
        omitted, so a scope already running in another job is reported as
        ``paused``.

    Returns
    -------
    dict[str, str]
        ``completed``, ``paused`` or ``failed`` for each scope key.

    """
    scheduler = build_scheduler(
        session_factory,
        client,
        config=config,
        rate_limit=_RATE_LIMIT if rate_limit is None else rate_limit,
        registry=_IN_FLIGHT if registry is None else registry,
    )
    outcomes = await scheduler.run_all(scopes, full_resync=full_resync)
    return {scope.key: outcome.label for scope, outcome in outcomes.items()}


@dramatiq.actor
def ingest_scopes_job(
    database_url: str,
    scope_keys: list[str],
    *,
    full_resync: bool = False,
) -> dict[str, str]:
    """Dramatiq actor ingesting the given scopes into ``database_url``.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.
    scope_keys
        Scope keys in ``owner/name[@branch][~author]`` form.
    full_resync
        Reset every scope's cursor before ingesting.

    Returns
    -------
    dict[str, str]
        Outcome label for each scope key.

    Raises
    ------
    ValueError
        If a scope key is malformed or the configuration is invalid.

    """
    ensure_broker_configured()
    config = IngestionConfig.from_env()
    scopes = _parse_scope_keys(scope_keys, default_branch=config.default_branch)
    session_factory = _get_or_create_session_factory(database_url)

    async def run() -> dict[str, str]:
        await init_storage(_ENGINE_CACHE[database_url])
        client = GitHubGraphQLClient(GitHubGraphQLConfig.from_env())
        try:
            return await _ingest_scopes_async(
                session_factory,
                client,
                scopes,
                full_resync=full_resync,
                config=config,
            )
        finally:
            await client.aclose()

    return asyncio.run(run())
