"""Application factory for the commitkeep Falcon ASGI application.

This module provides ``create_app()`` which builds the Falcon ASGI
application with health endpoints and, when a database session factory is
available, the read-only commit and ingestion lag endpoints.

Usage
-----
Create a health-only app (no database)::

    app = create_app()

Create a full app with query endpoints::

    from commitkeep.api.app import AppDependencies, create_app

    app = create_app(AppDependencies(session_factory=session_factory))

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from commitkeep.api.errors import (
    InvalidInputError,
    NotFoundError,
    handle_invalid_input,
    handle_not_found,
    handle_storage_failure,
)
from commitkeep.api.health.resources import HealthResource, ReadyResource
from commitkeep.store.errors import StorageFailure

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from commitkeep.ingestion.lag import IngestionHealthConfig

__all__ = ["AppDependencies", "create_app"]

COMMITS_ROUTE = "/repositories/{owner}/{name}/branches/{branch}/commits"
# Branch taken from the ``branch`` query parameter, for names containing "/"
REPO_COMMITS_ROUTE = "/repositories/{owner}/{name}/commits"


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    When ``session_factory`` is provided the application registers the
    commit and lag endpoints and the readiness probe checks the database.
    Otherwise only health endpoints are registered.

    Attributes
    ----------
    session_factory
        Async session factory for database access.
    health_config
        Optional thresholds for the ingestion lag endpoint.

    """

    session_factory: async_sessionmaker[AsyncSession] | None = None
    health_config: IngestionHealthConfig | None = None


def _add_query_routes(
    app: falcon.asgi.App,
    session_factory: async_sessionmaker[AsyncSession],
    health_config: IngestionHealthConfig | None,
) -> None:
    from commitkeep.api.commits.resources import (
        CommitListResource,
        CommitResource,
        CommitResourceDependencies,
    )
    from commitkeep.api.ingestion.resources import IngestionLagResource
    from commitkeep.ingestion.lag import IngestionHealthService
    from commitkeep.store.commits import CommitStore
    from commitkeep.store.cursors import CursorStore

    cursor_store = CursorStore(session_factory)
    deps = CommitResourceDependencies(
        commit_store=CommitStore(session_factory),
        cursor_store=cursor_store,
    )
    commit_list = CommitListResource(deps)
    commit = CommitResource(deps)
    for route in (COMMITS_ROUTE, REPO_COMMITS_ROUTE):
        app.add_route(route, commit_list)
        app.add_route(f"{route}/{{oid}}", commit)
    app.add_route(
        "/ingestion/lag",
        IngestionLagResource(
            IngestionHealthService(cursor_store, config=health_config)
        ),
    )


def create_app(
    dependencies: AppDependencies | None = None,
) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Parameters
    ----------
    dependencies
        Optional application dependencies. When ``None`` or without a
        session factory, only ``/health`` and ``/ready`` are available.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    session_factory = dependencies.session_factory if dependencies else None

    app = falcon.asgi.App()

    # Health endpoints are always available
    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(session_factory))

    if dependencies is not None and session_factory is not None:
        _add_query_routes(app, session_factory, dependencies.health_config)

    app.add_error_handler(NotFoundError, handle_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(StorageFailure, handle_storage_failure)

    return app
