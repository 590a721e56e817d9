"""Read-only commit resources over the commit store.

``GET /repositories/{owner}/{name}/branches/{branch}/commits`` lists the
commits observed under one ingestion scope, newest first by default.
``GET /repositories/{owner}/{name}/branches/{branch}/commits/{oid}`` returns a
single stored commit.

Branch names may contain ``/`` (``feature/login``), which a path segment cannot
carry. Both resources are therefore also routed without the branch segment,
as ``/repositories/{owner}/{name}/commits[/{oid}]?branch=feature/login``.

Usage
-----
Register the resources on the Falcon app::

    deps = CommitResourceDependencies(commit_store, cursor_store)
    app.add_route(
        "/repositories/{owner}/{name}/branches/{branch}/commits",
        CommitListResource(deps),
    )

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon

from commitkeep.api.errors import (
    CommitNotFoundError,
    InvalidInputError,
    ScopeNotFoundError,
)
from commitkeep.common.slug import scope_key
from commitkeep.github.models import IngestionScope
from commitkeep.store.cursors import cursor_state

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from commitkeep.github.models import CommitRecord
    from commitkeep.store.commits import CommitStore
    from commitkeep.store.cursors import CursorStore

__all__ = [
    "CommitListResource",
    "CommitResource",
    "CommitResourceDependencies",
    "serialize_commit",
]

DEFAULT_LIMIT = 100
MAX_LIMIT = 500
_ORDERS = {"desc": True, "asc": False}


@dc.dataclass(frozen=True, slots=True)
class CommitResourceDependencies:
    """Stores shared by the commit resources.

    Attributes
    ----------
    commit_store
        Store answering commit listings and lookups.
    cursor_store
        Store used to tell unknown scopes from scopes with no commits yet.

    """

    commit_store: CommitStore
    cursor_store: CursorStore


def serialize_commit(record: CommitRecord) -> dict[str, typ.Any]:
    """Serialize a ``CommitRecord`` to a JSON-compatible dict."""
    return {
        "oid": record.oid,
        "message_headline": record.message_headline,
        "committed_at": record.committed_at.isoformat(),
        "author": {"name": record.author.name, "email": record.author.email},
        "repository": record.repo_slug,
        "branch": record.branch,
    }


def _resolve_branch(req: Request, branch: str | None) -> str:
    if branch is not None:
        return branch
    value = req.get_param("branch")
    if not value:
        raise InvalidInputError("is required", field="branch")
    return value


def _parse_bounded_int(
    req: Request, field: str, *, default: int, minimum: int, maximum: int | None
) -> int:
    raw = req.get_param(field)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidInputError("must be an integer", field=field) from exc
    if value < minimum or (maximum is not None and value > maximum):
        upper = "" if maximum is None else f" and at most {maximum}"
        raise InvalidInputError(f"must be at least {minimum}{upper}", field=field)
    return value


class CommitListResource:
    """List commits observed under a branch or author-filtered scope."""

    def __init__(self, dependencies: CommitResourceDependencies) -> None:
        """Configure the resource with its stores."""
        self._commit_store = dependencies.commit_store
        self._cursor_store = dependencies.cursor_store

    async def on_get(
        self,
        req: Request,
        resp: Response,
        *,
        owner: str,
        name: str,
        branch: str | None = None,
    ) -> None:
        """Handle GET requests for a scope's commits.

        Parameters
        ----------
        req
            Falcon request carrying ``author``, ``limit``, ``offset`` and
            ``order`` query parameters, and ``branch`` when the path has no
            branch segment.
        resp
            Falcon response populated with the page of commits.
        owner
            Repository owner from the URL path.
        name
            Repository name from the URL path.
        branch
            Branch name from the URL path, if the route carries one.

        Raises
        ------
        InvalidInputError
            If a query parameter is malformed or out of range.
        ScopeNotFoundError
            If the scope was never ingested and holds no commits.

        """
        limit = _parse_bounded_int(
            req, "limit", default=DEFAULT_LIMIT, minimum=1, maximum=MAX_LIMIT
        )
        offset = _parse_bounded_int(req, "offset", default=0, minimum=0, maximum=None)
        order = req.get_param("order", default="desc")
        if order not in _ORDERS:
            raise InvalidInputError("must be 'asc' or 'desc'", field="order")

        scope = IngestionScope(
            owner=owner,
            name=name,
            branch=_resolve_branch(req, branch),
            author=req.get_param("author") or None,
        )
        cursor = await self._cursor_store.load(scope)
        total = await self._commit_store.count_commits(scope)
        if cursor is None and total == 0:
            raise ScopeNotFoundError(scope.key)

        commits = await self._commit_store.list_commits(
            scope, limit=limit, offset=offset, newest_first=_ORDERS[order]
        )
        resp.media = {
            "scope": scope.key,
            "repository": scope.slug,
            "branch": scope.branch,
            "author": scope.author,
            "ingestion_state": cursor_state(cursor),
            "total": total,
            "limit": limit,
            "offset": offset,
            "commits": [serialize_commit(record) for record in commits],
        }
        resp.status = falcon.HTTP_200


class CommitResource:
    """Fetch one stored commit by object id."""

    def __init__(self, dependencies: CommitResourceDependencies) -> None:
        """Configure the resource with its stores."""
        self._commit_store = dependencies.commit_store

    async def on_get(  # noqa: PLR0913
        self,
        req: Request,
        resp: Response,
        *,
        owner: str,
        name: str,
        oid: str,
        branch: str | None = None,
    ) -> None:
        """Handle GET requests for a single commit."""
        branch = _resolve_branch(req, branch)
        record = await self._commit_store.get_commit(owner, name, branch, oid)
        if record is None:
            raise CommitNotFoundError(scope_key(owner, name, branch), oid)
        resp.media = serialize_commit(record)
        resp.status = falcon.HTTP_200
