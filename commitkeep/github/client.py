"""GitHub GraphQL client and response parsing used by the page fetcher."""

from __future__ import annotations

import dataclasses
import json
import os
import typing as typ

import httpx
import msgspec

from commitkeep.common.slug import repo_slug
from commitkeep.common.time import parse_github_datetime

from .errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubNotFoundError,
    GitHubResponseShapeError,
    GitHubTransportError,
)
from .models import (
    CommitAuthor,
    CommitRecord,
    ContributedRepository,
    HistoryConnection,
    PageResult,
)

if typ.TYPE_CHECKING:
    from .models import CommitNode, IngestionScope


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubGraphQLConfig:
    """Configuration for the GitHub GraphQL API client."""

    token: str
    endpoint: str = "https://api.github.com/graphql"
    timeout_s: float = 20.0
    user_agent: str = "commitkeep/0.1"

    @classmethod
    def from_env(cls) -> GitHubGraphQLConfig:
        """Build configuration from ``COMMITKEEP_GITHUB_*`` env vars.

        ``COMMITKEEP_GITHUB_TOKEN`` is required; ``COMMITKEEP_GITHUB_ENDPOINT``
        overrides the API endpoint (for GitHub Enterprise).
        """
        token = os.environ.get("COMMITKEEP_GITHUB_TOKEN", "").strip()
        if not token:
            raise GitHubConfigError.missing_token()
        endpoint = os.environ.get("COMMITKEEP_GITHUB_ENDPOINT", "").strip()
        if endpoint:
            return cls(token=token, endpoint=endpoint)
        return cls(token=token)


_COMMIT_FIELDS = """
            pageInfo {
              hasNextPage
              endCursor
            }
            edges {
              cursor
              node {
                oid
                messageHeadline
                committedDate
                author {
                  name
                  email
                }
              }
            }
"""

COMMIT_HISTORY_QUERY = (
    """
query(
  $owner: String!
  $name: String!
  $qualifiedName: String!
  $first: Int!
  $after: String
) {
  repository(owner: $owner, name: $name) {
    ref(qualifiedName: $qualifiedName) {
      target {
        ... on Commit {
          history(first: $first, after: $after) {"""
    + _COMMIT_FIELDS
    + """          }
        }
      }
    }
  }
}
"""
)

AUTHOR_COMMIT_HISTORY_QUERY = (
    """
query(
  $owner: String!
  $name: String!
  $qualifiedName: String!
  $first: Int!
  $after: String
  $authorId: ID!
) {
  repository(owner: $owner, name: $name) {
    ref(qualifiedName: $qualifiedName) {
      target {
        ... on Commit {
          history(first: $first, after: $after, author: {id: $authorId}) {"""
    + _COMMIT_FIELDS
    + """          }
        }
      }
    }
  }
}
"""
)

USER_ID_QUERY = """
query($login: String!) {
  user(login: $login) {
    id
  }
}
"""

CONTRIBUTED_REPOSITORIES_QUERY = """
query($login: String!) {
  user(login: $login) {
    contributionsCollection {
      commitContributionsByRepository(maxRepositories: 100) {
        contributions {
          totalCount
        }
        repository {
          name
          owner {
            login
          }
          defaultBranchRef {
            name
          }
        }
      }
    }
  }
}
"""

_HTTP_ERROR_STATUS_THRESHOLD = 400


@dataclasses.dataclass(frozen=True, slots=True)
class GraphQLResponse:
    """Raw outcome of one GraphQL HTTP exchange.

    ``payload`` is the decoded JSON body, or ``None`` when the body was not
    valid JSON.
    """

    status_code: int
    headers: typ.Mapping[str, str]
    payload: object | None


def history_variables(
    scope: IngestionScope,
    *,
    first: int,
    after: str | None,
    author_id: str | None = None,
) -> tuple[str, dict[str, typ.Any]]:
    """Select the history query shape for ``scope`` and build its variables."""
    variables: dict[str, typ.Any] = {
        "owner": scope.owner,
        "name": scope.name,
        "qualifiedName": scope.qualified_ref,
        "first": first,
        "after": after,
    }
    if scope.author is None:
        return COMMIT_HISTORY_QUERY, variables
    if author_id is None:
        msg = f"author-filtered scope {scope.key} requires a resolved author id"
        raise ValueError(msg)
    variables["authorId"] = author_id
    return AUTHOR_COMMIT_HISTORY_QUERY, variables


def graphql_errors(payload: object) -> list[dict[str, typ.Any]]:
    """Return the GraphQL ``errors`` entries of ``payload`` (possibly empty)."""
    if not isinstance(payload, dict):
        return []
    errors = payload.get("errors")
    if not isinstance(errors, list):
        return []
    return [error for error in errors if isinstance(error, dict)]


def extract_data(payload: object) -> dict[str, typ.Any]:
    """Validate a GraphQL response payload and return its ``data`` field."""
    if not isinstance(payload, dict):
        raise GitHubResponseShapeError.missing("response")

    errors = graphql_errors(payload)
    if errors:
        raise GitHubAPIError.graphql_errors(errors)

    data = payload.get("data")
    if not isinstance(data, dict):
        raise GitHubResponseShapeError.missing("data")
    return data


def _require_dict(node: object, field: str) -> dict[str, typ.Any]:
    if not isinstance(node, dict):
        raise GitHubResponseShapeError.missing(field)
    return node


def extract_commit_history(
    data: dict[str, typ.Any], scope: IngestionScope
) -> HistoryConnection:
    """Extract and validate the commit history connection for ``scope``.

    A ``null`` repository or ref means the repository or branch does not
    exist, which GitHub reports without a GraphQL error.
    """
    repository = data.get("repository")
    if repository is None:
        raise GitHubNotFoundError.repository(scope.slug)
    ref = _require_dict(repository, "repository").get("ref")
    if ref is None:
        raise GitHubNotFoundError.branch(scope.slug, scope.branch)
    target = _require_dict(_require_dict(ref, "repository.ref").get("target"), "target")
    history = target.get("history")
    if history is None:
        raise GitHubResponseShapeError.missing("repository.ref.target.history")
    try:
        return msgspec.convert(history, type=HistoryConnection)
    except msgspec.ValidationError as exc:
        raise GitHubResponseShapeError.invalid("history", str(exc)) from exc


def _record_from_node(scope: IngestionScope, node: CommitNode) -> CommitRecord:
    author = node.author
    try:
        committed_at = parse_github_datetime(node.committed_date)
    except ValueError as exc:
        raise GitHubResponseShapeError.invalid("committedDate", str(exc)) from exc
    return CommitRecord(
        oid=node.oid,
        message_headline=node.message_headline,
        committed_at=committed_at,
        author=CommitAuthor(
            name=author.name if author else None,
            email=author.email if author else None,
        ),
        repo_owner=scope.owner,
        repo_name=scope.name,
        branch=scope.branch,
    )


def page_from_history(scope: IngestionScope, history: HistoryConnection) -> PageResult:
    """Normalise a validated history connection into a :class:`PageResult`."""
    page_info = history.page_info
    if page_info.has_next_page and not page_info.end_cursor:
        raise GitHubResponseShapeError.missing("pageInfo.endCursor")
    records = tuple(_record_from_node(scope, edge.node) for edge in history.edges)
    return PageResult(
        records=records,
        end_cursor=page_info.end_cursor,
        has_next_page=page_info.has_next_page,
    )


def extract_user_id(data: dict[str, typ.Any], login: str) -> str:
    """Return the node id of ``login`` from a ``user`` query response."""
    user = data.get("user")
    if user is None:
        raise GitHubNotFoundError.user(login)
    user_id = _require_dict(user, "user").get("id")
    if not isinstance(user_id, str):
        raise GitHubResponseShapeError.missing("user.id")
    return user_id


def extract_contributed_repositories(
    data: dict[str, typ.Any], login: str, *, default_branch: str
) -> list[ContributedRepository]:
    """Return repositories with at least one commit contribution by ``login``."""
    user = data.get("user")
    if user is None:
        raise GitHubNotFoundError.user(login)
    collection = _require_dict(
        _require_dict(user, "user").get("contributionsCollection"),
        "user.contributionsCollection",
    )
    contributions = collection.get("commitContributionsByRepository")
    if not isinstance(contributions, list):
        raise GitHubResponseShapeError.missing("commitContributionsByRepository")

    repositories: list[ContributedRepository] = []
    for entry in contributions:
        if not isinstance(entry, dict):
            continue
        repository = entry.get("repository") or {}
        total = (entry.get("contributions") or {}).get("totalCount") or 0
        owner = (repository.get("owner") or {}).get("login")
        name = repository.get("name")
        if not isinstance(owner, str) or not isinstance(name, str) or total <= 0:
            continue
        branch_ref = repository.get("defaultBranchRef") or {}
        branch = branch_ref.get("name")
        repositories.append(
            ContributedRepository(
                owner=owner,
                name=name,
                default_branch=branch if isinstance(branch, str) else default_branch,
                commit_count=int(total),
            )
        )
    return repositories


def _decode_body(response: httpx.Response) -> object | None:
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


class GitHubGraphQLClient:
    """Thin async transport for the GitHub GraphQL endpoint."""

    def __init__(
        self,
        config: GitHubGraphQLConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/json",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def request(
        self, query: str, variables: dict[str, typ.Any]
    ) -> GraphQLResponse:
        """Send one GraphQL request and return the raw response.

        Raises
        ------
        GitHubTransportError
            If the request timed out or never reached GitHub.

        """
        try:
            response = await self._client.post(
                self._config.endpoint,
                json={"query": query, "variables": variables},
            )
        except httpx.TimeoutException as exc:
            raise GitHubTransportError.timeout() from exc
        except httpx.RequestError as exc:
            raise GitHubTransportError.network_error(str(exc)) from exc
        return GraphQLResponse(
            status_code=response.status_code,
            headers=response.headers,
            payload=_decode_body(response),
        )

    async def execute(
        self, query: str, variables: dict[str, typ.Any]
    ) -> dict[str, typ.Any]:
        """Execute a GraphQL query once and return the validated data field."""
        response = await self.request(query, variables)
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(response.status_code)
        return extract_data(response.payload)

    async def get_user_id(self, login: str) -> str:
        """Resolve a GitHub login to its GraphQL node id."""
        data = await self.execute(USER_ID_QUERY, {"login": login})
        return extract_user_id(data, login)

    async def list_contributed_repositories(
        self, login: str, *, default_branch: str = "main"
    ) -> list[ContributedRepository]:
        """Return repositories ``login`` has committed to, per GitHub."""
        data = await self.execute(CONTRIBUTED_REPOSITORIES_QUERY, {"login": login})
        return extract_contributed_repositories(
            data, login, default_branch=default_branch
        )


def describe_repositories(repositories: typ.Iterable[ContributedRepository]) -> str:
    """Render repositories as a comma-separated list of slugs."""
    return ", ".join(repo_slug(repo.owner, repo.name) for repo in repositories)
