"""Unit tests for the GitHub GraphQL client and response parsing."""

from __future__ import annotations

import datetime as dt
import json
import typing as typ

import httpx
import pytest

from commitkeep.github.client import (
    AUTHOR_COMMIT_HISTORY_QUERY,
    COMMIT_HISTORY_QUERY,
    GitHubGraphQLClient,
    GitHubGraphQLConfig,
    describe_repositories,
    extract_commit_history,
    extract_data,
    history_variables,
    page_from_history,
)
from commitkeep.github.errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubNotFoundError,
    GitHubResponseShapeError,
    GitHubTransportError,
)
from commitkeep.github.models import IngestionScope
from tests.helpers.github_fakes import (
    FakeGitHub,
    commit_node,
    contribution,
    history_payload,
)

_SCOPE = IngestionScope("acme", "widgets", "main")


def _client_for(
    handler: typ.Callable[[httpx.Request], httpx.Response],
) -> GitHubGraphQLClient:
    return GitHubGraphQLClient(
        GitHubGraphQLConfig(token="test-token", endpoint="https://ghe.example/api"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestConfig:
    """GitHubGraphQLConfig.from_env behaviour."""

    def test_requires_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A missing token is a configuration error."""
        monkeypatch.delenv("COMMITKEEP_GITHUB_TOKEN", raising=False)

        with pytest.raises(GitHubConfigError, match="COMMITKEEP_GITHUB_TOKEN"):
            GitHubGraphQLConfig.from_env()

    def test_reads_token_and_endpoint(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The endpoint override is honoured for GitHub Enterprise."""
        monkeypatch.setenv("COMMITKEEP_GITHUB_TOKEN", " secret ")
        monkeypatch.setenv("COMMITKEEP_GITHUB_ENDPOINT", "https://ghe.example/api")

        config = GitHubGraphQLConfig.from_env()

        assert config.token == "secret"
        assert config.endpoint == "https://ghe.example/api"

    def test_client_rejects_blank_token(self) -> None:
        """Constructing a client with a blank token fails fast."""
        with pytest.raises(GitHubConfigError, match="non-empty"):
            GitHubGraphQLClient(GitHubGraphQLConfig(token="  "))


class TestHistoryVariables:
    """Query shape selection by scope."""

    def test_full_history_scope_uses_unfiltered_query(self) -> None:
        """Scopes without an author use the branch history query."""
        query, variables = history_variables(_SCOPE, first=2, after="c1")

        assert query == COMMIT_HISTORY_QUERY
        assert variables == {
            "owner": "acme",
            "name": "widgets",
            "qualifiedName": "refs/heads/main",
            "first": 2,
            "after": "c1",
        }

    def test_author_scope_uses_filtered_query(self) -> None:
        """Author scopes pass the resolved node id."""
        scope = IngestionScope("acme", "widgets", "main", author="octocat")

        query, variables = history_variables(
            scope, first=2, after=None, author_id="U_1"
        )

        assert query == AUTHOR_COMMIT_HISTORY_QUERY
        assert variables["authorId"] == "U_1"

    def test_author_scope_requires_resolved_id(self) -> None:
        """An author scope without a node id is a programming error."""
        scope = IngestionScope("acme", "widgets", "main", author="octocat")

        with pytest.raises(ValueError, match="resolved author id"):
            history_variables(scope, first=2, after=None)


class TestResponseParsing:
    """Validation of GraphQL payloads into pages."""

    def test_page_normalises_commits(self) -> None:
        """Nodes become CommitRecords tagged with the scope's repository."""
        payload = history_payload(
            [commit_node("a1", committed_date="2024-05-01T14:00:00+02:00")],
            end_cursor="c1",
            has_next_page=True,
        )

        history = extract_commit_history(extract_data(payload), _SCOPE)
        page = page_from_history(_SCOPE, history)

        assert page.end_cursor == "c1"
        assert page.has_next_page is True
        (record,) = page.records
        assert record.oid == "a1"
        assert record.committed_at == dt.datetime(2024, 5, 1, 12, tzinfo=dt.UTC)
        assert record.repo_slug == "acme/widgets"
        assert record.branch == "main"

    def test_missing_author_and_empty_email_are_kept(self) -> None:
        """Absent authors and hidden emails are values, not errors."""
        nodes = [commit_node("a1", email=""), {**commit_node("a2"), "author": None}]
        payload = history_payload(nodes, end_cursor=None, has_next_page=False)

        page = page_from_history(
            _SCOPE, extract_commit_history(extract_data(payload), _SCOPE)
        )

        assert page.records[0].author.email == ""
        assert page.records[1].author.name is None
        assert page.records[1].author.email is None

    def test_null_repository_is_not_found(self) -> None:
        """GitHub reports unknown repositories as a null field."""
        with pytest.raises(GitHubNotFoundError, match="repository acme/widgets"):
            extract_commit_history({"repository": None}, _SCOPE)

    def test_null_ref_is_missing_branch(self) -> None:
        """An unknown branch surfaces as a null ref."""
        with pytest.raises(GitHubNotFoundError, match="branch main"):
            extract_commit_history({"repository": {"ref": None}}, _SCOPE)

    def test_next_page_without_cursor_is_rejected(self) -> None:
        """hasNextPage without an endCursor could never be resumed."""
        payload = history_payload([], end_cursor=None, has_next_page=True)
        history = extract_commit_history(extract_data(payload), _SCOPE)

        with pytest.raises(GitHubResponseShapeError, match="endCursor"):
            page_from_history(_SCOPE, history)

    def test_schema_mismatch_is_shape_error(self) -> None:
        """Nodes missing required fields fail validation."""
        payload = history_payload([{"oid": "a1"}], end_cursor=None, has_next_page=False)

        with pytest.raises(GitHubResponseShapeError, match="history"):
            extract_commit_history(extract_data(payload), _SCOPE)

    def test_graphql_errors_raise_api_error(self) -> None:
        """A payload carrying GraphQL errors is not treated as data."""
        with pytest.raises(GitHubAPIError, match="GraphQL errors"):
            extract_data({"errors": [{"message": "Bad credentials"}]})


class TestTransport:
    """Raw request behaviour of GitHubGraphQLClient."""

    @pytest.mark.asyncio
    async def test_request_posts_query_and_returns_raw_response(self) -> None:
        """The query and variables are posted as JSON to the endpoint."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                502, text="bad gateway", headers={"Retry-After": "3"}
            )

        client = _client_for(handler)
        response = await client.request("query { viewer { login } }", {"a": 1})

        assert response.status_code == 502
        assert response.payload is None
        assert response.headers["retry-after"] == "3"
        assert str(seen[0].url) == "https://ghe.example/api"
        assert json.loads(seen[0].content) == {
            "query": "query { viewer { login } }",
            "variables": {"a": 1},
        }

    @pytest.mark.asyncio
    async def test_network_failures_become_transport_errors(self) -> None:
        """Connection and timeout failures are reported as transport errors."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        def stall(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(GitHubTransportError, match="network error"):
            await _client_for(refuse).request("q", {})
        with pytest.raises(GitHubTransportError, match="timed out"):
            await _client_for(stall).request("q", {})

    @pytest.mark.asyncio
    async def test_execute_raises_on_http_error(self) -> None:
        """execute treats non-2xx responses as API errors."""
        client = _client_for(lambda _request: httpx.Response(401, json={}))

        with pytest.raises(GitHubAPIError) as excinfo:
            await client.execute("q", {})

        assert excinfo.value.status_code == 401


class TestLookups:
    """User and contribution lookups."""

    @pytest.mark.asyncio
    async def test_get_user_id(self) -> None:
        """Logins resolve to node ids; unknown logins are not found."""
        github = FakeGitHub()
        github.add_user("octocat", "U_1")
        client = github.client()

        assert await client.get_user_id("octocat") == "U_1"
        with pytest.raises(GitHubNotFoundError, match="user ghost"):
            await client.get_user_id("ghost")

    @pytest.mark.asyncio
    async def test_list_contributed_repositories(self) -> None:
        """Empty contributions are skipped and missing default branches filled."""
        github = FakeGitHub()
        github.contributions["octocat"] = [
            contribution("acme", "widgets", default_branch="trunk", count=4),
            contribution("acme", "gadgets", default_branch=None),
            contribution("acme", "idle", count=0),
        ]

        repos = await github.client().list_contributed_repositories(
            "octocat", default_branch="main"
        )

        assert [(repo.slug, repo.default_branch, repo.commit_count) for repo in repos] == [
            ("acme/widgets", "trunk", 4),
            ("acme/gadgets", "main", 1),
        ]
        assert describe_repositories(repos) == "acme/widgets, acme/gadgets"
