"""GitHub ingestion errors."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from .models import IngestionScope


class GitHubAPIError(RuntimeError):
    """Raised when GitHub returns an error response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int) -> GitHubAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(f"GitHub GraphQL HTTP {status_code}", status_code=status_code)

    @classmethod
    def graphql_errors(cls, errors: object) -> GitHubAPIError:
        """Return an error for GraphQL `errors` payloads."""
        return cls(f"GitHub GraphQL errors: {errors}")


class GitHubRateLimitError(GitHubAPIError):
    """Raised when GitHub explicitly rejects a request for rate limiting."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        """Record the optional ``Retry-After`` hint in seconds."""
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code)

    @classmethod
    def rejected(
        cls, status_code: int | None, retry_after: float | None = None
    ) -> GitHubRateLimitError:
        """Return an error for a rate-limit rejection."""
        msg = "GitHub GraphQL rate limited"
        if retry_after is not None:
            msg = f"{msg}, retry after {retry_after:g}s"
        return cls(msg, status_code=status_code, retry_after=retry_after)


class GitHubTransportError(RuntimeError):
    """Raised when a request never produced an HTTP response."""

    @classmethod
    def timeout(cls) -> GitHubTransportError:
        """Return an error for request timeouts."""
        return cls("GitHub GraphQL request timed out")

    @classmethod
    def network_error(cls, detail: str) -> GitHubTransportError:
        """Return an error for DNS, connection or TLS failures."""
        return cls(f"GitHub GraphQL network error: {detail}")


class GitHubResponseShapeError(RuntimeError):
    """Raised when GitHub GraphQL responses are missing expected fields."""

    @classmethod
    def missing(cls, field: str) -> GitHubResponseShapeError:
        """Return an error for a missing GraphQL response field."""
        return cls(f"GitHub GraphQL response missing expected field: {field}")

    @classmethod
    def invalid(cls, field: str, detail: str) -> GitHubResponseShapeError:
        """Return an error for a GraphQL field with an unexpected shape."""
        return cls(f"GitHub GraphQL response field {field} is invalid: {detail}")


class GitHubNotFoundError(RuntimeError):
    """Raised when a repository, branch or user does not exist on GitHub."""

    @classmethod
    def repository(cls, slug: str) -> GitHubNotFoundError:
        """Return an error for an unknown repository."""
        return cls(f"GitHub repository {slug} not found")

    @classmethod
    def branch(cls, slug: str, branch: str) -> GitHubNotFoundError:
        """Return an error for an unknown branch."""
        return cls(f"GitHub branch {branch} not found in {slug}")

    @classmethod
    def user(cls, login: str) -> GitHubNotFoundError:
        """Return an error for an unknown user login."""
        return cls(f"GitHub user {login} not found")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def missing_token(cls) -> GitHubConfigError:
        """Return an error when no GitHub token is configured."""
        return cls("COMMITKEEP_GITHUB_TOKEN is required for GitHub API")

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")


class FetchError(RuntimeError):
    """Base class for terminal page-fetch errors carrying resume context."""

    def __init__(
        self, message: str, *, scope: IngestionScope, cursor: str | None
    ) -> None:
        """Attach the scope and request cursor to the error."""
        self.scope = scope
        self.cursor = cursor
        super().__init__(message)


class FetchFailed(FetchError):  # noqa: N818 - name mirrors the ingestion outcome
    """Raised when transient failures persisted through every retry.

    The caller can resume later from ``cursor`` without data loss.
    """

    def __init__(
        self,
        scope: IngestionScope,
        cursor: str | None,
        *,
        attempts: int,
        last_error: BaseException | None,
    ) -> None:
        """Record how many attempts were made and the final failure."""
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"fetch for {scope.key} failed after {attempts} attempts: {last_error}",
            scope=scope,
            cursor=cursor,
        )


class FetchFatal(FetchError):  # noqa: N818 - name mirrors the ingestion outcome
    """Raised when a fetch failed permanently and must not be retried."""

    def __init__(
        self,
        scope: IngestionScope,
        cursor: str | None,
        *,
        error: BaseException,
    ) -> None:
        """Record the permanent failure."""
        self.error = error
        super().__init__(
            f"fetch for {scope.key} failed permanently: {error}",
            scope=scope,
            cursor=cursor,
        )
