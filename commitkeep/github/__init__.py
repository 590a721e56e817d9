"""GitHub GraphQL client, page fetcher and rate-limit primitives."""

from __future__ import annotations

from .client import GitHubGraphQLClient, GitHubGraphQLConfig, GraphQLResponse
from .errors import (
    FetchError,
    FetchFailed,
    FetchFatal,
    GitHubAPIError,
    GitHubConfigError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
    GitHubTransportError,
)
from .fetcher import PageFetcher, RetryPolicy, RetryState
from .models import (
    CommitAuthor,
    CommitRecord,
    ContributedRepository,
    IngestionScope,
    PageResult,
)
from .observability import (
    ErrorCategory,
    IngestionEventLogger,
    IngestionEventType,
    categorize_error,
)
from .ratelimit import RateLimitObservation, RateLimitSnapshot, RateLimitState

__all__ = [
    "CommitAuthor",
    "CommitRecord",
    "ContributedRepository",
    "ErrorCategory",
    "FetchError",
    "FetchFailed",
    "FetchFatal",
    "GitHubAPIError",
    "GitHubConfigError",
    "GitHubGraphQLClient",
    "GitHubGraphQLConfig",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubResponseShapeError",
    "GitHubTransportError",
    "GraphQLResponse",
    "IngestionEventLogger",
    "IngestionEventType",
    "IngestionScope",
    "PageFetcher",
    "PageResult",
    "RateLimitObservation",
    "RateLimitSnapshot",
    "RateLimitState",
    "RetryPolicy",
    "RetryState",
    "categorize_error",
]
