"""Rate-limit-aware page fetcher for GitHub commit history.

Every request attempt is reduced to an explicit outcome: the attempt either
succeeded, failed in a way worth retrying, or failed permanently. The retry
loop is a small state machine over :class:`RetryState` driven by those
outcomes, so backoff and exhaustion rules live in one place and can be tested
without a network.

The fetcher never sleeps on its own clock. ``clock``, ``sleep`` and ``rng``
are injectable so tests can drive suspension and backoff deterministically.
"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import dataclasses
import datetime as dt
import random
import typing as typ

from commitkeep.common.time import utcnow
from commitkeep.logging import get_logger, log_debug

from .client import (
    USER_ID_QUERY,
    extract_commit_history,
    extract_data,
    extract_user_id,
    graphql_errors,
    history_variables,
    page_from_history,
)
from .errors import (
    FetchFailed,
    FetchFatal,
    GitHubAPIError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
    GitHubTransportError,
)
from .observability import ErrorCategory, IngestionEventLogger
from .ratelimit import RateLimitObservation

if typ.TYPE_CHECKING:
    from .client import GitHubGraphQLClient, GraphQLResponse
    from .models import IngestionScope, PageResult
    from .ratelimit import RateLimitState

    type Clock = cabc.Callable[[], dt.datetime]
    type Sleeper = cabc.Callable[[float], cabc.Awaitable[None]]

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100

_HTTP_FORBIDDEN = 403
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR_THRESHOLD = 500
_HTTP_ERROR_STATUS_THRESHOLD = 400
_RETRY_AFTER_HEADER = "retry-after"
_REMAINING_HEADER = "x-ratelimit-remaining"


@dataclasses.dataclass(frozen=True, slots=True)
class AttemptSucceeded[T]:
    """The attempt produced a usable value."""

    value: T


@dataclasses.dataclass(frozen=True, slots=True)
class Retryable:
    """The attempt failed transiently and may be retried.

    ``retry_after`` carries GitHub's ``Retry-After`` hint in seconds, when
    present; it raises the floor of the next backoff delay.
    """

    kind: ErrorCategory
    error: Exception
    retry_after: float | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class Fatal:
    """The attempt failed permanently; retrying cannot help."""

    error: Exception


type AttemptOutcome[T] = AttemptSucceeded[T] | Retryable | Fatal


@dataclasses.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff parameters for transient fetch failures."""

    retry_limit: int = 5
    backoff_base: float = 1.0
    backoff_cap: float = 60.0

    def __post_init__(self) -> None:
        """Reject policies that could never make a request or never back off."""
        if self.retry_limit < 1:
            msg = "retry_limit must be at least 1"
            raise ValueError(msg)
        if self.backoff_base < 0 or self.backoff_cap < 0:
            msg = "backoff_base and backoff_cap must be non-negative"
            raise ValueError(msg)

    def delay_for(
        self, attempt: int, *, retry_after: float | None, rng: random.Random
    ) -> float:
        """Return the delay to wait after failed attempt number ``attempt``.

        Exponential backoff capped at ``backoff_cap``, plus jitter drawn from
        ``[0, backoff_base]``. ``retry_after`` is a lower bound.
        """
        exponential = min(self.backoff_cap, self.backoff_base * 2 ** (attempt - 1))
        delay = exponential + rng.uniform(0, self.backoff_base)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay


@dataclasses.dataclass(frozen=True, slots=True)
class RetryState:
    """Position of a fetch in its retry sequence.

    ``attempt`` is the number of the next attempt to make (1-based);
    ``next_delay`` is how long to wait before making it.
    """

    attempt: int = 1
    next_delay: float = 0.0

    def exhausted(self, policy: RetryPolicy) -> bool:
        """Return True when the attempt just made was the last allowed."""
        return self.attempt >= policy.retry_limit

    def after_failure(
        self, outcome: Retryable, policy: RetryPolicy, rng: random.Random
    ) -> RetryState:
        """Return the state for the attempt following a retryable failure."""
        return RetryState(
            attempt=self.attempt + 1,
            next_delay=policy.delay_for(
                self.attempt, retry_after=outcome.retry_after, rng=rng
            ),
        )


def _retry_after(headers: typ.Mapping[str, str]) -> float | None:
    raw = headers.get(_RETRY_AFTER_HEADER)
    if raw is None:
        return None
    text = str(raw).strip()
    return float(text) if text.isdigit() else None


def _error_message(payload: object) -> str:
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str):
            return message
    return ""


def _is_rate_limit_rejection(response: GraphQLResponse) -> bool:
    """Return True when a 403 is GitHub refusing service for rate limiting."""
    if str(response.headers.get(_REMAINING_HEADER, "")).strip() == "0":
        return True
    return "rate limit" in _error_message(response.payload).lower()


def classify_response(response: GraphQLResponse) -> AttemptOutcome[dict[str, typ.Any]]:
    """Reduce a raw GraphQL response to an attempt outcome.

    Successful outcomes carry the validated ``data`` object; callers still
    need to extract the fields they asked for.
    """
    status = response.status_code
    retry_after = _retry_after(response.headers)

    if status == _HTTP_TOO_MANY_REQUESTS or (
        status == _HTTP_FORBIDDEN and _is_rate_limit_rejection(response)
    ):
        return Retryable(
            kind=ErrorCategory.RATE_LIMITED,
            error=GitHubRateLimitError.rejected(status, retry_after),
            retry_after=retry_after,
        )
    if status >= _HTTP_SERVER_ERROR_THRESHOLD:
        return Retryable(
            kind=ErrorCategory.TRANSIENT_TRANSPORT,
            error=GitHubAPIError.http_error(status),
            retry_after=retry_after,
        )
    if status >= _HTTP_ERROR_STATUS_THRESHOLD:
        return Fatal(GitHubAPIError.http_error(status))

    if response.payload is None:
        return Fatal(GitHubResponseShapeError.invalid("body", "not valid JSON"))

    errors = graphql_errors(response.payload)
    if any(error.get("type") == "RATE_LIMITED" for error in errors):
        return Retryable(
            kind=ErrorCategory.RATE_LIMITED,
            error=GitHubRateLimitError.rejected(status, retry_after),
            retry_after=retry_after,
        )

    try:
        return AttemptSucceeded(extract_data(response.payload))
    except (GitHubAPIError, GitHubResponseShapeError) as exc:
        return Fatal(exc)


class PageFetcher:
    """Fetch single pages of branch history with retries and rate limiting."""

    def __init__(  # noqa: PLR0913
        self,
        client: GitHubGraphQLClient,
        *,
        page_size: int = 50,
        retry_policy: RetryPolicy | None = None,
        rate_limit_floor: int = 0,
        clock: Clock = utcnow,
        sleep: Sleeper = asyncio.sleep,
        rng: random.Random | None = None,
        event_logger: IngestionEventLogger | None = None,
    ) -> None:
        """Bind the fetcher to a client and its pacing parameters."""
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            msg = f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}"
            raise ValueError(msg)
        self._client = client
        self._page_size = page_size
        self._policy = retry_policy or RetryPolicy()
        self._floor = rate_limit_floor
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()  # noqa: S311 - jitter, not security
        self._event_logger = event_logger or IngestionEventLogger()
        self._author_ids: dict[str, str] = {}

    @property
    def page_size(self) -> int:
        """Return the number of commits requested per page."""
        return self._page_size

    async def fetch(
        self,
        scope: IngestionScope,
        cursor: str | None,
        *,
        rate_limit: RateLimitState,
    ) -> PageResult:
        """Fetch the page of ``scope`` history that follows ``cursor``.

        Parameters
        ----------
        scope
            Branch (and optional author) whose history is requested.
        cursor
            Opaque GitHub ``endCursor`` of the previous page, or ``None`` to
            start from the branch head.
        rate_limit
            Shared rate-limit state consulted before, and updated after,
            every request.

        Raises
        ------
        FetchFailed
            When transient failures persisted through every retry.
        FetchFatal
            When the failure is permanent (bad credentials, missing
            repository, branch or author, malformed response).

        """
        author_id: str | None = None
        if scope.author is not None:
            author_id = await self._resolve_author(scope, cursor, rate_limit)

        query, variables = history_variables(
            scope, first=self._page_size, after=cursor, author_id=author_id
        )

        def parse(data: dict[str, typ.Any]) -> PageResult:
            return page_from_history(scope, extract_commit_history(data, scope))

        return await self._with_retries(
            scope, cursor, rate_limit, query, variables, parse
        )

    async def _resolve_author(
        self, scope: IngestionScope, cursor: str | None, rate_limit: RateLimitState
    ) -> str:
        login = typ.cast("str", scope.author)
        cached = self._author_ids.get(login)
        if cached is not None:
            return cached

        def parse(data: dict[str, typ.Any]) -> str:
            return extract_user_id(data, login)

        author_id = await self._with_retries(
            scope, cursor, rate_limit, USER_ID_QUERY, {"login": login}, parse
        )
        self._author_ids[login] = author_id
        return author_id

    async def _with_retries[T](  # noqa: PLR0913
        self,
        scope: IngestionScope,
        cursor: str | None,
        rate_limit: RateLimitState,
        query: str,
        variables: dict[str, typ.Any],
        parse: cabc.Callable[[dict[str, typ.Any]], T],
    ) -> T:
        state = RetryState()
        while True:
            if state.next_delay > 0:
                await self._sleep(state.next_delay)
            await self._wait_for_budget(scope, rate_limit)

            outcome = await self._attempt(query, variables, parse, rate_limit)
            if isinstance(outcome, AttemptSucceeded):
                return outcome.value
            if isinstance(outcome, Fatal):
                raise FetchFatal(scope, cursor, error=outcome.error)
            if state.exhausted(self._policy):
                raise FetchFailed(
                    scope, cursor, attempts=state.attempt, last_error=outcome.error
                )

            state = state.after_failure(outcome, self._policy, self._rng)
            self._event_logger.log_fetch_retry(
                scope,
                attempt=state.attempt - 1,
                category=outcome.kind,
                delay=state.next_delay,
                error=outcome.error,
            )

    async def _attempt[T](
        self,
        query: str,
        variables: dict[str, typ.Any],
        parse: cabc.Callable[[dict[str, typ.Any]], T],
        rate_limit: RateLimitState,
    ) -> AttemptOutcome[T]:
        try:
            response = await self._client.request(query, variables)
        except GitHubTransportError as exc:
            return Retryable(kind=ErrorCategory.TRANSIENT_TRANSPORT, error=exc)

        outcome = classify_response(response)
        await self._record_budget(response, outcome, rate_limit)

        if not isinstance(outcome, AttemptSucceeded):
            return outcome
        try:
            return AttemptSucceeded(parse(outcome.value))
        except (GitHubNotFoundError, GitHubResponseShapeError) as exc:
            return Fatal(exc)

    async def _record_budget(
        self,
        response: GraphQLResponse,
        outcome: AttemptOutcome[typ.Any],
        rate_limit: RateLimitState,
    ) -> None:
        """Publish the budget reported by ``response`` to the shared state."""
        observation = RateLimitObservation.from_headers(response.headers)
        rejected = (
            isinstance(outcome, Retryable)
            and outcome.kind is ErrorCategory.RATE_LIMITED
        )
        if (
            rejected
            and (observation is None or observation.reset_at is None)
            and outcome.retry_after is not None
        ):
            # Explicit rejection without a reset header: hold every scope off.
            observation = RateLimitObservation.exhausted_until(
                self._clock() + dt.timedelta(seconds=outcome.retry_after)
            )
        if observation is not None:
            await rate_limit.observe(observation)

    async def _wait_for_budget(
        self, scope: IngestionScope, rate_limit: RateLimitState
    ) -> None:
        """Suspend until the shared budget is above the floor or has reset."""
        while True:
            snapshot = rate_limit.snapshot()
            now = self._clock()
            if not snapshot.is_exhausted(now=now, floor=self._floor):
                return
            seconds = snapshot.seconds_until_reset(now=now)
            self._event_logger.log_rate_limit_suspended(
                scope, seconds=seconds, reset_at=snapshot.reset_at
            )
            await self._sleep(seconds)
            log_debug(logger, "Rate-limit suspension for %s elapsed", scope.key)
