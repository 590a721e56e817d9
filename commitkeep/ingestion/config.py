"""Configuration for the history ingestor and scheduler.

Usage
-----
Create a configuration with defaults:

>>> config = IngestionConfig()
>>> config.page_size
50

Or load from environment variables:

>>> import os
>>> os.environ["COMMITKEEP_PAGE_SIZE"] = "100"
>>> IngestionConfig.from_env().page_size
100

"""

from __future__ import annotations

import dataclasses as dc
import os

from commitkeep.github.fetcher import MAX_PAGE_SIZE, RetryPolicy


@dc.dataclass(frozen=True, slots=True)
class IngestionConfig:
    """Runtime knobs for paginated commit-history ingestion.

    Attributes
    ----------
    page_size
        Commits requested per GraphQL page, between 1 and 100.
    max_concurrency
        Maximum number of scopes ingested at the same time.
    retry_limit
        Attempts made for one page before the scope is paused.
    backoff_base
        Base delay in seconds for exponential backoff and the upper bound of
        the jitter added to each delay.
    backoff_cap
        Upper bound in seconds for the exponential part of a delay.
    rate_limit_floor
        Remaining-request budget at or below which fetches suspend until the
        rate-limit window resets.
    default_branch
        Branch assumed for scope keys that do not name one.

    """

    page_size: int = 50
    max_concurrency: int = 4
    retry_limit: int = 5
    backoff_base: float = 1.0
    backoff_cap: float = 60.0
    rate_limit_floor: int = 0
    default_branch: str = "main"

    def __post_init__(self) -> None:
        """Validate bounds that the GitHub API or asyncio would reject later."""
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            msg = f"page_size must be between 1 and {MAX_PAGE_SIZE}"
            raise ValueError(msg)
        if self.max_concurrency < 1:
            msg = "max_concurrency must be positive"
            raise ValueError(msg)
        if self.rate_limit_floor < 0:
            msg = "rate_limit_floor must not be negative"
            raise ValueError(msg)

    def retry_policy(self) -> RetryPolicy:
        """Return the fetch retry policy described by this configuration."""
        return RetryPolicy(
            retry_limit=self.retry_limit,
            backoff_base=self.backoff_base,
            backoff_cap=self.backoff_cap,
        )

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_non_negative_int(env_var: str, default: int) -> int:
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 0:
            msg = f"{env_var} must not be negative, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_seconds(env_var: str, default: float) -> float:
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            msg = f"{env_var} must be a number of seconds, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 0:
            msg = f"{env_var} must not be negative, got: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls) -> IngestionConfig:
        """Create configuration from environment variables.

        Reads ``COMMITKEEP_PAGE_SIZE``, ``COMMITKEEP_MAX_CONCURRENCY``,
        ``COMMITKEEP_RETRY_LIMIT``, ``COMMITKEEP_BACKOFF_BASE``,
        ``COMMITKEEP_BACKOFF_CAP``, ``COMMITKEEP_RATE_LIMIT_FLOOR`` and
        ``COMMITKEEP_DEFAULT_BRANCH``; unset variables keep their defaults.

        Raises
        ------
        ValueError
            If a variable is set to a value outside its allowed range.

        """
        default_branch = os.environ.get("COMMITKEEP_DEFAULT_BRANCH", "").strip()
        return cls(
            page_size=cls._parse_positive_int("COMMITKEEP_PAGE_SIZE", 50),
            max_concurrency=cls._parse_positive_int("COMMITKEEP_MAX_CONCURRENCY", 4),
            retry_limit=cls._parse_positive_int("COMMITKEEP_RETRY_LIMIT", 5),
            backoff_base=cls._parse_seconds("COMMITKEEP_BACKOFF_BASE", 1.0),
            backoff_cap=cls._parse_seconds("COMMITKEEP_BACKOFF_CAP", 60.0),
            rate_limit_floor=cls._parse_non_negative_int(
                "COMMITKEEP_RATE_LIMIT_FLOOR", 0
            ),
            default_branch=default_branch or "main",
        )
