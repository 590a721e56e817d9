"""Process-wide GitHub rate-limit state shared by concurrent fetches.

The state is a single versioned, immutable snapshot. Fetchers read it
optimistically through :meth:`RateLimitState.snapshot` to decide whether to
suspend, and publish what each response reported through
:meth:`RateLimitState.observe`, which serialises writers with
compare-and-set. The lock is a thread lock, so one state can be shared by
fetches running on different threads and event loops within a process. A
handle to the state is passed explicitly into every fetch.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import threading
import typing as typ

_REMAINING_HEADER = "x-ratelimit-remaining"
_LIMIT_HEADER = "x-ratelimit-limit"
_RESET_HEADER = "x-ratelimit-reset"


def _header_int(headers: typ.Mapping[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    text = str(raw).strip()
    return int(text) if text.isdigit() else None


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimitObservation:
    """Budget information reported by one GitHub response."""

    remaining: int | None
    limit: int | None = None
    reset_at: dt.datetime | None = None

    @classmethod
    def from_headers(
        cls, headers: typ.Mapping[str, str]
    ) -> RateLimitObservation | None:
        """Read ``X-RateLimit-*`` headers, returning ``None`` when absent."""
        remaining = _header_int(headers, _REMAINING_HEADER)
        limit = _header_int(headers, _LIMIT_HEADER)
        reset_epoch = _header_int(headers, _RESET_HEADER)
        if remaining is None and reset_epoch is None:
            return None
        reset_at = (
            dt.datetime.fromtimestamp(reset_epoch, tz=dt.UTC)
            if reset_epoch is not None
            else None
        )
        return cls(remaining=remaining, limit=limit, reset_at=reset_at)

    @classmethod
    def exhausted_until(cls, reset_at: dt.datetime) -> RateLimitObservation:
        """Return an observation for an explicit rejection lasting until reset."""
        return cls(remaining=0, reset_at=reset_at)


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimitSnapshot:
    """Versioned view of the remaining request budget."""

    remaining: int | None = None
    limit: int | None = None
    reset_at: dt.datetime | None = None
    version: int = 0

    def is_exhausted(self, *, now: dt.datetime, floor: int = 0) -> bool:
        """Return True when requests must wait for ``reset_at``."""
        if self.remaining is None or self.reset_at is None:
            return False
        return self.remaining <= floor and self.reset_at > now

    def seconds_until_reset(self, *, now: dt.datetime) -> float:
        """Return the non-negative number of seconds until the budget resets."""
        if self.reset_at is None:
            return 0.0
        return max(0.0, (self.reset_at - now).total_seconds())


def merge_observation(
    current: RateLimitSnapshot, observation: RateLimitObservation
) -> RateLimitSnapshot:
    """Fold ``observation`` into ``current`` and return the proposed snapshot.

    A later reset window replaces the budget outright. Within the same window
    the lowest reported ``remaining`` wins, because responses for concurrent
    requests can arrive out of order. Observations for an older window are
    stale and leave ``current`` untouched (the same object is returned).
    """
    observed_reset = observation.reset_at
    current_reset = current.reset_at

    if observed_reset is not None and current_reset is not None:
        if observed_reset < current_reset:
            return current
        if observed_reset > current_reset:
            return RateLimitSnapshot(
                remaining=observation.remaining,
                limit=observation.limit or current.limit,
                reset_at=observed_reset,
                version=current.version,
            )

    remaining = observation.remaining
    if remaining is not None and current.remaining is not None:
        remaining = min(remaining, current.remaining)
    elif remaining is None:
        remaining = current.remaining

    proposed = RateLimitSnapshot(
        remaining=remaining,
        limit=observation.limit or current.limit,
        reset_at=observed_reset or current_reset,
        version=current.version,
    )
    return current if proposed == current else proposed


class RateLimitState:
    """Shared, versioned rate-limit budget with compare-and-set updates."""

    def __init__(self, initial: RateLimitSnapshot | None = None) -> None:
        """Start from ``initial`` or from an unknown budget."""
        self._snapshot = initial or RateLimitSnapshot()
        self._lock = threading.Lock()

    def snapshot(self) -> RateLimitSnapshot:
        """Return the current snapshot without synchronisation."""
        return self._snapshot

    async def compare_and_set(
        self, expected_version: int, proposed: RateLimitSnapshot
    ) -> bool:
        """Install ``proposed`` if no other writer has updated the state.

        Returns ``False`` when the stored version no longer matches
        ``expected_version``; the caller should re-read and retry.
        """
        with self._lock:
            if self._snapshot.version != expected_version:
                return False
            self._snapshot = dataclasses.replace(
                proposed, version=expected_version + 1
            )
            return True

    async def observe(self, observation: RateLimitObservation) -> RateLimitSnapshot:
        """Merge a response's budget into the shared state and return the result."""
        while True:
            current = self._snapshot
            proposed = merge_observation(current, observation)
            if proposed is current:
                return current
            if await self.compare_and_set(current.version, proposed):
                return self._snapshot
