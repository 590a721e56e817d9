"""Terminal outcomes of ingestion runs."""

from __future__ import annotations

import collections
import dataclasses
import enum
import typing as typ

from commitkeep.github.observability import ErrorCategory

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commitkeep.github.models import IngestionScope
    from commitkeep.store.cursors import Cursor

ErrorKind = ErrorCategory


class PauseReason(enum.StrEnum):
    """Why a run stopped before reaching the end of history."""

    RETRIES_EXHAUSTED = "retries_exhausted"
    STORAGE_FAILURE = "storage_failure"
    CANCELLED = "cancelled"
    ALREADY_RUNNING = "already_running"


@dataclasses.dataclass(frozen=True, slots=True)
class Completed:
    """The scope's history was ingested to the end."""

    pages: int = 0
    inserted: int = 0

    @property
    def label(self) -> str:
        """Return the outcome label used in summaries."""
        return "completed"


@dataclasses.dataclass(frozen=True, slots=True)
class Paused:
    """The run stopped early; re-running resumes from ``cursor``."""

    reason: PauseReason
    cursor: Cursor | None = None
    error: str | None = None

    @property
    def label(self) -> str:
        """Return the outcome label used in summaries."""
        return "paused"


@dataclasses.dataclass(frozen=True, slots=True)
class Failed:
    """The run failed permanently; re-running will not help without a fix."""

    reason: str
    category: ErrorCategory = ErrorCategory.FATAL

    @property
    def label(self) -> str:
        """Return the outcome label used in summaries."""
        return "failed"


type IngestionOutcome = Completed | Paused | Failed


def describe_outcome(outcome: IngestionOutcome) -> str:
    """Render ``outcome`` as a one-line human-readable description."""
    if isinstance(outcome, Completed):
        return f"completed ({outcome.pages} pages, {outcome.inserted} new commits)"
    if isinstance(outcome, Paused):
        state = "absent" if outcome.cursor is None else outcome.cursor.state.value
        detail = f": {outcome.error}" if outcome.error else ""
        return f"paused ({outcome.reason}, cursor={state}){detail}"
    return f"failed ({outcome.category}): {outcome.reason}"


def summarise_outcomes(
    outcomes: cabc.Mapping[IngestionScope, IngestionOutcome],
) -> dict[str, int]:
    """Count outcomes by label (``completed``, ``paused``, ``failed``)."""
    counts: collections.Counter[str] = collections.Counter(
        {"completed": 0, "paused": 0, "failed": 0}
    )
    counts.update(outcome.label for outcome in outcomes.values())
    return dict(counts)


def all_completed(outcomes: cabc.Mapping[IngestionScope, IngestionOutcome]) -> bool:
    """Return True when every scope reached the end of its history."""
    return all(isinstance(outcome, Completed) for outcome in outcomes.values())
