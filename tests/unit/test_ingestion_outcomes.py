"""Unit tests for ingestion outcome helpers."""

from __future__ import annotations

import datetime as dt

from commitkeep.github.models import IngestionScope
from commitkeep.github.observability import ErrorCategory
from commitkeep.ingestion.outcomes import (
    Completed,
    Failed,
    Paused,
    PauseReason,
    all_completed,
    describe_outcome,
    summarise_outcomes,
)
from commitkeep.store.cursors import Continue

_NOW = dt.datetime(2024, 6, 1, tzinfo=dt.UTC)


def test_describe_outcomes() -> None:
    """Each outcome renders as one readable line."""
    assert describe_outcome(Completed(pages=2, inserted=3)) == (
        "completed (2 pages, 3 new commits)"
    )
    assert describe_outcome(
        Paused(
            reason=PauseReason.STORAGE_FAILURE,
            cursor=Continue("c1", _NOW),
            error="disk full",
        )
    ) == "paused (storage_failure, cursor=continue): disk full"
    assert describe_outcome(Paused(reason=PauseReason.ALREADY_RUNNING)) == (
        "paused (already_running, cursor=absent)"
    )
    assert describe_outcome(Failed(reason="gone")) == "failed (fatal): gone"


def test_summaries_count_every_label() -> None:
    """Summaries always report all three labels."""
    outcomes = {
        IngestionScope("acme", "a", "main"): Completed(),
        IngestionScope("acme", "b", "main"): Paused(reason=PauseReason.CANCELLED),
        IngestionScope("acme", "c", "main"): Completed(),
    }

    assert summarise_outcomes(outcomes) == {"completed": 2, "paused": 1, "failed": 0}
    assert summarise_outcomes({}) == {"completed": 0, "paused": 0, "failed": 0}


def test_all_completed() -> None:
    """Only a batch without pauses or failures counts as complete."""
    scope = IngestionScope("acme", "a", "main")

    assert all_completed({scope: Completed()})
    assert not all_completed(
        {scope: Failed(reason="x", category=ErrorCategory.UNKNOWN)}
    )
