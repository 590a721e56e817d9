"""Behavioural tests for resumable commit history ingestion."""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

import pytest
from pytest_bdd import given, parsers, scenario, then, when
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from commitkeep.github.models import IngestionScope
from commitkeep.github.ratelimit import RateLimitSnapshot, RateLimitState
from commitkeep.ingestion.outcomes import Completed, Failed, Paused
from commitkeep.store import init_storage
from commitkeep.store.cursors import Continue, Done, Start
from tests.helpers.github_fakes import FakeClock, FakeGitHub, widgets_history
from tests.helpers.pipeline import FlakyCommitStore, build_pipeline, stored_oids

if typ.TYPE_CHECKING:
    from pathlib import Path

    from commitkeep.ingestion.outcomes import IngestionOutcome
    from commitkeep.store.commits import CommitStore
    from tests.helpers.pipeline import Pipeline


def run_async[T](coro: typ.Coroutine[typ.Any, typ.Any, T]) -> T:
    """Run async coroutines in sync BDD step functions."""
    return asyncio.run(coro)


class IngestionContext(typ.TypedDict, total=False):
    """Shared state used by BDD steps."""

    session_factory: async_sessionmaker[AsyncSession]
    clock: FakeClock
    github: FakeGitHub
    commit_store: CommitStore
    rate_limit: RateLimitState
    reset_at: dt.datetime
    pipeline: Pipeline
    outcome: IngestionOutcome


@scenario(
    "../commit_ingestion.feature", "A branch history is ingested to the end"
)
def test_branch_history_ingested() -> None:
    """Behavioural test: a full run stores every commit."""


@scenario(
    "../commit_ingestion.feature",
    "A storage failure pauses the run at the last stored page",
)
def test_storage_failure_resumes() -> None:
    """Behavioural test: interrupted runs resume from the saved cursor."""


@scenario(
    "../commit_ingestion.feature", "Re-running a finished scope fetches nothing"
)
def test_finished_scope_is_idle() -> None:
    """Behavioural test: Done scopes issue no requests."""


@scenario(
    "../commit_ingestion.feature", "An exhausted rate limit delays the first request"
)
def test_rate_limit_delays_requests() -> None:
    """Behavioural test: requests wait for the rate-limit reset."""


@scenario("../commit_ingestion.feature", "A missing repository fails permanently")
def test_missing_repository_fails() -> None:
    """Behavioural test: permanent errors fail the scope."""


@pytest.fixture
def ingestion_context(tmp_path: Path) -> typ.Iterator[IngestionContext]:
    """Provision a fresh database for each scenario."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ingestion.db'}", poolclass=NullPool
    )
    run_async(init_storage(engine))
    clock = FakeClock()
    yield {
        "session_factory": async_sessionmaker(engine, expire_on_commit=False),
        "clock": clock,
        "github": FakeGitHub(clock=clock),
    }
    run_async(engine.dispose())


def _pipeline(ingestion_context: IngestionContext) -> Pipeline:
    if "pipeline" not in ingestion_context:
        ingestion_context["pipeline"] = build_pipeline(
            ingestion_context["session_factory"],
            ingestion_context["github"],
            ingestion_context["clock"],
            commit_store=ingestion_context.get("commit_store"),
            rate_limit=ingestion_context.get("rate_limit"),
        )
    return ingestion_context["pipeline"]


@given("an empty commit store")
def empty_commit_store(ingestion_context: IngestionContext) -> None:
    """Storage is initialised by the context fixture."""


@given(parsers.parse('the branch "{key}" has a two page history'))
def branch_has_history(ingestion_context: IngestionContext, key: str) -> None:
    """Script the two-page widgets history on the fake endpoint."""
    ingestion_context["github"].add_history(key, widgets_history())


@given(parsers.parse("the commit store fails on merge {call:d}"))
def commit_store_fails(ingestion_context: IngestionContext, call: int) -> None:
    """Make the given merge call raise a storage failure."""
    ingestion_context["commit_store"] = FlakyCommitStore(
        ingestion_context["session_factory"], fail_on={call}
    )


@given(parsers.parse("the rate limit budget is exhausted for {seconds:d} seconds"))
def rate_limit_exhausted(ingestion_context: IngestionContext, seconds: int) -> None:
    """Start with no remaining budget until ``seconds`` from now."""
    reset_at = ingestion_context["clock"].now + dt.timedelta(seconds=seconds)
    ingestion_context["reset_at"] = reset_at
    ingestion_context["rate_limit"] = RateLimitState(
        RateLimitSnapshot(remaining=0, reset_at=reset_at)
    )


@when(parsers.parse('I ingest the scope "{key}"'))
def ingest_scope(ingestion_context: IngestionContext, key: str) -> None:
    """Run the history ingestor once for ``key``."""
    pipeline = _pipeline(ingestion_context)
    ingestion_context["outcome"] = run_async(
        pipeline.ingestor.run(IngestionScope.from_key(key))
    )


@then(
    parsers.parse(
        "the run completes after {pages:d} pages with {inserted:d} new commits"
    )
)
def run_completed(ingestion_context: IngestionContext, pages: int, inserted: int) -> None:
    """Assert the last run reached the end of history."""
    assert ingestion_context["outcome"] == Completed(pages=pages, inserted=inserted)


@then(parsers.parse('the run pauses because of "{reason}"'))
def run_paused(ingestion_context: IngestionContext, reason: str) -> None:
    """Assert the last run paused for ``reason``."""
    outcome = ingestion_context["outcome"]
    assert isinstance(outcome, Paused), f"expected a pause, got {outcome!r}"
    assert outcome.reason == reason


@then(parsers.parse('the run fails with category "{category}"'))
def run_failed(ingestion_context: IngestionContext, category: str) -> None:
    """Assert the last run failed permanently."""
    outcome = ingestion_context["outcome"]
    assert isinstance(outcome, Failed), f"expected a failure, got {outcome!r}"
    assert outcome.category == category


@then(parsers.parse('the scope holds commits "{oids}"'))
def scope_holds_commits(ingestion_context: IngestionContext, oids: str) -> None:
    """Compare the stored commits for the widgets branch."""
    pipeline = _pipeline(ingestion_context)
    scope = IngestionScope("acme", "widgets", "main")
    expected = {oid.strip() for oid in oids.split(",")}
    assert run_async(stored_oids(pipeline.commit_store, scope)) == expected


@then("the cursor for the scope is done")
def cursor_done(ingestion_context: IngestionContext) -> None:
    """The widgets cursor reached the end of history."""
    pipeline = _pipeline(ingestion_context)
    cursor = run_async(
        pipeline.cursor_store.load(IngestionScope("acme", "widgets", "main"))
    )
    assert isinstance(cursor, Done)


@then(parsers.parse('the cursor for the scope continues from "{token}"'))
def cursor_continues(ingestion_context: IngestionContext, token: str) -> None:
    """The widgets cursor points after the last stored page."""
    pipeline = _pipeline(ingestion_context)
    cursor = run_async(
        pipeline.cursor_store.load(IngestionScope("acme", "widgets", "main"))
    )
    assert isinstance(cursor, Continue)
    assert cursor.token == token


@then(parsers.parse('the cursor for "{key}" is still at the start'))
def cursor_at_start(ingestion_context: IngestionContext, key: str) -> None:
    """Failed scopes keep their initial cursor."""
    pipeline = _pipeline(ingestion_context)
    cursor = run_async(pipeline.cursor_store.load(IngestionScope.from_key(key)))
    assert cursor == Start()


@then(parsers.parse("GitHub received {count:d} history requests"))
def history_request_count(ingestion_context: IngestionContext, count: int) -> None:
    """Count history page requests seen by the fake endpoint."""
    assert len(ingestion_context["github"].history_requests()) == count


@then("no request was sent before the rate limit reset")
def no_request_before_reset(ingestion_context: IngestionContext) -> None:
    """Every request was issued at or after the reset instant."""
    reset_at = ingestion_context["reset_at"]
    requests = ingestion_context["github"].requests
    assert requests, "expected requests after the reset"
    assert all(req.at is not None and req.at >= reset_at for req in requests)
