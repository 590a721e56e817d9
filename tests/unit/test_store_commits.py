"""Unit tests for the idempotent commit store."""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

import pytest
from sqlalchemy import func, select

from commitkeep.github.models import CommitAuthor, CommitRecord, IngestionScope
from commitkeep.store.commits import CommitStore, MergeResult, content_hash
from commitkeep.store.errors import StorageFailure, TimezoneAwareRequiredError
from commitkeep.store.storage import CommitRow, CommitScopeRow
from tests.helpers.femtologging_capture import capture_femto_logs

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_SCOPE = IngestionScope("acme", "widgets", "main")
_AUTHOR_SCOPE = IngestionScope("acme", "widgets", "main", author="octocat")
_BASE = dt.datetime(2024, 5, 1, tzinfo=dt.UTC)


def _record(
    oid: str,
    *,
    hours: int = 0,
    headline: str | None = None,
    branch: str = "main",
    email: str | None = "ada@example.com",
) -> CommitRecord:
    return CommitRecord(
        oid=oid,
        message_headline=headline or f"Commit {oid}",
        committed_at=_BASE + dt.timedelta(hours=hours),
        author=CommitAuthor(name="Ada", email=email),
        repo_owner="acme",
        repo_name="widgets",
        branch=branch,
    )


async def _row_count(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        return int(await session.scalar(select(func.count()).select_from(CommitRow)))


class TestMerge:
    """CommitStore.merge semantics."""

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Merging the same page twice stores it once."""
        store = CommitStore(session_factory)
        page = [_record("a1", hours=2), _record("a2", hours=1)]

        first = await store.merge(_SCOPE, page)
        second = await store.merge(_SCOPE, page)

        assert first == MergeResult(inserted=2, associated=2)
        assert second == MergeResult(unchanged=2)
        assert await _row_count(session_factory) == 2
        assert await store.count_commits(_SCOPE) == 2

    @pytest.mark.asyncio
    async def test_duplicate_oids_within_a_page_collapse(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A page repeating an oid is merged as one record."""
        store = CommitStore(session_factory)

        result = await store.merge(_SCOPE, [_record("a1"), _record("a1")])

        assert result.total == 1

    @pytest.mark.asyncio
    async def test_empty_page_is_a_no_op(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Empty pages do not open a transaction."""
        assert await CommitStore(session_factory).merge(_SCOPE, []) == MergeResult()

    @pytest.mark.asyncio
    async def test_sibling_scopes_share_rows(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Full-history and author scopes of a branch share commit rows."""
        store = CommitStore(session_factory)

        await store.merge(_SCOPE, [_record("a1"), _record("a2")])
        author_result = await store.merge(_AUTHOR_SCOPE, [_record("a2")])

        assert author_result == MergeResult(unchanged=1, associated=1)
        assert await _row_count(session_factory) == 2
        assert await store.count_commits(_SCOPE) == 2
        assert await store.count_commits(_AUTHOR_SCOPE) == 1

    @pytest.mark.asyncio
    async def test_same_oid_on_two_branches_is_two_rows(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Branches are separate keys even for a shared commit."""
        store = CommitStore(session_factory)
        develop = IngestionScope("acme", "widgets", "develop")

        await store.merge(_SCOPE, [_record("a1")])
        await store.merge(develop, [_record("a1", branch="develop")])

        assert await _row_count(session_factory) == 2
        assert await store.get_commit("acme", "widgets", "develop", "a1") is not None

    @pytest.mark.asyncio
    async def test_conflicting_content_keeps_stored_row(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Stored content is immutable; differences are counted and logged."""
        store = CommitStore(session_factory)
        await store.merge(_SCOPE, [_record("a1", headline="Original")])
        rewritten = _record("a1", headline="Rewritten")

        with capture_femto_logs("commitkeep.store.commits") as capture:
            result = await store.merge(_AUTHOR_SCOPE, [rewritten])
            record = capture.wait_for_message("differs from stored content")

        assert result == MergeResult(conflicts=1, associated=1)
        stored = await store.get_commit("acme", "widgets", "main", "a1")
        assert stored is not None
        assert stored.message_headline == "Original"
        assert record.level in {"WARN", "WARNING"}
        async with session_factory() as session:
            link = await session.scalar(
                select(CommitScopeRow).where(
                    CommitScopeRow.scope_key == _AUTHOR_SCOPE.key
                )
            )
        assert link is not None
        assert link.content_hash == content_hash(rewritten)
        assert link.message_headline == "Rewritten"

    @pytest.mark.asyncio
    async def test_conflicting_content_is_read_back_per_scope(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Each scope lists the content it observed; the commit row is untouched."""
        store = CommitStore(session_factory)
        await store.merge(_SCOPE, [_record("a1", headline="Original")])
        await store.merge(
            _AUTHOR_SCOPE, [_record("a1", hours=3, headline="Rewritten")]
        )

        [author_view] = await store.list_commits(_AUTHOR_SCOPE)
        [branch_view] = await store.list_commits(_SCOPE)

        assert author_view.message_headline == "Rewritten"
        assert author_view.committed_at == _BASE + dt.timedelta(hours=3)
        assert branch_view.message_headline == "Original"
        assert branch_view.committed_at == _BASE
        assert await _row_count(session_factory) == 1

    @pytest.mark.asyncio
    async def test_matching_content_clears_scope_override(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A scope that later observes the stored content reads the stored row."""
        store = CommitStore(session_factory)
        await store.merge(_SCOPE, [_record("a1", headline="Original")])
        await store.merge(_AUTHOR_SCOPE, [_record("a1", headline="Rewritten")])

        result = await store.merge(_AUTHOR_SCOPE, [_record("a1", headline="Original")])

        assert result == MergeResult(unchanged=1)
        [author_view] = await store.list_commits(_AUTHOR_SCOPE)
        assert author_view.message_headline == "Original"
        async with session_factory() as session:
            link = await session.scalar(
                select(CommitScopeRow).where(
                    CommitScopeRow.scope_key == _AUTHOR_SCOPE.key
                )
            )
        assert link is not None
        assert link.message_headline is None

    @pytest.mark.asyncio
    async def test_empty_email_is_stored_as_given(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Hidden author emails are stored as empty, not rejected."""
        store = CommitStore(session_factory)

        await store.merge(_SCOPE, [_record("a1", email=""), _record("a2", email=None)])

        first = await store.get_commit("acme", "widgets", "main", "a1")
        second = await store.get_commit("acme", "widgets", "main", "a2")
        assert first is not None
        assert first.author.email == ""
        assert second is not None
        assert second.author.email is None

    @pytest.mark.asyncio
    async def test_foreign_records_are_rejected(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Records from another branch cannot be merged into a scope."""
        with pytest.raises(ValueError, match="does not belong"):
            await CommitStore(session_factory).merge(
                _SCOPE, [_record("a1", branch="develop")]
            )

    @pytest.mark.asyncio
    async def test_naive_timestamps_never_reach_storage(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Naive datetimes are refused by the column type."""
        naive = dataclasses.replace(
            _record("a1"), committed_at=dt.datetime(2024, 5, 1)  # noqa: DTZ001
        )

        with pytest.raises((StorageFailure, TimezoneAwareRequiredError)):
            await CommitStore(session_factory).merge(_SCOPE, [naive])

        assert await _row_count(session_factory) == 0


class TestReads:
    """The read contract used by the query service."""

    @pytest.mark.asyncio
    async def test_list_commits_orders_by_commit_time(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Listings are newest first by default and paginate stably."""
        store = CommitStore(session_factory)
        await store.merge(
            _SCOPE,
            [_record("a1", hours=1), _record("a3", hours=3), _record("a2", hours=2)],
        )

        newest = await store.list_commits(_SCOPE)
        oldest = await store.list_commits(_SCOPE, newest_first=False)
        page = await store.list_commits(_SCOPE, limit=1, offset=1)

        assert [r.oid for r in newest] == ["a3", "a2", "a1"]
        assert [r.oid for r in oldest] == ["a1", "a2", "a3"]
        assert [r.oid for r in page] == ["a2"]
        assert newest[0].committed_at == _BASE + dt.timedelta(hours=3)

    @pytest.mark.asyncio
    async def test_ties_break_on_oid(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Commits sharing a timestamp are ordered by oid."""
        store = CommitStore(session_factory)
        await store.merge(_SCOPE, [_record("b"), _record("a"), _record("c")])

        listed = await store.list_commits(_SCOPE, newest_first=False)

        assert [r.oid for r in listed] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_get_commit_absent(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Unknown commits are reported as None."""
        assert await CommitStore(session_factory).get_commit(
            "acme", "widgets", "main", "zz"
        ) is None
