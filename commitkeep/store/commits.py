"""Idempotent commit merge and the read contract used by the query service."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import typing as typ

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from commitkeep.github.models import CommitAuthor, CommitRecord
from commitkeep.logging import get_logger, log_warning

from .errors import StorageFailure
from .storage import CommitRow, CommitScopeRow

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from sqlalchemy.sql import Select

    from commitkeep.github.models import IngestionScope

    type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)

_NO_OBSERVED_CONTENT: dict[str, typ.Any] = dict.fromkeys(
    ("message_headline", "committed_at", "author_name", "author_email")
)


@dataclasses.dataclass(frozen=True, slots=True)
class MergeResult:
    """Counts describing how one page of records was merged."""

    inserted: int = 0
    unchanged: int = 0
    conflicts: int = 0
    associated: int = 0

    @property
    def total(self) -> int:
        """Return the number of distinct records that were merged."""
        return self.inserted + self.unchanged + self.conflicts


def content_hash(record: CommitRecord) -> str:
    """Return a stable fingerprint of a record's mutable-looking content."""
    material = json.dumps(
        [
            record.message_headline,
            record.committed_at.isoformat(),
            record.author.name,
            record.author.email,
        ],
        separators=(",", ":"),
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def _record_from_row(row: CommitRow, link: CommitScopeRow | None = None) -> CommitRecord:
    source: CommitRow | CommitScopeRow = row
    if (
        link is not None
        and link.content_hash != row.content_hash
        and link.committed_at is not None
    ):
        source = link
    return CommitRecord(
        oid=row.oid,
        message_headline=typ.cast("str", source.message_headline),
        committed_at=typ.cast("dt.datetime", source.committed_at),
        author=CommitAuthor(name=source.author_name, email=source.author_email),
        repo_owner=row.repo_owner,
        repo_name=row.repo_name,
        branch=row.branch,
    )


def _observed_content(record: CommitRecord) -> dict[str, typ.Any]:
    return {
        "message_headline": record.message_headline,
        "committed_at": record.committed_at,
        "author_name": record.author.name,
        "author_email": record.author.email,
    }


def _unique_by_oid(
    scope: IngestionScope, records: cabc.Iterable[CommitRecord]
) -> dict[str, CommitRecord]:
    unique: dict[str, CommitRecord] = {}
    for record in records:
        if (record.repo_owner, record.repo_name, record.branch) != (
            scope.owner,
            scope.name,
            scope.branch,
        ):
            msg = f"commit {record.oid} does not belong to scope {scope.key}"
            raise ValueError(msg)
        unique.setdefault(record.oid, record)
    return unique


class CommitStore:
    """Persist commit records keyed by (oid, repository, branch).

    Each call to :meth:`merge` is a single transaction: either the whole page
    is stored, or nothing is and :class:`StorageFailure` is raised.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        """Store the session factory used for merges and reads."""
        self._session_factory = session_factory

    async def merge(
        self, scope: IngestionScope, records: cabc.Sequence[CommitRecord]
    ) -> MergeResult:
        """Upsert ``records`` and associate them with ``scope``.

        Absent commits are inserted. Commits already stored with identical
        content are left alone. Commits stored with different content keep
        the stored row; the difference is logged, counted as a conflict, and
        the incoming content is recorded on the association for ``scope``,
        where it is what :meth:`list_commits` returns for that scope.

        Raises
        ------
        StorageFailure
            If the transaction could not be committed.

        """
        unique = _unique_by_oid(scope, records)
        if not unique:
            return MergeResult()

        try:
            try:
                return await self._merge_once(scope, unique)
            except IntegrityError:
                # A sibling scope on the same branch inserted one of these
                # commits concurrently; the retry sees its row.
                return await self._merge_once(scope, unique)
        except SQLAlchemyError as exc:
            raise StorageFailure.during(f"merge for {scope.key}", str(exc)) from exc

    async def _merge_once(
        self, scope: IngestionScope, unique: dict[str, CommitRecord]
    ) -> MergeResult:
        inserted = unchanged = conflicts = associated = 0

        async with self._session_factory() as session, session.begin():
            existing = {
                row.oid: row
                for row in await session.scalars(
                    self._branch_query(scope).where(CommitRow.oid.in_(list(unique)))
                )
            }

            rows: list[tuple[CommitRow, CommitRecord, str]] = []
            for oid, record in unique.items():
                digest = content_hash(record)
                row = existing.get(oid)
                if row is None:
                    row = CommitRow(
                        oid=record.oid,
                        repo_owner=record.repo_owner,
                        repo_name=record.repo_name,
                        branch=record.branch,
                        message_headline=record.message_headline,
                        committed_at=record.committed_at,
                        author_name=record.author.name,
                        author_email=record.author.email,
                        content_hash=digest,
                    )
                    session.add(row)
                    inserted += 1
                elif row.content_hash == digest:
                    unchanged += 1
                else:
                    conflicts += 1
                    log_warning(
                        logger,
                        "Commit %s on %s@%s differs from stored content "
                        "(scope=%s); keeping stored content, recording the "
                        "observed content for this scope",
                        oid,
                        record.repo_slug,
                        record.branch,
                        scope.key,
                    )
                rows.append((row, record, digest))

            await session.flush()

            associations = {
                link.commit_id: link
                for link in await session.scalars(
                    select(CommitScopeRow).where(
                        CommitScopeRow.scope_key == scope.key,
                        CommitScopeRow.commit_id.in_([row.id for row, _, _ in rows]),
                    )
                )
            }
            for row, record, digest in rows:
                observed = (
                    _NO_OBSERVED_CONTENT
                    if digest == row.content_hash
                    else _observed_content(record)
                )
                link = associations.get(row.id)
                if link is None:
                    session.add(
                        CommitScopeRow(
                            commit_id=row.id,
                            scope_key=scope.key,
                            content_hash=digest,
                            **observed,
                        )
                    )
                    associated += 1
                elif link.content_hash != digest:
                    link.content_hash = digest
                    for field, value in observed.items():
                        setattr(link, field, value)

        return MergeResult(
            inserted=inserted,
            unchanged=unchanged,
            conflicts=conflicts,
            associated=associated,
        )

    async def list_commits(
        self,
        scope: IngestionScope,
        *,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[CommitRecord]:
        """Return commits observed under ``scope`` ordered by commit time.

        Ties on ``committed_at`` are broken by ``oid`` so pagination is
        stable. Content this scope observed differently from the stored row
        is returned in place of the stored content.
        """
        committed_at = func.coalesce(CommitScopeRow.committed_at, CommitRow.committed_at)
        if newest_first:
            ordering = (committed_at.desc(), CommitRow.oid.desc())
        else:
            ordering = (committed_at.asc(), CommitRow.oid.asc())
        stmt = (
            self._scope_query(scope)
            .add_columns(CommitScopeRow)
            .order_by(*ordering)
            .limit(limit)
            .offset(offset)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_record_from_row(row, link) for row, link in result.all()]
        except SQLAlchemyError as exc:
            raise StorageFailure.during("commit listing", str(exc)) from exc

    async def count_commits(self, scope: IngestionScope) -> int:
        """Return how many commits have been observed under ``scope``."""
        stmt = select(func.count()).select_from(
            self._scope_query(scope).subquery()
        )
        try:
            async with self._session_factory() as session:
                return int(await session.scalar(stmt) or 0)
        except SQLAlchemyError as exc:
            raise StorageFailure.during("commit count", str(exc)) from exc

    async def get_commit(
        self, owner: str, name: str, branch: str, oid: str
    ) -> CommitRecord | None:
        """Return one stored commit, or ``None`` if it was never observed."""
        stmt = select(CommitRow).where(
            CommitRow.repo_owner == owner,
            CommitRow.repo_name == name,
            CommitRow.branch == branch,
            CommitRow.oid == oid,
        )
        try:
            async with self._session_factory() as session:
                row = await session.scalar(stmt)
                return None if row is None else _record_from_row(row)
        except SQLAlchemyError as exc:
            raise StorageFailure.during("commit lookup", str(exc)) from exc

    @staticmethod
    def _branch_query(scope: IngestionScope) -> Select[tuple[CommitRow]]:
        return select(CommitRow).where(
            CommitRow.repo_owner == scope.owner,
            CommitRow.repo_name == scope.name,
            CommitRow.branch == scope.branch,
        )

    @classmethod
    def _scope_query(cls, scope: IngestionScope) -> Select[tuple[CommitRow]]:
        return cls._branch_query(scope).join(
            CommitScopeRow,
            (CommitScopeRow.commit_id == CommitRow.id)
            & (CommitScopeRow.scope_key == scope.key),
        )
