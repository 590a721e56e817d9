"""Persistence models for commits, scope membership and ingestion cursors."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

from commitkeep.common.time import utcnow
from commitkeep.store.errors import TimezoneAwareRequiredError


class Base(DeclarativeBase):
    """Base declarative class for commitkeep models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class CommitRow(Base):
    """Commit metadata observed on one branch of one repository.

    Rows are written once and never updated; ``content_hash`` fingerprints
    the stored content so later observations can be compared cheaply.
    """

    __tablename__ = "commits"
    __table_args__ = (
        UniqueConstraint(
            "oid", "repo_owner", "repo_name", "branch", name="uq_commit_branch_oid"
        ),
        Index(
            "ix_commits_branch_time", "repo_owner", "repo_name", "branch", "committed_at"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    oid: Mapped[str] = mapped_column(String(64))
    repo_owner: Mapped[str] = mapped_column(String(255))
    repo_name: Mapped[str] = mapped_column(String(255))
    branch: Mapped[str] = mapped_column(String(255))
    message_headline: Mapped[str] = mapped_column(Text())
    committed_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    author_name: Mapped[str | None] = mapped_column(String(255), default=None)
    author_email: Mapped[str | None] = mapped_column(String(320), default=None)
    content_hash: Mapped[str] = mapped_column(String(64))
    first_seen_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class CommitScopeRow(Base):
    """Association between a stored commit and a scope that observed it.

    ``content_hash`` is the fingerprint of the content as this scope last saw
    it. When it differs from the commit row's fingerprint, the content fields
    below hold what this scope observed and take precedence when the scope is
    read; otherwise they are null.
    """

    __tablename__ = "commit_scopes"
    __table_args__ = (
        UniqueConstraint("commit_id", "scope_key", name="uq_commit_scope"),
        Index("ix_commit_scopes_scope_key", "scope_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    commit_id: Mapped[int] = mapped_column(ForeignKey("commits.id"))
    scope_key: Mapped[str] = mapped_column(String(512))
    content_hash: Mapped[str] = mapped_column(String(64))
    message_headline: Mapped[str | None] = mapped_column(Text(), default=None)
    committed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    author_name: Mapped[str | None] = mapped_column(String(255), default=None)
    author_email: Mapped[str | None] = mapped_column(String(320), default=None)
    observed_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class IngestionCursorRow(Base):
    """Durable pagination cursor for one ingestion scope."""

    __tablename__ = "ingestion_cursors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    scope_key: Mapped[str] = mapped_column(String(512), unique=True)
    repo_owner: Mapped[str] = mapped_column(String(255))
    repo_name: Mapped[str] = mapped_column(String(255))
    branch: Mapped[str] = mapped_column(String(255))
    author: Mapped[str | None] = mapped_column(String(255), default=None)
    state: Mapped[str] = mapped_column(String(16))
    token: Mapped[str | None] = mapped_column(Text(), default=None)
    advanced_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


async def init_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
