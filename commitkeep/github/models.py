"""Typed domain models for GitHub commit-history ingestion.

The dataclasses here are the normalised values that flow through the
pipeline (scopes, commit records, pages). The ``msgspec`` structs mirror the
GraphQL wire shape and are only used to validate responses before they are
normalised.
"""

from __future__ import annotations

import dataclasses
import typing as typ

import msgspec

from commitkeep.common.slug import parse_scope_key, repo_slug, scope_key

if typ.TYPE_CHECKING:
    import datetime as dt


@dataclasses.dataclass(frozen=True, slots=True)
class IngestionScope:
    """One logical ingestion unit: a branch, optionally filtered to an author.

    ``author`` is a GitHub login. A full-history scope and an author-filtered
    scope of the same branch are distinct scopes with distinct cursors.
    """

    owner: str
    name: str
    branch: str
    author: str | None = None

    @property
    def slug(self) -> str:
        """Return the ``owner/name`` repository slug."""
        return repo_slug(self.owner, self.name)

    @property
    def key(self) -> str:
        """Return the stable ``owner/name@branch[~author]`` key."""
        return scope_key(self.owner, self.name, self.branch, self.author)

    @property
    def qualified_ref(self) -> str:
        """Return the fully qualified git ref for the branch."""
        return f"refs/heads/{self.branch}"

    @classmethod
    def from_key(cls, key: str, *, default_branch: str = "main") -> IngestionScope:
        """Build a scope from an ``owner/name[@branch][~author]`` key."""
        owner, name, branch, author = parse_scope_key(
            key, default_branch=default_branch
        )
        return cls(owner=owner, name=name, branch=branch, author=author)

    def __str__(self) -> str:
        """Render the scope as its key."""
        return self.key


@dataclasses.dataclass(frozen=True, slots=True)
class CommitAuthor:
    """Git author identity as reported by GitHub.

    Either field may be ``None``; ``email`` may also be an empty string when
    the author hides it. Both are stored exactly as received.
    """

    name: str | None = None
    email: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class CommitRecord:
    """Normalised commit metadata observed on a branch."""

    oid: str
    message_headline: str
    committed_at: dt.datetime
    author: CommitAuthor
    repo_owner: str
    repo_name: str
    branch: str

    @property
    def repo_slug(self) -> str:
        """Return the ``owner/name`` slug of the commit's repository."""
        return repo_slug(self.repo_owner, self.repo_name)


@dataclasses.dataclass(frozen=True, slots=True)
class PageResult:
    """One page of commit history returned by the page fetcher."""

    records: tuple[CommitRecord, ...]
    end_cursor: str | None
    has_next_page: bool


@dataclasses.dataclass(frozen=True, slots=True)
class ContributedRepository:
    """Repository a user has committed to, as reported by GitHub."""

    owner: str
    name: str
    default_branch: str
    commit_count: int

    @property
    def slug(self) -> str:
        """Return the ``owner/name`` repository slug."""
        return repo_slug(self.owner, self.name)


class AuthorNode(msgspec.Struct, frozen=True):
    """GraphQL ``GitActor`` fields requested for commits."""

    name: str | None = None
    email: str | None = None


class CommitNode(msgspec.Struct, frozen=True, rename="camel"):
    """GraphQL ``Commit`` node fields requested by the history queries."""

    oid: str
    message_headline: str
    committed_date: str
    author: AuthorNode | None = None


class HistoryEdge(msgspec.Struct, frozen=True):
    """Edge wrapper around a commit node."""

    node: CommitNode
    cursor: str | None = None


class PageInfo(msgspec.Struct, frozen=True, rename="camel"):
    """GraphQL connection pagination metadata."""

    has_next_page: bool
    end_cursor: str | None = None


class HistoryConnection(msgspec.Struct, frozen=True, rename="camel"):
    """GraphQL ``CommitHistoryConnection`` as returned by the history queries."""

    page_info: PageInfo
    edges: list[HistoryEdge]
