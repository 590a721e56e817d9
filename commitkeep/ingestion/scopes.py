"""Scope selection: YAML scope files and contributor discovery.

A scope file lists repositories and, optionally, the authors whose history
should be ingested separately::

    default_branch: main
    scopes:
      - repository: acme/widgets
      - repository: acme/gadgets
        branch: develop
        authors: [octocat]
        full_history: false

Each entry yields a full-history scope (unless ``full_history`` is false)
plus one author-filtered scope per listed author.
"""

from __future__ import annotations

import typing as typ
from pathlib import Path

import msgspec
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from commitkeep.common.slug import parse_repo_slug
from commitkeep.github.client import describe_repositories
from commitkeep.github.models import IngestionScope
from commitkeep.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commitkeep.github.client import GitHubGraphQLClient
    from commitkeep.github.models import ContributedRepository

YAML_VERSION = (1, 2)

logger = get_logger(__name__)


class ScopeEntry(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """One repository entry in a scope file.

    Attributes
    ----------
    repository : str
        ``owner/name`` slug of the repository.
    branch : str, optional
        Branch to ingest; defaults to the file's or the configured default.
    authors : list[str]
        GitHub logins to ingest as separate author-filtered scopes.
    full_history : bool
        Whether to also ingest the branch's unfiltered history.

    """

    repository: str
    branch: str | None = None
    authors: list[str] = msgspec.field(default_factory=list)
    full_history: bool = True


class ScopeFile(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """Top-level structure of a scope file."""

    scopes: list[ScopeEntry]
    default_branch: str | None = None


class ScopeFileError(ValueError):
    """Raised when a scope file cannot be parsed or fails validation."""

    def __init__(self, issues: list[str]) -> None:
        """Capture validation issues whilst preserving the aggregated message."""
        message = "\n".join(issues)
        super().__init__(message)
        self.issues = issues


def _yaml() -> YAML:
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    return yaml


def _entry_scopes(
    entry: ScopeEntry, default_branch: str, issues: list[str]
) -> list[IngestionScope]:
    try:
        owner, name = parse_repo_slug(entry.repository)
    except ValueError as exc:
        issues.append(f"{entry.repository!r}: {exc}")
        return []

    branch = entry.branch or default_branch
    scopes: list[IngestionScope] = []
    if entry.full_history:
        scopes.append(IngestionScope(owner=owner, name=name, branch=branch))
    for author in entry.authors:
        if not author.strip():
            issues.append(f"{entry.repository}: author logins must be non-empty")
            continue
        scopes.append(
            IngestionScope(owner=owner, name=name, branch=branch, author=author.strip())
        )
    if not scopes:
        issues.append(
            f"{entry.repository}: entry selects no scopes "
            "(full_history is false and no authors are listed)"
        )
    return scopes


def scopes_from_file(scope_file: ScopeFile, *, default_branch: str) -> list[IngestionScope]:
    """Expand a parsed scope file into distinct ingestion scopes.

    Raises
    ------
    ScopeFileError
        If any entry is invalid; every problem is reported at once.

    """
    branch_default = scope_file.default_branch or default_branch
    issues: list[str] = []
    scopes: list[IngestionScope] = []
    for entry in scope_file.scopes:
        scopes.extend(_entry_scopes(entry, branch_default, issues))
    if issues:
        raise ScopeFileError(issues)
    return list(dict.fromkeys(scopes))


def load_scope_file(
    path: Path | str, *, default_branch: str = "main"
) -> list[IngestionScope]:
    """Parse a YAML scope file using a YAML 1.2 compliant loader."""
    path_obj = Path(path)
    try:
        loaded = _yaml().load(path_obj.read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        raise ScopeFileError([f"failed to parse YAML: {exc}"]) from exc

    if loaded is None:
        raise ScopeFileError(["scope file is empty"])

    try:
        scope_file = msgspec.convert(loaded, type=ScopeFile)
    except msgspec.ValidationError as exc:
        raise ScopeFileError([f"schema validation failed: {exc}"]) from exc

    return scopes_from_file(scope_file, default_branch=default_branch)


def scopes_for_repositories(
    repositories: cabc.Iterable[ContributedRepository], login: str
) -> list[IngestionScope]:
    """Build author-filtered scopes on each repository's default branch."""
    return [
        IngestionScope(
            owner=repo.owner,
            name=repo.name,
            branch=repo.default_branch,
            author=login,
        )
        for repo in repositories
    ]


async def scopes_for_contributor(
    client: GitHubGraphQLClient, login: str, *, default_branch: str = "main"
) -> list[IngestionScope]:
    """Discover repositories ``login`` committed to and return their scopes."""
    repositories = await client.list_contributed_repositories(
        login, default_branch=default_branch
    )
    if repositories:
        log_info(
            logger,
            "Discovered %d repositories for %s: %s",
            len(repositories),
            login,
            describe_repositories(repositories),
        )
    return scopes_for_repositories(repositories, login)
