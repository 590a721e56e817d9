"""Repository slug and scope key utilities.

Repository slugs are GitHub identifiers in ``owner/name`` format. Scope keys
extend a slug with a branch and an optional author login, written as
``owner/name@branch`` or ``owner/name@branch~login``. Neither is a filesystem
path, so they are parsed with these helpers rather than ``pathlib``.
"""

from __future__ import annotations

_BRANCH_SEPARATOR = "@"
_AUTHOR_SEPARATOR = "~"


def repo_slug(owner: str, name: str) -> str:
    """Build a repository slug from owner and name.

    Examples
    --------
    >>> repo_slug("acme", "widgets")
    'acme/widgets'

    """
    return f"{owner}/{name}"


def parse_repo_slug(slug: str) -> tuple[str, str]:
    """Parse a repository slug into owner and name.

    Raises
    ------
    ValueError
        If the slug is not in ``owner/name`` format.

    Examples
    --------
    >>> parse_repo_slug("acme/widgets")
    ('acme', 'widgets')

    """
    if slug.count("/") != 1:
        msg = f"Invalid repository slug: expected 'owner/name', got {slug!r}"
        raise ValueError(msg)

    owner, name = slug.split("/")
    if not owner or not name:
        msg = f"Invalid repository slug: expected 'owner/name', got {slug!r}"
        raise ValueError(msg)

    return owner, name


def scope_key(owner: str, name: str, branch: str, author: str | None = None) -> str:
    """Build the stable scope key used for cursors and scope associations.

    Examples
    --------
    >>> scope_key("acme", "widgets", "main")
    'acme/widgets@main'
    >>> scope_key("acme", "widgets", "main", "octocat")
    'acme/widgets@main~octocat'

    """
    key = f"{repo_slug(owner, name)}{_BRANCH_SEPARATOR}{branch}"
    if author:
        key = f"{key}{_AUTHOR_SEPARATOR}{author}"
    return key


def parse_scope_key(
    key: str, *, default_branch: str = "main"
) -> tuple[str, str, str, str | None]:
    """Parse ``owner/name[@branch][~author]`` into its components.

    Parameters
    ----------
    key:
        Scope key as written on the command line or in a scope file.
    default_branch:
        Branch used when the key does not name one.

    Returns
    -------
    tuple[str, str, str, str | None]
        ``(owner, name, branch, author)``.

    Raises
    ------
    ValueError
        If the slug part is malformed or the branch/author parts are empty.

    Examples
    --------
    >>> parse_scope_key("acme/widgets")
    ('acme', 'widgets', 'main', None)
    >>> parse_scope_key("acme/widgets@dev~octocat")
    ('acme', 'widgets', 'dev', 'octocat')

    """
    remainder = key.strip()
    author: str | None = None
    if _AUTHOR_SEPARATOR in remainder:
        remainder, author = remainder.rsplit(_AUTHOR_SEPARATOR, 1)
        if not author:
            msg = f"Invalid scope key: empty author in {key!r}"
            raise ValueError(msg)

    branch = default_branch
    if _BRANCH_SEPARATOR in remainder:
        remainder, branch = remainder.split(_BRANCH_SEPARATOR, 1)
        if not branch:
            msg = f"Invalid scope key: empty branch in {key!r}"
            raise ValueError(msg)

    owner, name = parse_repo_slug(remainder)
    return owner, name, branch, author
