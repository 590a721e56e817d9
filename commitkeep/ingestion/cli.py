"""One-shot command-line ingestion of GitHub commit history.

Examples
--------
Ingest a branch and one author's commits on another branch::

    commitkeep-ingest acme/widgets acme/gadgets@develop~octocat \
        --database-url sqlite+aiosqlite:///commits.db

Ingest every repository a user has committed to::

    commitkeep-ingest --contributor octocat

"""

from __future__ import annotations

import argparse
import asyncio
import os
import typing as typ
from pathlib import Path

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from commitkeep.github.client import GitHubGraphQLClient, GitHubGraphQLConfig
from commitkeep.github.errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubNotFoundError,
    GitHubResponseShapeError,
    GitHubTransportError,
)
from commitkeep.github.models import IngestionScope
from commitkeep.logging import configure_logging, get_logger, log_warning
from commitkeep.store.storage import init_storage

from .config import IngestionConfig
from .factory import build_scheduler
from .outcomes import all_completed, describe_outcome, summarise_outcomes
from .scopes import ScopeFileError, load_scope_file, scopes_for_contributor

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .outcomes import IngestionOutcome

logger = get_logger(__name__)

_DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///commitkeep.db"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commitkeep-ingest",
        description="Ingest GitHub commit history into the commitkeep store.",
    )
    parser.add_argument(
        "scopes",
        nargs="*",
        metavar="SCOPE",
        help="Scope key: owner/name[@branch][~author]",
    )
    parser.add_argument(
        "--scopes",
        dest="scope_file",
        type=Path,
        default=None,
        help="YAML file listing repositories and authors to ingest",
    )
    parser.add_argument(
        "--contributor",
        action="append",
        default=[],
        metavar="LOGIN",
        help="Ingest this user's commits on every repository they contributed to",
    )
    parser.add_argument(
        "--full-resync",
        action="store_true",
        help="Reset cursors and re-ingest each scope from the branch head",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy async URL (default: $COMMITKEEP_DATABASE_URL or a "
        "local SQLite file)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("COMMITKEEP_LOG_LEVEL", "INFO"),
        help="Log level (default: $COMMITKEEP_LOG_LEVEL or INFO)",
    )
    return parser


async def _collect_scopes(
    args: argparse.Namespace,
    client: GitHubGraphQLClient,
    config: IngestionConfig,
) -> list[IngestionScope]:
    scopes = [
        IngestionScope.from_key(key, default_branch=config.default_branch)
        for key in args.scopes
    ]
    if args.scope_file is not None:
        scopes.extend(
            load_scope_file(args.scope_file, default_branch=config.default_branch)
        )
    for login in args.contributor:
        discovered = await scopes_for_contributor(
            client, login, default_branch=config.default_branch
        )
        if not discovered:
            log_warning(logger, "No contributed repositories found for %s", login)
        scopes.extend(discovered)
    return list(dict.fromkeys(scopes))


def _print_summary(outcomes: cabc.Mapping[IngestionScope, IngestionOutcome]) -> None:
    for scope in sorted(outcomes, key=lambda item: item.key):
        print(f"{scope.key}: {describe_outcome(outcomes[scope])}")
    counts = summarise_outcomes(outcomes)
    print(
        f"{len(outcomes)} scopes: {counts['completed']} completed, "
        f"{counts['paused']} paused, {counts['failed']} failed"
    )


async def _run(
    args: argparse.Namespace,
    client: GitHubGraphQLClient,
    config: IngestionConfig,
    database_url: str,
) -> int:
    scopes = await _collect_scopes(args, client, config)
    if not scopes:
        print("No scopes to ingest.")
        return 2

    engine = create_async_engine(database_url)
    try:
        await init_storage(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        scheduler = build_scheduler(session_factory, client, config=config)
        outcomes = await scheduler.run_all(scopes, full_resync=args.full_resync)
    finally:
        await engine.dispose()

    _print_summary(outcomes)
    return 0 if all_completed(outcomes) else 1


async def _main_async(
    args: argparse.Namespace,
    *,
    client: GitHubGraphQLClient | None,
    config: IngestionConfig,
) -> int:
    database_url = (
        args.database_url
        or os.environ.get("COMMITKEEP_DATABASE_URL")
        or _DEFAULT_DATABASE_URL
    )
    owned = client is None
    resolved = client or GitHubGraphQLClient(GitHubGraphQLConfig.from_env())
    try:
        return await _run(args, resolved, config, database_url)
    finally:
        if owned:
            await resolved.aclose()


def main(
    argv: list[str] | None = None,
    *,
    client: GitHubGraphQLClient | None = None,
) -> int:
    """Run a one-shot ingestion and print a per-scope summary.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.
    client : GitHubGraphQLClient | None, optional
        Client to use instead of one built from ``COMMITKEEP_GITHUB_TOKEN``.

    Returns
    -------
    int
        0 when every scope completed, 1 when any scope paused or failed,
        2 on usage or configuration errors.

    """
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = IngestionConfig.from_env()
        return asyncio.run(_main_async(args, client=client, config=config))
    except (
        ScopeFileError,
        GitHubConfigError,
        GitHubAPIError,
        GitHubNotFoundError,
        GitHubResponseShapeError,
        GitHubTransportError,
        ValueError,
    ) as exc:
        print(f"commitkeep-ingest: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
