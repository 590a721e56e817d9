"""Unit tests for the one-shot ingestion command."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest

from commitkeep.ingestion.cli import main
from tests.helpers.github_fakes import (
    FakeGitHub,
    FakePage,
    commit_node,
    contribution,
    widgets_history,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ingestion settings from the outer environment out of the run."""
    for name in (
        "COMMITKEEP_PAGE_SIZE",
        "COMMITKEEP_MAX_CONCURRENCY",
        "COMMITKEEP_RETRY_LIMIT",
        "COMMITKEEP_DEFAULT_BRANCH",
        "COMMITKEEP_DATABASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    # Leave global femtologging handlers as the session configured them.
    monkeypatch.setattr("commitkeep.logging.basicConfig", lambda **_: None)


@pytest.fixture
def github() -> cabc.Iterator[FakeGitHub]:
    """Provide a fake endpoint with the widgets history."""
    fake = FakeGitHub()
    fake.add_history("acme/widgets@main", widgets_history())
    yield fake


@pytest.fixture
def database_args(tmp_path: Path) -> list[str]:
    """Point the command at a throwaway SQLite database."""
    return ["--database-url", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"]


def _run(github: FakeGitHub, argv: list[str]) -> int:
    client = github.client()
    try:
        return main(argv, client=client)
    finally:
        asyncio.run(client.aclose())


class TestIngestCommand:
    """Exit codes and printed summaries."""

    def test_successful_ingest(
        self,
        github: FakeGitHub,
        database_args: list[str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Completed scopes exit 0 and are summarised."""
        exit_code = _run(github, ["acme/widgets", *database_args])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "acme/widgets@main: completed (2 pages, 3 new commits)" in out
        assert "1 scopes: 1 completed, 0 paused, 0 failed" in out

    def test_second_run_is_a_no_op(
        self,
        github: FakeGitHub,
        database_args: list[str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Finished scopes complete again without new commits."""
        _run(github, ["acme/widgets", *database_args])
        capsys.readouterr()

        exit_code = _run(github, ["acme/widgets", *database_args])

        assert exit_code == 0
        assert "completed (0 pages, 0 new commits)" in capsys.readouterr().out

    def test_failed_scope_exits_one(
        self,
        github: FakeGitHub,
        database_args: list[str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Any scope that does not complete makes the run exit 1."""
        exit_code = _run(github, ["acme/widgets", "acme/missing", *database_args])

        out = capsys.readouterr().out
        assert exit_code == 1
        assert "acme/missing@main: failed (fatal)" in out
        assert "2 scopes: 1 completed, 0 paused, 1 failed" in out

    def test_no_scopes_is_a_usage_error(
        self,
        github: FakeGitHub,
        database_args: list[str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Running without scopes exits 2."""
        assert _run(github, database_args) == 2
        assert "No scopes to ingest." in capsys.readouterr().out

    def test_malformed_scope_key(
        self,
        github: FakeGitHub,
        database_args: list[str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Malformed keys are reported without ingesting anything."""
        assert _run(github, ["widgets", *database_args]) == 2
        assert "commitkeep-ingest: Invalid repository slug" in capsys.readouterr().out
        assert github.requests == []

    def test_invalid_environment(
        self,
        github: FakeGitHub,
        database_args: list[str],
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Invalid ingestion settings exit 2."""
        monkeypatch.setenv("COMMITKEEP_PAGE_SIZE", "0")

        assert _run(github, ["acme/widgets", *database_args]) == 2
        assert "COMMITKEEP_PAGE_SIZE must be positive" in capsys.readouterr().out


class TestScopeSources:
    """Scope files and contributor discovery."""

    def test_scope_file(
        self,
        github: FakeGitHub,
        database_args: list[str],
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Scopes listed in a YAML file are ingested."""
        scope_file = tmp_path / "scopes.yaml"
        scope_file.write_text("scopes:\n  - repository: acme/widgets\n")

        exit_code = _run(github, ["--scopes", str(scope_file), *database_args])

        assert exit_code == 0
        assert "acme/widgets@main: completed" in capsys.readouterr().out

    def test_invalid_scope_file(
        self,
        github: FakeGitHub,
        database_args: list[str],
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Scope file problems exit 2."""
        scope_file = tmp_path / "scopes.yaml"
        scope_file.write_text("scopes:\n  - repository: nope\n")

        assert _run(github, ["--scopes", str(scope_file), *database_args]) == 2
        assert "Invalid repository slug" in capsys.readouterr().out

    def test_contributor_discovery(
        self,
        github: FakeGitHub,
        database_args: list[str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """--contributor ingests the user's commits on each repository."""
        github.add_user("octocat", "U_octo")
        github.contributions["octocat"] = [contribution("acme", "widgets")]
        github.add_history(
            "acme/widgets@main~octocat",
            [FakePage([commit_node("a2")], "x1", has_next_page=False)],
        )

        exit_code = _run(github, ["--contributor", "octocat", *database_args])

        assert exit_code == 0
        assert "acme/widgets@main~octocat: completed (1 pages, 1 new commits)" in (
            capsys.readouterr().out
        )

    def test_unknown_contributor(
        self,
        github: FakeGitHub,
        database_args: list[str],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Unknown logins are configuration errors."""
        assert _run(github, ["--contributor", "ghost", *database_args]) == 2
        assert "GitHub user ghost not found" in capsys.readouterr().out
