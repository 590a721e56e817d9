"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import contextlib
import os
import socket
import typing as typ

import dramatiq
import pytest_asyncio
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from commitkeep.store import init_storage

if typ.TYPE_CHECKING:
    from pathlib import Path

# The ingestion actor binds to the global broker when its module is imported.
dramatiq.set_broker(StubBroker())


def _should_use_pglite() -> bool:
    """Return True when tests should run against py-pglite Postgres."""
    return os.getenv("COMMITKEEP_TEST_DB", "sqlite").lower() == "pglite"


def _find_free_port() -> int:
    """Find an available TCP port for a temporary Postgres instance."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@contextlib.asynccontextmanager
async def _pglite_engine(tmp_path: Path) -> typ.AsyncIterator[AsyncEngine]:
    """Start a py-pglite Postgres and yield an async engine bound to it."""
    from py_pglite import PGliteConfig, PGliteManager

    port = _find_free_port()
    config = PGliteConfig(
        use_tcp=True,
        tcp_host="127.0.0.1",
        tcp_port=port,
        work_dir=tmp_path / "pglite",
    )
    with PGliteManager(config):
        engine = create_async_engine(
            f"postgresql+asyncpg://postgres:postgres@{config.tcp_host}:"
            f"{config.tcp_port}/postgres"
        )
        try:
            yield engine
        finally:
            await engine.dispose()


@contextlib.asynccontextmanager
async def _sqlite_engine(tmp_path: Path) -> typ.AsyncIterator[AsyncEngine]:
    """Yield an engine on a throwaway SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'commitkeep_test.db'}"
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a session factory over freshly initialised commit storage.

    SQLite is the default; set ``COMMITKEEP_TEST_DB=pglite`` to run against
    an embedded Postgres instead.
    """
    engine_cm = _pglite_engine(tmp_path) if _should_use_pglite() else None
    async with engine_cm or _sqlite_engine(tmp_path) as engine:
        await init_storage(engine)
        yield async_sessionmaker(engine, expire_on_commit=False)
