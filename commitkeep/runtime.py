"""commitkeep runtime entrypoint for container deployments.

Granian serves ``commitkeep.runtime:create_app``, which reads
:class:`RuntimeSettings` from the environment and delegates to
:func:`commitkeep.api.app.create_app`. With ``COMMITKEEP_DATABASE_URL`` set
the app serves the commit and lag endpoints; otherwise it starts in
health-only mode.

Environment variables:

- ``COMMITKEEP_HOST``: Bind address (default ``0.0.0.0``)
- ``COMMITKEEP_PORT``: Listen port (default ``8080``)
- ``COMMITKEEP_LOG_LEVEL``: Log level (default ``INFO``)
- ``COMMITKEEP_DATABASE_URL``: Database connection URL (optional)
- ``COMMITKEEP_STALLED_AFTER_SECONDS``: Idle time after which a pending scope
  is reported as stalled (default ``3600``)

Run the service directly with ``python -m commitkeep.runtime``.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import os
import typing as typ

from commitkeep.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["RuntimeSettings", "create_app", "main"]

logger = get_logger(__name__)

_MIN_PORT = 1
_MAX_PORT = 65535
_DEFAULT_STALLED_AFTER = dt.timedelta(hours=1)


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301
    except ValueError as exc:
        log_error(
            logger,
            "Invalid COMMITKEEP_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def _parse_stalled_after(raw: str | None) -> dt.timedelta:
    if raw is None or not raw.strip():
        return _DEFAULT_STALLED_AFTER
    try:
        seconds = float(raw)
    except ValueError:
        seconds = -1.0
    if seconds <= 0:
        log_warning(
            logger,
            "Invalid COMMITKEEP_STALLED_AFTER_SECONDS %r, using %d",
            raw,
            int(_DEFAULT_STALLED_AFTER.total_seconds()),
        )
        return _DEFAULT_STALLED_AFTER
    return dt.timedelta(seconds=seconds)


@dc.dataclass(frozen=True, slots=True)
class RuntimeSettings:
    """Settings for the query service process."""

    host: str = "0.0.0.0"  # noqa: S104 - container bind
    port: int = 8080
    log_level: str = "INFO"
    database_url: str | None = None
    stalled_after: dt.timedelta = _DEFAULT_STALLED_AFTER

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        """Read settings from ``COMMITKEEP_*`` environment variables.

        Raises
        ------
        SystemExit
            If ``COMMITKEEP_PORT`` is invalid.

        """
        return cls(
            host=os.environ.get("COMMITKEEP_HOST", "0.0.0.0"),  # noqa: S104
            port=_parse_port(os.environ.get("COMMITKEEP_PORT", "8080")),
            log_level=os.environ.get("COMMITKEEP_LOG_LEVEL", "INFO"),
            database_url=os.environ.get("COMMITKEEP_DATABASE_URL") or None,
            stalled_after=_parse_stalled_after(
                os.environ.get("COMMITKEEP_STALLED_AFTER_SECONDS")
            ),
        )


def create_app() -> falcon.asgi.App:
    """Create the Falcon ASGI application from the environment.

    Returns
    -------
    falcon.asgi.App
        Health-only app, or the full query app when
        ``COMMITKEEP_DATABASE_URL`` is set.

    """
    from commitkeep.api.app import AppDependencies
    from commitkeep.api.app import create_app as _create_api_app

    settings = RuntimeSettings.from_env()
    if settings.database_url is None:
        return _create_api_app()

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from commitkeep.ingestion.lag import IngestionHealthConfig

    engine = create_async_engine(settings.database_url)
    return _create_api_app(
        AppDependencies(
            session_factory=async_sessionmaker(engine, expire_on_commit=False),
            health_config=IngestionHealthConfig(
                stalled_threshold=settings.stalled_after
            ),
        )
    )


def main() -> None:
    """Start the commitkeep query service using Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    settings = RuntimeSettings.from_env()
    normalized_level, invalid_level = configure_logging(settings.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid COMMITKEEP_LOG_LEVEL %r, falling back to %s",
            settings.log_level,
            normalized_level,
        )

    log_info(
        logger,
        "Starting commitkeep query service on %s:%d (log_level=%s, database=%s)",
        settings.host,
        settings.port,
        normalized_level,
        "configured" if settings.database_url else "none",
    )

    Granian(
        "commitkeep.runtime:create_app",
        address=settings.host,
        port=settings.port,
        interface=Interfaces.ASGI,
        factory=True,
    ).serve()


if __name__ == "__main__":
    main()
