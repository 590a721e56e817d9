"""Domain exceptions and Falcon error handlers for the API layer.

Usage
-----
Register error handlers on the Falcon app::

    from commitkeep.api.errors import (
        InvalidInputError,
        NotFoundError,
        handle_invalid_input,
        handle_not_found,
        handle_storage_failure,
    )
    from commitkeep.store.errors import StorageFailure

    app.add_error_handler(NotFoundError, handle_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(StorageFailure, handle_storage_failure)

"""

from __future__ import annotations

import typing as typ

import falcon

from commitkeep.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from commitkeep.store.errors import StorageFailure

__all__ = [
    "CommitNotFoundError",
    "InvalidInputError",
    "NotFoundError",
    "ScopeNotFoundError",
    "handle_invalid_input",
    "handle_not_found",
    "handle_storage_failure",
]

logger = get_logger(__name__)


class NotFoundError(Exception):
    """Base class for lookups that should map to HTTP 404."""

    title = "Not found"


class ScopeNotFoundError(NotFoundError):
    """Raised when a scope has never been scheduled for ingestion.

    Attributes
    ----------
    scope_key
        Key of the scope that was requested.

    """

    title = "Scope not found"

    def __init__(self, scope_key: str) -> None:
        """Initialise with the requested scope key."""
        self.scope_key = scope_key
        super().__init__(f"No ingestion scope matching '{scope_key}' exists.")


class CommitNotFoundError(NotFoundError):
    """Raised when a commit was never observed on the requested branch."""

    title = "Commit not found"

    def __init__(self, scope_key: str, oid: str) -> None:
        """Initialise with the branch scope key and commit id."""
        self.scope_key = scope_key
        self.oid = oid
        super().__init__(f"No commit '{oid}' has been stored for '{scope_key}'.")


class InvalidInputError(Exception):
    """Raised when a query parameter fails validation (HTTP 400).

    Resources raise this rather than ``ValueError`` so a bad ``limit`` or
    ``status`` reaches the client while bugs in the store still surface as
    500s.
    """

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Record the failure and the offending parameter, if known."""
        self.reason = reason
        self.field = field
        super().__init__(reason if field is None else f"{field}: {reason}")

    def as_media(self) -> dict[str, str]:
        """Return the JSON body sent with the 400 response."""
        media = {"title": "Invalid input", "description": self.reason}
        if self.field is not None:
            media["field"] = self.field
        return media


async def handle_not_found(
    _req: Request,
    resp: Response,
    ex: NotFoundError,
    _params: dict[str, typ.Any],
) -> None:
    """Map :class:`NotFoundError` subclasses to an HTTP 404 JSON response."""
    resp.status = falcon.HTTP_404
    resp.media = {"title": ex.title, "description": str(ex)}


async def handle_invalid_input(
    _req: Request,
    resp: Response,
    ex: InvalidInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map :class:`InvalidInputError` to an HTTP 400 JSON response."""
    resp.status = falcon.HTTP_400
    resp.media = ex.as_media()


async def handle_storage_failure(
    req: Request,
    resp: Response,
    ex: StorageFailure,
    _params: dict[str, typ.Any],
) -> None:
    """Map :class:`StorageFailure` to an HTTP 503 JSON response."""
    log_warning(logger, "Storage unavailable for %s %s: %s", req.method, req.path, ex)
    resp.status = falcon.HTTP_503
    resp.media = {
        "title": "Storage unavailable",
        "description": "The commit store could not be read; retry later.",
    }
