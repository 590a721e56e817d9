"""Tagged pagination cursors and their durable store.

A cursor is one of three explicit states:

``Start``
    Nothing has been fetched yet; the next request has no ``after`` token.
``Continue``
    At least one page was merged and more pages remain after ``token``.
``Done``
    The final page was merged; there is nothing left to fetch.

Cursors only ever move forward through :func:`advance_cursor`. The only way
back to ``Start`` is an explicit :meth:`CursorStore.reset`.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from commitkeep.github.models import IngestionScope
from commitkeep.logging import get_logger, log_debug

from .errors import StorageFailure
from .storage import IngestionCursorRow

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from commitkeep.github.models import PageResult

    type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)


class CursorState(enum.StrEnum):
    """Persisted discriminator for cursor variants."""

    START = "start"
    CONTINUE = "continue"
    DONE = "done"


@dataclasses.dataclass(frozen=True, slots=True)
class Start:
    """Cursor for a scope that has not fetched any page yet."""

    @property
    def state(self) -> CursorState:
        """Return the persisted discriminator."""
        return CursorState.START

    @property
    def token(self) -> None:
        """Return the ``after`` token; a fresh scope has none."""
        return None

    @property
    def has_next_page(self) -> bool:
        """Return True; the first page always needs fetching."""
        return True


@dataclasses.dataclass(frozen=True, slots=True)
class Continue:
    """Cursor positioned after a merged page with more pages remaining."""

    token: str
    advanced_at: dt.datetime

    def __post_init__(self) -> None:
        """Reject empty tokens, which would silently restart pagination."""
        if not self.token:
            msg = "Continue cursor requires a non-empty token"
            raise ValueError(msg)

    @property
    def state(self) -> CursorState:
        """Return the persisted discriminator."""
        return CursorState.CONTINUE

    @property
    def has_next_page(self) -> bool:
        """Return True; more history remains after ``token``."""
        return True


@dataclasses.dataclass(frozen=True, slots=True)
class Done:
    """Cursor for a scope whose history has been fully ingested.

    ``token`` is the end cursor of the final page, or ``None`` when the
    branch history was empty.
    """

    token: str | None
    advanced_at: dt.datetime

    @property
    def state(self) -> CursorState:
        """Return the persisted discriminator."""
        return CursorState.DONE

    @property
    def has_next_page(self) -> bool:
        """Return False; there is nothing left to fetch."""
        return False


type Cursor = Start | Continue | Done


class CursorRegressionError(ValueError):
    """Raised when asked to advance a cursor that has already finished."""

    @classmethod
    def from_done(cls) -> CursorRegressionError:
        """Return an error for advancing a ``Done`` cursor."""
        return cls("cannot advance a Done cursor; reset the scope instead")


def advance_cursor(cursor: Cursor, page: PageResult, now: dt.datetime) -> Cursor:
    """Return the cursor that follows ``cursor`` once ``page`` is merged.

    >>> import datetime as dt
    >>> from commitkeep.github.models import PageResult
    >>> now = dt.datetime(2024, 1, 1, tzinfo=dt.UTC)
    >>> advance_cursor(Start(), PageResult((), "c1", True), now).token
    'c1'
    >>> advance_cursor(Continue("c1", now), PageResult((), None, False), now).token
    'c1'

    """
    if isinstance(cursor, Done):
        raise CursorRegressionError.from_done()
    if page.has_next_page:
        return Continue(token=typ.cast("str", page.end_cursor), advanced_at=now)
    return Done(token=page.end_cursor or cursor.token, advanced_at=now)


def cursor_state(cursor: Cursor | None) -> str:
    """Return a short label for ``cursor`` suitable for logs and summaries."""
    return "absent" if cursor is None else cursor.state.value


@dataclasses.dataclass(frozen=True, slots=True)
class CursorRecord:
    """A stored cursor with the bookkeeping the lag view needs."""

    scope: IngestionScope
    cursor: Cursor
    updated_at: dt.datetime


def _cursor_from_row(row: IngestionCursorRow) -> Cursor:
    state = CursorState(row.state)
    if state is CursorState.START:
        return Start()
    advanced_at = typ.cast("dt.datetime", row.advanced_at or row.updated_at)
    if state is CursorState.CONTINUE:
        return Continue(token=typ.cast("str", row.token), advanced_at=advanced_at)
    return Done(token=row.token, advanced_at=advanced_at)


def _scope_from_row(row: IngestionCursorRow) -> IngestionScope:
    return IngestionScope(
        owner=row.repo_owner,
        name=row.repo_name,
        branch=row.branch,
        author=row.author,
    )


def _apply_cursor(row: IngestionCursorRow, cursor: Cursor) -> None:
    row.state = cursor.state.value
    row.token = cursor.token
    row.advanced_at = None if isinstance(cursor, Start) else cursor.advanced_at


class CursorStore:
    """Durable per-scope cursor storage.

    Every write commits before returning; callers treat :meth:`save` as the
    point after which a page counts as ingested.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        """Store the session factory used for cursor reads and writes."""
        self._session_factory = session_factory

    async def load(self, scope: IngestionScope) -> Cursor | None:
        """Return the stored cursor for ``scope`` or ``None`` if never saved."""
        try:
            async with self._session_factory() as session:
                row = await self._get_row(session, scope)
                return None if row is None else _cursor_from_row(row)
        except SQLAlchemyError as exc:
            raise StorageFailure.during("cursor load", str(exc)) from exc

    async def save(self, scope: IngestionScope, cursor: Cursor) -> None:
        """Persist ``cursor`` for ``scope`` and commit before returning."""
        try:
            await self._upsert(scope, cursor)
        except IntegrityError:
            # A concurrent first save created the row; update it instead.
            try:
                await self._upsert(scope, cursor)
            except SQLAlchemyError as exc:
                raise StorageFailure.during("cursor save", str(exc)) from exc
        except SQLAlchemyError as exc:
            raise StorageFailure.during("cursor save", str(exc)) from exc
        log_debug(logger, "Saved %s cursor for %s", cursor.state, scope.key)

    async def reset(self, scope: IngestionScope) -> None:
        """Reset ``scope`` to :class:`Start` for a full re-ingestion."""
        await self.save(scope, Start())

    async def list_cursors(self) -> list[CursorRecord]:
        """Return every stored cursor ordered by scope key."""
        try:
            async with self._session_factory() as session:
                rows = (
                    await session.scalars(
                        select(IngestionCursorRow).order_by(
                            IngestionCursorRow.scope_key
                        )
                    )
                ).all()
                return [
                    CursorRecord(
                        scope=_scope_from_row(row),
                        cursor=_cursor_from_row(row),
                        updated_at=row.updated_at,
                    )
                    for row in rows
                ]
        except SQLAlchemyError as exc:
            raise StorageFailure.during("cursor listing", str(exc)) from exc

    async def _upsert(self, scope: IngestionScope, cursor: Cursor) -> None:
        async with self._session_factory() as session, session.begin():
            row = await self._get_row(session, scope)
            if row is None:
                row = IngestionCursorRow(
                    scope_key=scope.key,
                    repo_owner=scope.owner,
                    repo_name=scope.name,
                    branch=scope.branch,
                    author=scope.author,
                )
                session.add(row)
            _apply_cursor(row, cursor)

    @staticmethod
    async def _get_row(
        session: AsyncSession, scope: IngestionScope
    ) -> IngestionCursorRow | None:
        return await session.scalar(
            select(IngestionCursorRow).where(
                IngestionCursorRow.scope_key == scope.key
            )
        )
