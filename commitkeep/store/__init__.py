"""Commit and cursor persistence."""

from __future__ import annotations

from .commits import CommitStore, MergeResult, content_hash
from .cursors import (
    Continue,
    Cursor,
    CursorRecord,
    CursorRegressionError,
    CursorState,
    CursorStore,
    Done,
    Start,
    advance_cursor,
    cursor_state,
)
from .errors import StorageFailure, TimezoneAwareRequiredError
from .storage import (
    Base,
    CommitRow,
    CommitScopeRow,
    IngestionCursorRow,
    UTCDateTime,
    init_storage,
)

__all__ = [
    "Base",
    "CommitRow",
    "CommitScopeRow",
    "CommitStore",
    "Continue",
    "Cursor",
    "CursorRecord",
    "CursorRegressionError",
    "CursorState",
    "CursorStore",
    "Done",
    "IngestionCursorRow",
    "MergeResult",
    "Start",
    "StorageFailure",
    "TimezoneAwareRequiredError",
    "UTCDateTime",
    "advance_cursor",
    "content_hash",
    "cursor_state",
    "init_storage",
]
