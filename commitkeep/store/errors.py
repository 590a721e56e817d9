"""Storage errors for the commit and cursor stores."""

from __future__ import annotations


class StorageFailure(RuntimeError):  # noqa: N818 - name mirrors the ingestion outcome
    """Raised when a store transaction could not be committed.

    Nothing from the failed transaction is kept, so the caller can retry the
    same unit of work later.
    """

    @classmethod
    def during(cls, operation: str, detail: str) -> StorageFailure:
        """Return an error for a failed store operation."""
        return cls(f"storage failure during {operation}: {detail}")


class TimezoneAwareRequiredError(ValueError):
    """Raised when datetime inputs lack timezone information."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error indicating a bound column value was naive."""
        return cls("datetime column values")
