"""Resumable commit-history ingestion: ingestor, scheduler and outcomes."""

from __future__ import annotations

from .config import IngestionConfig
from .factory import build_scheduler
from .ingestor import HistoryIngestor
from .lag import IngestionHealthConfig, IngestionHealthService, IngestionLagMetrics
from .outcomes import (
    Completed,
    ErrorKind,
    Failed,
    IngestionOutcome,
    Paused,
    PauseReason,
    all_completed,
    describe_outcome,
    summarise_outcomes,
)
from .scheduler import InFlightRegistry, IngestionScheduler
from .scopes import (
    ScopeFileError,
    load_scope_file,
    scopes_for_contributor,
    scopes_for_repositories,
)

__all__ = [
    "Completed",
    "ErrorKind",
    "Failed",
    "HistoryIngestor",
    "InFlightRegistry",
    "IngestionConfig",
    "IngestionHealthConfig",
    "IngestionHealthService",
    "IngestionLagMetrics",
    "IngestionOutcome",
    "IngestionScheduler",
    "PauseReason",
    "Paused",
    "ScopeFileError",
    "all_completed",
    "build_scheduler",
    "describe_outcome",
    "load_scope_file",
    "scopes_for_contributor",
    "scopes_for_repositories",
    "summarise_outcomes",
]
