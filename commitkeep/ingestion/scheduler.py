"""Bounded concurrent ingestion of many scopes.

Scopes run independently: one task per scope, at most ``max_concurrency`` of
them ingesting at once. A scope waiting for a free slot has not made any
request yet, so waiting does not consume its retry budget. Failures are
isolated per scope and every outcome is returned together.
"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

from commitkeep.github.observability import categorize_error
from commitkeep.logging import get_logger, log_exception, log_info
from commitkeep.store.errors import StorageFailure

from .outcomes import Failed, Paused, PauseReason, summarise_outcomes

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commitkeep.github.models import IngestionScope

    from .ingestor import HistoryIngestor
    from .outcomes import IngestionOutcome

logger = get_logger(__name__)


class InFlightRegistry:
    """Set of scope keys currently claimed by a run.

    Guarded by a thread lock so one registry can be shared by runs on
    different threads and event loops. The critical sections never await.
    """

    def __init__(self) -> None:
        """Start with no scopes in flight."""
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    async def claim(self, scope: IngestionScope) -> bool:
        """Claim ``scope``; return False when another run already holds it."""
        with self._lock:
            if scope.key in self._keys:
                return False
            self._keys.add(scope.key)
            return True

    async def release(self, scope: IngestionScope) -> None:
        """Release a claim taken with :meth:`claim`."""
        with self._lock:
            self._keys.discard(scope.key)

    def snapshot(self) -> frozenset[str]:
        """Return the keys in flight at the time of the call."""
        with self._lock:
            return frozenset(self._keys)


class IngestionScheduler:
    """Run history ingestors for many scopes with bounded concurrency."""

    def __init__(
        self,
        ingestor: HistoryIngestor,
        *,
        max_concurrency: int = 4,
        registry: InFlightRegistry | None = None,
    ) -> None:
        """Create a scheduler sharing one ingestor and one concurrency bound."""
        if max_concurrency < 1:
            msg = "max_concurrency must be positive"
            raise ValueError(msg)
        self._ingestor = ingestor
        self._max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._registry = registry or InFlightRegistry()

    @property
    def registry(self) -> InFlightRegistry:
        """Return the in-flight registry shared by every ``run_all`` call."""
        return self._registry

    async def run_all(
        self,
        scopes: cabc.Iterable[IngestionScope],
        *,
        cancel: asyncio.Event | None = None,
        full_resync: bool = False,
    ) -> dict[IngestionScope, IngestionOutcome]:
        """Ingest every scope and return each scope's outcome.

        Duplicate scopes are collapsed. A scope that is already being
        ingested by another call yields ``Paused(ALREADY_RUNNING)``.
        ``full_resync`` resets each scope's cursor to ``Start`` first.

        Raises
        ------
        BaseException
            Re-raised for system-level exceptions such as
            ``KeyboardInterrupt``; ordinary exceptions become ``Failed``.

        """
        unique = list(dict.fromkeys(scopes))
        log_info(
            logger,
            "Scheduling %d scopes (max_concurrency=%d, full_resync=%s)",
            len(unique),
            self._max_concurrency,
            full_resync,
        )

        gathered = await asyncio.gather(
            *(self._run_one(scope, cancel, full_resync=full_resync) for scope in unique),
            return_exceptions=True,
        )

        outcomes: dict[IngestionScope, IngestionOutcome] = {}
        for scope, result in zip(unique, gathered, strict=True):
            if isinstance(result, Exception):
                log_exception(
                    logger, f"Unexpected error while ingesting {scope.key}", result
                )
                outcomes[scope] = Failed(
                    reason=str(result) or type(result).__name__,
                    category=categorize_error(result),
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes[scope] = result

        log_info(logger, "Ingestion finished: %s", summarise_outcomes(outcomes))
        return outcomes

    async def _run_one(
        self,
        scope: IngestionScope,
        cancel: asyncio.Event | None,
        *,
        full_resync: bool,
    ) -> IngestionOutcome:
        if not await self._registry.claim(scope):
            return Paused(reason=PauseReason.ALREADY_RUNNING)
        try:
            async with self._semaphore:
                if full_resync:
                    try:
                        await self._ingestor.cursor_store.reset(scope)
                    except StorageFailure as exc:
                        return Paused(
                            reason=PauseReason.STORAGE_FAILURE, error=str(exc)
                        )
                return await self._ingestor.run(scope, cancel=cancel)
        finally:
            await self._registry.release(scope)
