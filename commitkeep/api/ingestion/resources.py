"""Ingestion lag resource.

``GET /ingestion/lag`` reports per-scope lag computed from stored cursors.
Pass ``?status=pending`` or ``?status=stalled`` to filter the list.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon

from commitkeep.api.errors import InvalidInputError

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from commitkeep.ingestion.lag import IngestionHealthService

__all__ = ["IngestionLagResource"]

_STATUSES = frozenset({"all", "pending", "stalled"})


class IngestionLagResource:
    """Expose ``IngestionHealthService`` lag metrics as JSON."""

    def __init__(self, health_service: IngestionHealthService) -> None:
        """Store the health service used to compute lag metrics."""
        self._health_service = health_service

    async def on_get(self, req: Request, resp: Response) -> None:
        """Handle GET /ingestion/lag requests."""
        status = req.get_param("status", default="all")
        if status not in _STATUSES:
            raise InvalidInputError(
                "must be one of 'all', 'pending' or 'stalled'", field="status"
            )

        if status == "pending":
            lags = await self._health_service.get_pending_scopes()
        elif status == "stalled":
            lags = await self._health_service.get_stalled_scopes()
        else:
            lags = await self._health_service.get_all_scope_lags()

        resp.media = {"scopes": [dc.asdict(lag) for lag in lags]}
        resp.status = falcon.HTTP_200
