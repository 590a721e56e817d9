"""commitkeep: incremental GitHub commit-history ingestion."""

from __future__ import annotations

__version__ = "0.1.0"
