"""Streaming query monitoring for sparklab.

Provides progress snapshots and idle-waiting for running structured
streaming queries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pyspark.sql.streaming import StreamingQuery

logger = logging.getLogger(__name__)


@dataclass
class QueryProgress:
    """Point-in-time view of one streaming query."""

    name: str
    query_id: str
    is_active: bool
    batch_id: int | None
    input_rows: int
    processed_rows_per_second: float
    message: str
    data_available: bool
    trigger_active: bool


def progress_of(query: StreamingQuery) -> QueryProgress:
    """Build a QueryProgress from ``query.status`` and ``query.lastProgress``."""
    status: dict[str, Any] = query.status or {}
    last: dict[str, Any] = query.lastProgress or {}
    return QueryProgress(
        name=query.name or "",
        query_id=str(query.id),
        is_active=query.isActive,
        batch_id=last.get("batchId"),
        input_rows=int(last.get("numInputRows", 0) or 0),
        processed_rows_per_second=float(last.get("processedRowsPerSecond", 0.0) or 0.0),
        message=status.get("message", ""),
        data_available=bool(status.get("isDataAvailable", False)),
        trigger_active=bool(status.get("isTriggerActive", False)),
    )


def summarize(query: StreamingQuery) -> dict[str, Any]:
    """Fold ``recentProgress`` into totals for one query."""
    progress: list[dict[str, Any]] = list(query.recentProgress or [])
    durations = [p.get("durationMs", {}).get("triggerExecution", 0) for p in progress]
    return {
        "name": query.name or "",
        "progress_events": len(progress),
        "input_rows": sum(int(p.get("numInputRows", 0) or 0) for p in progress),
        "max_trigger_ms": max(durations) if durations else 0,
        "last_batch_id": progress[-1].get("batchId") if progress else None,
        "watermark": progress[-1].get("eventTime", {}).get("watermark") if progress else None,
    }


class StreamingQueryMonitor:
    """Watches a set of streaming queries started together."""

    def __init__(self, queries: list[StreamingQuery]):
        self.queries = queries

    def snapshot(self) -> list[QueryProgress]:
        return [progress_of(q) for q in self.queries]

    def is_idle(self) -> bool:
        """True once every query has stopped or has nothing left to read."""
        for p in self.snapshot():
            if not p.is_active:
                continue
            if p.data_available or p.trigger_active or p.batch_id is None:
                return False
        return True

    def wait_for_idle(
        self,
        timeout_seconds: float = 300,
        poll_interval: float = 1.0,
        progress_callback: Callable[[list[QueryProgress]], None] | None = None,
    ) -> bool:
        """Poll until :meth:`is_idle` or the timeout expires.

        Args:
            timeout_seconds: Maximum wait time
            poll_interval: Seconds between status checks
            progress_callback: Optional callback for progress updates

        Returns:
            True if the queries went idle, False on timeout
        """
        start = time.time()
        while True:
            if progress_callback:
                progress_callback(self.snapshot())
            if self.is_idle():
                return True
            if time.time() - start > timeout_seconds:
                logger.warning("Streaming queries still busy after %ss", timeout_seconds)
                return False
            time.sleep(poll_interval)

    def summaries(self) -> list[dict[str, Any]]:
        return [summarize(q) for q in self.queries]
