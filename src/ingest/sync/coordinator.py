"""Fan-out sync coordinator for weight data.

Coordinates the two weight sync paths:

1. Webhook: re-fetch one day from the provider and reconcile that day.
2. Batch:   split [start, end] into calendar months, fetch and reconcile
            each month in its own task, join, and sum the counts.

Month sub-ranges are disjoint scopes with disjoint storage keys, so tasks
never share state.  Each task returns its own count; the coordinator sums
them after the join.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date

from src.ingest.base import WeightDayScope, WeightProvider, WeightRangeScope
from src.ingest.sync.partition import partition_month_ranges
from src.ingest.sync.reconciler import Reconciler

logger = logging.getLogger("scalesync.ingest.sync.coordinator")


class SyncRangeError(RuntimeError):
    """Raised when any month of a batch sync fails.

    ``applied`` is a best-effort count of records added by months that
    finished before the failure.  Callers should retry the whole range;
    months that already succeeded are idempotent to re-run.
    """

    def __init__(self, start: date, end: date, applied: int, message: str) -> None:
        super().__init__(message)
        self.start = start
        self.end = end
        self.applied = applied


@dataclass
class MonthResult:
    """Result of one month sub-range."""

    start: date
    end: date
    applied: int


class SyncCoordinator:
    """Run weight reconciliations for a day or a month-partitioned range.

    Usage::

        coordinator = SyncCoordinator(provider, Reconciler(store), max_concurrency=4)
        total = await coordinator.sync_range(date(2024, 1, 15), date(2024, 3, 10))
    """

    def __init__(
        self,
        provider: WeightProvider,
        reconciler: Reconciler,
        max_concurrency: int = 0,
    ) -> None:
        """Initialize the coordinator.

        Args:
            provider:        Weight source (fetch + normalize).
            reconciler:      Reconciler bound to the target store.
            max_concurrency: Upper bound on months in flight; 0 means one task per month.
        """
        self._provider = provider
        self._reconciler = reconciler
        self._max_concurrency = max_concurrency

    async def sync_day(self, day: date) -> int:
        """Re-fetch ``day`` and reconcile it.  Returns records added."""
        desired = await self._provider.fetch_day(day)
        logger.info("Fetched %d weights for %s", len(desired), day)
        return await self._reconciler.reconcile(WeightDayScope(day), desired)

    async def sync_month(self, start: date, end: date) -> MonthResult:
        """Fetch and reconcile one month-confined sub-range."""
        desired = await self._provider.fetch_range(start, end)
        logger.info("Fetched %d weights for %s..%s", len(desired), start, end)
        applied = await self._reconciler.reconcile(WeightRangeScope(start, end), desired)
        return MonthResult(start=start, end=end, applied=applied)

    async def sync_range(self, start: date, end: date) -> int:
        """Reconcile every month of [start, end] concurrently.

        Returns:
            Total records added across all months.

        Raises:
            PartitionError: If ``start`` is not before ``end``.
            SyncRangeError: On the first failing month; remaining months are cancelled.
        """
        ranges = partition_month_ranges(start, end)
        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency > 0 else None

        logger.info(
            "Batch sync %s..%s: %d month(s), max_concurrency=%s",
            start, end, len(ranges), self._max_concurrency or "unbounded",
        )

        tasks = [
            asyncio.create_task(self._run_month(s, e, semaphore), name=f"sync-{s}-{e}")
            for s, e in ranges
        ]
        total = 0
        try:
            for finished in asyncio.as_completed(tasks):
                result = await finished
                total += result.applied
        except Exception as exc:
            logger.warning("Batch sync %s..%s failed after %d applied: %s", start, end, total, exc)
            raise SyncRangeError(
                start, end, total, f"Batch sync {start}..{end} failed: {exc}"
            ) from exc
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Retrieve every outcome, including failures not yet reached by the loop
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Batch sync %s..%s complete: %d applied", start, end, total)
        return total

    async def _run_month(
        self, start: date, end: date, semaphore: asyncio.Semaphore | None
    ) -> MonthResult:
        if semaphore is None:
            return await self.sync_month(start, end)
        async with semaphore:
            return await self.sync_month(start, end)
