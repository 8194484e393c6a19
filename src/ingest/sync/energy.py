"""Apply parsed energy samples to the store.

Daily samples are exclusive per (kind, day): each pair is reconciled as its
own scope with the newest observation as the only desired record, so the
stored value is replaced rather than merged.

Intraday samples are keyed by (kind, timestamp) and upserted.  Nothing is
pruned, because an intraday export may cover only part of a day.
"""

from __future__ import annotations

import logging
from typing import Iterable

from src.ingest.base import EnergyDayScope, EnergyPeriod, EnergySample
from src.ingest.sync.reconciler import ReconcileError, Reconciler

logger = logging.getLogger("scalesync.ingest.sync.energy")

_INTRADAY_SCOPE = "energy/intraday"


class EnergySync:
    """Write daily and intraday energy samples."""

    def __init__(self, reconciler: Reconciler) -> None:
        self._reconciler = reconciler

    async def apply(self, samples: Iterable[EnergySample], period: EnergyPeriod) -> int:
        """Apply ``samples`` for ``period`` and return the number of records written."""
        samples = [s for s in samples if s.period is period]
        if period is EnergyPeriod.DAILY:
            return await self.apply_daily(samples)
        return await self.apply_intraday(samples)

    async def apply_daily(self, samples: list[EnergySample]) -> int:
        # Later entries for the same (kind, day) win
        latest: dict[EnergyDayScope, EnergySample] = {}
        for sample in samples:
            latest[EnergyDayScope(sample.kind, sample.day)] = sample

        written = 0
        for scope, sample in latest.items():
            written += await self._reconciler.reconcile(scope, [sample], exclusive=True)
        logger.info("Daily energy: %d scope(s), %d written", len(latest), written)
        return written

    async def apply_intraday(self, samples: list[EnergySample]) -> int:
        unique = list({s.key: s for s in samples}.values())
        if unique:
            try:
                await self._reconciler.store.put_many(unique)
            except Exception as exc:
                raise ReconcileError(
                    _INTRADAY_SCOPE, 0, f"Upsert of {len(unique)} intraday sample(s) failed: {exc}"
                ) from exc
        logger.info("Intraday energy: %d sample(s) upserted", len(unique))
        return len(unique)
