"""Energy metrics from Health Auto Export.

``POST /health`` accepts a metrics payload with a ``period`` header of
``daily`` or ``intraday``.  ``GET /health`` summarizes stored daily totals.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Query
from fastapi.responses import PlainTextResponse

from src.dependencies import Services
from src.ingest.adapters.health_export import (
    PayloadValidationError,
    parse_health_metrics,
    parse_period,
)
from src.ingest.base import EnergyKind, EnergyPeriod
from src.ingest.sync.reconciler import ReconcileError
from src.models.ingest import EnergyDay, EnergySummary, HealthMetricsPayload

router = APIRouter(tags=["energy"])
logger = logging.getLogger("scalesync.energy")

_SUMMARY_FIELDS = {
    EnergyKind.ACTIVE: "active_kj",
    EnergyKind.RESTING: "resting_kj",
    EnergyKind.DIETARY: "dietary_kj",
}


@router.post("/health", response_class=PlainTextResponse)
async def receive_metrics(
    services: Services,
    payload: HealthMetricsPayload,
    period: str | None = Header(default=None),
) -> str:
    """Validate the whole payload, then write it."""
    try:
        energy_period = parse_period(period)
        samples = parse_health_metrics(payload, energy_period, services.config)
    except PayloadValidationError as exc:
        logger.warning("Rejected metrics payload: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        written = await services.energy.apply(samples, energy_period)
    except ReconcileError as exc:
        logger.exception("Energy sync failed in %s", exc.scope)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    logger.info("Metrics payload: %d %s sample(s), %d written", len(samples), energy_period.value, written)
    return "ok"


@router.get("/health", response_model=EnergySummary)
async def energy_summary(
    services: Services,
    days: int = Query(default=30, ge=1, le=366),
) -> Any:
    """Daily energy totals for the last ``days`` days, oldest first."""
    since = date.today() - timedelta(days=days - 1)
    samples = await services.store.list_energy(since=since)

    by_day: dict[date, dict[str, float]] = {}
    for sample in samples:
        if sample.period is not EnergyPeriod.DAILY:
            continue
        by_day.setdefault(sample.day, {})[_SUMMARY_FIELDS[sample.kind]] = sample.energy_kj

    return EnergySummary(
        days=[EnergyDay(day=d, **values) for d, values in sorted(by_day.items())]
    )
