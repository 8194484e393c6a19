"""Fitbit subscriber endpoints and batch weight sync.

``POST /receive`` is the subscriber endpoint Fitbit notifies when a weight
log changes.  Each notification names a date; that whole day is re-fetched
and reconciled.  ``GET /receive`` answers Fitbit's subscriber verification.
``GET /batch`` backfills a date range month by month.
"""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, HTTPException, Query, Response
from fastapi.responses import PlainTextResponse

from src.dependencies import Services
from src.ingest.adapters.fitbit import ProviderError, days_to_sync
from src.ingest.credentials import CredentialMissingError, RotationError
from src.ingest.sync.coordinator import SyncRangeError
from src.ingest.sync.partition import PartitionError, parse_date_range
from src.ingest.sync.reconciler import ReconcileError
from src.models.ingest import FitbitSubscriptionEvent

router = APIRouter(tags=["fitbit"])
logger = logging.getLogger("scalesync.webhooks")

# Failures of a single-day sync; the day is safe to retry
_SYNC_ERRORS = (
    ReconcileError,
    ProviderError,
    CredentialMissingError,
    RotationError,
    httpx.HTTPError,
)


@router.post("/receive", status_code=204)
async def receive_notification(
    services: Services, events: list[FitbitSubscriptionEvent]
) -> Response:
    """Re-sync every day named in a Fitbit notification."""
    days = days_to_sync(events)
    logger.info("Fitbit notification: %d event(s), %d day(s) to sync", len(events), len(days))

    for day in days:
        try:
            added = await services.coordinator.sync_day(day)
        except _SYNC_ERRORS as exc:
            logger.exception("Sync of %s failed", day)
            raise HTTPException(status_code=500, detail=f"Sync of {day} failed: {exc}") from exc
        logger.info("Synced %s: %d weight(s) added", day, added)

    return Response(status_code=204)


@router.get("/receive", status_code=204)
async def verify_subscriber(services: Services, verify: str = Query(default="")) -> Response:
    """Fitbit subscriber verification: 204 for the right code, 404 otherwise."""
    if verify != services.settings.fitbit_verification:
        logger.warning("Subscriber verification failed")
        raise HTTPException(status_code=404, detail="Not found")
    return Response(status_code=204)


@router.get("/batch", response_class=PlainTextResponse)
async def batch_sync(
    services: Services,
    start: str | None = Query(default=None, description="YYYY-MM-DD"),
    end: str | None = Query(default=None, description="YYYY-MM-DD"),
) -> str:
    """Backfill and reconcile every month between ``start`` and ``end``."""
    try:
        start_date, end_date = parse_date_range(start, end)
    except PartitionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        total = await services.coordinator.sync_range(start_date, end_date)
    except SyncRangeError as exc:
        logger.exception("Batch sync %s..%s failed (%d applied)", start, end, exc.applied)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return f"{total} weights loaded"
