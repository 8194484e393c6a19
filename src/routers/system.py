"""Liveness endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from fastapi import APIRouter

from src.dependencies import Services
from src.ingest.base import WeightDayScope

router = APIRouter(tags=["system"])
logger = logging.getLogger("scalesync.system")


@router.get("/healthz")
async def health_check(services: Services) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight store read.
    """
    store_ok = False
    try:
        await services.store.get_by_scope(WeightDayScope(date.today()))
        store_ok = True
    except Exception as exc:
        logger.warning("Health check store probe failed: %s", exc)

    return {
        "status": "healthy" if store_ok else "degraded",
        "version": services.settings.app_version,
        "environment": services.settings.environment,
        "store": "connected" if store_ok else "unreachable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
