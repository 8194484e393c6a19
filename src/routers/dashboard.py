"""Weight dashboard data."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Services
from src.ingest.base import WeightSample
from src.models.ingest import WeightDashboard, WeightPoint

router = APIRouter(tags=["dashboard"])


def _point(sample: WeightSample) -> WeightPoint:
    return WeightPoint(
        log_id=sample.log_id,
        date=sample.date,
        time=sample.time,
        weight=sample.weight,
        weight_display=sample.weight_display,
        display_date=sample.display_date,
        js_date=sample.js_date,
    )


@router.get("/", response_model=WeightDashboard)
async def weight_dashboard(services: Services) -> Any:
    """Latest weight plus the full series ordered by time."""
    weights = await services.store.list_weights()
    if not weights:
        raise HTTPException(status_code=404, detail="No weights recorded")

    points = [_point(w) for w in weights]
    return WeightDashboard(latest=points[-1], weights=points)
