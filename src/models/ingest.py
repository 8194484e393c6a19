"""Pydantic models for inbound payloads: Fitbit webhooks and Health Auto Export metrics."""

from __future__ import annotations

from datetime import date

from pydantic import Field

from src.models.base import ScalesyncBase


# ---------- Fitbit subscription webhook ----------

class FitbitSubscriptionEvent(ScalesyncBase):
    """One entry of the list Fitbit POSTs to the subscriber endpoint."""

    collection_type: str = Field(default="body", alias="collectionType")
    date: date
    owner_id: str | None = Field(default=None, alias="ownerId")
    owner_type: str | None = Field(default=None, alias="ownerType")
    subscription_id: str = Field(alias="subscriptionId")


# ---------- Health Auto Export ----------

class HealthMetricPoint(ScalesyncBase):
    date: str  # "YYYY-MM-DD HH:MM:SS ±HHMM"
    qty: float


class HealthMetric(ScalesyncBase):
    name: str
    units: str
    data: list[HealthMetricPoint] = Field(default_factory=list)


class HealthMetricsData(ScalesyncBase):
    metrics: list[HealthMetric] = Field(default_factory=list)


class HealthMetricsPayload(ScalesyncBase):
    data: HealthMetricsData


# ---------- Dashboard ----------

class WeightPoint(ScalesyncBase):
    log_id: int
    date: date
    time: str
    weight: float
    weight_display: str
    display_date: str
    js_date: str


class WeightDashboard(ScalesyncBase):
    latest: WeightPoint
    weights: list[WeightPoint]


class EnergyDay(ScalesyncBase):
    day: date
    active_kj: float | None = None
    resting_kj: float | None = None
    dietary_kj: float | None = None


class EnergySummary(ScalesyncBase):
    days: list[EnergyDay]
