"""Health Auto Export adapter for energy metrics.

The iOS Health Auto Export app POSTs a JSON document of named metrics::

    {"data": {"metrics": [
        {"name": "active_energy", "units": "kJ",
         "data": [{"date": "2024-05-01 00:00:00 +1000", "qty": 650.0}]}
    ]}}

The whole payload is validated before any record is produced: one unknown
metric name, one non-kJ unit, or one malformed date rejects everything.
"""

from __future__ import annotations

import logging
from datetime import datetime

from src.ingest.base import EnergyPeriod, EnergySample
from src.ingest.config_loader import IngestConfig, get_ingest_config
from src.models.ingest import HealthMetricsPayload

logger = logging.getLogger("scalesync.ingest.health_export")

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"


class PayloadValidationError(ValueError):
    """Raised when an inbound payload cannot be accepted as a whole."""


def parse_period(value: str | None) -> EnergyPeriod:
    """Parse the ``period`` header.

    Raises:
        PayloadValidationError: If the value is missing or unknown.
    """
    try:
        return EnergyPeriod(value)
    except ValueError as exc:
        raise PayloadValidationError(f"unknown period: {value}") from exc


def parse_health_metrics(
    payload: HealthMetricsPayload,
    period: EnergyPeriod = EnergyPeriod.DAILY,
    config: IngestConfig | None = None,
) -> list[EnergySample]:
    """Convert a metrics payload to EnergySamples.

    This is a pure function — no I/O, no side effects.

    Raises:
        PayloadValidationError: On an unknown metric, a unit other than the
            configured energy unit, or a malformed date.
    """
    cfg = config or get_ingest_config()
    samples: list[EnergySample] = []

    for metric in payload.data.metrics:
        if metric.units != cfg.energy_unit:
            raise PayloadValidationError(f"unknown unit: {metric.units}")

        kind = cfg.energy_kind(metric.name)
        if kind is None:
            raise PayloadValidationError(f"unknown energy type: {metric.name}")

        for point in metric.data:
            try:
                recorded_at = datetime.strptime(point.date, _DATE_FORMAT)
            except ValueError as exc:
                raise PayloadValidationError(
                    f"malformed date {point.date!r} in {metric.name}"
                ) from exc
            samples.append(
                EnergySample.observed(
                    kind=kind, recorded_at=recorded_at, energy_kj=point.qty, period=period
                )
            )

    logger.debug(
        "Parsed %d %s energy samples from %d metric(s)",
        len(samples), period.value, len(payload.data.metrics),
    )
    return samples
