"""Provider adapters for Scalesync.

Available adapters:
    FitbitClient          — Fitbit Web API body-weight logs (OAuth2)
    parse_health_metrics  — Health Auto Export energy metrics (push-only)
"""

from src.ingest.adapters.fitbit import FitbitClient
from src.ingest.adapters.health_export import parse_health_metrics

__all__ = [
    "FitbitClient",
    "parse_health_metrics",
]
