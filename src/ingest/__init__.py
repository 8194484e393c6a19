"""Scalesync ingestion engine.

This package turns provider data into stored records and keeps the store
converged with the provider's current view.

Subpackages:
    adapters/ — Fitbit weight client and Health Auto Export metrics parser
    sync/     — Reconciler, month partitioner, fan-out coordinator, stores

Core modules:
    base          — Record types, store keys, scopes, provider ABC
    credentials   — Versioned token storage and rotation
    config_loader — Load/validate/hot-reload ingest_config.yaml
"""

from src.ingest.base import (
    EnergyKind,
    EnergyPeriod,
    EnergySample,
    OAuthTokens,
    StoreKey,
    WeightProvider,
    WeightSample,
)
from src.ingest.config_loader import IngestConfig, get_ingest_config

__all__ = [
    "EnergyKind",
    "EnergyPeriod",
    "EnergySample",
    "OAuthTokens",
    "StoreKey",
    "WeightProvider",
    "WeightSample",
    "IngestConfig",
    "get_ingest_config",
]
