"""Load, validate, and hot-reload the Scalesync ingestion configuration.

The config lives in ``ingest_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_ingest_config()`` to re-read from
disk after an edit — no restart required.

Usage::

    from src.ingest.config_loader import get_ingest_config

    config = get_ingest_config()
    kind = config.energy_kind("active_energy")   # EnergyKind.ACTIVE
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from src.ingest.base import EnergyKind

logger = logging.getLogger("scalesync.ingest.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "ingest_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class FanOutConfig:
    """Month fan-out settings for batch syncs."""

    max_concurrency: int


@dataclass
class ProviderConfig:
    """Fitbit API call settings."""

    max_range_days: int
    request_timeout_s: float


@dataclass
class IngestConfig:
    """Complete, validated ingestion configuration.

    Attributes:
        version:        Config schema version string.
        energy_metrics: Exporter metric name → stored energy kind.
        energy_unit:    The only accepted unit for energy metrics.
        fan_out:        Batch fan-out settings.
        provider:       Provider call settings.
    """

    version: str
    energy_metrics: dict[str, EnergyKind]
    energy_unit: str
    fan_out: FanOutConfig
    provider: ProviderConfig
    _raw: dict = field(default_factory=dict, repr=False)

    def energy_kind(self, metric_name: str) -> EnergyKind | None:
        """Return the energy kind for an exporter metric name, or None if unknown."""
        return self.energy_metrics.get(metric_name)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when ingest_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Ingest config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> IngestConfig:
    """Validate the raw YAML dict and construct an IngestConfig.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Energy metrics ──
    metrics_raw = raw.get("energy_metrics", {})
    if not metrics_raw:
        errors.append("'energy_metrics' section is missing or empty")

    energy_metrics: dict[str, EnergyKind] = {}
    for name, kind in (metrics_raw or {}).items():
        try:
            energy_metrics[str(name)] = EnergyKind(kind)
        except ValueError:
            errors.append(
                f"energy_metrics.{name} = {kind!r} is not one of "
                f"{[k.value for k in EnergyKind]}"
            )

    energy_unit = raw.get("energy_unit", "kJ")
    if not isinstance(energy_unit, str) or not energy_unit:
        errors.append("'energy_unit' must be a non-empty string")

    # ── Fan-out ──
    fo_raw = raw.get("fan_out", {}) or {}
    try:
        max_concurrency = int(fo_raw.get("max_concurrency", 0))
    except (TypeError, ValueError):
        errors.append(f"fan_out.max_concurrency must be an integer, got {fo_raw.get('max_concurrency')!r}")
        max_concurrency = 0
    if max_concurrency < 0:
        errors.append(f"fan_out.max_concurrency = {max_concurrency} must be >= 0")

    # ── Provider ──
    pv_raw = raw.get("provider", {}) or {}
    try:
        max_range_days = int(pv_raw.get("max_range_days", 31))
    except (TypeError, ValueError):
        errors.append(f"provider.max_range_days must be an integer, got {pv_raw.get('max_range_days')!r}")
        max_range_days = 31
    if max_range_days < 1:
        errors.append(f"provider.max_range_days = {max_range_days} must be >= 1")

    try:
        request_timeout_s = float(pv_raw.get("request_timeout_s", 15))
    except (TypeError, ValueError):
        errors.append(
            f"provider.request_timeout_s must be a number, got {pv_raw.get('request_timeout_s')!r}"
        )
        request_timeout_s = 15.0
    if request_timeout_s <= 0:
        errors.append(f"provider.request_timeout_s = {request_timeout_s} must be > 0")

    provider = ProviderConfig(max_range_days=max_range_days, request_timeout_s=request_timeout_s)

    if errors:
        raise ConfigValidationError(
            f"ingest_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return IngestConfig(
        version=version,
        energy_metrics=energy_metrics,
        energy_unit=energy_unit,
        fan_out=FanOutConfig(max_concurrency=max_concurrency),
        provider=provider,
        _raw=raw,
    )


def load_ingest_config(path: Path | None = None) -> IngestConfig:
    """Load and validate the ingest config from disk."""
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded ingest config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: IngestConfig | None = None
_config_lock = threading.Lock()


def get_ingest_config() -> IngestConfig:
    """Return the global IngestConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_ingest_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_ingest_config()
    return _config


def reload_ingest_config(path: Path | None = None) -> IngestConfig:
    """Reload the ingest config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.
    """
    global _config
    new_config = load_ingest_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded ingest config: %s → %s", old_version, new_config.version)
    return new_config
