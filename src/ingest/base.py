"""Base classes and canonical record types for Scalesync ingestion.

Every provider adapter returns these types, and every store and the
reconciler consume them.  Two record kinds exist:

    WeightSample  — one Fitbit body-weight log, identified by its ``logId``
    EnergySample  — one energy reading from Health Auto Export, identified by
                    (kind, day) for daily totals or (kind, timestamp) for
                    intraday samples

Scopes describe the slice of the store a reconciliation pass owns.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Hashable, NamedTuple, Union

logger = logging.getLogger("scalesync.ingest")


# ---------------------------------------------------------------------------
# OAuth tokens
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """OAuth token pair as persisted in the token secret.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
        expires_at:    UTC datetime when the access_token expires.
        token_type:    Token type, typically "Bearer".
        extra:         Any additional fields returned by the provider (e.g. user_id).
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    extra: dict = field(default_factory=dict)

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expiry": self.expires_at.isoformat() if self.expires_at else None,
                "token_type": self.token_type,
                "extra": self.extra,
            }
        ).encode()

    @classmethod
    def from_json(cls, data: bytes) -> "OAuthTokens":
        raw = json.loads(data)
        expires_at = None
        if expiry := raw.get("expiry"):
            expires_at = datetime.fromisoformat(expiry.replace("Z", "+00:00"))
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            access_token=raw["access_token"],
            refresh_token=raw.get("refresh_token"),
            expires_at=expires_at,
            token_type=raw.get("token_type") or "Bearer",
            extra=raw.get("extra") or {},
        )


# ---------------------------------------------------------------------------
# Store keys and records
# ---------------------------------------------------------------------------


class StoreKey(NamedTuple):
    """Primary key of a stored record: (record kind, name within kind)."""

    kind: str
    name: str


class EnergyKind(str, Enum):
    ACTIVE = "active-energy"
    RESTING = "resting-energy"
    DIETARY = "dietary-energy"


class EnergyPeriod(str, Enum):
    DAILY = "daily"
    INTRADAY = "intraday"


@dataclass(frozen=True)
class WeightSample:
    """A single body-weight measurement.

    Two samples are the same record iff their ``log_id`` matches, whatever
    the other attributes say.

    Attributes:
        log_id:      Fitbit-assigned log id, stable per measurement event.
        date:        Calendar date the provider filed the measurement under.
        time:        Wall-clock time of day, ``HH:MM:SS``.
        weight:      Weight in the account's unit system.
        recorded_at: ``date`` + ``time`` resolved in the configured timezone.
    """

    log_id: int
    date: date
    time: str
    weight: float
    recorded_at: datetime

    @property
    def identity(self) -> int:
        return self.log_id

    @property
    def key(self) -> StoreKey:
        return StoreKey("weight", str(self.log_id))

    # Display helpers used by the dashboard; wall-clock fields, not recorded_at,
    # since stores may hand recorded_at back in UTC
    @property
    def weight_display(self) -> str:
        return f"{self.weight:.1f}"

    @property
    def display_date(self) -> str:
        return f"{self.date:%b} {self.date.day}"

    @property
    def js_date(self) -> str:
        return f"{self.date.isoformat()} {self.time}"


@dataclass(frozen=True)
class EnergySample:
    """An energy reading in kilojoules.

    Daily samples are exclusive per (kind, day): a new observation replaces
    whatever was stored for that pair.  Intraday samples are keyed by their
    instant and only ever upserted.

    Attributes:
        kind:        Which energy series this belongs to.
        day:         Calendar date of ``recorded_at`` in its own UTC offset.
        recorded_at: Timezone-aware timestamp as sent by the exporter.
        energy_kj:   Energy in kilojoules.
        period:      Aggregation period of the reading.
    """

    kind: EnergyKind
    day: date
    recorded_at: datetime
    energy_kj: float
    period: EnergyPeriod = EnergyPeriod.DAILY

    @classmethod
    def observed(
        cls,
        kind: EnergyKind,
        recorded_at: datetime,
        energy_kj: float,
        period: EnergyPeriod = EnergyPeriod.DAILY,
    ) -> "EnergySample":
        return cls(
            kind=kind,
            day=recorded_at.date(),
            recorded_at=recorded_at,
            energy_kj=energy_kj,
            period=period,
        )

    @property
    def identity(self) -> Hashable:
        if self.period is EnergyPeriod.DAILY:
            return (self.kind, self.day)
        return (self.kind, self.recorded_at)

    @property
    def key(self) -> StoreKey:
        if self.period is EnergyPeriod.DAILY:
            suffix = self.day.isoformat()
        else:
            suffix = self.recorded_at.astimezone(timezone.utc).isoformat()
        return StoreKey("energy", f"{self.kind.value}/{self.period.value}/{suffix}")


Record = Union[WeightSample, EnergySample]


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeightDayScope:
    """All weight samples filed under one calendar date."""

    day: date

    def contains(self, record: Record) -> bool:
        return isinstance(record, WeightSample) and record.date == self.day

    def __str__(self) -> str:
        return f"weight@{self.day.isoformat()}"


@dataclass(frozen=True)
class WeightRangeScope:
    """All weight samples filed between ``start`` and ``end`` inclusive."""

    start: date
    end: date

    def contains(self, record: Record) -> bool:
        return isinstance(record, WeightSample) and self.start <= record.date <= self.end

    def __str__(self) -> str:
        return f"weight@{self.start.isoformat()}..{self.end.isoformat()}"


@dataclass(frozen=True)
class EnergyDayScope:
    """The daily energy total of one kind on one day."""

    kind: EnergyKind
    day: date

    def contains(self, record: Record) -> bool:
        return (
            isinstance(record, EnergySample)
            and record.period is EnergyPeriod.DAILY
            and record.kind is self.kind
            and record.day == self.day
        )

    def __str__(self) -> str:
        return f"{self.kind.value}@{self.day.isoformat()}"


Scope = Union[WeightDayScope, WeightRangeScope, EnergyDayScope]


# ---------------------------------------------------------------------------
# Abstract provider
# ---------------------------------------------------------------------------


class WeightProvider(ABC):
    """Source of truth for weight samples.

    The reconciler treats whatever a provider returns for a scope as the
    complete desired set for that scope.
    """

    #: Unique slug for logging.
    SOURCE_ID: str = "unknown"

    @abstractmethod
    async def fetch_day(self, day: date) -> list[WeightSample]:
        """Fetch every weight sample filed under ``day``."""

    @abstractmethod
    async def fetch_range(self, start: date, end: date) -> list[WeightSample]:
        """Fetch every weight sample filed between ``start`` and ``end``.

        Implementations may reject ranges that cross a calendar month.
        """
