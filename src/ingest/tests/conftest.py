"""Shared fixtures and fakes for ingestion tests."""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from src.config import Settings
from src.ingest.base import (
    EnergyKind,
    EnergyPeriod,
    EnergySample,
    WeightProvider,
    WeightSample,
)
from src.ingest.config_loader import IngestConfig, load_ingest_config
from src.ingest.sync.reconciler import Reconciler
from src.ingest.sync.store import InMemoryStore
from src.services.secret_store import SecretNotFoundError, SecretStore

TEST_TZ = ZoneInfo("Australia/Sydney")
TEST_DATE = date(2024, 5, 1)
TOKEN_SECRET = "fitbit/token.json"


def make_weight(
    log_id: int,
    day: date = TEST_DATE,
    time: str = "07:30:00",
    weight: float = 80.0,
) -> WeightSample:
    recorded_at = datetime.combine(day, datetime.strptime(time, "%H:%M:%S").time(), TEST_TZ)
    return WeightSample(log_id=log_id, date=day, time=time, weight=weight, recorded_at=recorded_at)


def make_daily_energy(
    kind: EnergyKind, day: date, energy_kj: float, offset: str = "+1000"
) -> EnergySample:
    recorded_at = datetime.strptime(f"{day.isoformat()} 00:00:00 {offset}", "%Y-%m-%d %H:%M:%S %z")
    return EnergySample.observed(kind, recorded_at, energy_kj, EnergyPeriod.DAILY)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSecretStore(SecretStore):
    """Versioned secret store held in memory.  Version ids count up from 1."""

    def __init__(self) -> None:
        self.versions: dict[str, list[tuple[str, bytes]]] = {}
        self.destroyed: list[str] = []
        self.fail_add = False
        self.fail_destroy: set[str] = set()
        self.extra_listing: list[str] = []
        self._counter = 0

    async def get_latest_version(self, name: str) -> bytes:
        live = self.versions.get(name, [])
        if not live:
            raise SecretNotFoundError(name)
        return max(live, key=lambda v: int(v[0]))[1]

    async def add_version(self, name: str, data: bytes) -> str:
        if self.fail_add:
            raise RuntimeError("add failed")
        await asyncio.sleep(0)
        self._counter += 1
        version_id = str(self._counter)
        self.versions.setdefault(name, []).append((version_id, data))
        return version_id

    async def list_versions(self, name: str) -> list[str]:
        await asyncio.sleep(0)
        ids = [v for v, _ in reversed(self.versions.get(name, []))]
        return ids + self.extra_listing

    async def destroy_version(self, name: str, version_id: str) -> None:
        if version_id in self.fail_destroy:
            raise RuntimeError(f"destroy {version_id} failed")
        await asyncio.sleep(0)
        self.versions[name] = [v for v in self.versions.get(name, []) if v[0] != version_id]
        self.destroyed.append(version_id)

    def live(self, name: str = TOKEN_SECRET) -> list[str]:
        return [v for v, _ in self.versions.get(name, [])]


class FakeProvider(WeightProvider):
    """Provider serving a fixed list of weights, with failure and concurrency hooks."""

    SOURCE_ID = "fake"

    def __init__(self, weights: list[WeightSample] | None = None) -> None:
        self.weights = list(weights or [])
        self.fail_months: set[tuple[int, int]] = set()
        self.calls: list[tuple[str, date, date]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay_s = 0.01

    async def fetch_day(self, day: date) -> list[WeightSample]:
        self.calls.append(("day", day, day))
        return [w for w in self.weights if w.date == day]

    async def fetch_range(self, start: date, end: date) -> list[WeightSample]:
        self.calls.append(("range", start, end))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay_s)
            if (start.year, start.month) in self.fail_months:
                raise RuntimeError(f"provider failed for {start:%Y-%m}")
            return [w for w in self.weights if start <= w.date <= end]
        finally:
            self.in_flight -= 1


class FailingStore(InMemoryStore):
    """InMemoryStore whose Nth mutation (1-based) raises."""

    def __init__(self, records=(), fail_at: int = 1) -> None:
        super().__init__(records)
        self._fail_at = fail_at
        self._mutations = 0

    async def _tick(self) -> None:
        self._mutations += 1
        if self._mutations == self._fail_at:
            raise ConnectionError("store unavailable")

    async def put(self, key, record) -> None:
        await self._tick()
        await super().put(key, record)

    async def delete(self, key) -> None:
        await self._tick()
        await super().delete(key)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ingest_config() -> IngestConfig:
    """Load the real ingest config for tests."""
    return load_ingest_config()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def reconciler(store: InMemoryStore) -> Reconciler:
    return Reconciler(store)


@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="postgresql://localhost/scalesync_test",
        fitbit_client_id="test_client_id",
        fitbit_client_secret="test_client_secret",
        fitbit_verification="verify-me",
        secret_bucket_name="test-bucket",
        token_secret_name=TOKEN_SECRET,
        timezone="Australia/Sydney",
    )


@pytest.fixture
def fitbit_day_raw() -> dict:
    """A realistic Fitbit body/log/weight/date response."""
    return {
        "weight": [
            {
                "bmi": 24.31,
                "date": "2024-05-01",
                "fat": 18.2,
                "logId": 12345,
                "source": "Aria",
                "time": "06:45:12",
                "weight": 78.4,
            },
            {
                "bmi": 24.2,
                "date": "2024-05-01",
                "logId": 12346,
                "source": "API",
                "time": "21:10:00",
                "weight": 78.05,
            },
        ]
    }


@pytest.fixture
def health_metrics_raw() -> dict:
    """A daily Health Auto Export payload with all three energy metrics."""
    return {
        "data": {
            "metrics": [
                {
                    "name": "active_energy",
                    "units": "kJ",
                    "data": [
                        {"date": "2024-05-01 00:00:00 +1000", "qty": 650.0},
                        {"date": "2024-05-02 00:00:00 +1000", "qty": 1210.5},
                    ],
                },
                {
                    "name": "basal_energy_burned",
                    "units": "kJ",
                    "data": [{"date": "2024-05-01 00:00:00 +1000", "qty": 7012.0}],
                },
                {
                    "name": "dietary_energy",
                    "units": "kJ",
                    "data": [{"date": "2024-05-01 00:00:00 +1000", "qty": 8450.25}],
                },
            ]
        }
    }
