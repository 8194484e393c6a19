"""Record stores consumed by the reconciler.

Every write is keyed by the record's StoreKey, so writing the same record
twice is an idempotent overwrite:

    weights: log_id (Fitbit logId)         — PRIMARY KEY
    energy:  record_key (kind/period/when) — PRIMARY KEY

``PostgresStore`` is the production store.  ``InMemoryStore`` holds the same
records in a dict and backs tests and local runs without a database.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable

import asyncpg

from src.ingest.base import (
    EnergyDayScope,
    EnergyKind,
    EnergyPeriod,
    EnergySample,
    Record,
    Scope,
    StoreKey,
    WeightDayScope,
    WeightRangeScope,
    WeightSample,
)
from src.services.database import get_connection

logger = logging.getLogger("scalesync.ingest.sync.store")

_WEIGHT_COLUMNS = ["log_id", "date", "time", "weight", "recorded_at"]
_ENERGY_COLUMNS = ["record_key", "kind", "period", "day", "recorded_at", "energy_kj"]


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes — safe to call multiple times with the same
    data.  On conflict, updates the non-key columns.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )


class Store(ABC):
    """Persistence interface for weight and energy records."""

    @abstractmethod
    async def get_by_scope(self, scope: Scope) -> list[Record]:
        """Return every stored record that belongs to ``scope``."""

    @abstractmethod
    async def put(self, key: StoreKey, record: Record) -> None:
        """Upsert ``record`` under ``key``."""

    @abstractmethod
    async def delete(self, key: StoreKey) -> None:
        """Delete the record stored under ``key``.  Missing keys are not an error."""

    @abstractmethod
    async def list_weights(self) -> list[WeightSample]:
        """Return every weight sample ordered by ``recorded_at``."""

    @abstractmethod
    async def list_energy(self, since: date | None = None) -> list[EnergySample]:
        """Return energy samples on or after ``since``, ordered by ``recorded_at``."""

    async def put_many(self, records: Iterable[Record]) -> None:
        for record in records:
            await self.put(record.key, record)

    async def delete_many(self, keys: Iterable[StoreKey]) -> None:
        for key in keys:
            await self.delete(key)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryStore(Store):
    """Dict-backed store with the same keying rules as PostgresStore.

    ``operations`` records every mutation as ``(op, key)`` so callers can
    assert on exactly what was written.
    """

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self._records: dict[StoreKey, Record] = {r.key: r for r in records}
        self.operations: list[tuple[str, StoreKey]] = []

    async def get_by_scope(self, scope: Scope) -> list[Record]:
        return [r for r in self._records.values() if scope.contains(r)]

    async def put(self, key: StoreKey, record: Record) -> None:
        self.operations.append(("put", key))
        self._records[key] = record

    async def delete(self, key: StoreKey) -> None:
        self.operations.append(("delete", key))
        self._records.pop(key, None)

    async def list_weights(self) -> list[WeightSample]:
        weights = [r for r in self._records.values() if isinstance(r, WeightSample)]
        return sorted(weights, key=lambda w: w.recorded_at)

    async def list_energy(self, since: date | None = None) -> list[EnergySample]:
        energy = [
            r
            for r in self._records.values()
            if isinstance(r, EnergySample) and (since is None or r.day >= since)
        ]
        return sorted(energy, key=lambda e: e.recorded_at)

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Postgres store
# ---------------------------------------------------------------------------


def _weight_from_row(row: asyncpg.Record) -> WeightSample:
    return WeightSample(
        log_id=row["log_id"],
        date=row["date"],
        time=row["time"],
        weight=row["weight"],
        recorded_at=row["recorded_at"],
    )


def _energy_from_row(row: asyncpg.Record) -> EnergySample:
    return EnergySample(
        kind=EnergyKind(row["kind"]),
        day=row["day"],
        recorded_at=row["recorded_at"],
        energy_kj=row["energy_kj"],
        period=EnergyPeriod(row["period"]),
    )


class PostgresStore(Store):
    """asyncpg-backed store.  Each call runs in its own short transaction."""

    _WEIGHT_UPSERT = build_upsert_query("weights", _WEIGHT_COLUMNS, ["log_id"])
    _ENERGY_UPSERT = build_upsert_query("energy", _ENERGY_COLUMNS, ["record_key"])

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_by_scope(self, scope: Scope) -> list[Record]:
        async with get_connection(self._pool) as conn:
            if isinstance(scope, WeightDayScope):
                rows = await conn.fetch("SELECT * FROM weights WHERE date = $1", scope.day)
                return [_weight_from_row(r) for r in rows]
            if isinstance(scope, WeightRangeScope):
                rows = await conn.fetch(
                    "SELECT * FROM weights WHERE date >= $1 AND date <= $2",
                    scope.start,
                    scope.end,
                )
                return [_weight_from_row(r) for r in rows]
            if isinstance(scope, EnergyDayScope):
                rows = await conn.fetch(
                    "SELECT * FROM energy WHERE kind = $1 AND period = $2 AND day = $3",
                    scope.kind.value,
                    EnergyPeriod.DAILY.value,
                    scope.day,
                )
                return [_energy_from_row(r) for r in rows]
        raise TypeError(f"Unsupported scope: {scope!r}")

    def _upsert_args(self, key: StoreKey, record: Record) -> tuple[str, tuple]:
        if isinstance(record, WeightSample):
            return self._WEIGHT_UPSERT, (
                record.log_id,
                record.date,
                record.time,
                record.weight,
                record.recorded_at,
            )
        if isinstance(record, EnergySample):
            return self._ENERGY_UPSERT, (
                key.name,
                record.kind.value,
                record.period.value,
                record.day,
                record.recorded_at,
                record.energy_kj,
            )
        raise TypeError(f"Unsupported record: {record!r}")

    async def put(self, key: StoreKey, record: Record) -> None:
        query, args = self._upsert_args(key, record)
        async with get_connection(self._pool) as conn:
            await conn.execute(query, *args)

    async def put_many(self, records: Iterable[Record]) -> None:
        batches: dict[str, list[tuple]] = {}
        for record in records:
            query, args = self._upsert_args(record.key, record)
            batches.setdefault(query, []).append(args)
        if not batches:
            return
        async with get_connection(self._pool) as conn:
            for query, rows in batches.items():
                await conn.executemany(query, rows)

    async def delete(self, key: StoreKey) -> None:
        await self.delete_many([key])

    async def delete_many(self, keys: Iterable[StoreKey]) -> None:
        keys = list(keys)
        weight_ids = [int(k.name) for k in keys if k.kind == "weight"]
        energy_keys = [k.name for k in keys if k.kind == "energy"]
        if not weight_ids and not energy_keys:
            return
        async with get_connection(self._pool) as conn:
            if weight_ids:
                await conn.execute("DELETE FROM weights WHERE log_id = ANY($1::bigint[])", weight_ids)
            if energy_keys:
                await conn.execute("DELETE FROM energy WHERE record_key = ANY($1::text[])", energy_keys)

    async def list_weights(self) -> list[WeightSample]:
        async with get_connection(self._pool) as conn:
            rows = await conn.fetch("SELECT * FROM weights ORDER BY recorded_at")
        return [_weight_from_row(r) for r in rows]

    async def list_energy(self, since: date | None = None) -> list[EnergySample]:
        async with get_connection(self._pool) as conn:
            if since is None:
                rows = await conn.fetch("SELECT * FROM energy ORDER BY recorded_at")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM energy WHERE day >= $1 ORDER BY recorded_at", since
                )
        return [_energy_from_row(r) for r in rows]
