"""Tests for the sync coordinator's webhook and batch paths."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from src.ingest.base import WeightDayScope, WeightRangeScope
from src.ingest.sync.coordinator import SyncCoordinator, SyncRangeError
from src.ingest.sync.partition import PartitionError
from src.ingest.sync.reconciler import Reconciler
from src.ingest.sync.store import InMemoryStore
from src.ingest.tests.conftest import TEST_DATE, FakeProvider, make_weight


def _coordinator(provider: FakeProvider, store: InMemoryStore, max_concurrency: int = 0):
    return SyncCoordinator(provider, Reconciler(store), max_concurrency=max_concurrency)


class TestSyncDay:
    @pytest.mark.asyncio
    async def test_same_day_twice_stores_one_record(self) -> None:
        store = InMemoryStore()
        provider = FakeProvider([make_weight(12345)])
        coordinator = _coordinator(provider, store)

        first = await coordinator.sync_day(TEST_DATE)
        second = await coordinator.sync_day(TEST_DATE)

        assert (first, second) == (1, 0)
        records = await store.get_by_scope(WeightDayScope(TEST_DATE))
        assert [r.log_id for r in records] == [12345]

    @pytest.mark.asyncio
    async def test_removes_weights_deleted_upstream(self) -> None:
        store = InMemoryStore([make_weight(1), make_weight(2)])
        provider = FakeProvider([make_weight(2)])

        await _coordinator(provider, store).sync_day(TEST_DATE)

        assert [r.log_id for r in await store.get_by_scope(WeightDayScope(TEST_DATE))] == [2]

    @pytest.mark.asyncio
    async def test_fetches_only_that_day(self) -> None:
        provider = FakeProvider()
        await _coordinator(provider, InMemoryStore()).sync_day(TEST_DATE)
        assert provider.calls == [("day", TEST_DATE, TEST_DATE)]


class TestSyncRange:
    @pytest.mark.asyncio
    async def test_sums_counts_across_months(self) -> None:
        weights = [
            make_weight(1, day=date(2024, 1, 20)),
            make_weight(2, day=date(2024, 1, 31)),
            make_weight(3, day=date(2024, 2, 29)),
            make_weight(4, day=date(2024, 3, 10)),
            make_weight(5, day=date(2024, 3, 11)),
        ]
        store = InMemoryStore()
        provider = FakeProvider(weights)

        total = await _coordinator(provider, store).sync_range(date(2024, 1, 15), date(2024, 3, 10))

        assert total == 4
        assert len(store) == 4
        assert sorted((s, e) for _, s, e in provider.calls) == [
            (date(2024, 1, 15), date(2024, 1, 31)),
            (date(2024, 2, 1), date(2024, 2, 29)),
            (date(2024, 3, 1), date(2024, 3, 10)),
        ]

    @pytest.mark.asyncio
    async def test_rerun_adds_nothing(self) -> None:
        weights = [make_weight(1, day=date(2024, 1, 20)), make_weight(2, day=date(2024, 2, 3))]
        store = InMemoryStore()
        coordinator = _coordinator(FakeProvider(weights), store)

        await coordinator.sync_range(date(2024, 1, 1), date(2024, 2, 29))
        again = await coordinator.sync_range(date(2024, 1, 1), date(2024, 2, 29))

        assert again == 0
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_prunes_weights_missing_from_month(self) -> None:
        stale = make_weight(99, day=date(2024, 2, 14))
        store = InMemoryStore([stale])
        provider = FakeProvider([make_weight(1, day=date(2024, 2, 3))])

        await _coordinator(provider, store).sync_range(date(2024, 2, 1), date(2024, 2, 29))

        records = await store.get_by_scope(WeightRangeScope(date(2024, 2, 1), date(2024, 2, 29)))
        assert [r.log_id for r in records] == [1]

    @pytest.mark.asyncio
    async def test_failing_month_raises_with_partial_count(self) -> None:
        weights = [make_weight(1, day=date(2024, 1, 20)), make_weight(2, day=date(2024, 3, 2))]
        provider = FakeProvider(weights)
        provider.fail_months = {(2024, 2)}

        with pytest.raises(SyncRangeError) as exc_info:
            await _coordinator(provider, InMemoryStore()).sync_range(
                date(2024, 1, 15), date(2024, 3, 10)
            )

        err = exc_info.value
        assert err.start == date(2024, 1, 15)
        assert err.end == date(2024, 3, 10)
        assert 0 <= err.applied <= 2
        assert isinstance(err.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_failed_months_are_all_retrieved(self, monkeypatch: pytest.MonkeyPatch) -> None:
        provider = FakeProvider()
        provider.fail_months = {(2024, 1), (2024, 2), (2024, 3)}
        created: list[asyncio.Task] = []
        create_task = asyncio.create_task

        def recording_create_task(coro, **kwargs):
            task = create_task(coro, **kwargs)
            if task.get_name().startswith("sync-"):
                created.append(task)
            return task

        monkeypatch.setattr(asyncio, "create_task", recording_create_task)

        with pytest.raises(SyncRangeError):
            await _coordinator(provider, InMemoryStore()).sync_range(
                date(2024, 1, 1), date(2024, 3, 31)
            )

        assert len(created) == 3
        assert all(task.done() for task in created)
        # No month is left with an exception nobody awaited
        assert not any(task._log_traceback for task in created)

    @pytest.mark.asyncio
    async def test_concurrency_bound_respected(self) -> None:
        provider = FakeProvider()
        coordinator = _coordinator(provider, InMemoryStore(), max_concurrency=2)

        await coordinator.sync_range(date(2024, 1, 1), date(2024, 6, 30))

        assert len(provider.calls) == 6
        assert provider.max_in_flight <= 2

    @pytest.mark.asyncio
    async def test_unbounded_runs_months_concurrently(self) -> None:
        provider = FakeProvider()
        await _coordinator(provider, InMemoryStore()).sync_range(date(2024, 1, 1), date(2024, 4, 30))
        assert provider.max_in_flight == 4

    @pytest.mark.asyncio
    async def test_degenerate_range_rejected(self) -> None:
        with pytest.raises(PartitionError):
            await _coordinator(FakeProvider(), InMemoryStore()).sync_range(TEST_DATE, TEST_DATE)
