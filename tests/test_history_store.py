"""
Tests for the SQLite history store

Decimal round trips, window queries, upserts, pruning and restarts.
"""
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from core.history import HistoricalAggregator
from core.pool_models import Granularity, HistoricalDataPoint
from infra.history_store import SQLiteHistoryStore
from tests.helpers import T0


@pytest.fixture
def store(tmp_path):
    return SQLiteHistoryStore(tmp_path / "history.db")


def make_point(hours=0, price="101.123456789012345678901234567", volume="12.5"):
    return HistoricalDataPoint(
        timestamp=T0 + timedelta(hours=hours),
        price=Decimal(price),
        volume=Decimal(volume),
        fees=Decimal("0.03125"),
        liquidity_x=Decimal("10.000000001"),
        liquidity_y=Decimal("1000"),
        bin_id=-42,
    )


class TestSQLiteHistoryStore:
    def test_decimal_round_trip(self, store):
        original = make_point()
        store.append_point("P", Granularity.HOURLY, original)

        [loaded] = store.query_window("P", Granularity.HOURLY, T0, T0)

        assert loaded == original
        assert loaded.price == Decimal("101.123456789012345678901234567")

    def test_window_filters_and_orders(self, store):
        for h in (3, 1, 2, 0):
            store.append_point("P", Granularity.HOURLY, make_point(hours=h, volume=str(h)))
        store.append_point("other", Granularity.HOURLY, make_point(hours=1))
        store.append_point("P", Granularity.DAILY, make_point(hours=1))

        window = store.query_window("P", Granularity.HOURLY, T0 + timedelta(hours=1), T0 + timedelta(hours=2))

        assert [p.volume for p in window] == [Decimal(1), Decimal(2)]

    def test_reappending_a_bucket_replaces_it(self, store):
        store.append_point("P", Granularity.HOURLY, make_point(volume="1"))
        store.append_point("P", Granularity.HOURLY, make_point(volume="999"))

        [loaded] = store.query_window("P", Granularity.HOURLY, T0, T0)
        assert loaded.volume == Decimal(999)
        assert store.count() == 1

    def test_prune(self, store):
        for h in range(5):
            store.append_point("P", Granularity.HOURLY, make_point(hours=h))

        removed = store.prune(T0 + timedelta(hours=2))

        assert removed == 2
        assert store.count() == 3

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "history.db"
        SQLiteHistoryStore(path).append_point("P", Granularity.HOURLY, make_point())

        reopened = SQLiteHistoryStore(path)
        assert len(reopened.query_window("P", Granularity.HOURLY, T0, T0)) == 1


class TestAggregatorWithStore:
    def test_flush_then_hydrate(self, store, clock):
        writer = HistoricalAggregator(store=store, now_fn=clock)
        for h in range(3):
            writer.add_data_point("P", make_point(hours=h))
        writer.flush()

        clock.advance(hours=3)
        reader = HistoricalAggregator(store=store, now_fn=clock)
        assert reader.load("P") == 3
        assert reader.get_last_24h("P").volume == Decimal("37.5")

    def test_restart_within_hour_keeps_accumulating(self, store, clock):
        clock.advance(minutes=10)
        writer = HistoricalAggregator(store=store, now_fn=clock)
        writer.add_data_point("P", replace(make_point(), timestamp=clock(), fees=Decimal(5)))
        writer.flush()

        clock.advance(minutes=5)
        reader = HistoricalAggregator(store=store, now_fn=clock)
        reader.load("P")
        for minutes in (20, 30, 40, 50):
            ts = T0 + timedelta(minutes=minutes)
            assert reader.add_data_point("P", replace(make_point(), timestamp=ts, fees=Decimal(7)))

        assert reader.get_last_24h("P").fees == Decimal(33)
        assert reader.series_length("P") == 1

        reader.flush()
        [stored] = store.query_window("P", Granularity.HOURLY, T0, T0)
        assert stored.fees == Decimal(33)
        assert store.count() == 1
