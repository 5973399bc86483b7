"""Tests for market trend and opportunity detection"""
from decimal import Decimal

import pytest

from core.market_analysis import MarketAnalyzer
from tests.helpers import T0, make_pool_snapshot

D = Decimal


class TestTrend:
    @pytest.mark.parametrize("change,direction", [
        (D("0.05"), "bullish"),
        (D("-0.05"), "bearish"),
        (D("0.01"), "sideways"),
        (D("-0.01"), "sideways"),
    ])
    def test_direction(self, change, direction):
        trend = MarketAnalyzer().trend(make_pool_snapshot(price_change_24h=change))
        assert trend.direction == direction
        assert trend.price_change_24h == change

    def test_strength_capped_at_one(self):
        analyzer = MarketAnalyzer()
        assert analyzer.trend(make_pool_snapshot(volatility=D("0.3"))).strength == D("0.3")
        assert analyzer.trend(make_pool_snapshot(volatility=D(4))).strength == D(1)


class TestOpportunities:
    def test_high_apr_pool(self):
        found = MarketAnalyzer(target_apr=D("0.10")).opportunities(make_pool_snapshot(apr=D(25)))

        [opportunity] = found
        assert opportunity.kind == "liquidity_provision"
        assert opportunity.score == D("0.25")

    def test_fee_collection(self):
        found = MarketAnalyzer().opportunities(make_pool_snapshot(fees_24h=D(150)))
        assert [o.kind for o in found] == ["fee_collection"]

    def test_quiet_pool(self):
        assert MarketAnalyzer().opportunities(make_pool_snapshot(apr=D(10), fees_24h=D(100))) == []


def test_build_market_data():
    snapshots = {
        "a": make_pool_snapshot(address="a", apr=D(30)),
        "b": make_pool_snapshot(address="b", price_change_24h=D("-0.2")),
    }

    market = MarketAnalyzer().build(snapshots, T0)

    assert market.timestamp == T0
    assert market.get_pool("a") is snapshots["a"]
    assert market.get_pool("missing") is None
    assert [t.direction for t in market.trends] == ["sideways", "bearish"]
    assert [o.pool_address for o in market.opportunities] == ["a"]
