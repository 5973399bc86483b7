"""
Tests for the Metrics Engine

Covers APR, volatility, impermanent loss, liquidity distribution, fee
breakdown, yield stability and the composed pool metrics.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from core import metrics
from core.decimal_math import financial_context
from core.pool_models import Bin, HistoricalDataPoint, LiquidityDistribution
from tests.helpers import T0, make_bins, make_pool

D = Decimal
EPS = D("1e-25")


def point(hours: int, price="100", volume="0", fees="0", x="50", y="5000", bin_id=100):
    return HistoricalDataPoint(
        timestamp=T0 + timedelta(hours=hours),
        price=D(price),
        volume=D(volume),
        fees=D(fees),
        liquidity_x=D(x),
        liquidity_y=D(y),
        bin_id=bin_id,
    )


class TestAggregates:
    def test_sums_volume_and_fees(self):
        points = [point(0, volume="10", fees="1"), point(1, volume="15.5", fees="2.25")]
        assert metrics.calculate_volume_24h(points) == D("25.5")
        assert metrics.calculate_fees_24h(points) == D("3.25")

    def test_empty_series_is_zero(self):
        assert metrics.calculate_volume_24h([]) == 0
        assert metrics.calculate_fees_24h([]) == 0


class TestAPR:
    def test_apr_scenario(self):
        """fees 100 on liquidity 10000 is 365% APR"""
        assert metrics.calculate_apr(D(100), D(10000)) == D(365)

    def test_apr_zero_liquidity(self):
        assert metrics.calculate_apr(D(100), D(0)) == 0

    def test_apr_zero_fees(self):
        assert metrics.calculate_apr(D(0), D(10000)) == 0

    @pytest.mark.parametrize("fees,liquidity", [("0.01", "1"), ("5", "100000"), ("1000", "250")])
    def test_apr_non_negative(self, fees, liquidity):
        assert metrics.calculate_apr(D(fees), D(liquidity)) >= 0

    @pytest.mark.parametrize("fees,liquidity", [("1", "10000"), ("10", "10000"), ("100", "10000")])
    def test_compounded_at_least_linear(self, fees, liquidity):
        linear = metrics.calculate_apr(D(fees), D(liquidity))
        compounded = metrics.calculate_compounded_apr(D(fees), D(liquidity))
        assert compounded >= linear

    def test_compounded_zero_liquidity(self):
        assert metrics.calculate_compounded_apr(D(10), D(0)) == 0

    def test_bad_input_returns_zero(self):
        """Metrics are total: type errors become zero instead of raising"""
        assert metrics.calculate_apr(None, D(1)) == 0


class TestVolatility:
    def test_single_price_is_zero(self):
        assert metrics.calculate_volatility([D(100)]) == 0

    def test_empty_is_zero(self):
        assert metrics.calculate_volatility([]) == 0

    def test_constant_prices_zero(self):
        assert metrics.calculate_volatility([D(100)] * 5) == 0

    def test_scenario_per_sample_bounded(self):
        """[100, 110, 105, 115] has a per-sample volatility strictly in (0, 1)"""
        prices = [D(100), D(110), D(105), D(115)]
        vol = metrics.calculate_volatility(prices, samples_per_year=1)
        assert 0 < vol < 1

    def test_annualization_scales_by_sqrt_samples(self):
        prices = [D(100), D(110), D(105), D(115)]
        per_sample = metrics.calculate_volatility(prices, samples_per_year=1)
        annual = metrics.calculate_volatility(prices)
        expected = per_sample * D(24 * 365).sqrt()
        assert abs(annual - expected) < D("1e-25")

    def test_scale_invariant(self):
        prices = [D(100), D(110), D(105), D(115)]
        scaled = [p * D("3.7") for p in prices]
        assert abs(metrics.calculate_volatility(prices) - metrics.calculate_volatility(scaled)) < EPS

    def test_zero_price_yields_zero(self):
        assert metrics.calculate_volatility([D(100), D(0), D(105)]) == 0


class TestImpermanentLoss:
    @pytest.mark.parametrize("ratio", ["0.5", "1", "42.42"])
    def test_unchanged_ratio_no_loss(self, ratio):
        assert metrics.calculate_impermanent_loss(D(ratio), D(ratio)) == 0

    @pytest.mark.parametrize("ratio", ["0.25", "0.99", "1.01", "4"])
    def test_any_move_is_loss(self, ratio):
        assert metrics.calculate_impermanent_loss(D(1), D(ratio)) < 0

    def test_fourfold_move(self):
        """r = 4 -> 2*2/5 - 1 = -0.2"""
        assert metrics.calculate_impermanent_loss(D(1), D(4)) == D("-0.2")

    def test_zero_inputs(self):
        assert metrics.calculate_impermanent_loss(D(0), D(2)) == 0
        assert metrics.calculate_impermanent_loss(D(2), D(0)) == 0


class TestLiquidityDistribution:
    def test_empty(self):
        assert metrics.calculate_liquidity_distribution([]) == LiquidityDistribution(D(0), D(0))

    def test_all_zero_bins(self):
        bins = [Bin(1, D(100), D(0), D(0)), Bin(2, D(101), D(0), D(0))]
        assert metrics.calculate_liquidity_distribution(bins) == LiquidityDistribution(D(0), D(0))

    @pytest.mark.parametrize("width,n", [(0, 1), (1, 3), (2, 5)])
    def test_equal_bins_concentration(self, width, n):
        bins = make_bins(width=width)
        dist = metrics.calculate_liquidity_distribution(bins)
        with financial_context():
            expected = 1 - D(1) / D(n)
        assert abs(dist.concentration_index - expected) < EPS

    def test_ratio_is_y_over_x(self):
        dist = metrics.calculate_liquidity_distribution(make_bins(width=2))
        assert dist.liquidity_ratio == D(100)

    def test_ratio_zero_without_x(self):
        bins = [Bin(1, D(100), D(0), D(500)), Bin(2, D(101), D(0), D(500))]
        dist = metrics.calculate_liquidity_distribution(bins)
        assert dist.liquidity_ratio == 0
        assert dist.concentration_index == D("0.5")

    def test_liquidity_value(self):
        """10 X at 100 plus 1000 Y per bin"""
        assert metrics.calculate_liquidity_value(make_bins(width=1)) == D(6000)


class TestBinPrice:
    def test_active_bin_is_base(self):
        assert metrics.calculate_bin_price(0, 25, D(100)) == D(100)

    def test_strictly_increasing(self):
        prices = [metrics.calculate_bin_price(i, 25, D(100)) for i in range(-5, 6)]
        assert all(a < b for a, b in zip(prices, prices[1:]))

    def test_one_step(self):
        assert metrics.calculate_bin_price(1, 25, D(100)) == D("100.25")


class TestFeeBreakdown:
    def test_decomposition(self):
        fb = metrics.calculate_fee_breakdown(
            base_factor=D("0.25"),
            max_volatility_factor=D(100),
            volatility_accumulator=D(2),
            volume_x=D(10000),
            volume_y=D(0),
            bin_step=25,
            protocol_share=D("0.3"),
        )
        assert fb.base_fee_bps == D(25)
        assert fb.variable_fee_bps == D(50)
        assert fb.total_fee_bps == D(75)
        assert fb.protocol_revenue == D("22.5")
        assert fb.lp_revenue == D("52.5")

    def test_variable_fee_capped(self):
        fb = metrics.calculate_fee_breakdown(D("0.25"), D(100), D(10), D(0), D(0), 25)
        assert fb.variable_fee_bps == D(100)
        assert fb.protocol_revenue == 0

    def test_default_protocol_share(self):
        fb = metrics.calculate_fee_breakdown(D(1), D(0), D(0), D(5000), D(5000), 10)
        assert fb.protocol_share == D("0.3")
        assert fb.protocol_revenue + fb.lp_revenue == D(100)


class TestYieldStability:
    def test_short_history_is_stable(self):
        assert metrics.calculate_yield_stability([]) == 1
        assert metrics.calculate_yield_stability([D(12)]) == 1

    def test_constant_history(self):
        assert metrics.calculate_yield_stability([D(10)] * 4) == 1

    def test_all_zero_history(self):
        assert metrics.calculate_yield_stability([D(0), D(0)]) == 1

    def test_zero_mean_varying(self):
        assert metrics.calculate_yield_stability([D(-1), D(1)]) == 0

    def test_coefficient_of_variation(self):
        """mean 15, stddev 5 -> cv 1/3 -> 0.75"""
        assert abs(metrics.calculate_yield_stability([D(10), D(20)]) - D("0.75")) < EPS


class TestBinMetrics:
    def test_ratios(self):
        bm = metrics.calculate_bin_metrics(D(1000), D(10000), D(5000), D(50000))
        assert bm.utilization == D("0.2")
        assert bm.volume_share == D("0.1")
        assert bm.liquidity_concentration == D("0.1")

    def test_zero_denominators(self):
        bm = metrics.calculate_bin_metrics(D(1000), D(0), D(0), D(0))
        assert bm.utilization == 0
        assert bm.volume_share == 0
        assert bm.liquidity_concentration == 0


class TestComposedMetrics:
    def test_compute_pool_metrics(self):
        pool = make_pool()
        bins = make_bins(width=2)
        active = bins[2]
        points = [
            point(0, price="100", volume="1000", fees="2.5"),
            point(1, price="104", volume="3000", fees="7.5"),
        ]

        result = metrics.compute_pool_metrics(pool, active, bins, points)

        assert result.volume_24h == D(4000)
        assert result.fees_24h == D(10)
        # 10 fees on 10000 liquidity
        assert result.apr == D("36.5")
        assert result.compounded_apr >= result.apr
        assert result.volatility == 0  # a single return has zero dispersion
        assert result.impermanent_loss < 0
        assert result.price_change_24h == D("0.04")
        assert abs(result.liquidity.concentration_index - D("0.8")) < EPS
        assert result.fee_breakdown.base_fee_bps == D(25)
        assert result.active_bin.time_in_range == 1
        assert result.active_bin.liquidity_concentration == D("0.2")

    def test_empty_history(self):
        pool = make_pool()
        bins = make_bins()
        result = metrics.compute_pool_metrics(pool, bins[2], bins, [])
        assert result.volume_24h == 0
        assert result.apr == 0
        assert result.impermanent_loss == 0
        assert result.yield_stability == 1
