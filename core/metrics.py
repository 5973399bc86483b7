"""
Metrics Engine

Pure functions deriving pool metrics from snapshots and history. Every
function is total: degenerate inputs (empty series, zero denominators)
return the documented neutral value, and arithmetic failures are logged
and reported as zero instead of propagating into the refresh path.

Units:
- APR values are percent (12.5 == 12.5%)
- volatility is an annualized fraction
- impermanent loss is a fraction <= 0
- fee rates are basis points
"""

import functools
import logging
from decimal import Decimal
from typing import Callable, Optional, Sequence

from core.decimal_math import (
    BPS_DENOMINATOR,
    DAYS_PER_YEAR,
    HOURS_PER_YEAR,
    HUNDRED,
    ONE,
    TWO,
    ZERO,
    dsqrt,
    dsum,
    financial_context,
)
from core.pool_models import (
    Bin,
    BinMetrics,
    FeeBreakdown,
    HistoricalDataPoint,
    LiquidityDistribution,
    Pool,
    PoolMetrics,
)

logger = logging.getLogger(__name__)


def _total(default: Callable[[], object]):
    """Return ``default()`` instead of raising on arithmetic or type errors."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                with financial_context():
                    return func(*args, **kwargs)
            except (ArithmeticError, TypeError, ValueError) as e:
                logger.error(f"Failed to compute {func.__name__}: {e}")
                return default()

        return wrapper

    return decorator


def _zero() -> Decimal:
    return ZERO


def _population_stddev(values: Sequence[Decimal]) -> Decimal:
    n = Decimal(len(values))
    mean = dsum(values) / n
    variance = dsum((v - mean) ** 2 for v in values) / n
    return dsqrt(variance)


@_total(_zero)
def calculate_volume_24h(points: Sequence[HistoricalDataPoint]) -> Decimal:
    return dsum(p.volume for p in points)


@_total(_zero)
def calculate_fees_24h(points: Sequence[HistoricalDataPoint]) -> Decimal:
    return dsum(p.fees for p in points)


@_total(_zero)
def calculate_apr(fees_24h: Decimal, liquidity: Decimal) -> Decimal:
    """Linear APR in percent: fees / liquidity * 365 * 100."""
    if liquidity == 0:
        return ZERO
    return fees_24h / liquidity * DAYS_PER_YEAR * HUNDRED


@_total(_zero)
def calculate_compounded_apr(daily_fees: Decimal, liquidity: Decimal, days: int = 365) -> Decimal:
    """APR in percent assuming daily fees are reinvested ``days`` times."""
    if liquidity == 0:
        return ZERO
    rate = daily_fees / liquidity
    return ((ONE + rate) ** days - ONE) * HUNDRED


@_total(_zero)
def calculate_volatility(prices: Sequence[Decimal], samples_per_year: int = HOURS_PER_YEAR) -> Decimal:
    """
    Annualized volatility from a price series.

    Population standard deviation of consecutive relative returns scaled by
    sqrt(samples_per_year). Fewer than two prices, or any zero price in the
    series, yields 0.
    """
    if len(prices) < 2:
        return ZERO
    if any(p == 0 for p in prices):
        return ZERO

    returns = [(prices[i] - prices[i - 1]) / prices[i - 1] for i in range(1, len(prices))]
    return _population_stddev(returns) * dsqrt(Decimal(samples_per_year))


@_total(_zero)
def calculate_impermanent_loss(initial_ratio: Decimal, current_ratio: Decimal) -> Decimal:
    """
    Impermanent loss of a 50/50 position, as a fraction <= 0.

    Both arguments are prices of X in Y (the position's entry price and the
    current price); only their ratio matters.
    """
    if initial_ratio == 0 or current_ratio == 0:
        return ZERO
    r = current_ratio / initial_ratio
    loss = TWO * dsqrt(r) / (ONE + r) - ONE
    # Rounding at r == 1 can leave a positive residue
    return min(loss, ZERO)


@_total(LiquidityDistribution)
def calculate_liquidity_distribution(bins: Sequence[Bin]) -> LiquidityDistribution:
    """Herfindahl-style concentration index and the Y/X amount ratio of a bin set."""
    if not bins:
        return LiquidityDistribution()

    values = [b.total_liquidity for b in bins]
    total = dsum(values)
    if total == 0:
        return LiquidityDistribution()

    concentration = ONE - dsum((v / total) ** 2 for v in values)

    total_x = dsum(b.amount_x for b in bins)
    total_y = dsum(b.amount_y for b in bins)
    ratio = ZERO if total_x == 0 else total_y / total_x

    return LiquidityDistribution(concentration_index=concentration, liquidity_ratio=ratio)


@_total(_zero)
def calculate_liquidity_value(bins: Sequence[Bin]) -> Decimal:
    return dsum(b.total_liquidity for b in bins)


@_total(_zero)
def calculate_bin_price(bin_id: int, bin_step: int, base_price: Decimal) -> Decimal:
    """Price of ``bin_id`` given the bin step in bps: base * (1 + step/10000) ** bin_id."""
    multiplier = ONE + Decimal(bin_step) / BPS_DENOMINATOR
    return base_price * multiplier ** bin_id


@_total(FeeBreakdown)
def calculate_fee_breakdown(
    base_factor: Decimal,
    max_volatility_factor: Decimal,
    volatility_accumulator: Decimal,
    volume_x: Decimal,
    volume_y: Decimal,
    bin_step: int,
    protocol_share: Decimal = Decimal("0.3"),
) -> FeeBreakdown:
    variable_bps = min(max_volatility_factor, volatility_accumulator * Decimal(bin_step))
    base_bps = base_factor * HUNDRED
    total_bps = base_bps + variable_bps

    total_fees = (volume_x + volume_y) * total_bps / BPS_DENOMINATOR
    protocol_revenue = total_fees * protocol_share

    return FeeBreakdown(
        base_fee_bps=base_bps,
        variable_fee_bps=variable_bps,
        total_fee_bps=total_bps,
        protocol_share=protocol_share,
        protocol_revenue=protocol_revenue,
        lp_revenue=total_fees - protocol_revenue,
    )


@_total(_zero)
def calculate_yield_stability(apr_history: Sequence[Decimal]) -> Decimal:
    """1 / (1 + coefficient of variation) of an APR series; 1 means perfectly stable."""
    if len(apr_history) < 2:
        return ONE

    mean = dsum(apr_history) / Decimal(len(apr_history))
    stddev = _population_stddev(apr_history)

    if mean == 0:
        return ONE if stddev == 0 else ZERO

    cv = stddev / abs(mean)
    return ONE / (ONE + cv)


@_total(BinMetrics)
def calculate_bin_metrics(
    volume_in_bin: Decimal,
    total_volume: Decimal,
    liquidity_in_bin: Decimal,
    total_liquidity: Decimal,
    time_in_range: Decimal = ZERO,
) -> BinMetrics:
    """Utilization, volume share and liquidity concentration of one bin."""
    return BinMetrics(
        utilization=ZERO if liquidity_in_bin == 0 else volume_in_bin / liquidity_in_bin,
        volume_share=ZERO if total_volume == 0 else volume_in_bin / total_volume,
        liquidity_concentration=ZERO if total_liquidity == 0 else liquidity_in_bin / total_liquidity,
        time_in_range=time_in_range,
    )


def _point_liquidity(point: HistoricalDataPoint) -> Decimal:
    return point.liquidity_x * point.price + point.liquidity_y


def hourly_apr_history(points: Sequence[HistoricalDataPoint]) -> list:
    """Per-sample APR (percent) of hourly points, annualizing each hour's fees."""
    return [calculate_apr(p.fees * 24, _point_liquidity(p)) for p in points]


@_total(PoolMetrics)
def compute_pool_metrics(
    pool: Pool,
    active_bin: Bin,
    bins: Sequence[Bin],
    points: Sequence[HistoricalDataPoint],
    total_liquidity: Optional[Decimal] = None,
) -> PoolMetrics:
    """
    Compose the full metric set for a pool from its bins and trailing-24h points.

    Impermanent loss compares the first and last price of the window, i.e. a
    position entered at the start of the window.
    """
    if total_liquidity is None:
        total_liquidity = calculate_liquidity_value(bins)

    volume_24h = calculate_volume_24h(points)
    fees_24h = calculate_fees_24h(points)
    prices = [p.price for p in points]

    initial_price = prices[0] if prices else ZERO
    current_price = prices[-1] if prices else ZERO
    price_change = ZERO
    if initial_price != 0:
        price_change = current_price / initial_price - ONE

    fees = pool.fee_parameters
    in_range = sum(1 for p in points if p.bin_id == active_bin.bin_id)
    time_in_range = Decimal(in_range) / Decimal(len(points)) if points else ZERO

    return PoolMetrics(
        volume_24h=volume_24h,
        fees_24h=fees_24h,
        apr=calculate_apr(fees_24h, total_liquidity),
        compounded_apr=calculate_compounded_apr(fees_24h, total_liquidity),
        volatility=calculate_volatility(prices),
        impermanent_loss=calculate_impermanent_loss(initial_price, current_price),
        liquidity=calculate_liquidity_distribution(bins),
        fee_breakdown=calculate_fee_breakdown(
            fees.base_factor,
            fees.max_volatility_factor,
            fees.volatility_accumulator,
            volume_24h,
            ZERO,
            pool.bin_step,
            fees.protocol_share,
        ),
        yield_stability=calculate_yield_stability(hourly_apr_history(points)),
        active_bin=calculate_bin_metrics(
            volume_24h,
            volume_24h,
            active_bin.total_liquidity,
            total_liquidity,
            time_in_range,
        ),
        price_change_24h=price_change,
    )
