"""
Pool domain models.

Immutable value types describing a bin-based pool, what the pool-data
provider reports about it, and the derived snapshot the cache serves.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from core.decimal_math import ZERO, ONE


class Granularity(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class FeeParameters:
    """
    Fee configuration of a pool.

    Attributes:
        base_factor: Base fee in percent units (0.25 = 0.25% = 25 bps)
        max_volatility_factor: Cap of the variable fee in bps
        volatility_accumulator: Current volatility accumulator reported by the pool
        protocol_share: Fraction of fees taken by the protocol, in [0, 1]
    """
    base_factor: Decimal
    max_volatility_factor: Decimal
    volatility_accumulator: Decimal = ZERO
    protocol_share: Decimal = Decimal("0.3")

    def __post_init__(self):
        if self.base_factor < 0:
            raise ValueError(f"base_factor must be >= 0, got {self.base_factor}")
        if self.max_volatility_factor < 0:
            raise ValueError(f"max_volatility_factor must be >= 0, got {self.max_volatility_factor}")
        if not (ZERO <= self.protocol_share <= ONE):
            raise ValueError(f"protocol_share must be in [0, 1], got {self.protocol_share}")


@dataclass(frozen=True)
class Bin:
    bin_id: int
    price: Decimal
    amount_x: Decimal
    amount_y: Decimal

    @property
    def total_liquidity(self) -> Decimal:
        """Quote value of the bin (X valued at the bin price plus Y)."""
        return self.amount_x * self.price + self.amount_y


@dataclass(frozen=True)
class Pool:
    address: str
    token_x: TokenInfo
    token_y: TokenInfo
    bin_step: int
    active_bin_id: int
    fee_parameters: FeeParameters

    def __post_init__(self):
        if self.bin_step <= 0:
            raise ValueError(f"bin_step must be > 0 bps, got {self.bin_step}")


@dataclass(frozen=True)
class ProviderSnapshot:
    """
    Raw pool state as reported by a pool-data provider.

    ``cumulative_volume`` and ``cumulative_fees`` are monotonic counters in
    quote units; per-sample deltas are derived by the cache.
    """
    pool: Pool
    active_bin: Bin
    bins: Tuple[Bin, ...]
    cumulative_volume: Decimal
    cumulative_fees: Decimal
    observed_at: datetime


@dataclass(frozen=True)
class HistoricalDataPoint:
    timestamp: datetime
    price: Decimal
    volume: Decimal
    fees: Decimal
    liquidity_x: Decimal
    liquidity_y: Decimal
    bin_id: int


@dataclass(frozen=True)
class LiquidityDistribution:
    concentration_index: Decimal = ZERO
    liquidity_ratio: Decimal = ZERO


@dataclass(frozen=True)
class FeeBreakdown:
    base_fee_bps: Decimal = ZERO
    variable_fee_bps: Decimal = ZERO
    total_fee_bps: Decimal = ZERO
    protocol_share: Decimal = ZERO
    protocol_revenue: Decimal = ZERO
    lp_revenue: Decimal = ZERO


@dataclass(frozen=True)
class BinMetrics:
    utilization: Decimal = ZERO
    volume_share: Decimal = ZERO
    liquidity_concentration: Decimal = ZERO
    time_in_range: Decimal = ZERO


@dataclass(frozen=True)
class PoolMetrics:
    """Derived metrics of a pool. APR values are percent, volatility an annualized fraction."""
    volume_24h: Decimal = ZERO
    fees_24h: Decimal = ZERO
    apr: Decimal = ZERO
    compounded_apr: Decimal = ZERO
    volatility: Decimal = ZERO
    impermanent_loss: Decimal = ZERO
    liquidity: LiquidityDistribution = field(default_factory=LiquidityDistribution)
    fee_breakdown: FeeBreakdown = field(default_factory=FeeBreakdown)
    yield_stability: Decimal = ONE
    active_bin: BinMetrics = field(default_factory=BinMetrics)
    price_change_24h: Decimal = ZERO


@dataclass(frozen=True)
class PoolSnapshot:
    pool: Pool
    active_bin: Bin
    bins: Tuple[Bin, ...]
    total_liquidity: Decimal
    metrics: PoolMetrics
    updated_at: datetime
    # Counters carried forward so the next refresh can derive deltas.
    cumulative_volume: Decimal = ZERO
    cumulative_fees: Decimal = ZERO

    @property
    def address(self) -> str:
        return self.pool.address


@dataclass(frozen=True)
class MarketTrend:
    pool_address: str
    direction: str  # bullish | bearish | sideways
    strength: Decimal
    price_change_24h: Decimal


@dataclass(frozen=True)
class MarketOpportunity:
    pool_address: str
    kind: str  # liquidity_provision | fee_collection
    score: Decimal
    reason: str


@dataclass(frozen=True)
class MarketData:
    pools: Dict[str, PoolSnapshot]
    timestamp: datetime
    trends: List[MarketTrend] = field(default_factory=list)
    opportunities: List[MarketOpportunity] = field(default_factory=list)

    def get_pool(self, address: str) -> Optional[PoolSnapshot]:
        return self.pools.get(address)

    def __contains__(self, address: str) -> bool:
        return address in self.pools
