"""
Test helpers for pool cache, metrics and strategy tests.

Provides a controllable clock, a scripted pool-data provider and builders
for snapshots and market data that mirror production structures.
"""

import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from core.exceptions import PoolDataProviderError
from core.pool_cache import PoolDataProvider
from core.pool_models import (
    Bin,
    FeeParameters,
    MarketData,
    Pool,
    PoolMetrics,
    PoolSnapshot,
    ProviderSnapshot,
    TokenInfo,
)

POOL_ADDRESS = "PoolAddr1111111111111111111111111111111111"
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Mutable clock usable as both ``now_fn`` (datetime) and ``clock`` (epoch seconds)."""

    def __init__(self, start: datetime = T0):
        self.current = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.current

    def epoch(self) -> float:
        return self().timestamp()

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        with self._lock:
            self.current = self.current + timedelta(seconds=seconds, **kwargs)
            return self.current


def make_bins(active_id: int = 100, width: int = 2, price: Decimal = Decimal(100),
              amount_x: Decimal = Decimal(10), amount_y: Decimal = Decimal(1000)) -> List[Bin]:
    """Equal-liquidity bins around ``active_id``; only the active bin has the given price."""
    return [
        Bin(bin_id=i, price=price, amount_x=amount_x, amount_y=amount_y)
        for i in range(active_id - width, active_id + width + 1)
    ]


def make_pool(address: str = POOL_ADDRESS, active_id: int = 100, bin_step: int = 25) -> Pool:
    return Pool(
        address=address,
        token_x=TokenInfo(address="MintX", symbol="SOL", decimals=9),
        token_y=TokenInfo(address="MintY", symbol="USDC", decimals=6),
        bin_step=bin_step,
        active_bin_id=active_id,
        fee_parameters=FeeParameters(
            base_factor=Decimal("0.25"),
            max_volatility_factor=Decimal(100),
            volatility_accumulator=Decimal(0),
        ),
    )


def make_provider_snapshot(
    address: str = POOL_ADDRESS,
    active_id: int = 100,
    price: Decimal = Decimal(100),
    cumulative_volume: Decimal = Decimal(0),
    cumulative_fees: Decimal = Decimal(0),
    observed_at: Optional[datetime] = None,
) -> ProviderSnapshot:
    bins = tuple(make_bins(active_id=active_id, price=price))
    active = next(b for b in bins if b.bin_id == active_id)
    return ProviderSnapshot(
        pool=make_pool(address, active_id),
        active_bin=active,
        bins=bins,
        cumulative_volume=cumulative_volume,
        cumulative_fees=cumulative_fees,
        observed_at=observed_at or T0,
    )


class FakePoolProvider(PoolDataProvider):
    """
    Scripted provider.

    Each pool serves the last snapshot set via ``set``; ``fail`` makes the
    next fetches raise. ``delay`` slows fetches down for concurrency tests.
    Observation time follows ``clock`` when given.
    """

    def __init__(self, clock: Optional[FakeClock] = None, delay: float = 0.0):
        self.clock = clock
        self.delay = delay
        self.snapshots: Dict[str, ProviderSnapshot] = {}
        self.failing: Dict[str, bool] = {}
        self.calls: Dict[str, int] = {}
        self._lock = threading.Lock()

    def set(self, snapshot: ProviderSnapshot) -> None:
        self.snapshots[snapshot.pool.address] = snapshot

    def fail(self, address: str = POOL_ADDRESS, failing: bool = True) -> None:
        self.failing[address] = failing

    def call_count(self, address: str = POOL_ADDRESS) -> int:
        with self._lock:
            return self.calls.get(address, 0)

    def fetch_pool_snapshot(self, pool_address: str) -> ProviderSnapshot:
        with self._lock:
            self.calls[pool_address] = self.calls.get(pool_address, 0) + 1
        if self.delay:
            time.sleep(self.delay)
        if self.failing.get(pool_address) or pool_address not in self.snapshots:
            raise PoolDataProviderError(f"no data for {pool_address}")
        snapshot = self.snapshots[pool_address]
        if self.clock is not None:
            snapshot = replace(snapshot, observed_at=self.clock())
        return snapshot


def make_pool_snapshot(
    address: str = POOL_ADDRESS,
    active_id: int = 100,
    total_liquidity: Decimal = Decimal(50000),
    fees_24h: Decimal = Decimal(0),
    apr: Decimal = Decimal(0),
    volatility: Decimal = Decimal(0),
    price_change_24h: Decimal = Decimal(0),
    updated_at: datetime = T0,
) -> PoolSnapshot:
    """PoolSnapshot with hand-picked metrics (APR in percent)."""
    bins = tuple(make_bins(active_id=active_id))
    active = next(b for b in bins if b.bin_id == active_id)
    return PoolSnapshot(
        pool=make_pool(address, active_id),
        active_bin=active,
        bins=bins,
        total_liquidity=total_liquidity,
        metrics=PoolMetrics(
            fees_24h=fees_24h,
            apr=apr,
            volatility=volatility,
            price_change_24h=price_change_24h,
        ),
        updated_at=updated_at,
    )


def make_market_data(snapshots: Sequence[PoolSnapshot], timestamp: datetime = T0) -> MarketData:
    return MarketData(pools={s.address: s for s in snapshots}, timestamp=timestamp)
