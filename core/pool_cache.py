"""
Pool State Cache

Holds the latest PoolSnapshot of every tracked pool and refreshes it from
the pool-data provider when it goes stale.

Refresh protocol (one pool):
1. fetch the provider snapshot
2. derive per-sample volume/fee deltas from the cumulative counters of the
   previous snapshot (first sample and counter resets yield 0)
3. record one hourly HistoricalDataPoint
4. read the trailing-24h aggregates and compute PoolMetrics
5. replace the snapshot reference

Concurrency:
- One lock per pool guards refreshes (single-flight). Readers of a fresh
  snapshot take no pool lock; snapshot replacement is a single assignment.
- A refresh that fails keeps the previous snapshot, so readers get stale
  data rather than nothing.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from core.decimal_math import ZERO, dsum
from core.exceptions import PoolInitError
from core.history import HistoricalAggregator, utc_now
from core.market_analysis import MarketAnalyzer
from core.metrics import calculate_liquidity_value, compute_pool_metrics
from core.pool_models import (
    Granularity,
    HistoricalDataPoint,
    MarketData,
    PoolSnapshot,
    ProviderSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_STALENESS_SECONDS = 30.0


class PoolDataProvider(ABC):
    """Source of raw pool state."""

    @abstractmethod
    def fetch_pool_snapshot(self, pool_address: str) -> ProviderSnapshot:
        """Raises PoolDataProviderError (or any exception) on failure."""


@dataclass
class _PoolEntry:
    address: str
    lock: threading.Lock = field(default_factory=threading.Lock)
    snapshot: Optional[PoolSnapshot] = None
    attempts: int = 0
    last_error: Optional[str] = None


class PoolStateCache:
    """
    TTL cache of pool snapshots.

    Args:
        provider: Pool-data provider
        aggregator: Historical aggregator receiving one hourly point per refresh
        staleness_seconds: Snapshot age at which reads trigger a refresh
        now_fn: Clock returning an aware UTC datetime
        analyzer: Market analyzer used by get_market_data()
        metrics: MetricsRecorder (optional)
    """

    def __init__(
        self,
        provider: PoolDataProvider,
        aggregator: Optional[HistoricalAggregator] = None,
        staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
        now_fn: Callable[[], datetime] = utc_now,
        analyzer: Optional[MarketAnalyzer] = None,
        metrics=None,
    ):
        self.provider = provider
        self._now = now_fn
        self.aggregator = aggregator or HistoricalAggregator(now_fn=now_fn)
        self.staleness = timedelta(seconds=staleness_seconds)
        self.analyzer = analyzer or MarketAnalyzer()
        self._metrics = metrics
        self._pools: Dict[str, _PoolEntry] = {}
        self._init_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------ tracking

    def add_pool(self, pool_address: str) -> PoolSnapshot:
        """
        Start tracking a pool.

        Hydrates the trailing 24h of hourly history from durable storage,
        then takes the first sample. Concurrent calls for the same address
        are serialized; only the first one fetches.

        Raises:
            PoolInitError: If the provider cannot return an initial snapshot
        """
        with self._registry_lock:
            init_lock = self._init_locks.setdefault(pool_address, threading.Lock())

        with init_lock:
            with self._registry_lock:
                existing = self._pools.get(pool_address)
            if existing is not None:
                logger.warning(f"Pool {pool_address} already tracked")
                return existing.snapshot

            now = self._now()
            self.aggregator.load(pool_address, Granularity.HOURLY, now - timedelta(hours=24), now)

            try:
                raw = self.provider.fetch_pool_snapshot(pool_address)
            except Exception as e:
                logger.error(f"Failed to initialize pool {pool_address}: {e}")
                raise PoolInitError(pool_address, e)

            entry = _PoolEntry(address=pool_address)
            entry.attempts = 1
            entry.snapshot = self._build_snapshot(pool_address, raw, None)

            with self._registry_lock:
                self._pools[pool_address] = entry

        logger.info(
            f"Tracking pool {pool_address} "
            f"({raw.pool.token_x.symbol}/{raw.pool.token_y.symbol}, bin_step={raw.pool.bin_step})"
        )
        return entry.snapshot

    def remove_pool(self, pool_address: str) -> None:
        with self._registry_lock:
            removed = self._pools.pop(pool_address, None)
        if removed is not None:
            logger.info(f"Removed pool {pool_address}")

    def tracked_pools(self) -> List[str]:
        with self._registry_lock:
            return list(self._pools.keys())

    def is_tracked(self, pool_address: str) -> bool:
        with self._registry_lock:
            return pool_address in self._pools

    def _entry(self, pool_address: str) -> Optional[_PoolEntry]:
        with self._registry_lock:
            return self._pools.get(pool_address)

    # ------------------------------------------------------------------ reads

    def _is_fresh(self, snapshot: Optional[PoolSnapshot], now: datetime) -> bool:
        return snapshot is not None and now - snapshot.updated_at < self.staleness

    def get_pool_data(self, pool_address: str) -> Optional[PoolSnapshot]:
        """
        Snapshot of a tracked pool, refreshed first if stale.

        Returns:
            The snapshot, possibly stale if the refresh failed; None for an
            untracked pool or one that never had a successful snapshot
        """
        entry = self._entry(pool_address)
        if entry is None:
            self._record_read("untracked")
            return None

        seen_attempts = entry.attempts
        snapshot = entry.snapshot
        if self._is_fresh(snapshot, self._now()):
            self._record_read("hit")
            return snapshot

        with entry.lock:
            # Another reader finished a refresh while we waited
            if entry.attempts != seen_attempts or self._is_fresh(entry.snapshot, self._now()):
                self._record_read("coalesced")
                return entry.snapshot
            self._refresh_locked(entry)

        snapshot = entry.snapshot
        self._record_read("refreshed" if self._is_fresh(snapshot, self._now()) else "stale")
        return snapshot

    def snapshot_age(self, pool_address: str) -> Optional[float]:
        """Age of the cached snapshot in seconds, None if there is none."""
        entry = self._entry(pool_address)
        if entry is None or entry.snapshot is None:
            return None
        return (self._now() - entry.snapshot.updated_at).total_seconds()

    def get_market_data(self) -> MarketData:
        """Snapshots of every tracked pool that has one, plus trends and opportunities."""
        snapshots = {}
        for address in self.tracked_pools():
            snapshot = self.get_pool_data(address)
            if snapshot is not None:
                snapshots[address] = snapshot
        return self.analyzer.build(snapshots, self._now())

    # ------------------------------------------------------------------ refresh

    def refresh(self, pool_address: str, blocking: bool = True) -> bool:
        """
        Refresh one pool now.

        Args:
            blocking: If False, return immediately when a refresh for this
                pool is already in flight

        Returns:
            True if a new snapshot was stored
        """
        return self.refresh_outcome(pool_address, blocking) == "refreshed"

    def refresh_outcome(self, pool_address: str, blocking: bool = True) -> str:
        """Like refresh() but reports one of refreshed, failed, skipped, untracked."""
        entry = self._entry(pool_address)
        if entry is None:
            return "untracked"

        if not entry.lock.acquire(blocking=blocking):
            logger.debug(f"Refresh of {pool_address} already in flight, skipping")
            if self._metrics:
                self._metrics.record_refresh("skipped", 0.0)
            return "skipped"
        try:
            return "refreshed" if self._refresh_locked(entry) else "failed"
        finally:
            entry.lock.release()

    def _refresh_locked(self, entry: _PoolEntry) -> bool:
        start = time.monotonic()
        try:
            raw = self.provider.fetch_pool_snapshot(entry.address)
            snapshot = self._build_snapshot(entry.address, raw, entry.snapshot)
        except Exception as e:
            entry.last_error = str(e)
            entry.attempts += 1
            logger.warning(f"Refresh of pool {entry.address} failed, keeping previous snapshot: {e}")
            if self._metrics:
                self._metrics.record_refresh("failure", time.monotonic() - start)
            return False

        entry.snapshot = snapshot
        entry.attempts += 1
        entry.last_error = None
        if self._metrics:
            self._metrics.record_refresh("success", time.monotonic() - start)
            self._metrics.record_snapshot_age(entry.address, 0.0)
        return True

    def _build_snapshot(
        self,
        pool_address: str,
        raw: ProviderSnapshot,
        previous: Optional[PoolSnapshot],
    ) -> PoolSnapshot:
        volume_delta = ZERO
        fees_delta = ZERO
        if previous is not None:
            volume_delta = raw.cumulative_volume - previous.cumulative_volume
            fees_delta = raw.cumulative_fees - previous.cumulative_fees
            if volume_delta < 0 or fees_delta < 0:
                logger.info(f"Cumulative counters of {pool_address} went backwards, treating as reset")
                volume_delta = max(volume_delta, ZERO)
                fees_delta = max(fees_delta, ZERO)

        point = HistoricalDataPoint(
            timestamp=raw.observed_at,
            price=raw.active_bin.price,
            volume=volume_delta,
            fees=fees_delta,
            liquidity_x=dsum(b.amount_x for b in raw.bins),
            liquidity_y=dsum(b.amount_y for b in raw.bins),
            bin_id=raw.active_bin.bin_id,
        )
        self.aggregator.add_data_point(pool_address, point, Granularity.HOURLY)

        now = self._now()
        last_24h = self.aggregator.get_last_24h(pool_address, now)
        total_liquidity = calculate_liquidity_value(raw.bins)
        metrics = compute_pool_metrics(raw.pool, raw.active_bin, raw.bins, last_24h.points, total_liquidity)

        return PoolSnapshot(
            pool=raw.pool,
            active_bin=raw.active_bin,
            bins=raw.bins,
            total_liquidity=total_liquidity,
            metrics=metrics,
            updated_at=now,
            cumulative_volume=raw.cumulative_volume,
            cumulative_fees=raw.cumulative_fees,
        )

    def _record_read(self, result: str) -> None:
        if self._metrics:
            self._metrics.record_cache_read(result)
