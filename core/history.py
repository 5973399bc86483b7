"""
Historical Aggregator

Keeps per-pool time series of HistoricalDataPoint at hourly, daily and
weekly granularity and answers windowed queries.

Bucketing:
- Each observation is mapped to the bucket containing its timestamp
  (hour, UTC day, ISO week starting Monday).
- Observations inside the open bucket are merged: volume and fees are
  summed, price, liquidity and bin id take the latest observation.
- The open bucket is sealed when an observation for a later bucket arrives
  or on flush(). Sealed points are immutable and handed to the durable
  store; reads include the open bucket as the provisional latest point.
- load() reopens a stored point for the bucket that is still current, so a
  restart inside an hour keeps accumulating into the same bucket.

Locking: one lock per (pool, granularity) series. Writers of different
pools never contend; prune() takes each series lock only for its slice.
"""

import bisect
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.decimal_math import ZERO, dsum
from core.pool_models import Granularity, HistoricalDataPoint

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=90)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    """Aware UTC copy of ``ts``; naive timestamps are treated as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def bucket_start(ts: datetime, granularity: Granularity) -> datetime:
    """Start of the bucket containing ``ts``; naive timestamps are treated as UTC."""
    hour = _as_utc(ts).replace(minute=0, second=0, microsecond=0)
    if granularity == Granularity.HOURLY:
        return hour
    day = hour.replace(hour=0)
    if granularity == Granularity.DAILY:
        return day
    return day - timedelta(days=day.weekday())


class HistoryStore(ABC):
    """Durable storage collaborator for sealed historical points."""

    @abstractmethod
    def append_point(self, pool_address: str, granularity: Granularity, point: HistoricalDataPoint) -> None:
        ...

    @abstractmethod
    def query_window(
        self, pool_address: str, granularity: Granularity, start: datetime, end: datetime
    ) -> List[HistoricalDataPoint]:
        ...

    @abstractmethod
    def prune(self, before: datetime) -> int:
        ...

    def close(self) -> None:
        pass


@dataclass(frozen=True)
class Last24h:
    volume: Decimal = ZERO
    fees: Decimal = ZERO
    price_history: Tuple[Decimal, ...] = ()
    points: Tuple[HistoricalDataPoint, ...] = ()


@dataclass
class _Series:
    lock: threading.Lock = field(default_factory=threading.Lock)
    points: List[HistoricalDataPoint] = field(default_factory=list)
    timestamps: List[datetime] = field(default_factory=list)
    open_bucket: Optional[HistoricalDataPoint] = None

    def seal(self) -> Optional[HistoricalDataPoint]:
        sealed = self.open_bucket
        if sealed is not None:
            self.points.append(sealed)
            self.timestamps.append(sealed.timestamp)
            self.open_bucket = None
        return sealed

    def insert_sealed(self, point: HistoricalDataPoint) -> bool:
        idx = bisect.bisect_left(self.timestamps, point.timestamp)
        if idx < len(self.timestamps) and self.timestamps[idx] == point.timestamp:
            return False
        self.points.insert(idx, point)
        self.timestamps.insert(idx, point.timestamp)
        return True

    def window(self, start: datetime, end: datetime) -> List[HistoricalDataPoint]:
        lo = bisect.bisect_left(self.timestamps, start)
        hi = bisect.bisect_right(self.timestamps, end)
        result = self.points[lo:hi]
        if self.open_bucket is not None and start <= self.open_bucket.timestamp <= end:
            result.append(self.open_bucket)
        return result


class HistoricalAggregator:
    """
    Thread-safe per-pool historical series with durable write-through.

    Args:
        store: Durable storage for sealed points (optional)
        retention: How long points are kept by prune()
        now_fn: Clock returning an aware UTC datetime
        metrics: MetricsRecorder for point/prune/store-error counters (optional)
    """

    def __init__(
        self,
        store: Optional[HistoryStore] = None,
        retention: timedelta = DEFAULT_RETENTION,
        now_fn: Callable[[], datetime] = utc_now,
        metrics=None,
    ):
        self.store = store
        self.retention = retention
        self._now = now_fn
        self._metrics = metrics
        self._series: Dict[Tuple[str, Granularity], _Series] = {}
        self._registry_lock = threading.Lock()

    def _get_series(self, pool_address: str, granularity: Granularity) -> _Series:
        key = (pool_address, Granularity(granularity))
        with self._registry_lock:
            series = self._series.get(key)
            if series is None:
                series = _Series()
                self._series[key] = series
            return series

    def _existing_series(self, pool_address: str, granularity: Granularity) -> Optional[_Series]:
        with self._registry_lock:
            return self._series.get((pool_address, Granularity(granularity)))

    def _persist(self, pool_address: str, granularity: Granularity, point: HistoricalDataPoint) -> None:
        if self.store is None:
            return
        try:
            self.store.append_point(pool_address, granularity, point)
        except Exception as e:
            logger.error(f"Failed to persist history point for {pool_address} ({granularity.value}): {e}")
            if self._metrics:
                self._metrics.record_history_store_error("append")

    def add_data_point(
        self,
        pool_address: str,
        point: HistoricalDataPoint,
        granularity: Granularity = Granularity.HOURLY,
    ) -> bool:
        """
        Record an observation.

        Returns:
            False if the observation belongs to a bucket older than the open
            one (sealed buckets are never rewritten), True otherwise.
        """
        granularity = Granularity(granularity)
        series = self._get_series(pool_address, granularity)
        start = bucket_start(point.timestamp, granularity)
        sealed = None

        with series.lock:
            current = series.open_bucket
            if current is None:
                if series.timestamps and start <= series.timestamps[-1]:
                    logger.warning(
                        f"Dropping out-of-order point for {pool_address}: bucket {start.isoformat()} already sealed"
                    )
                    return False
                series.open_bucket = replace(point, timestamp=start)
            elif start == current.timestamp:
                series.open_bucket = replace(
                    point,
                    timestamp=start,
                    volume=current.volume + point.volume,
                    fees=current.fees + point.fees,
                )
            elif start > current.timestamp:
                sealed = series.seal()
                series.open_bucket = replace(point, timestamp=start)
            else:
                logger.warning(
                    f"Dropping out-of-order point for {pool_address}: {point.timestamp.isoformat()} "
                    f"precedes open bucket {current.timestamp.isoformat()}"
                )
                return False

        if self._metrics:
            self._metrics.record_history_point(granularity.value)
        if sealed is not None:
            self._persist(pool_address, granularity, sealed)
        return True

    def get_window(
        self,
        pool_address: str,
        granularity: Granularity,
        start: datetime,
        end: datetime,
    ) -> List[HistoricalDataPoint]:
        """Points with start <= timestamp <= end in ascending order, open bucket included."""
        series = self._existing_series(pool_address, granularity)
        if series is None:
            return []
        with series.lock:
            return series.window(_as_utc(start), _as_utc(end))

    def get_last_24h(self, pool_address: str, now: Optional[datetime] = None) -> Last24h:
        now = _as_utc(now or self._now())
        points = self.get_window(pool_address, Granularity.HOURLY, now - timedelta(hours=24), now)
        if not points:
            return Last24h()
        return Last24h(
            volume=dsum(p.volume for p in points),
            fees=dsum(p.fees for p in points),
            price_history=tuple(p.price for p in points),
            points=tuple(points),
        )

    def load(
        self,
        pool_address: str,
        granularity: Granularity = Granularity.HOURLY,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """
        Hydrate a series from the durable store; returns the number of points added.

        A stored point for the bucket containing ``end`` is reopened rather
        than sealed, so observations made after a restart within the same
        bucket keep merging into it.
        """
        if self.store is None:
            return 0
        granularity = Granularity(granularity)
        end = _as_utc(end or self._now())
        start = _as_utc(start) if start else end - timedelta(hours=24)
        current = bucket_start(end, granularity)

        try:
            stored = self.store.query_window(pool_address, granularity, start, end)
        except Exception as e:
            logger.error(f"Failed to load history for {pool_address} ({granularity.value}): {e}")
            if self._metrics:
                self._metrics.record_history_store_error("query")
            return 0

        series = self._get_series(pool_address, granularity)
        added = 0
        with series.lock:
            for point in stored:
                if series.open_bucket is not None and point.timestamp >= series.open_bucket.timestamp:
                    continue
                if series.insert_sealed(point):
                    added += 1
            if series.open_bucket is None and series.timestamps and series.timestamps[-1] == current:
                series.open_bucket = series.points.pop()
                series.timestamps.pop()
                logger.debug(f"Reopened {granularity.value} bucket {current.isoformat()} for {pool_address}")

        logger.debug(f"Hydrated {added} {granularity.value} points for {pool_address}")
        return added

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop points older than the retention horizon; returns in-memory points removed."""
        cutoff = _as_utc(now or self._now()) - self.retention
        with self._registry_lock:
            series_list = list(self._series.items())

        removed = 0
        for (pool_address, granularity), series in series_list:
            with series.lock:
                idx = bisect.bisect_left(series.timestamps, cutoff)
                if idx:
                    del series.points[:idx]
                    del series.timestamps[:idx]
                    removed += idx

        if self.store is not None:
            try:
                stored_removed = self.store.prune(cutoff)
                logger.info(f"Pruned {stored_removed} stored history points older than {cutoff.isoformat()}")
            except Exception as e:
                logger.error(f"Failed to prune history store: {e}")
                if self._metrics:
                    self._metrics.record_history_store_error("prune")

        if self._metrics:
            self._metrics.record_history_pruned(removed)
        return removed

    def flush(self) -> int:
        """Seal and persist every open bucket."""
        with self._registry_lock:
            series_list = list(self._series.items())

        flushed = 0
        for (pool_address, granularity), series in series_list:
            with series.lock:
                sealed = series.seal()
            if sealed is not None:
                self._persist(pool_address, granularity, sealed)
                flushed += 1
        return flushed

    def series_length(self, pool_address: str, granularity: Granularity = Granularity.HOURLY) -> int:
        series = self._existing_series(pool_address, granularity)
        if series is None:
            return 0
        with series.lock:
            return len(series.points) + (1 if series.open_bucket is not None else 0)
