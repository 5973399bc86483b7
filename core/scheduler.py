"""
Background refresh scheduler.

One scheduler thread ticks every ``interval_seconds``. Within a tick every
tracked pool is refreshed concurrently on a thread pool, and the tick waits
for all of them before sleeping, so ticks never overlap. Refreshes use
non-blocking lock acquisition: a pool already being refreshed by a reader
is skipped for this tick.

History retention pruning runs on the same thread every
``prune_interval_seconds``.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Optional

from core.pool_cache import PoolStateCache

logger = logging.getLogger(__name__)


@dataclass
class TickStats:
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0


class RefreshScheduler:
    """
    Periodic, non-overlapping refresh of every tracked pool.

    Args:
        cache: Pool state cache to refresh
        interval_seconds: Seconds between tick starts
        max_workers: Concurrent refreshes within a tick
        prune_interval_seconds: Seconds between history pruning runs (0 disables)
    """

    def __init__(
        self,
        cache: PoolStateCache,
        interval_seconds: float = 30.0,
        max_workers: int = 4,
        prune_interval_seconds: float = 3600.0,
    ):
        self.cache = cache
        self.interval_seconds = max(float(interval_seconds), 0.01)
        self.max_workers = max(1, int(max_workers))
        self.prune_interval_seconds = float(prune_interval_seconds)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._last_prune: Optional[float] = None
        self.ticks = 0
        self.last_tick: Optional[TickStats] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Refresh scheduler already running")
            return
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pool-refresh")
        self._last_prune = time.monotonic()
        self._thread = threading.Thread(target=self._run, name="refresh-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            f"Refresh scheduler started (interval={self.interval_seconds}s, workers={self.max_workers})"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking, let in-flight refreshes finish, then flush open history buckets."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Refresh scheduler did not stop within timeout")
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        flushed = self.cache.aggregator.flush()
        logger.info(f"Refresh scheduler stopped after {self.ticks} ticks ({flushed} history buckets flushed)")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            start = time.monotonic()
            try:
                self.tick()
                self._maybe_prune()
            except Exception as e:
                logger.error(f"Refresh tick failed: {e}", exc_info=True)
            elapsed = time.monotonic() - start
            self._stop_event.wait(max(0.0, self.interval_seconds - elapsed))

    def tick(self) -> TickStats:
        """Refresh every tracked pool once and wait for all refreshes."""
        start = time.monotonic()
        stats = TickStats()
        pools = self.cache.tracked_pools()

        executor = self._executor
        own_executor = executor is None
        if own_executor:
            executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pool-refresh")

        try:
            futures = {
                executor.submit(self.cache.refresh_outcome, address, False): address
                for address in pools
            }
            wait(futures)
        finally:
            if own_executor:
                executor.shutdown(wait=True)

        for future, address in futures.items():
            try:
                outcome = future.result()
            except Exception as e:
                stats.failed += 1
                logger.error(f"Refresh of {address} raised: {e}", exc_info=True)
                continue
            if outcome == "refreshed":
                stats.refreshed += 1
            elif outcome == "failed":
                stats.failed += 1
            else:
                # skipped, or removed between listing and refreshing
                stats.skipped += 1

        stats.duration_seconds = time.monotonic() - start
        self.ticks += 1
        self.last_tick = stats
        logger.debug(
            f"Refresh tick: {stats.refreshed} refreshed, {stats.failed} failed, "
            f"{stats.skipped} skipped in {stats.duration_seconds:.2f}s"
        )
        return stats

    def _maybe_prune(self) -> None:
        if self.prune_interval_seconds <= 0 or self._last_prune is None:
            return
        if time.monotonic() - self._last_prune < self.prune_interval_seconds:
            return
        self._last_prune = time.monotonic()
        removed = self.cache.aggregator.prune()
        logger.info(f"History retention pruning removed {removed} in-memory points")
