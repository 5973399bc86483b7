"""
dlmm-autopilot - Main Loop

Wires the engine together and runs decision cycles:
    provider -> pool state cache (+ background refresh) -> strategies -> executor

Usage:
    dlmm-autopilot --config config/app.yaml            # run forever
    dlmm-autopilot --config config/app.yaml --once     # single cycle
"""

import logging
import signal
import sys
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional

from core.decimal_math import to_decimal
from core.exceptions import PoolInitError
from core.execution import DryRunExecutor, ExecutionCollaborator
from core.history import HistoricalAggregator
from core.market_analysis import MarketAnalyzer
from core.pool_cache import PoolDataProvider, PoolStateCache
from core.scheduler import RefreshScheduler
from core.trading_cycle import CycleResult, LiquidityCyclePipeline
from infra.history_store import SQLiteHistoryStore
from infra.metrics import MetricsRecorder
from infra.pool_provider import HttpPoolDataProvider
from strategy.registry import StrategyRegistry
from tools.config_validator import AppConfig, load_app_config

logger = logging.getLogger(__name__)


def setup_logging(config: AppConfig) -> None:
    log_cfg = config.app.logging
    log_path = Path(log_cfg.file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, log_cfg.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.FileHandler(log_path), logging.StreamHandler()],
    )


class AutopilotLoop:
    """
    Long-running engine instance.

    Args:
        config: Validated application config
        provider: Pool-data provider (defaults to the HTTP provider from config)
        executor: Execution collaborator; required in LIVE mode
        install_signal_handlers: Register SIGINT/SIGTERM for graceful shutdown
    """

    def __init__(
        self,
        config: AppConfig,
        provider: Optional[PoolDataProvider] = None,
        executor: Optional[ExecutionCollaborator] = None,
        install_signal_handlers: bool = True,
    ):
        self.config = config
        self.mode = config.app.mode

        if executor is None:
            if self.mode == "LIVE":
                raise RuntimeError("LIVE mode requires an execution collaborator")
            executor = DryRunExecutor()
        self.executor = executor

        self.metrics = MetricsRecorder(enabled=config.metrics.enabled, port=config.metrics.port)

        self.history_store = SQLiteHistoryStore(config.history.db_file)
        self.aggregator = HistoricalAggregator(
            store=self.history_store,
            retention=timedelta(days=config.history.retention_days),
            metrics=self.metrics,
        )
        self.provider = provider or HttpPoolDataProvider(
            base_url=config.provider.base_url,
            timeout=config.provider.timeout_seconds,
            max_retries=config.provider.max_retries,
        )
        self.cache = PoolStateCache(
            provider=self.provider,
            aggregator=self.aggregator,
            staleness_seconds=config.cache.staleness_seconds,
            analyzer=MarketAnalyzer(target_apr=to_decimal(config.loop.target_apr)),
            metrics=self.metrics,
        )
        self.scheduler = RefreshScheduler(
            self.cache,
            interval_seconds=config.cache.refresh_interval_seconds,
            max_workers=config.cache.max_workers,
            prune_interval_seconds=config.history.prune_interval_seconds,
        )
        self.registry = StrategyRegistry.from_config(
            config.strategies_dict(), executor=self.executor, metrics=self.metrics
        )
        self.pipeline = LiquidityCyclePipeline(
            self.cache, self.registry, auto_execute=config.loop.auto_execute, metrics=self.metrics
        )

        self._stop_event = threading.Event()
        self._stopped = False
        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._handle_stop)
            signal.signal(signal.SIGTERM, self._handle_stop)

        logger.info(f"Initialized AutopilotLoop in {self.mode} mode")

    def _handle_stop(self, *_):
        logger.warning("Shutdown signal received, stopping after current cycle")
        self._stop_event.set()

    def track_pools(self) -> int:
        """Add every configured pool; pools that fail to initialize are skipped."""
        tracked = 0
        for address in self.config.cache.pools:
            try:
                self.cache.add_pool(address)
                tracked += 1
            except PoolInitError as e:
                logger.error(f"Skipping pool {address}: {e}")
        logger.info(f"Tracking {tracked}/{len(self.config.cache.pools)} pools")
        return tracked

    def start(self) -> None:
        self.metrics.start()
        self.track_pools()
        self.scheduler.start()

    def run_cycle(self) -> CycleResult:
        return self.pipeline.execute_cycle()

    def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        interval = max(float(interval_seconds or self.config.loop.interval_seconds), 1.0)
        logger.info(f"Starting continuous loop (interval={interval}s)")

        self.start()
        try:
            while not self._stop_event.is_set():
                start = time.monotonic()
                self.run_cycle()
                elapsed = time.monotonic() - start
                sleep_for = max(0.0, interval - elapsed)
                logger.debug(f"Cycle took {elapsed:.2f}s, sleeping {sleep_for:.2f}s")
                self._stop_event.wait(sleep_for)
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()
        self.scheduler.stop(timeout=30)
        self.registry.cleanup_all()
        self.history_store.close()
        logger.info("AutopilotLoop stopped")


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="dlmm-autopilot liquidity engine")
    parser.add_argument("--config", default="config/app.yaml", help="Path to app.yaml")
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between cycles")
    args = parser.parse_args()

    config = load_app_config(args.config)
    setup_logging(config)

    loop = AutopilotLoop(config)
    if args.once:
        loop.metrics.start()
        loop.track_pools()
        try:
            result = loop.run_cycle()
        finally:
            loop.shutdown()
        sys.exit(0 if result.success else 1)
    else:
        loop.run_forever(interval_seconds=args.interval)


if __name__ == "__main__":
    main()
