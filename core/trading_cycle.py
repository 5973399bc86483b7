"""
Liquidity Cycle Pipeline

One decision cycle shared by the runner and tests:
1. Build market data from the pool state cache
2. Analyze with every enabled strategy (risk-filtered, priority-sorted)
3. Execute approved actions (optional, via each strategy's collaborator)

A failing strategy is logged and skipped; it never aborts the others.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from core.actions import ExecutionResult, StrategyAction
from core.pool_cache import PoolStateCache
from core.pool_models import MarketData
from strategy.registry import StrategyRegistry

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Result of a liquidity cycle"""
    success: bool
    market_data: Optional[MarketData]
    proposed: Dict[str, List[StrategyAction]] = field(default_factory=dict)
    executed: List[Tuple[StrategyAction, ExecutionResult]] = field(default_factory=list)
    no_action_reason: Optional[str] = None
    error: Optional[str] = None
    failed_strategies: List[str] = field(default_factory=list)

    @property
    def proposed_count(self) -> int:
        return sum(len(actions) for actions in self.proposed.values())


class LiquidityCyclePipeline:
    """
    Market data -> strategies -> execution.

    Args:
        cache: Pool state cache
        registry: Strategy registry
        auto_execute: Hand approved actions to the strategies' executors
        metrics: MetricsRecorder (optional)
    """

    def __init__(
        self,
        cache: PoolStateCache,
        registry: StrategyRegistry,
        auto_execute: bool = False,
        metrics=None,
    ):
        self.cache = cache
        self.registry = registry
        self.auto_execute = auto_execute
        self._metrics = metrics

    def execute_cycle(self) -> CycleResult:
        start = time.monotonic()
        result = self._run()
        status = "error" if result.error else ("actions" if result.proposed_count else "no_action")
        if self._metrics:
            self._metrics.record_cycle(status, time.monotonic() - start)
        return result

    def _run(self) -> CycleResult:
        try:
            market_data = self.cache.get_market_data()
        except Exception as e:
            logger.error(f"Failed to build market data: {e}", exc_info=True)
            return CycleResult(success=False, market_data=None, error=str(e), no_action_reason="market_data_error")

        if not market_data.pools:
            return CycleResult(success=True, market_data=market_data, no_action_reason="no_pool_data")

        strategies = self.registry.enabled()
        if not strategies:
            return CycleResult(success=True, market_data=market_data, no_action_reason="no_enabled_strategies")

        result = CycleResult(success=True, market_data=market_data)
        for strategy in strategies:
            try:
                actions = strategy.analyze(market_data)
            except Exception as e:
                logger.error(f"Strategy '{strategy.name}' analysis failed: {e}", exc_info=True)
                result.failed_strategies.append(strategy.name)
                continue

            result.proposed[strategy.name] = actions
            if not self.auto_execute:
                continue

            for action in actions:
                execution = strategy.execute(action)
                result.executed.append((action, execution))
                if not execution.success:
                    logger.warning(
                        f"Strategy '{strategy.name}' {action.type.value} failed: {execution.error}"
                    )

        if result.proposed_count == 0:
            result.no_action_reason = "no_actions_proposed"

        logger.info(
            f"Cycle: {len(market_data.pools)} pools, {result.proposed_count} actions proposed, "
            f"{len(result.executed)} executed, {len(result.failed_strategies)} strategies failed"
        )
        return result
