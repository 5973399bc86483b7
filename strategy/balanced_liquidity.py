"""
Balanced Liquidity Strategy

Keeps a symmetric band of ``target_range`` bins on each side of the active
bin.

Decisions per analysis:
- collect fees when fees_24h exceeds fee_collection_threshold
- rebalance to [active - N, active + N] once the cooldown has elapsed and
  the active bin moved by at least floor(N * rebalance_threshold) bins
  (and at least one bin) since the previous observation
- open a position when volatility, APR and pool liquidity are acceptable,
  sized from APR, volatility and pool depth

Bookkeeping is limited to the last observed active bin and the time of the
last executed rebalance.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.actions import ActionType, ExecutionResult, StrategyAction
from core.decimal_math import DAYS_PER_YEAR, HUNDRED, ONE, clamp, to_decimal
from core.pool_models import MarketData, PoolSnapshot
from core.risk import RiskCheckResult
from strategy.base_strategy import BaseStrategy, RiskLevel, StrategyConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalancedParams:
    target_range: int = 10
    rebalance_threshold: Decimal = Decimal("0.05")
    min_liquidity_amount: Decimal = Decimal(100)
    max_liquidity_amount: Decimal = Decimal(10000)
    fee_collection_threshold: Decimal = Decimal(10)
    auto_compound: bool = True
    min_rebalance_interval: float = 300.0
    slippage: Decimal = Decimal("0.01")
    min_apr: Decimal = Decimal("0.10")
    min_pool_liquidity: Decimal = Decimal(10000)
    max_create_volatility: Decimal = Decimal("0.4")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BalancedParams":
        defaults = cls()
        return cls(
            target_range=int(data.get("target_range", defaults.target_range)),
            rebalance_threshold=to_decimal(data.get("rebalance_threshold", defaults.rebalance_threshold)),
            min_liquidity_amount=to_decimal(data.get("min_liquidity_amount", defaults.min_liquidity_amount)),
            max_liquidity_amount=to_decimal(data.get("max_liquidity_amount", defaults.max_liquidity_amount)),
            fee_collection_threshold=to_decimal(
                data.get("fee_collection_threshold", defaults.fee_collection_threshold)
            ),
            auto_compound=bool(data.get("auto_compound", defaults.auto_compound)),
            min_rebalance_interval=float(data.get("min_rebalance_interval", defaults.min_rebalance_interval)),
            slippage=to_decimal(data.get("slippage", defaults.slippage)),
            min_apr=to_decimal(data.get("min_apr", defaults.min_apr)),
            min_pool_liquidity=to_decimal(data.get("min_pool_liquidity", defaults.min_pool_liquidity)),
            max_create_volatility=to_decimal(data.get("max_create_volatility", defaults.max_create_volatility)),
        )


class BalancedLiquidityStrategy(BaseStrategy):
    """Symmetric-band liquidity provision around the active bin."""

    risk_level = RiskLevel.MEDIUM

    def __init__(self, name: str = "balanced_liquidity", **kwargs):
        super().__init__(name, **kwargs)
        self.params = BalancedParams()
        self.last_active_bin: Optional[int] = None
        self.last_rebalance_time: Optional[float] = None

    # ------------------------------------------------------------------ config

    def validate_params(self, config: StrategyConfig) -> List[str]:
        try:
            params = BalancedParams.from_dict(config.params)
        except (TypeError, ValueError) as e:
            return [f"params: {e}"]

        errors = []
        if params.target_range < 1:
            errors.append(f"target_range must be >= 1, got {params.target_range}")
        if not (Decimal("0.01") <= params.rebalance_threshold <= ONE):
            errors.append(f"rebalance_threshold must be in [0.01, 1], got {params.rebalance_threshold}")
        if params.min_liquidity_amount > params.max_liquidity_amount:
            errors.append(
                f"min_liquidity_amount {params.min_liquidity_amount} exceeds "
                f"max_liquidity_amount {params.max_liquidity_amount}"
            )
        if params.min_rebalance_interval < 0:
            errors.append(f"min_rebalance_interval must be >= 0, got {params.min_rebalance_interval}")
        return errors

    def _on_initialize(self, config: StrategyConfig) -> None:
        self.params = BalancedParams.from_dict(config.params)
        self.last_active_bin = None
        self.last_rebalance_time = None

    def _on_cleanup(self) -> None:
        self.last_active_bin = None
        self.last_rebalance_time = None

    def _on_executed(self, action: StrategyAction, result: ExecutionResult) -> None:
        if action.type == ActionType.REBALANCE and result.success:
            self.last_rebalance_time = self._clock()

    # ------------------------------------------------------------------ policy

    def _cooldown_elapsed(self) -> bool:
        if self.last_rebalance_time is None:
            return True
        return self._clock() - self.last_rebalance_time >= self.params.min_rebalance_interval

    def _band(self, active_bin_id: int):
        n = self.params.target_range
        return (active_bin_id - n, active_bin_id + n)

    def generate_actions(self, market_data: MarketData) -> List[StrategyAction]:
        snapshot = market_data.get_pool(self.pool_address)
        if snapshot is None:
            logger.warning(f"[{self.name}] No market data for pool {self.pool_address}")
            return []

        actions = []
        actions.extend(self._fee_collection(snapshot))
        actions.extend(self._rebalancing(snapshot))
        actions.extend(self._new_position(snapshot))
        return actions

    def _fee_collection(self, snapshot: PoolSnapshot) -> List[StrategyAction]:
        fees = snapshot.metrics.fees_24h
        if fees <= self.params.fee_collection_threshold:
            return []
        logger.debug(f"[{self.name}] Fee collection opportunity: fees_24h={fees}")
        return [self.create_action(
            ActionType.COLLECT_FEES,
            {"auto_compound": self.params.auto_compound},
            expected_return=fees,
        )]

    def _rebalancing(self, snapshot: PoolSnapshot) -> List[StrategyAction]:
        if not self._cooldown_elapsed():
            return []

        active = snapshot.active_bin.bin_id
        previous = self.last_active_bin
        self.last_active_bin = active
        if previous is None:
            return []

        movement = abs(active - previous)
        threshold = math.floor(self.params.target_range * self.params.rebalance_threshold)
        if movement < 1 or movement < threshold:
            return []

        bin_range = self._band(active)
        logger.info(
            f"[{self.name}] Rebalance: active bin {previous} -> {active} "
            f"(movement={movement}, threshold={threshold}), new range {bin_range}"
        )
        return [self.create_action(
            ActionType.REBALANCE,
            {
                "bin_range": bin_range,
                "previous_active_bin": previous,
                "reason": "active bin movement",
            },
        )]

    def _new_position(self, snapshot: PoolSnapshot) -> List[StrategyAction]:
        metrics = snapshot.metrics
        apr = metrics.apr / HUNDRED
        risk = self.risk_parameters

        if metrics.volatility > risk.volatility_threshold:
            return []
        if apr < self.params.min_apr:
            return []
        if snapshot.total_liquidity <= self.params.min_pool_liquidity:
            return []

        size = self.optimal_position_size(apr, metrics.volatility, snapshot.total_liquidity)
        bin_range = self._band(snapshot.active_bin.bin_id)
        logger.info(
            f"[{self.name}] New position opportunity: size={size:.2f}, apr={apr:.4f}, "
            f"volatility={metrics.volatility:.4f}, range={bin_range}"
        )
        return [self.create_action(
            ActionType.CREATE_POSITION,
            {
                "liquidity_amount": size,
                "bin_range": bin_range,
                "slippage": self.params.slippage,
            },
            expected_return=size * apr / DAYS_PER_YEAR,
        )]

    def optimal_position_size(self, apr: Decimal, volatility: Decimal, pool_liquidity: Decimal) -> Decimal:
        """
        Size a new position.

        10% of max_position_size, scaled by APR around 20% (x0.5..x2),
        by 1 - volatility (floor 0.3) and by pool depth around 100k
        (x0.5..x1.5), then clamped to [min_liquidity_amount, max_liquidity_amount].
        """
        size = self.config.max_position_size * Decimal("0.1")
        size *= clamp(apr / Decimal("0.2"), Decimal("0.5"), Decimal("2.0"))
        size *= max(Decimal("0.3"), ONE - volatility)
        size *= clamp(pool_liquidity / Decimal(100000), Decimal("0.5"), Decimal("1.5"))
        return clamp(size, self.params.min_liquidity_amount, self.params.max_liquidity_amount)

    # ------------------------------------------------------------------ risk

    def check_action_risk(self, action: StrategyAction, market_data: MarketData) -> RiskCheckResult:
        if action.type == ActionType.CREATE_POSITION:
            snapshot = market_data.get_pool(action.pool_address)
            if snapshot is None:
                return RiskCheckResult.reject("pool_missing", f"no market data for {action.pool_address}")
            if snapshot.metrics.volatility > self.params.max_create_volatility:
                return RiskCheckResult.reject(
                    "create_volatility",
                    f"volatility {snapshot.metrics.volatility:.4f} too high for a new position",
                )
        if action.type == ActionType.REBALANCE and not self._cooldown_elapsed():
            return RiskCheckResult.reject("rebalance_cooldown", "rebalance cooldown has not elapsed")
        return RiskCheckResult.ok()
