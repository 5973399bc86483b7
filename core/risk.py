"""
Risk Filter

Strategy-agnostic safety gate applied to every candidate action before it
may reach execution.

Portfolio-wide checks (in order):
- position size: liquidity amount <= max_position_size
- volatility: pool volatility <= volatility_threshold
- slippage: requested slippage <= max_slippage
- concentration: a new position may hold at most concentration_limit of
  the pool's liquidity

Strategy-local checks are delegated to a callback supplied by the strategy.
Rejected actions are logged, counted by reason and dropped; the surviving
actions are returned in descending priority order.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional

from core.actions import ActionType, StrategyAction
from core.decimal_math import ONE, ZERO, to_decimal
from core.pool_models import MarketData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskParameters:
    """
    Per-strategy risk limits, fixed for the lifetime of a strategy instance.

    Attributes:
        max_position_size: Max liquidity amount of a single action (quote units)
        max_slippage: Max slippage fraction an action may request
        volatility_threshold: Max annualized pool volatility to act on
        concentration_limit: Max share of a pool's liquidity a new position may add
    """
    max_position_size: Decimal
    max_slippage: Decimal
    volatility_threshold: Decimal
    concentration_limit: Decimal = ONE

    @classmethod
    def from_dict(cls, data: dict) -> "RiskParameters":
        return cls(
            max_position_size=to_decimal(data["max_position_size"]),
            max_slippage=to_decimal(data["max_slippage"]),
            volatility_threshold=to_decimal(data["volatility_threshold"]),
            concentration_limit=to_decimal(data.get("concentration_limit", 1)),
        )

    def validate(self) -> List[str]:
        errors = []
        if self.max_position_size <= 0:
            errors.append(f"max_position_size must be > 0, got {self.max_position_size}")
        if not (ZERO <= self.max_slippage <= ONE):
            errors.append(f"max_slippage must be in [0, 1], got {self.max_slippage}")
        if self.volatility_threshold < 0:
            errors.append(f"volatility_threshold must be >= 0, got {self.volatility_threshold}")
        if not (ZERO < self.concentration_limit <= ONE):
            errors.append(f"concentration_limit must be in (0, 1], got {self.concentration_limit}")
        return errors


@dataclass
class RiskCheckResult:
    """Result of risk check"""
    approved: bool
    reason: Optional[str] = None
    violated_checks: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "RiskCheckResult":
        return cls(approved=True)

    @classmethod
    def reject(cls, check: str, reason: str) -> "RiskCheckResult":
        return cls(approved=False, reason=reason, violated_checks=[check])


StrategyCheck = Callable[[StrategyAction, MarketData], RiskCheckResult]


class RiskFilter:
    """
    Apply risk limits to candidate actions.

    Args:
        risk_parameters: Limits of the owning strategy
        strategy_name: Used for logging and metric labels
        metrics: MetricsRecorder (optional)
    """

    def __init__(self, risk_parameters: RiskParameters, strategy_name: str = "", metrics=None):
        self.params = risk_parameters
        self.strategy_name = strategy_name
        self._metrics = metrics

    def filter(
        self,
        actions: List[StrategyAction],
        market_data: MarketData,
        strategy_check: Optional[StrategyCheck] = None,
    ) -> List[StrategyAction]:
        """Return the approved subset of ``actions`` sorted by descending priority."""
        approved = []
        for action in actions:
            result = self.check_action(action, market_data, strategy_check)
            if result.approved:
                approved.append(action)
                continue

            check = result.violated_checks[0] if result.violated_checks else "unknown"
            logger.warning(
                f"[{self.strategy_name}] Rejected {action.type.value} on {action.pool_address}: {result.reason}"
            )
            if self._metrics:
                self._metrics.record_risk_rejection(self.strategy_name, check)

        approved.sort(key=lambda a: a.priority, reverse=True)
        return approved

    def check_action(
        self,
        action: StrategyAction,
        market_data: MarketData,
        strategy_check: Optional[StrategyCheck] = None,
    ) -> RiskCheckResult:
        """Run every check; a check that raises rejects the action."""
        checks = [
            self._check_position_size,
            self._check_volatility,
            self._check_slippage,
            self._check_concentration,
        ]
        if strategy_check is not None:
            checks.append(strategy_check)

        for check in checks:
            try:
                result = check(action, market_data)
            except Exception as e:
                logger.error(f"[{self.strategy_name}] Risk check {getattr(check, '__name__', check)} failed: {e}",
                             exc_info=True)
                return RiskCheckResult.reject("check_error", f"risk check raised: {e}")
            if not result.approved:
                return result

        return RiskCheckResult.ok()

    def _check_position_size(self, action: StrategyAction, market_data: MarketData) -> RiskCheckResult:
        amount = action.liquidity_amount
        if amount is not None and amount > self.params.max_position_size:
            return RiskCheckResult.reject(
                "position_size",
                f"liquidity amount {amount} exceeds max position size {self.params.max_position_size}",
            )
        return RiskCheckResult.ok()

    def _check_volatility(self, action: StrategyAction, market_data: MarketData) -> RiskCheckResult:
        snapshot = market_data.get_pool(action.pool_address)
        if snapshot is None:
            return RiskCheckResult.ok()
        volatility = snapshot.metrics.volatility
        if volatility > self.params.volatility_threshold:
            return RiskCheckResult.reject(
                "volatility",
                f"pool volatility {volatility:.4f} exceeds threshold {self.params.volatility_threshold}",
            )
        return RiskCheckResult.ok()

    def _check_slippage(self, action: StrategyAction, market_data: MarketData) -> RiskCheckResult:
        slippage = action.slippage
        if slippage is not None and slippage > self.params.max_slippage:
            return RiskCheckResult.reject(
                "slippage",
                f"slippage {slippage} exceeds max {self.params.max_slippage}",
            )
        return RiskCheckResult.ok()

    def _check_concentration(self, action: StrategyAction, market_data: MarketData) -> RiskCheckResult:
        if action.type != ActionType.CREATE_POSITION:
            return RiskCheckResult.ok()
        amount = action.liquidity_amount
        snapshot = market_data.get_pool(action.pool_address)
        if amount is None or snapshot is None:
            return RiskCheckResult.ok()

        limit = self.params.concentration_limit * snapshot.total_liquidity
        if amount > limit:
            return RiskCheckResult.reject(
                "concentration",
                f"liquidity amount {amount} exceeds {self.params.concentration_limit} "
                f"of pool liquidity {snapshot.total_liquidity}",
            )
        return RiskCheckResult.ok()
