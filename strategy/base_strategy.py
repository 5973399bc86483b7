"""
Base Strategy Interface

Defines the lifecycle every liquidity strategy follows and the shared
analyze/execute pipeline.

Lifecycle:
    UNINITIALIZED -> INITIALIZED -> (ANALYZING <-> IDLE) -> CLEANED_UP

analyze():
1. generate_actions() - strategy policy proposes candidate actions
2. calculate_priority() - per action; a failure drops only that action
3. RiskFilter - portfolio-wide limits plus check_action_risk()
4. return survivors in descending priority

Strategies never execute anything themselves: execute() hands an approved
action to the injected ExecutionCollaborator.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.actions import ActionType, ExecutionResult, StrategyAction, estimate_cost
from core.decimal_math import HUNDRED, to_decimal
from core.exceptions import ConfigurationError, NotInitializedError
from core.execution import ExecutionCollaborator
from core.pool_models import MarketData
from core.risk import RiskCheckResult, RiskFilter, RiskParameters

logger = logging.getLogger(__name__)


class StrategyState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    ANALYZING = "analyzing"
    IDLE = "idle"
    CLEANED_UP = "cleaned_up"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class StrategyConfig:
    """
    Validated configuration of one strategy instance.

    Attributes:
        pool_address: Pool the strategy manages
        max_position_size: Upper bound of the strategy's position (quote units)
        risk_parameters: Limits applied by the risk filter
        enabled: Whether the registry should run this strategy
        params: Strategy-specific parameters (see each strategy)
    """
    pool_address: str
    max_position_size: Decimal
    risk_parameters: Optional[RiskParameters]
    enabled: bool = True
    description: str = ""
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyConfig":
        """
        Build from a plain mapping (YAML section).

        Raises:
            ConfigurationError: On missing or non-numeric fields
        """
        try:
            risk = data.get("risk_parameters")
            return cls(
                pool_address=str(data.get("pool_address") or ""),
                max_position_size=to_decimal(data.get("max_position_size", 0)),
                risk_parameters=RiskParameters.from_dict(risk) if risk else None,
                enabled=bool(data.get("enabled", True)),
                description=str(data.get("description", "")),
                params=dict(data.get("params") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid strategy config: {e}")


class BaseStrategy(ABC):
    """
    Abstract base class for liquidity strategies.

    Subclasses implement generate_actions() and may override
    validate_params(), calculate_priority(), check_action_risk() and the
    _on_* hooks.

    Args:
        name: Unique strategy identifier
        executor: Execution collaborator used by execute()
        metrics: MetricsRecorder (optional)
        clock: Wall clock in epoch seconds, used for cooldowns
    """

    risk_level = RiskLevel.MEDIUM

    def __init__(
        self,
        name: str,
        executor: Optional[ExecutionCollaborator] = None,
        metrics=None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.executor = executor
        self._metrics = metrics
        self._clock = clock
        self._state = StrategyState.UNINITIALIZED
        self._state_lock = threading.RLock()
        self.config: Optional[StrategyConfig] = None
        self.risk_filter: Optional[RiskFilter] = None

    @property
    def state(self) -> StrategyState:
        return self._state

    @property
    def enabled(self) -> bool:
        return bool(self.config and self.config.enabled)

    @property
    def pool_address(self) -> Optional[str]:
        return self.config.pool_address if self.config else None

    @property
    def risk_parameters(self) -> Optional[RiskParameters]:
        return self.config.risk_parameters if self.config else None

    # ------------------------------------------------------------------ lifecycle

    def validate_config(self, config: StrategyConfig) -> List[str]:
        """Return readable config errors (empty if valid)."""
        errors = []
        if not config.pool_address:
            errors.append("pool_address is required")
        if config.max_position_size <= 0:
            errors.append(f"max_position_size must be > 0, got {config.max_position_size}")
        if config.risk_parameters is None:
            errors.append("risk_parameters are required")
        else:
            errors.extend(f"risk_parameters: {e}" for e in config.risk_parameters.validate())
            if config.risk_parameters.max_position_size > config.max_position_size:
                errors.append(
                    f"risk_parameters.max_position_size ({config.risk_parameters.max_position_size}) "
                    f"exceeds max_position_size ({config.max_position_size})"
                )
        errors.extend(self.validate_params(config))
        return errors

    def validate_params(self, config: StrategyConfig) -> List[str]:
        """Strategy-specific validation hook."""
        return []

    def initialize(self, config: StrategyConfig) -> None:
        """
        Validate config and move to INITIALIZED.

        Raises:
            ConfigurationError: If validation fails
        """
        errors = self.validate_config(config)
        if errors:
            raise ConfigurationError(f"Strategy '{self.name}' config invalid: " + "; ".join(errors))

        with self._state_lock:
            self.config = config
            self.risk_filter = RiskFilter(config.risk_parameters, strategy_name=self.name, metrics=self._metrics)
            self._on_initialize(config)
            self._state = StrategyState.INITIALIZED

        logger.info(
            f"Initialized strategy '{self.name}' for pool {config.pool_address}: "
            f"enabled={config.enabled}, max_position_size={config.max_position_size}"
        )

    def cleanup(self) -> None:
        with self._state_lock:
            self._on_cleanup()
            self._state = StrategyState.CLEANED_UP
        logger.info(f"Strategy '{self.name}' cleaned up")

    def _require_ready(self, operation: str) -> None:
        if self._state in (StrategyState.UNINITIALIZED, StrategyState.CLEANED_UP):
            raise NotInitializedError(
                f"Strategy '{self.name}' cannot {operation} in state {self._state.value}"
            )

    def _on_initialize(self, config: StrategyConfig) -> None:
        pass

    def _on_cleanup(self) -> None:
        pass

    def _on_executed(self, action: StrategyAction, result: ExecutionResult) -> None:
        pass

    # ------------------------------------------------------------------ analysis

    @abstractmethod
    def generate_actions(self, market_data: MarketData) -> List[StrategyAction]:
        """
        Propose candidate actions for the current market data.

        Exceptions are caught by analyze(), which then yields no actions.
        """

    def check_action_risk(self, action: StrategyAction, market_data: MarketData) -> RiskCheckResult:
        """Strategy-local risk checks applied after the portfolio-wide ones."""
        return RiskCheckResult.ok()

    def calculate_priority(self, action: StrategyAction, market_data: MarketData) -> int:
        """
        Priority in [0, 100].

        Base 50; +50 emergency exit; +30 fee collection; up to +20 for
        expected return (1 point per 100 quote units); -20 on a pool with
        volatility above 0.3; +15 on a pool with APR above 20%.
        """
        priority = Decimal(50)

        if action.type == ActionType.EMERGENCY_EXIT:
            priority += 50
        if action.type == ActionType.COLLECT_FEES:
            priority += 30

        if action.expected_return:
            priority += min(Decimal(20), action.expected_return / HUNDRED)

        snapshot = market_data.get_pool(action.pool_address)
        if snapshot is not None:
            if snapshot.metrics.volatility > Decimal("0.3"):
                priority -= 20
            if snapshot.metrics.apr / HUNDRED > Decimal("0.2"):
                priority += 15

        priority = max(Decimal(0), min(Decimal(100), priority))
        return int(priority.to_integral_value(rounding=ROUND_HALF_UP))

    def create_action(
        self,
        action_type: ActionType,
        params: Optional[Dict[str, Any]] = None,
        expected_return: Optional[Decimal] = None,
        pool_address: Optional[str] = None,
    ) -> StrategyAction:
        return StrategyAction(
            type=action_type,
            pool_address=pool_address or self.pool_address,
            params=params or {},
            estimated_cost=estimate_cost(action_type),
            expected_return=expected_return,
        )

    def analyze(self, market_data: MarketData) -> List[StrategyAction]:
        """
        Risk-filtered actions for ``market_data`` in descending priority.

        Raises:
            NotInitializedError: Before initialize() or after cleanup()
        """
        with self._state_lock:
            self._require_ready("analyze")
            self._state = StrategyState.ANALYZING

        try:
            try:
                candidates = self.generate_actions(market_data)
            except Exception as e:
                logger.error(f"Strategy '{self.name}' failed to generate actions: {e}", exc_info=True)
                return []

            prioritized = []
            for action in candidates:
                try:
                    prioritized.append(action.with_priority(self.calculate_priority(action, market_data)))
                except Exception as e:
                    logger.error(
                        f"Strategy '{self.name}' dropped {action.type.value} action: {e}",
                        exc_info=True,
                    )

            approved = self.risk_filter.filter(prioritized, market_data, self.check_action_risk)
            if self._metrics:
                for action in approved:
                    self._metrics.record_action(self.name, action.type.value)

            logger.debug(
                f"Strategy '{self.name}': {len(candidates)} candidates, {len(approved)} approved"
            )
            return approved
        finally:
            with self._state_lock:
                if self._state == StrategyState.ANALYZING:
                    self._state = StrategyState.IDLE

    def execute(self, action: StrategyAction) -> ExecutionResult:
        """
        Hand an action to the execution collaborator.

        Collaborator exceptions are reported as a failed ExecutionResult.

        Raises:
            NotInitializedError: Before initialize() or after cleanup()
        """
        self._require_ready("execute")

        if self.executor is None:
            result = ExecutionResult(success=False, error="no execution collaborator configured")
        else:
            try:
                result = self.executor.execute_action(action)
            except Exception as e:
                logger.error(
                    f"Strategy '{self.name}' execution of {action.type.value} failed: {e}",
                    exc_info=True,
                )
                result = ExecutionResult(success=False, error=str(e))

        self._on_executed(action, result)
        if self._metrics:
            self._metrics.record_execution(
                self.name, action.type.value, "success" if result.success else "failure"
            )
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', state={self._state.value})"
