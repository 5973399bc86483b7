"""
Strategy action and execution result types.

Actions are frozen: changing the priority of an action produces a new
action via ``with_priority``.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class ActionType(str, Enum):
    CREATE_POSITION = "create_position"
    CLOSE_POSITION = "close_position"
    REBALANCE = "rebalance"
    COLLECT_FEES = "collect_fees"
    ADJUST_RANGE = "adjust_range"
    EMERGENCY_EXIT = "emergency_exit"


# Compute-unit estimates per action type
ESTIMATED_COST: Dict[ActionType, int] = {
    ActionType.CREATE_POSITION: 300_000,
    ActionType.CLOSE_POSITION: 200_000,
    ActionType.REBALANCE: 400_000,
    ActionType.COLLECT_FEES: 150_000,
    ActionType.ADJUST_RANGE: 350_000,
    ActionType.EMERGENCY_EXIT: 250_000,
}

MIN_PRIORITY = 0
MAX_PRIORITY = 100


def estimate_cost(action_type: ActionType) -> int:
    return ESTIMATED_COST.get(action_type, 200_000)


@dataclass(frozen=True)
class StrategyAction:
    """
    A proposed change to a liquidity position.

    Well-known ``params`` keys: ``bin_range`` (tuple of lower/upper bin id),
    ``liquidity_amount`` (Decimal, quote units), ``slippage`` (Decimal
    fraction), ``position_id``. Anything else is strategy-specific.
    """
    type: ActionType
    pool_address: str
    params: Mapping[str, Any] = field(default_factory=dict)
    priority: int = 50
    estimated_cost: int = 0
    expected_return: Optional[Decimal] = None

    def __post_init__(self):
        if not (MIN_PRIORITY <= self.priority <= MAX_PRIORITY):
            raise ValueError(f"priority must be in [0, 100], got {self.priority}")
        if not isinstance(self.params, MappingProxyType):
            object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        if self.estimated_cost == 0:
            object.__setattr__(self, "estimated_cost", estimate_cost(self.type))

    @property
    def liquidity_amount(self) -> Optional[Decimal]:
        return self.params.get("liquidity_amount")

    @property
    def slippage(self) -> Optional[Decimal]:
        return self.params.get("slippage")

    @property
    def bin_range(self) -> Optional[Tuple[int, int]]:
        return self.params.get("bin_range")

    def with_priority(self, priority: int) -> "StrategyAction":
        return replace(self, priority=max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority))))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "pool_address": self.pool_address,
            "params": {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.params.items()},
            "priority": self.priority,
            "estimated_cost": self.estimated_cost,
            "expected_return": str(self.expected_return) if self.expected_return is not None else None,
        }


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    actual_return: Optional[Decimal] = None
