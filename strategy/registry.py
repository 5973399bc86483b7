"""
Strategy Registry

Explicitly constructed registry of strategy instances, keyed by name.
Components that need strategies receive the registry instance; there is no
module-level registry.

from_config() builds and initializes strategies from the validated YAML
``strategies`` section using the STRATEGY_CLASSES type mapping.
"""

import logging
from typing import Any, Dict, List, Type

from core.exceptions import ConfigurationError, StrategyNotFoundError
from core.execution import ExecutionCollaborator
from strategy.balanced_liquidity import BalancedLiquidityStrategy
from strategy.base_strategy import BaseStrategy, RiskLevel, StrategyConfig

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """Name -> strategy mapping with enable/disable awareness."""

    # Map strategy type to class
    STRATEGY_CLASSES: Dict[str, Type[BaseStrategy]] = {
        "balanced_liquidity": BalancedLiquidityStrategy,
    }

    def __init__(self):
        self._strategies: Dict[str, BaseStrategy] = {}

    @classmethod
    def from_config(
        cls,
        strategies_config: Dict[str, Dict[str, Any]],
        executor: ExecutionCollaborator = None,
        metrics=None,
        **strategy_kwargs,
    ) -> "StrategyRegistry":
        """
        Build a registry from the ``strategies`` config section.

        Each entry: ``{type, enabled, pool_address, max_position_size,
        risk_parameters, params}``. The type defaults to the entry name.

        Raises:
            ConfigurationError: On an unknown strategy type or invalid config
        """
        registry = cls()
        for name, section in (strategies_config or {}).items():
            section = section or {}
            strategy_type = section.get("type", name)
            strategy_class = cls.STRATEGY_CLASSES.get(strategy_type)
            if strategy_class is None:
                raise ConfigurationError(
                    f"Strategy '{name}': unknown type '{strategy_type}' "
                    f"(known: {', '.join(sorted(cls.STRATEGY_CLASSES))})"
                )

            strategy = strategy_class(name=name, executor=executor, metrics=metrics, **strategy_kwargs)
            strategy.initialize(StrategyConfig.from_dict(section))
            registry.register(strategy)

            state = "ENABLED" if strategy.enabled else "DISABLED"
            logger.info(f"Loaded {state} strategy: {name} ({strategy_type})")

        enabled = registry.enabled()
        logger.info(
            f"Strategy registry initialized: {len(registry)} strategies loaded, {len(enabled)} enabled"
        )
        if registry and not enabled:
            logger.warning("No strategies enabled; cycles will not propose actions")
        return registry

    def register(self, strategy: BaseStrategy) -> None:
        if strategy.name in self._strategies:
            logger.warning(f"Strategy '{strategy.name}' already registered, replacing it")
        self._strategies[strategy.name] = strategy

    def unregister(self, name: str) -> bool:
        removed = self._strategies.pop(name, None)
        if removed is not None:
            logger.info(f"Unregistered strategy '{name}'")
        return removed is not None

    def get(self, name: str) -> BaseStrategy:
        """
        Raises:
            StrategyNotFoundError: If no strategy is registered under ``name``
        """
        try:
            return self._strategies[name]
        except KeyError:
            raise StrategyNotFoundError(name) from None

    def has(self, name: str) -> bool:
        return name in self._strategies

    def list(self) -> List[str]:
        return list(self._strategies.keys())

    def all(self) -> List[BaseStrategy]:
        return list(self._strategies.values())

    def enabled(self) -> List[BaseStrategy]:
        return [s for s in self._strategies.values() if s.enabled]

    def by_risk_level(self, level: RiskLevel) -> List[BaseStrategy]:
        level = RiskLevel(level)
        return [s for s in self._strategies.values() if s.risk_level == level]

    def cleanup_all(self) -> None:
        for strategy in self._strategies.values():
            try:
                strategy.cleanup()
            except Exception as e:
                logger.error(f"Cleanup of strategy '{strategy.name}' failed: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, name: str) -> bool:
        return name in self._strategies
