"""Shared exception types for the liquidity engine."""

from typing import Optional


class PoolInitError(RuntimeError):
    """Raised when a pool cannot be tracked because no initial snapshot was obtained."""

    def __init__(self, pool_address: str, original: Optional[Exception] = None):
        super().__init__(f"Failed to initialize pool {pool_address}: {original}")
        self.pool_address = pool_address
        self.original = original


class PoolDataProviderError(RuntimeError):
    """Raised when pool state cannot be fetched or decoded from the provider."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        super().__init__(source)
        self.source = source
        self.original = original


class ConfigurationError(ValueError):
    """Invalid strategy or application configuration."""


class NotInitializedError(RuntimeError):
    """Strategy used outside its initialized lifecycle states."""


class StrategyNotFoundError(KeyError):
    """Lookup of a strategy name the registry does not know."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Strategy '{self.name}' not found"
