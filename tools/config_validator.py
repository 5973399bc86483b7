"""
Configuration Validation Module

Validates app.yaml against Pydantic schemas so the engine fails fast on
bad configuration before any pool is tracked.

Usage:
    from tools.config_validator import validate_config, load_app_config

    errors = validate_config("config/app.yaml")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)

    config = load_app_config("config/app.yaml")

Environment overrides (applied by load_app_config):
    DLMM_PROVIDER_URL  -> provider.base_url
    DLMM_HISTORY_DB    -> history.db_file
    DLMM_LOG_LEVEL     -> app.logging.level
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "DLMM_PROVIDER_URL": ("provider", "base_url"),
    "DLMM_HISTORY_DB": ("history", "db_file"),
    "DLMM_LOG_LEVEL": ("app", "logging", "level"),
}


class ConfigError(ValueError):
    """Raised by load_app_config when the config file is invalid."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


# ===== App Schema =====
class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = Field(default="INFO", description="Root log level")
    file: str = Field(default="logs/dlmm-autopilot.log", description="Log file path")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class AppSection(BaseModel):
    """Process-level settings"""
    mode: str = Field(default="DRY_RUN", pattern="^(DRY_RUN|LIVE)$", description="Execution mode")
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ProviderConfig(BaseModel):
    """Pool-data provider connection"""
    base_url: str = Field(min_length=1, description="Snapshot service base URL")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    max_retries: int = Field(default=3, ge=1, le=10, description="Attempts per request")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be http(s), got {v}")
        return v


class CacheConfig(BaseModel):
    """Pool state cache and refresh scheduler"""
    pools: List[str] = Field(default_factory=list, description="Pool addresses to track")
    staleness_seconds: float = Field(default=30.0, gt=0, description="Snapshot TTL")
    refresh_interval_seconds: float = Field(default=30.0, gt=0, description="Scheduler tick interval")
    max_workers: int = Field(default=4, ge=1, le=64, description="Concurrent refreshes per tick")


class HistoryConfig(BaseModel):
    """Historical data retention and storage"""
    db_file: str = Field(default="data/history.db", min_length=1, description="SQLite history database")
    retention_days: int = Field(default=90, gt=0, description="Retention horizon")
    prune_interval_seconds: float = Field(default=3600.0, ge=0, description="Pruning cadence (0 disables)")


class MetricsConfig(BaseModel):
    """Prometheus exporter"""
    enabled: bool = Field(default=False)
    port: int = Field(default=9100, ge=1, le=65535)


class LoopConfig(BaseModel):
    """Decision loop"""
    interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between decision cycles")
    auto_execute: bool = Field(default=False, description="Execute approved actions")
    target_apr: float = Field(default=0.10, ge=0, description="APR fraction flagged as an opportunity")


class RiskParametersSchema(BaseModel):
    """Per-strategy risk limits"""
    max_position_size: float = Field(gt=0, description="Max liquidity per action (quote units)")
    max_slippage: float = Field(ge=0, le=1, description="Max slippage fraction")
    volatility_threshold: float = Field(ge=0, description="Max annualized volatility")
    concentration_limit: float = Field(default=1.0, gt=0, le=1, description="Max share of pool liquidity")


class StrategySchema(BaseModel):
    """One strategy instance"""
    type: Optional[str] = Field(default=None, description="Strategy type, defaults to the entry name")
    enabled: bool = Field(default=True)
    description: str = Field(default="")
    pool_address: str = Field(min_length=1)
    max_position_size: float = Field(gt=0)
    risk_parameters: RiskParametersSchema
    params: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_position_limits(self) -> 'StrategySchema':
        if self.risk_parameters.max_position_size > self.max_position_size:
            raise ValueError(
                f"risk_parameters.max_position_size ({self.risk_parameters.max_position_size}) "
                f"exceeds max_position_size ({self.max_position_size})"
            )
        return self


class AppConfig(BaseModel):
    """Complete app.yaml schema"""
    app: AppSection = Field(default_factory=AppSection)
    provider: ProviderConfig
    cache: CacheConfig = Field(default_factory=CacheConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    strategies: Dict[str, StrategySchema] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_strategy_pools(self) -> 'AppConfig':
        tracked = set(self.cache.pools)
        for name, strategy in self.strategies.items():
            if strategy.pool_address not in tracked:
                raise ValueError(f"strategy '{name}' manages untracked pool {strategy.pool_address}")
        return self

    def strategies_dict(self) -> Dict[str, Dict[str, Any]]:
        """Strategies section as plain dicts for StrategyRegistry.from_config."""
        return {name: s.model_dump() for name, s in self.strategies.items()}


def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""

    message = f"Malformed YAML in {file_path}: {error}"
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return message

    line = getattr(mark, "line", None)
    column = getattr(mark, "column", None)
    if line is None or column is None:
        return message

    try:
        raw_lines = file_path.read_text().splitlines()
    except OSError:
        return (
            f"Malformed YAML in {file_path}: line {line + 1}, column {column + 1}: "
            f"{getattr(error, 'problem', str(error))}"
        )

    start = max(line - 2, 0)
    end = min(line + 3, len(raw_lines))
    snippet = "\n".join(
        f"{'▶' if idx == line else ' '} {idx + 1:04d} | {raw_lines[idx]}"
        for idx in range(start, end)
    )
    problem = getattr(error, "problem", str(error))

    return (
        f"Malformed YAML in {file_path}: line {line + 1}, column {column + 1}: {problem}\n"
        f"Context:\n{snippet}"
    )


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply DLMM_* environment overrides onto a raw config dict (in place)."""
    environ = os.environ if environ is None else environ
    for env_name, path in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        node = config
        for key in path[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[path[-1]] = value
        logger.info(f"Config override from {env_name}: {'.'.join(path)}")
    return config


def _validation_errors(name: str, error: ValidationError) -> List[str]:
    errors = []
    for item in error.errors():
        field = " -> ".join(str(loc) for loc in item['loc']) or "<root>"
        errors.append(f"{name}: {field}: {item['msg']}")
    return errors


def _load_and_validate(config_path: Path, environ: Optional[Dict[str, str]]):
    errors: List[str] = []
    name = config_path.name
    try:
        raw = apply_env_overrides(load_yaml_file(config_path), environ)
        return AppConfig(**raw), errors
    except FileNotFoundError as e:
        errors.append(f"{name}: {e}")
    except yaml.YAMLError as e:
        errors.append(f"{name}: Invalid YAML - {e}")
    except ValidationError as e:
        errors.extend(_validation_errors(name, e))
    except (TypeError, AttributeError) as e:
        errors.append(f"{name}: top-level config must be a mapping ({e})")
    return None, errors


def validate_config(path: Union[str, Path] = "config/app.yaml",
                    environ: Optional[Dict[str, str]] = None) -> List[str]:
    """
    Validate app.yaml against schema.

    Returns:
        List of error messages (empty if valid)
    """
    config_path = Path(path)
    _, errors = _load_and_validate(config_path, environ)
    if not errors:
        logger.info(f"✅ {config_path.name} validation passed")
    return errors


def load_app_config(path: Union[str, Path] = "config/app.yaml",
                    environ: Optional[Dict[str, str]] = None) -> AppConfig:
    """
    Load, override and validate app.yaml.

    Raises:
        ConfigError: With every validation error found
    """
    config, errors = _load_and_validate(Path(path), environ)
    if errors:
        raise ConfigError(errors)
    return config


if __name__ == "__main__":
    import sys

    target = sys.argv[1] if len(sys.argv) > 1 else "config/app.yaml"
    found = validate_config(target)
    if found:
        for err in found:
            print(f"ERROR: {err}")
        sys.exit(1)
    print("Configuration valid")
