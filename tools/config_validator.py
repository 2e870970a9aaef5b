"""
Configuration Validation Module

Validates app.yaml, trading.yaml, and strategies.yaml against Pydantic schemas.
Ensures config files are correct before the daemon starts.

Usage:
    from tools.config_validator import validate_all_configs

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from core.exceptions import ConfigurationInvalid
from core.trading_config import format_validation_errors, parse_settings
from strategy.config_schema import StrategiesFile
from strategy.registry import StrategyRegistry

logger = logging.getLogger(__name__)


# ===== App Schema =====
class LoggingConfig(BaseModel):
    """Log level and file"""
    level: str = Field(default="INFO", description="Root log level")
    file: str = Field(default="logs/solharvest.log", min_length=1, description="Log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level {v}")
        return level


class DaemonConfig(BaseModel):
    """Cycle scheduling bounds"""
    max_cycle_interval_seconds: float = Field(default=30.0, gt=0, description="Upper bound on cycle interval")
    max_cycle_errors: int = Field(default=10, ge=1, description="Cycle errors tolerated before self-stop")


class ThrottlePolicyConfig(BaseModel):
    """Per-dependency throttle policy"""
    min_delay_seconds: float = Field(default=0.1, ge=0, description="Minimum spacing between calls")
    max_calls: int = Field(default=10, ge=1, description="Calls allowed per window")
    window_seconds: float = Field(default=1.0, gt=0, description="Sliding window length")
    base_cooldown_seconds: float = Field(default=30.0, gt=0, description="Circuit cooldown base")
    max_backoff_exponent: int = Field(default=4, ge=0, le=10, description="Cap on error-driven delay doubling")


class SwapServiceConfig(BaseModel):
    """Swap aggregator endpoint"""
    base_url: str = Field(default="https://quote-api.jup.ag/v6", min_length=1)
    timeout_seconds: float = Field(default=10.0, gt=0)


class WalletConfig(BaseModel):
    public_key: Optional[str] = None


class PortfolioConfig(BaseModel):
    positions_file: str = Field(default="data/positions.json", min_length=1)


class StateConfig(BaseModel):
    file: str = Field(default="data/.state.json", min_length=1)


class MetricsConfig(BaseModel):
    enabled: bool = False
    port: int = Field(default=9100, ge=1, le=65535)


class StrategiesRunConfig(BaseModel):
    auto_run: bool = True


class AppConfig(BaseModel):
    """Complete app.yaml schema"""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    throttle: Dict[str, ThrottlePolicyConfig] = Field(default_factory=dict)
    swap_service: SwapServiceConfig = Field(default_factory=SwapServiceConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    portfolio: PortfolioConfig = Field(default_factory=PortfolioConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    strategies: StrategiesRunConfig = Field(default_factory=StrategiesRunConfig)


# ===== Validation Functions =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return message with line/column context for YAML errors."""
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return f"Malformed YAML in {file_path}: {error}"

    line = mark.line
    problem = getattr(error, "problem", None) or str(error)
    try:
        raw_lines = file_path.read_text().splitlines()
    except OSError:
        return f"Malformed YAML in {file_path}: line {line + 1}, column {mark.column + 1}: {problem}"

    snippet = "\n".join(
        f"{'▶' if idx == line else ' '} {idx + 1:04d} | {raw_lines[idx]}"
        for idx in range(max(line - 2, 0), min(line + 3, len(raw_lines)))
    )
    return (
        f"Malformed YAML in {file_path}: line {line + 1}, column {mark.column + 1}: {problem}\n"
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

    with open(file_path, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def load_app_config(config_dir: Path) -> AppConfig:
    """
    Parse app.yaml; a missing file yields defaults.

    Raises:
        ConfigurationInvalid: If the file is malformed or fails the schema
    """
    path = Path(config_dir) / "app.yaml"
    if not path.exists():
        logger.warning(f"{path} not found, using default app settings")
        return AppConfig()
    try:
        return AppConfig.model_validate(load_yaml_file(path))
    except yaml.YAMLError as e:
        raise ConfigurationInvalid(f"app.yaml: Invalid YAML - {e}") from e
    except ValidationError as e:
        raise ConfigurationInvalid("app.yaml is invalid", format_validation_errors(e, "app.yaml")) from e


def validate_app(config_dir: Path) -> List[str]:
    """Validate app.yaml (optional file)."""
    try:
        load_app_config(config_dir)
    except ConfigurationInvalid as e:
        return e.errors or [str(e)]
    logger.info("✅ app.yaml validation passed")
    return []


def validate_trading(config_dir: Path) -> List[str]:
    """Validate trading.yaml."""
    path = config_dir / "trading.yaml"
    try:
        parse_settings(load_yaml_file(path), source="trading.yaml")
    except FileNotFoundError as e:
        return [f"trading.yaml: {e}"]
    except yaml.YAMLError as e:
        return [f"trading.yaml: Invalid YAML - {e}"]
    except ConfigurationInvalid as e:
        return e.errors or [str(e)]
    logger.info("✅ trading.yaml validation passed")
    return []


def validate_strategies(config_dir: Path) -> List[str]:
    """
    Validate strategies.yaml: schema per entry, strategy-level rules
    (e.g. allocation targets summing to 100%), and unique ids.
    """
    path = config_dir / "strategies.yaml"
    try:
        parsed = StrategiesFile.model_validate(load_yaml_file(path))
    except FileNotFoundError as e:
        return [f"strategies.yaml: {e}"]
    except yaml.YAMLError as e:
        return [f"strategies.yaml: Invalid YAML - {e}"]
    except ValidationError as e:
        return format_validation_errors(e, "strategies.yaml")

    errors = []
    seen = set()
    for entry in parsed.strategies:
        if entry.id in seen:
            errors.append(f"strategies.yaml: duplicate strategy id '{entry.id}'")
            continue
        seen.add(entry.id)
        strategy_cls = StrategyRegistry.STRATEGY_CLASSES[entry.kind]
        try:
            strategy = strategy_cls(entry.to_config(), services=None)
        except ConfigurationInvalid as e:
            errors.append(f"strategies.yaml[{entry.id}]: {e}")
            continue
        if not strategy.validate():
            errors.append(f"strategies.yaml[{entry.id}]: {entry.kind} configuration failed validation")

    if not errors:
        logger.info("✅ strategies.yaml validation passed")
    return errors


def validate_all_configs(config_dir: str = "config") -> List[str]:
    """
    Validate all configuration files.

    Args:
        config_dir: Path to config directory (string or Path)

    Returns:
        List of all error messages (empty if all valid)
    """
    config_path = Path(config_dir)

    all_errors = []
    all_errors.extend(validate_app(config_path))
    all_errors.extend(validate_trading(config_path))
    all_errors.extend(validate_strategies(config_path))

    if not all_errors:
        logger.info("✅ All config files validated successfully")
    else:
        logger.error(f"❌ {len(all_errors)} validation error(s) found")

    return all_errors


if __name__ == "__main__":
    """Run validation from command line"""
    import sys

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    config_dir = sys.argv[1] if len(sys.argv) > 1 else "config"

    errors = validate_all_configs(config_dir)

    if errors:
        print("\n❌ Configuration Validation Failed:\n")
        for error in errors:
            print(f"  • {error}")
        print()
        sys.exit(1)
    else:
        print("\n✅ All configuration files are valid!\n")
        sys.exit(0)
