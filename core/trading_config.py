"""
solharvest Core: Trading Settings

Pydantic schema for trading.yaml plus the ConfigStore that owns the file.

The store is treated as externally mutable: get_settings() re-reads the file
whenever its modification time changes, so edits made between daemon cycles
are picked up on the next cycle without a restart.

Dry-run is the default. A dry_run value that is null or not a boolean is
rejected as ConfigurationInvalid rather than coerced.
"""

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator, model_validator

from core.exceptions import ConfigurationInvalid
from core.models import SOL_MINT

logger = logging.getLogger(__name__)


def format_validation_errors(exc: ValidationError, source: str) -> List[str]:
    """Flatten a pydantic ValidationError into 'source: a -> b: msg' lines."""
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        if field:
            errors.append(f"{source}: {field}: {error['msg']}")
        else:
            errors.append(f"{source}: {error['msg']}")
    return errors


class ProfitTarget(BaseModel):
    """A (trigger %, sell %) pair. Immutable; edited by replacing it."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    trigger_pct: float = Field(gt=0, description="Unrealized profit % that arms this target")
    sell_pct: float = Field(gt=0, le=100, description="Share of the position to sell")
    enabled: bool = True


def default_profit_targets() -> List[ProfitTarget]:
    return [
        ProfitTarget(id="target_25", name="Quick Profit", trigger_pct=25, sell_pct=30),
        ProfitTarget(id="target_50", name="Good Profit", trigger_pct=50, sell_pct=40),
        ProfitTarget(id="target_100", name="Double Up", trigger_pct=100, sell_pct=60),
        ProfitTarget(id="target_200", name="Moon Shot", trigger_pct=200, sell_pct=80),
    ]


class StopLossConfig(BaseModel):
    """Stored and editable through ConfigStore; not enforced."""
    enabled: bool = False
    percentage: float = Field(default=20.0, gt=0, le=100)


class ProfitTakingConfig(BaseModel):
    enabled: bool = True
    targets: List[ProfitTarget] = Field(default_factory=default_profit_targets)
    stop_loss: StopLossConfig = Field(default_factory=StopLossConfig)

    @field_validator("targets")
    @classmethod
    def validate_unique_ids(cls, v: List[ProfitTarget]) -> List[ProfitTarget]:
        seen = set()
        for target in v:
            if target.id in seen:
                raise ValueError(f"Duplicate profit target id: {target.id}")
            seen.add(target.id)
        return v


class RiskManagementConfig(BaseModel):
    """
    Risk limits. max_daily_trades, require_minimum_profit_pct and the dust
    floors are enforced; max_position_size_pct is stored and editable but
    not enforced.
    """
    max_position_size_pct: float = Field(default=50.0, gt=0, le=100)
    max_daily_trades: int = Field(default=10, ge=0)
    require_minimum_profit_pct: float = Field(default=5.0, ge=0)
    dust_threshold_usd: float = Field(default=0.01, ge=0, description="Positions worth less are ignored")
    native_dust_quantity: float = Field(default=0.001, ge=0, description="SOL quantity floor")


class MonitoringConfig(BaseModel):
    """
    Only check_interval_seconds drives the daemon. The price update interval
    and notification flag are stored for external tooling and not read here.
    """
    check_interval_seconds: float = Field(default=60.0, ge=10, description="Minimum 10 seconds")
    price_update_interval_seconds: float = Field(default=30.0, gt=0)
    enable_notifications: bool = True


class ExecutionConfig(BaseModel):
    dry_run: StrictBool = True
    slippage_pct: float = Field(default=1.0, ge=0, le=50)
    max_price_impact_pct: float = Field(default=5.0, ge=0, le=100)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    trade_pacing_seconds: float = Field(default=2.0, ge=0)
    settlement_asset: str = Field(default=SOL_MINT, min_length=1)

    @property
    def slippage_bps(self) -> int:
        return int(round(self.slippage_pct * 100))


class TradingSettings(BaseModel):
    """Root of trading.yaml."""
    profit_taking: ProfitTakingConfig = Field(default_factory=ProfitTakingConfig)
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    @model_validator(mode="after")
    def validate_profit_taking(self) -> "TradingSettings":
        if self.profit_taking.enabled and not self.profit_taking.targets:
            raise ValueError("No profit targets defined while profit taking is enabled")
        return self

    def enabled_targets(self) -> List[ProfitTarget]:
        return [t for t in self.profit_taking.targets if t.enabled]


def parse_settings(data: Optional[Dict[str, Any]], source: str = "trading.yaml") -> TradingSettings:
    """
    Validate a raw mapping into TradingSettings.

    Raises:
        ConfigurationInvalid: with one message per failing field
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationInvalid(f"{source}: expected a mapping at top level")
    try:
        return TradingSettings(**data)
    except ValidationError as e:
        errors = format_validation_errors(e, source)
        raise ConfigurationInvalid(f"{source}: {len(errors)} validation error(s)", errors) from e


class ConfigStore:
    """
    File-backed TradingSettings with change detection.

    Usage:
        store = ConfigStore("config/trading.yaml")
        settings = store.get_settings()   # re-read when the file changed
        store.set_dry_run(False)          # persisted atomically
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._settings: Optional[TradingSettings] = None
        self._mtime: Optional[float] = None

        if not self.path.exists():
            logger.info(f"No trading config at {self.path}, writing defaults")
            self._write(TradingSettings())

        self.get_settings()

    def get_settings(self) -> TradingSettings:
        """
        Current settings, reloaded if the file's mtime moved.

        Raises:
            ConfigurationInvalid: if the file on disk no longer validates
        """
        with self._lock:
            try:
                mtime = self.path.stat().st_mtime
            except FileNotFoundError as e:
                raise ConfigurationInvalid(f"{self.path}: file not found") from e

            if self._settings is None or mtime != self._mtime:
                self._settings = self._load()
                self._mtime = mtime
                logger.debug(f"Loaded trading settings from {self.path}")
            return self._settings

    def validate(self) -> List[str]:
        """Return every validation error for the file on disk (empty if valid)."""
        try:
            self._load()
        except ConfigurationInvalid as e:
            return e.errors
        return []

    def _load(self) -> TradingSettings:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationInvalid(f"{self.path.name}: Invalid YAML - {e}") from e
        return parse_settings(data, self.path.name)

    def _write(self, settings: TradingSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".trading_", suffix=".yaml.tmp")
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(settings.model_dump(), f, sort_keys=False)
        os.replace(temp_path, self.path)
        self._settings = settings
        self._mtime = self.path.stat().st_mtime

    def update_settings(self, changes: Dict[str, Any]) -> TradingSettings:
        """
        Deep-merge `changes` into the current settings and persist.

        Raises:
            ConfigurationInvalid: if the merged settings do not validate
        """
        current = self.get_settings().model_dump()
        merged = _deep_merge(current, changes)
        settings = parse_settings(merged, self.path.name)
        with self._lock:
            self._write(settings)
        logger.info("Trading settings updated")
        return settings

    def _replace_targets(self, targets: List[ProfitTarget]) -> TradingSettings:
        return self.update_settings({"profit_taking": {"targets": [t.model_dump() for t in targets]}})

    def add_profit_target(self, target: ProfitTarget) -> TradingSettings:
        targets = list(self.get_settings().profit_taking.targets)
        if any(t.id == target.id for t in targets):
            raise ConfigurationInvalid(f"Profit target {target.id} already exists")
        targets.append(target)
        targets.sort(key=lambda t: t.trigger_pct)
        logger.info(f"Added profit target {target.id}: +{target.trigger_pct}% -> sell {target.sell_pct}%")
        return self._replace_targets(targets)

    def remove_profit_target(self, target_id: str) -> bool:
        targets = list(self.get_settings().profit_taking.targets)
        remaining = [t for t in targets if t.id != target_id]
        if len(remaining) == len(targets):
            return False
        self._replace_targets(remaining)
        logger.info(f"Removed profit target {target_id}")
        return True

    def _set_target_enabled(self, target_id: str, enabled: bool) -> bool:
        targets = list(self.get_settings().profit_taking.targets)
        found = False
        for i, target in enumerate(targets):
            if target.id == target_id:
                targets[i] = target.model_copy(update={"enabled": enabled})
                found = True
        if found:
            self._replace_targets(targets)
        return found

    def enable_profit_target(self, target_id: str) -> bool:
        return self._set_target_enabled(target_id, True)

    def disable_profit_target(self, target_id: str) -> bool:
        return self._set_target_enabled(target_id, False)

    def set_dry_run(self, dry_run: bool) -> TradingSettings:
        if not isinstance(dry_run, bool):
            raise ConfigurationInvalid(f"dry_run must be a boolean, got {dry_run!r}")
        if not dry_run:
            logger.warning("⚠️ Live trading mode configured: real swaps will be submitted")
        return self.update_settings({"execution": {"dry_run": dry_run}})

    def set_max_daily_trades(self, limit: int) -> TradingSettings:
        return self.update_settings({"risk_management": {"max_daily_trades": limit}})

    def reset_to_defaults(self) -> TradingSettings:
        settings = TradingSettings()
        with self._lock:
            self._write(settings)
        logger.info("Trading settings reset to defaults")
        return settings


def _deep_merge(base: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
