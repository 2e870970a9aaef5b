"""
Strategy configuration schema for strategies.yaml

Each entry is tagged with `kind` (dca | grid | rebalance) and validated by
the matching pydantic model; to_config() produces the dataclass the strategy
instance owns.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictBool, TypeAdapter, model_validator

from core.models import USDC_MINT
from strategy.dca_strategy import DCAConfig
from strategy.grid_strategy import GridConfig
from strategy.rebalance_strategy import AllocationTarget, RebalanceConfig


class StrategyEntryBase(BaseModel):
    id: str = Field(min_length=1)
    name: str = ""
    enabled: bool = False
    dry_run: StrictBool = True

    def _base_fields(self) -> dict:
        return {
            "id": self.id,
            "name": self.name or self.id,
            "enabled": self.enabled,
            "dry_run": self.dry_run,
        }


class DCAEntry(StrategyEntryBase):
    kind: Literal["dca"]
    target_asset: str = Field(min_length=1)
    target_symbol: str = ""
    base_asset: str = USDC_MINT
    base_symbol: str = "USDC"
    buy_amount_usd: float = Field(gt=0)
    interval_hours: float = Field(gt=0)
    max_total_investment: Optional[float] = Field(default=None, gt=0)
    min_price: Optional[float] = Field(default=None, gt=0)
    max_price: Optional[float] = Field(default=None, gt=0)
    max_price_impact_pct: float = Field(default=2.0, gt=0)
    slippage_bps: int = Field(default=100, ge=1, le=5000)
    start_immediately: bool = False

    def to_config(self) -> DCAConfig:
        return DCAConfig(
            **self._base_fields(),
            target_asset=self.target_asset,
            target_symbol=self.target_symbol or self.target_asset[:6],
            base_asset=self.base_asset,
            base_symbol=self.base_symbol,
            buy_amount_usd=self.buy_amount_usd,
            interval_hours=self.interval_hours,
            max_total_investment=self.max_total_investment,
            min_price=self.min_price,
            max_price=self.max_price,
            max_price_impact_pct=self.max_price_impact_pct,
            slippage_bps=self.slippage_bps,
            start_immediately=self.start_immediately,
        )


class GridEntry(StrategyEntryBase):
    kind: Literal["grid"]
    base_asset: str = Field(min_length=1)
    base_symbol: str = ""
    quote_asset: str = USDC_MINT
    quote_symbol: str = "USDC"
    level_count: int = Field(gt=2)
    price_min: float = Field(gt=0)
    price_max: float = Field(gt=0)
    investment_amount: float = Field(gt=0)
    rebalance_on_fill: bool = True
    stop_loss_pct: Optional[float] = Field(default=None, gt=0, le=100)
    take_profit_pct: Optional[float] = Field(default=None, gt=0)
    max_active_levels: Optional[int] = Field(default=None, ge=2)
    slippage_bps: int = Field(default=100, ge=1, le=5000)

    def to_config(self) -> GridConfig:
        return GridConfig(
            **self._base_fields(),
            base_asset=self.base_asset,
            base_symbol=self.base_symbol or self.base_asset[:6],
            quote_asset=self.quote_asset,
            quote_symbol=self.quote_symbol,
            level_count=self.level_count,
            price_min=self.price_min,
            price_max=self.price_max,
            investment_amount=self.investment_amount,
            rebalance_on_fill=self.rebalance_on_fill,
            stop_loss_pct=self.stop_loss_pct,
            take_profit_pct=self.take_profit_pct,
            max_active_levels=self.max_active_levels,
            slippage_bps=self.slippage_bps,
        )


class AllocationTargetEntry(BaseModel):
    asset: str = Field(min_length=1)
    symbol: str = ""
    target_pct: float = Field(ge=0, le=100)
    threshold_pct: float = Field(default=5.0, gt=0)


class RebalanceEntry(StrategyEntryBase):
    kind: Literal["rebalance"]
    targets: List[AllocationTargetEntry] = Field(min_length=2)
    rebalance_threshold_pct: float = Field(default=5.0, gt=0)
    min_interval_hours: float = Field(default=24.0, gt=0)
    max_slippage_pct: float = Field(default=1.0, gt=0)
    min_trade_size_usd: float = Field(default=10.0, gt=0)
    emergency_enabled: bool = False
    emergency_deviation_pct: float = Field(default=20.0, gt=0)
    stable_asset: str = USDC_MINT
    stable_symbol: str = "USDC"

    def to_config(self) -> RebalanceConfig:
        return RebalanceConfig(
            **self._base_fields(),
            targets=[
                AllocationTarget(
                    asset=t.asset,
                    symbol=t.symbol or t.asset[:6],
                    target_pct=t.target_pct,
                    threshold_pct=t.threshold_pct,
                )
                for t in self.targets
            ],
            rebalance_threshold_pct=self.rebalance_threshold_pct,
            min_interval_hours=self.min_interval_hours,
            max_slippage_pct=self.max_slippage_pct,
            min_trade_size_usd=self.min_trade_size_usd,
            emergency_enabled=self.emergency_enabled,
            emergency_deviation_pct=self.emergency_deviation_pct,
            stable_asset=self.stable_asset,
            stable_symbol=self.stable_symbol,
        )


StrategyEntry = Annotated[Union[DCAEntry, GridEntry, RebalanceEntry], Field(discriminator="kind")]

STRATEGY_ENTRY = TypeAdapter(StrategyEntry)


class StrategiesFile(BaseModel):
    """Root of strategies.yaml. Strategy auto-run is set in app.yaml only."""
    strategies: List[StrategyEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def reject_auto_run(cls, data):
        if isinstance(data, dict) and "auto_run" in data:
            raise ValueError("auto_run belongs in app.yaml (strategies.auto_run)")
        return data
