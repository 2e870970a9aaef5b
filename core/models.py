"""
solharvest Core: Domain Models

Value objects shared by the scanner, the executor and the strategies.

Positions are supplied fresh by the portfolio service each scan and are never
mutated by the core. Opportunities live for exactly one scan; the scanner
replaces the whole set on every run.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Position:
    """
    Read-only snapshot of one held asset.

    Attributes:
        asset: Mint / asset identity
        symbol: Display ticker
        quantity: Held amount in UI units
        entry_price: Cost basis per unit in USD (None when unknown)
        current_price: Latest USD price (None when unknown)
        decimals: Token decimals, used by adapters converting to base units
    """
    asset: str
    symbol: str
    quantity: float
    entry_price: Optional[float] = None
    current_price: Optional[float] = None
    decimals: int = 9

    @property
    def has_prices(self) -> bool:
        return bool(self.entry_price) and self.current_price is not None

    @property
    def value_usd(self) -> float:
        if self.current_price is None:
            return 0.0
        return self.quantity * self.current_price

    @property
    def cost_basis_usd(self) -> float:
        if not self.entry_price:
            return 0.0
        return self.quantity * self.entry_price

    @property
    def unrealized_pnl_usd(self) -> float:
        if not self.has_prices:
            return 0.0
        return self.value_usd - self.cost_basis_usd

    @property
    def profit_pct(self) -> Optional[float]:
        """Unrealized profit as a percent of entry price, None without prices."""
        if not self.has_prices:
            return None
        return (self.current_price - self.entry_price) / self.entry_price * 100.0


class OpportunityPriority(Enum):
    """Priority tiers, ordered by rank (higher sorts first)."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    URGENT = 4

    @classmethod
    def from_profit(cls, profit_pct: float) -> "OpportunityPriority":
        if profit_pct >= 200:
            return cls.URGENT
        if profit_pct >= 100:
            return cls.HIGH
        if profit_pct >= 50:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class TradingOpportunity:
    """Recommended partial sale derived from one position and its best target."""
    id: str
    position: Position
    target_id: str
    target_name: str
    trigger_pct: float
    sell_pct: float
    profit_pct: float
    priority: OpportunityPriority
    estimated_proceeds_usd: float
    created_at: datetime = field(default_factory=utc_now)

    @property
    def sell_fraction(self) -> float:
        return self.sell_pct / 100.0

    @property
    def sell_amount(self) -> float:
        return self.position.quantity * self.sell_fraction


class TradeAction(Enum):
    BUY = "buy"
    SELL = "sell"
    SWAP = "swap"


@dataclass
class TradeExecution:
    """Append-only record of one trade attempt."""
    id: str
    timestamp: datetime
    action: TradeAction
    asset: str
    symbol: str
    amount: float
    price: Optional[float]
    success: bool
    dry_run: bool
    error: Optional[str] = None
    output_asset: Optional[str] = None
    amount_out: Optional[float] = None
    price_impact_pct: Optional[float] = None
    signature: Optional[str] = None
    strategy_id: Optional[str] = None
    profit_pct: Optional[float] = None
    target_id: Optional[str] = None
    slippage_bps: Optional[int] = None

    @property
    def notional_usd(self) -> float:
        if self.price is None:
            return 0.0
        return self.amount * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "asset": self.asset,
            "symbol": self.symbol,
            "amount": self.amount,
            "price": self.price,
            "success": self.success,
            "dry_run": self.dry_run,
            "error": self.error,
            "output_asset": self.output_asset,
            "amount_out": self.amount_out,
            "price_impact_pct": self.price_impact_pct,
            "signature": self.signature,
            "strategy_id": self.strategy_id,
            "profit_pct": self.profit_pct,
            "target_id": self.target_id,
            "slippage_bps": self.slippage_bps,
        }


@dataclass(frozen=True)
class SwapQuote:
    input_asset: str
    output_asset: str
    input_amount: float
    output_amount: float
    price_impact_pct: float


@dataclass(frozen=True)
class SwapResult:
    success: bool
    output_amount: float = 0.0
    price_impact_pct: float = 0.0
    signature: Optional[str] = None
    error: Optional[str] = None
    dry_run: bool = True
