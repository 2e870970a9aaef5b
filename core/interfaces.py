"""
solharvest Core: Collaborator Interfaces

Structural types for the external services the core consumes. Concrete
adapters live in infra/; tests use the stubs in tests/helpers.
"""

from typing import Any, Dict, List, Optional, Protocol

from core.models import Position, SwapQuote, SwapResult


class PortfolioService(Protocol):
    def get_positions(self) -> List[Position]:
        ...

    def refresh(self) -> List[Position]:
        ...


class SwapService(Protocol):
    def quote(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapQuote:
        ...

    def execute(
        self,
        input_asset: str,
        output_asset: str,
        amount: float,
        signer: Optional[str],
        slippage_bps: int,
        dry_run: bool,
    ) -> SwapResult:
        ...


class WalletService(Protocol):
    def public_identity(self) -> Optional[str]:
        ...

    def can_sign(self) -> bool:
        ...


class PersistenceStore(Protocol):
    def append_execution(self, record: Dict[str, Any]) -> None:
        ...

    def save_strategy_snapshot(self, strategy_id: str, snapshot: Dict[str, Any]) -> None:
        ...

    def load_daily_counter(self) -> Optional[Dict[str, Any]]:
        ...

    def save_daily_counter(self, snapshot: Dict[str, Any]) -> None:
        ...
