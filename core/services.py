"""
solharvest Core: Service Gateway

Single entry point for every outbound call made by the scanner, the executor
and the strategies. Each call is throttled and retried under a named
dependency so that all callers share one view of provider health.

Swap submission only retries on rate-limit errors: an I/O failure after the
request left the process may still have landed, so it is never resubmitted
automatically.
"""

import logging
from typing import List, Optional

from core.exceptions import ConfigurationInvalid, ServiceUnavailable
from core.interfaces import PortfolioService, SwapService, WalletService
from core.models import Position, SwapQuote, SwapResult
from infra.throttle import Throttle

logger = logging.getLogger(__name__)

PORTFOLIO = "portfolio"
SWAP = "swap"


class TradingServices:
    """Throttled facade over the portfolio, swap and wallet collaborators."""

    def __init__(
        self,
        portfolio: PortfolioService,
        swap: SwapService,
        wallet: WalletService,
        throttle: Throttle,
        retry_attempts: int = 3,
        base_delay: float = 1.0,
    ):
        self.portfolio = portfolio
        self.swap = swap
        self.wallet = wallet
        self.throttle = throttle
        self.retry_attempts = retry_attempts
        self.base_delay = base_delay
        self._snapshot: Optional[List[Position]] = None

    def positions(self) -> List[Position]:
        """
        Positions from the latest refresh_positions() snapshot.

        Before the first refresh, falls back to the portfolio's own view.
        """
        snapshot = self._snapshot
        if snapshot is not None:
            return list(snapshot)
        try:
            return self.throttle.with_retry(
                self.portfolio.get_positions,
                dependency=PORTFOLIO,
                max_attempts=self.retry_attempts,
                base_delay=self.base_delay,
            )
        except Exception as e:
            raise ServiceUnavailable("portfolio.get_positions", e) from e

    def refresh_positions(self) -> List[Position]:
        """
        Refresh positions and make them the snapshot positions() serves.

        Callers must not invoke this more than once per cycle. A failed
        refresh drops the previous snapshot.
        """
        try:
            positions = self.throttle.with_retry(
                self.portfolio.refresh,
                dependency=PORTFOLIO,
                max_attempts=self.retry_attempts,
                base_delay=self.base_delay,
            )
        except Exception as e:
            self._snapshot = None
            raise ServiceUnavailable("portfolio.refresh", e) from e
        self._snapshot = list(positions)
        return list(positions)

    def quote(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapQuote:
        try:
            return self.throttle.with_retry(
                lambda: self.swap.quote(input_asset, output_asset, amount, slippage_bps),
                dependency=SWAP,
                max_attempts=self.retry_attempts,
                base_delay=self.base_delay,
            )
        except Exception as e:
            raise ServiceUnavailable(f"swap.quote {input_asset}->{output_asset}", e) from e

    def execute_swap(
        self,
        input_asset: str,
        output_asset: str,
        amount: float,
        slippage_bps: int,
        dry_run: bool,
    ) -> SwapResult:
        """
        Submit (or simulate) one swap.

        Raises:
            ConfigurationInvalid: if dry_run is not a real boolean
            Exception: the swap service's final error after rate-limit retries
        """
        if not isinstance(dry_run, bool):
            raise ConfigurationInvalid(f"Execution mode undeterminable: dry_run={dry_run!r}")

        signer = self.wallet.public_identity()
        if not dry_run and not self.wallet.can_sign():
            logger.error("Live swap requested but wallet cannot sign; refusing to submit")
            return SwapResult(success=False, error="Wallet cannot sign transactions", dry_run=False)

        return self.throttle.with_retry(
            lambda: self.swap.execute(input_asset, output_asset, amount, signer, slippage_bps, dry_run),
            dependency=SWAP,
            max_attempts=self.retry_attempts,
            base_delay=self.base_delay,
            retry_io_errors=False,
        )

    def can_trade_live(self) -> bool:
        return self.wallet.can_sign()

    def signer(self) -> Optional[str]:
        return self.wallet.public_identity()
