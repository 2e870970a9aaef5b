"""
Jupiter aggregator swap client (quote + swap over HTTP).

Amounts cross this boundary in UI units; the client converts to integer base
units with each asset's decimals. Unknown decimals are an error rather than
a guess, since a wrong exponent would mis-size a live trade.

- quote(): GET /quote (ExactIn); output is the slippage-protected minimum
  (otherAmountThreshold), price impact as reported by the aggregator (percent)
- execute(dry_run=True): quote only, nothing is signed or sent
- execute(dry_run=False): POST /swap for a serialized transaction, then hand
  it to the wallet's sign_and_send()

HTTP 429 is raised as RateLimitedError so the throttle can back off; other
HTTP errors surface through raise_for_status().
"""

import logging
from typing import Any, Callable, Dict, Optional

import requests

from core.exceptions import ExecutionFailed, RateLimitedError
from core.models import SOL_MINT, USDC_MINT, SwapQuote, SwapResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://quote-api.jup.ag/v6"
KNOWN_DECIMALS = {SOL_MINT: 9, USDC_MINT: 6}


class JupiterSwapClient:
    """SwapService implementation backed by the Jupiter HTTP API."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        wallet: Any = None,
        decimals_for: Optional[Callable[[str], Optional[int]]] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Aggregator API root
            timeout: Per-request timeout in seconds
            wallet: Wallet used for live submission (needs sign_and_send)
            decimals_for: Lookup for asset decimals beyond the built-in mints
            session: requests.Session (injectable for tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.wallet = wallet
        self._decimals_for = decimals_for
        self.session = session or requests.Session()

    def decimals(self, asset: str) -> int:
        if asset in KNOWN_DECIMALS:
            return KNOWN_DECIMALS[asset]
        if self._decimals_for is not None:
            value = self._decimals_for(asset)
            if value is not None:
                return int(value)
        raise ValueError(f"Unknown decimals for asset {asset}")

    def _to_base_units(self, asset: str, amount: float) -> int:
        return int(amount * (10 ** self.decimals(asset)))

    def _check(self, response: requests.Response, source: str) -> None:
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(source, 429, float(retry_after) if retry_after else None)
        response.raise_for_status()

    def _raw_quote(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> Dict[str, Any]:
        params = {
            "inputMint": input_asset,
            "outputMint": output_asset,
            "amount": str(self._to_base_units(input_asset, amount)),
            "slippageBps": int(slippage_bps),
            "swapMode": "ExactIn",
        }
        logger.debug(f"Quote request {amount} {input_asset} -> {output_asset} ({slippage_bps} bps)")
        response = self.session.get(f"{self.base_url}/quote", params=params, timeout=self.timeout)
        self._check(response, "jupiter.quote")
        return response.json()

    def _parse_quote(self, raw: Dict[str, Any], input_asset: str, output_asset: str, amount: float) -> SwapQuote:
        try:
            out_base = int(raw.get("otherAmountThreshold") or raw["outAmount"])
            impact = float(raw.get("priceImpactPct") or 0.0)
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed quote response: {e}") from e
        return SwapQuote(
            input_asset=input_asset,
            output_asset=output_asset,
            input_amount=amount,
            output_amount=out_base / (10 ** self.decimals(output_asset)),
            price_impact_pct=impact,
        )

    def quote(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapQuote:
        raw = self._raw_quote(input_asset, output_asset, amount, slippage_bps)
        return self._parse_quote(raw, input_asset, output_asset, amount)

    def execute(
        self,
        input_asset: str,
        output_asset: str,
        amount: float,
        signer: Optional[str],
        slippage_bps: int,
        dry_run: bool,
    ) -> SwapResult:
        raw = self._raw_quote(input_asset, output_asset, amount, slippage_bps)
        quote = self._parse_quote(raw, input_asset, output_asset, amount)

        if dry_run:
            logger.info(
                f"🧪 DRY RUN swap {amount} {input_asset[:6]} -> {quote.output_amount:.6f} {output_asset[:6]} "
                f"(impact {quote.price_impact_pct:.4f}%)"
            )
            return SwapResult(
                success=True,
                output_amount=quote.output_amount,
                price_impact_pct=quote.price_impact_pct,
                dry_run=True,
            )

        if not signer or self.wallet is None:
            return SwapResult(
                success=False,
                price_impact_pct=quote.price_impact_pct,
                error="No signer available for live swap",
                dry_run=False,
            )

        response = self.session.post(
            f"{self.base_url}/swap",
            json={"quoteResponse": raw, "userPublicKey": signer, "wrapAndUnwrapSol": True},
            timeout=self.timeout,
        )
        self._check(response, "jupiter.swap")
        transaction = response.json().get("swapTransaction")
        if not transaction:
            return SwapResult(
                success=False,
                price_impact_pct=quote.price_impact_pct,
                error="Swap response missing transaction",
                dry_run=False,
            )

        try:
            signature = self.wallet.sign_and_send(transaction)
        except ExecutionFailed as e:
            logger.error(f"Swap submission failed: {e}")
            return SwapResult(
                success=False,
                price_impact_pct=quote.price_impact_pct,
                signature=e.signature,
                error=str(e),
                dry_run=False,
            )

        logger.info(f"🔗 Swap submitted: {signature}")
        return SwapResult(
            success=True,
            output_amount=quote.output_amount,
            price_impact_pct=quote.price_impact_pct,
            signature=signature,
            dry_run=False,
        )
