"""
Tests for JupiterSwapClient against a mocked requests.Session.
"""
from unittest.mock import MagicMock

import pytest
import requests

from core.exceptions import ExecutionFailed, RateLimitedError
from core.models import SOL_MINT, USDC_MINT
from infra.jupiter_client import JupiterSwapClient

BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YfB1pPB263"


def make_response(status_code=200, payload=None, headers=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = payload or {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


QUOTE = {
    "inAmount": "1000000000",
    "outAmount": "150000000",
    "otherAmountThreshold": "148500000",
    "priceImpactPct": "0.12",
}


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.get.return_value = make_response(payload=QUOTE)
    session.post.return_value = make_response(payload={"swapTransaction": "base64tx"})
    return session


@pytest.fixture
def wallet():
    wallet = MagicMock()
    wallet.sign_and_send.return_value = "5igSig"
    return wallet


@pytest.fixture
def client(session, wallet):
    return JupiterSwapClient(base_url="https://jup.test/v6/", session=session, wallet=wallet,
                             decimals_for={BONK: 5}.get)


class TestQuote:
    """Quote requests"""

    def test_request_in_base_units(self, client, session):
        client.quote(SOL_MINT, USDC_MINT, 1.0, 100)
        url = session.get.call_args[0][0]
        params = session.get.call_args[1]["params"]
        assert url == "https://jup.test/v6/quote"
        assert params["amount"] == "1000000000"
        assert params["slippageBps"] == 100
        assert params["swapMode"] == "ExactIn"

    def test_output_is_slippage_protected_minimum(self, client):
        quote = client.quote(SOL_MINT, USDC_MINT, 1.0, 100)
        assert quote.output_amount == pytest.approx(148.5)
        assert quote.price_impact_pct == pytest.approx(0.12)

    def test_decimals_lookup(self, client):
        assert client.decimals(SOL_MINT) == 9
        assert client.decimals(USDC_MINT) == 6
        assert client.decimals(BONK) == 5
        with pytest.raises(ValueError):
            client.decimals("UnknownMint")

    def test_rate_limit_raises_with_retry_after(self, client, session):
        session.get.return_value = make_response(429, headers={"Retry-After": "3"})
        with pytest.raises(RateLimitedError) as exc_info:
            client.quote(SOL_MINT, USDC_MINT, 1.0, 100)
        assert exc_info.value.retry_after == 3.0

    def test_http_error_propagates(self, client, session):
        session.get.return_value = make_response(500)
        with pytest.raises(requests.HTTPError):
            client.quote(SOL_MINT, USDC_MINT, 1.0, 100)

    def test_malformed_quote(self, client, session):
        session.get.return_value = make_response(payload={"unexpected": True})
        with pytest.raises(ValueError):
            client.quote(SOL_MINT, USDC_MINT, 1.0, 100)


class TestExecute:
    """Swap execution"""

    def test_dry_run_never_posts(self, client, session, wallet):
        result = client.execute(SOL_MINT, USDC_MINT, 1.0, "Pubkey", 100, dry_run=True)
        assert result.success and result.dry_run
        assert result.signature is None
        session.post.assert_not_called()
        wallet.sign_and_send.assert_not_called()

    def test_live_swap_signed_and_sent(self, client, session, wallet):
        result = client.execute(SOL_MINT, USDC_MINT, 1.0, "Pubkey", 100, dry_run=False)
        assert result.success
        assert result.signature == "5igSig"
        body = session.post.call_args[1]["json"]
        assert body["userPublicKey"] == "Pubkey"
        assert body["quoteResponse"] == QUOTE
        wallet.sign_and_send.assert_called_once_with("base64tx")

    def test_live_without_signer(self, client, session):
        result = client.execute(SOL_MINT, USDC_MINT, 1.0, None, 100, dry_run=False)
        assert not result.success
        session.post.assert_not_called()

    def test_missing_transaction(self, client, session):
        session.post.return_value = make_response(payload={})
        result = client.execute(SOL_MINT, USDC_MINT, 1.0, "Pubkey", 100, dry_run=False)
        assert not result.success
        assert "missing transaction" in result.error

    def test_submission_failure_reported(self, client, wallet):
        wallet.sign_and_send.side_effect = ExecutionFailed("blockhash expired", signature="partial")
        result = client.execute(SOL_MINT, USDC_MINT, 1.0, "Pubkey", 100, dry_run=False)
        assert not result.success
        assert result.signature == "partial"
        assert result.error == "blockhash expired"
