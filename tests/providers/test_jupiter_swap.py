"""Jupiter swap gateway and token list tests."""

import httpx
import pytest

import mirrorbot.providers.jupiter as jupiter
from mirrorbot.providers.jupiter import (
    JupiterProvider,
    JupiterQuote,
    JupiterSwapError,
    JupiterSwapProvider,
)


WSOL = "So11111111111111111111111111111111111111112"
MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


class _DummyClient:
    """Stands in for httpx.AsyncClient; replays canned responses."""

    responses = []
    calls = []

    def __init__(self, *_, **__):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def _next(self, method, url):
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        status, payload = response
        return httpx.Response(status, json=payload, request=httpx.Request(method, url))

    async def get(self, url, params=None):
        self.calls.append(("GET", url, params))
        return self._next("GET", url)

    async def post(self, url, json=None):
        self.calls.append(("POST", url, json))
        return self._next("POST", url)


@pytest.fixture
def client(monkeypatch):
    _DummyClient.responses = []
    _DummyClient.calls = []
    monkeypatch.setattr(jupiter.httpx, "AsyncClient", _DummyClient)
    return _DummyClient


QUOTE_PAYLOAD = {
    "inputMint": WSOL,
    "outputMint": MINT,
    "inAmount": "100000000",
    "outAmount": "5000000000",
    "otherAmountThreshold": "4975000000",
    "swapMode": "ExactIn",
    "slippageBps": 50,
    "priceImpactPct": "0.12",
    "routePlan": [],
}


@pytest.mark.asyncio
async def test_quote_parses_raw_amounts(client):
    client.responses = [(200, QUOTE_PAYLOAD)]
    provider = JupiterSwapProvider(quote_url="https://jup.test/quote")

    quote = await provider.quote(WSOL, MINT, 100_000_000, 50)

    assert quote.in_amount == 100_000_000
    assert quote.out_amount == 5_000_000_000
    assert quote.other_amount_threshold == 4_975_000_000
    assert quote.price_impact_pct == pytest.approx(0.12)
    assert quote.quote_response == QUOTE_PAYLOAD

    method, url, params = client.calls[0]
    assert url == "https://jup.test/quote"
    assert params["amount"] == "100000000"
    assert params["slippageBps"] == 50


@pytest.mark.asyncio
async def test_quote_http_error_returns_none(client):
    client.responses = [(500, {"error": "internal"})]
    provider = JupiterSwapProvider()

    assert await provider.quote(WSOL, MINT, 1, 50) is None


@pytest.mark.asyncio
async def test_quote_error_body_returns_none(client):
    client.responses = [(200, {"error": "No routes found"})]
    provider = JupiterSwapProvider()

    assert await provider.quote(WSOL, MINT, 1, 50) is None


@pytest.mark.asyncio
async def test_quote_timeout_returns_none(client):
    client.responses = [httpx.ReadTimeout("timed out")]
    provider = JupiterSwapProvider()

    assert await provider.quote(WSOL, MINT, 1, 50) is None


@pytest.mark.asyncio
async def test_build_swap_sends_quote_back(client):
    client.responses = [(200, QUOTE_PAYLOAD), (200, {"swapTransaction": "AQID", "lastValidBlockHeight": 321})]
    provider = JupiterSwapProvider(swap_url="https://jup.test/swap")
    quote = await provider.quote(WSOL, MINT, 100_000_000, 50)

    swap = await provider.build_swap("BotPubkey111", quote, wrap_unwrap_base=True)

    assert swap.swap_transaction == "AQID"
    assert swap.last_valid_block_height == 321
    method, url, payload = client.calls[1]
    assert (method, url) == ("POST", "https://jup.test/swap")
    assert payload["quoteResponse"] == QUOTE_PAYLOAD
    assert payload["userPublicKey"] == "BotPubkey111"
    assert payload["wrapAndUnwrapSol"] is True


@pytest.mark.asyncio
async def test_build_swap_missing_transaction_returns_none(client):
    client.responses = [(200, QUOTE_PAYLOAD), (200, {"lastValidBlockHeight": 1})]
    provider = JupiterSwapProvider()
    quote = await provider.quote(WSOL, MINT, 1, 50)

    assert await provider.build_swap("BotPubkey111", quote) is None


@pytest.mark.asyncio
async def test_stale_quote_rejected(client):
    provider = JupiterSwapProvider()
    quote = JupiterQuote(
        input_mint=WSOL, output_mint=MINT, in_amount=1, out_amount=1, other_amount_threshold=1,
        slippage_bps=50, price_impact_pct=0.0,
        quote_response=QUOTE_PAYLOAD, fetched_at=0.0,
    )

    with pytest.raises(JupiterSwapError):
        await provider.build_swap_transaction(quote, "BotPubkey111")
    assert client.calls == []


@pytest.mark.asyncio
async def test_token_list_filters_incomplete_entries(client):
    client.responses = [(200, [
        {"address": MINT, "symbol": "BONK", "name": "Bonk", "decimals": 5, "logoURI": "https://img"},
        {"address": "", "symbol": "X", "name": "X", "decimals": 6},
        "not-a-dict",
    ])]
    provider = JupiterProvider("https://jup.test/strict")

    tokens = await provider.fetch_token_list()

    assert [t.symbol for t in tokens] == ["BONK"]
    assert tokens[0].decimals == 5
    assert tokens[0].logo_uri == "https://img"
