"""
Jupiter Provider for Solana.

Two concerns live here:
- the strict token list, used to seed the token metadata cache
- swap quotes and swap transaction building (the bot's swap gateway)

Quotes are never cached. Every quote is single-shot and is re-requested
when stale.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .base import Provider

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIST_URL = "https://token.jup.ag/strict"
DEFAULT_QUOTE_URL = "https://quote-api.jup.ag/v6/quote"
DEFAULT_SWAP_URL = "https://quote-api.jup.ag/v6/swap"

QUOTE_TTL_SECONDS = 30


@dataclass
class JupiterToken:
    """Parsed Jupiter token metadata."""

    address: str  # Mint address (Base58)
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "JupiterToken":
        """Parse a token from Jupiter API response."""
        return cls(
            address=data.get("address", ""),
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=data.get("decimals", 9),
            logo_uri=data.get("logoURI"),
            tags=data.get("tags") or [],
        )


class JupiterProvider(Provider):
    """
    Jupiter token list provider.

    No API key required. The list is fetched on demand; caching is the
    metadata service's job.
    """

    name = "jupiter"
    timeout_s = 15

    def __init__(self, token_list_url: str = DEFAULT_TOKEN_LIST_URL) -> None:
        self.token_list_url = token_list_url

    async def fetch_token_list(self) -> List[JupiterToken]:
        """
        Download the strict token list.

        Raises:
            httpx.HTTPError: on transport failure or non-2xx status.
        """
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            resp = await client.get(self.token_list_url)
            resp.raise_for_status()
            tokens_data = resp.json()

        tokens = []
        for item in tokens_data or []:
            if not isinstance(item, dict):
                continue
            token = JupiterToken.from_api(item)
            if token.address and token.symbol and token.name:
                tokens.append(token)
        return tokens


# =============================================================================
# Swap Quote and Transaction Building
# =============================================================================


@dataclass
class JupiterQuote:
    """Quote response from Jupiter."""
    input_mint: str
    output_mint: str
    in_amount: int                              # In smallest units (lamports)
    out_amount: int                             # In smallest units
    other_amount_threshold: int                 # Minimum output (with slippage)
    slippage_bps: int
    price_impact_pct: float

    # Passed back verbatim to /swap
    quote_response: Optional[Dict[str, Any]] = None

    fetched_at: float = field(default_factory=time.time)

    @property
    def is_valid(self) -> bool:
        """Check if quote is still fresh enough to build against."""
        return (time.time() - self.fetched_at) < QUOTE_TTL_SECONDS


@dataclass
class JupiterSwapResult:
    """Result of building a swap transaction."""
    swap_transaction: str                       # Base64 encoded, unsigned
    last_valid_block_height: int


class JupiterQuoteError(Exception):
    """Failed to get a quote from Jupiter."""
    pass


class JupiterSwapError(Exception):
    """Failed to build swap transaction."""
    pass


class JupiterSwapProvider:
    """
    Jupiter swap provider.

    ``get_swap_quote`` / ``build_swap_transaction`` raise on failure.
    ``quote`` / ``build_swap`` are the gateway calls used by the bot: any
    failure is logged and reported as ``None``.

    Usage:
        provider = JupiterSwapProvider()
        quote = await provider.quote(WSOL_MINT, token_mint, 100_000_000, 50)
        swap = await provider.build_swap(bot_pubkey, quote)
    """

    def __init__(
        self,
        quote_url: str = DEFAULT_QUOTE_URL,
        swap_url: str = DEFAULT_SWAP_URL,
        timeout_s: float = 30.0,
        priority_level: str = "medium",
        max_priority_fee_lamports: int = 10_000_000,
    ):
        self._quote_url = quote_url
        self._swap_url = swap_url
        self._timeout_s = timeout_s
        self._priority_level = priority_level
        self._max_priority_fee_lamports = max_priority_fee_lamports

    async def get_swap_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50,
        swap_mode: str = "ExactIn",
    ) -> JupiterQuote:
        """
        Get a swap quote from Jupiter.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest units (lamports for SOL)
            slippage_bps: Slippage tolerance in basis points (50 = 0.5%)
            swap_mode: "ExactIn" or "ExactOut"

        Returns:
            JupiterQuote with route and amounts
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "swapMode": swap_mode,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.get(self._quote_url, params=params)
                response.raise_for_status()
                data = response.json()

            if "error" in data:
                raise JupiterQuoteError(f"Jupiter quote error: {data['error']}")

            return JupiterQuote(
                input_mint=data["inputMint"],
                output_mint=data["outputMint"],
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                other_amount_threshold=int(data.get("otherAmountThreshold", data["outAmount"])),
                slippage_bps=slippage_bps,
                price_impact_pct=float(data.get("priceImpactPct", 0)),
                quote_response=data,
            )

        except httpx.HTTPStatusError as e:
            raise JupiterQuoteError(f"HTTP error: {e.response.status_code}")
        except JupiterQuoteError:
            raise
        except Exception as e:
            raise JupiterQuoteError(str(e) or type(e).__name__)

    async def build_swap_transaction(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        wrap_and_unwrap_sol: bool = True,
    ) -> JupiterSwapResult:
        """
        Build an unsigned swap transaction from a quote.

        Args:
            quote: The quote to build a transaction for
            user_public_key: Fee payer and signer of the swap
            wrap_and_unwrap_sol: Automatically wrap/unwrap SOL

        Returns:
            JupiterSwapResult with base64 encoded transaction
        """
        if not quote.quote_response:
            raise JupiterSwapError("Quote response required for swap transaction")

        if not quote.is_valid:
            raise JupiterSwapError("Quote has expired, please get a new quote")

        payload = {
            "quoteResponse": quote.quote_response,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": self._max_priority_fee_lamports,
                    "priorityLevel": self._priority_level,
                }
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.post(self._swap_url, json=payload)
                response.raise_for_status()
                data = response.json()

            if "error" in data:
                raise JupiterSwapError(f"Jupiter swap error: {data['error']}")
            if not data.get("swapTransaction"):
                raise JupiterSwapError("Jupiter swap response missing swapTransaction")

            return JupiterSwapResult(
                swap_transaction=data["swapTransaction"],
                last_valid_block_height=int(data.get("lastValidBlockHeight", 0)),
            )

        except httpx.HTTPStatusError as e:
            raise JupiterSwapError(f"HTTP error: {e.response.status_code}")
        except JupiterSwapError:
            raise
        except Exception as e:
            raise JupiterSwapError(str(e) or type(e).__name__)

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount_raw: int,
        slippage_bps: int,
    ) -> Optional[JupiterQuote]:
        try:
            return await self.get_swap_quote(input_mint, output_mint, amount_raw, slippage_bps)
        except JupiterQuoteError as e:
            logger.warning(
                "Jupiter quote unavailable for %s -> %s (amount %s): %s",
                input_mint, output_mint, amount_raw, e,
            )
            return None

    async def build_swap(
        self,
        signer_pubkey: str,
        quote: JupiterQuote,
        wrap_unwrap_base: bool = True,
    ) -> Optional[JupiterSwapResult]:
        try:
            return await self.build_swap_transaction(quote, signer_pubkey, wrap_and_unwrap_sol=wrap_unwrap_base)
        except JupiterSwapError as e:
            logger.warning(
                "Jupiter swap build unavailable for %s -> %s: %s",
                quote.input_mint, quote.output_mint, e,
            )
            return None


__all__ = [
    "JupiterProvider",
    "JupiterToken",
    "JupiterSwapProvider",
    "JupiterQuote",
    "JupiterSwapResult",
    "JupiterQuoteError",
    "JupiterSwapError",
]
