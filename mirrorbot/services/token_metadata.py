"""
Token metadata service.

Resolves a mint address to display metadata (symbol, name, decimals).

- Cache is pre-seeded with WSOL and bulk-seeded from the Jupiter strict list
- Misses fall back to on-chain data: decimals from the mint account, name
  and symbol from the mint's Metaplex metadata account when it has one
- Failed lookups are cached for the session and answered with a placeholder
- Lookups for different mints never wait on each other
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Tuple

import httpx
from pydantic import BaseModel
from solders.pubkey import Pubkey

from ..config import WSOL_DECIMALS, WSOL_MINT
from ..providers.jupiter import JupiterProvider
from ..providers.solana import SolanaRpcError, SolanaRpcProvider

logger = logging.getLogger(__name__)

PLACEHOLDER_DECIMALS = 6

METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")
# Metaplex account key for a V1 metadata account
_METADATA_V1_KEY = 4


class TokenInfo(BaseModel):
    """Display metadata for one mint."""

    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None
    metadata_fetched: bool = True


WSOL_INFO = TokenInfo(symbol="WSOL", name="Wrapped SOL", decimals=WSOL_DECIMALS)


def placeholder_token_info(mint: str) -> TokenInfo:
    return TokenInfo(
        symbol=f"UNKNOWN ({mint[:4]}...)",
        name="Unknown Token",
        decimals=PLACEHOLDER_DECIMALS,
        metadata_fetched=False,
    )


def metadata_address(mint: str) -> str:
    """Metaplex metadata PDA for ``mint``."""
    program = bytes(METADATA_PROGRAM_ID)
    address, _ = Pubkey.find_program_address(
        [b"metadata", program, bytes(Pubkey.from_string(mint))],
        METADATA_PROGRAM_ID,
    )
    return str(address)


def decode_metadata(data: bytes) -> Optional[Tuple[str, str]]:
    """
    Read ``(name, symbol)`` from a Metaplex metadata account.

    Layout: key (1), update authority (32), mint (32), then borsh strings
    name, symbol, uri (u32 little-endian length + NUL-padded bytes).
    """
    if not data or data[0] != _METADATA_V1_KEY:
        return None

    offset = 1 + 32 + 32
    fields = []
    for _ in range(2):
        if len(data) < offset + 4:
            return None
        length = int.from_bytes(data[offset:offset + 4], "little")
        offset += 4
        if len(data) < offset + length:
            return None
        fields.append(data[offset:offset + length].decode("utf-8", errors="ignore").strip("\x00 "))
        offset += length
    return fields[0], fields[1]


class TokenMetadataService:
    """
    Cached mint -> TokenInfo resolver.

    ``resolve`` never raises; callers always get something printable.
    """

    def __init__(
        self,
        jupiter: Optional[JupiterProvider] = None,
        rpc: Optional[SolanaRpcProvider] = None,
    ) -> None:
        self._jupiter = jupiter
        self._rpc = rpc
        # None marks a mint whose lookup already failed this session.
        self._cache: Dict[str, Optional[TokenInfo]] = {WSOL_MINT: WSOL_INFO}
        # One lock per mint being looked up; concurrent misses for the same
        # mint share a single on-chain lookup.
        self._locks: Dict[str, asyncio.Lock] = {}

    async def initialize(self) -> int:
        """Seed the cache from the Jupiter strict list. Returns the number of tokens added."""
        if self._jupiter is None:
            return 0

        try:
            tokens = await self._jupiter.fetch_token_list()
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch token list from Jupiter: %s. Cache will rely on on-chain data.", e)
            return 0
        except ValueError as e:
            logger.error("Error initializing token map from Jupiter: %s", e)
            return 0

        count = 0
        for token in tokens:
            if token.address in self._cache:
                continue
            self._cache[token.address] = TokenInfo(
                symbol=token.symbol,
                name=token.name,
                decimals=token.decimals,
                logo_uri=token.logo_uri,
            )
            count += 1

        logger.info("Token metadata cache seeded with %d tokens", count)
        return count

    def cached(self, mint: str) -> Optional[TokenInfo]:
        return self._cache.get(mint)

    async def resolve(self, mint: str) -> TokenInfo:
        if mint in self._cache:
            return self._cache[mint] or placeholder_token_info(mint)

        lock = self._locks.setdefault(mint, asyncio.Lock())
        async with lock:
            if mint not in self._cache:
                self._cache[mint] = await self._fetch_onchain(mint)
        if self._locks.get(mint) is lock:
            del self._locks[mint]

        return self._cache[mint] or placeholder_token_info(mint)

    async def _fetch_onchain(self, mint: str) -> Optional[TokenInfo]:
        if self._rpc is None:
            return None

        try:
            decimals = await self._rpc.get_mint_decimals(mint)
        except SolanaRpcError as e:
            logger.warning("[Metadata] Could not fetch mint account for %s: %s", mint, e)
            return None

        if decimals is None:
            logger.warning("[Metadata] %s is not a parseable mint account", mint)
            return None

        name, symbol = await self._fetch_metaplex(mint) or ("", "")
        return TokenInfo(
            symbol=symbol or f"UNNAMED ({mint[:4]}...)",
            name=name or "Unnamed Token",
            decimals=decimals,
        )

    async def _fetch_metaplex(self, mint: str) -> Optional[Tuple[str, str]]:
        try:
            address = metadata_address(mint)
        except ValueError:
            return None

        try:
            data = await self._rpc.get_account_data(address)
        except SolanaRpcError as e:
            logger.warning("[Metadata] Could not fetch Metaplex metadata for %s: %s", mint, e)
            return None

        if data is None:
            logger.debug("[Metadata] %s has no Metaplex metadata account", mint)
            return None
        return decode_metadata(data)


__all__ = [
    "TokenInfo",
    "TokenMetadataService",
    "WSOL_INFO",
    "decode_metadata",
    "metadata_address",
    "placeholder_token_info",
]
