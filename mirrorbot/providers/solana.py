"""
Solana JSON-RPC provider.

Thin pass-through to a Solana node: fetch parsed transactions, submit signed
transactions, poll confirmation, simulate, and resolve address lookup tables
and mint decimals.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ..core.errors import ConfirmationError
from ..services.events.models import ParsedTransaction
from .base import Provider

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class SolanaRpcError(Exception):
    """Error returned by (or while talking to) the Solana RPC node."""
    pass


@dataclass
class SimulationResult:
    """Outcome of ``simulateTransaction``."""
    err: Optional[Any] = None
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.err is None


class SolanaRpcProvider(Provider):
    """
    JSON-RPC client for a Solana node.

    Usage:
        rpc = SolanaRpcProvider("https://api.mainnet-beta.solana.com")
        tx = await rpc.get_parsed_transaction(signature, "confirmed")
        sig = await rpc.send_raw_transaction(signed_bytes)
        await rpc.confirm_transaction(sig, blockhash, last_valid_height, "confirmed")
        await rpc.close()
    """

    name = "solana-rpc"

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        timeout_s: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call and return its ``result`` field."""
        client = await self._get_client()
        self._request_id += 1

        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        for attempt in range(self.max_retries):
            try:
                response = await client.post(
                    self.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                data = response.json()

                if "error" in data:
                    error = data["error"]
                    error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                    raise SolanaRpcError(f"{method}: {error_msg}")

                return data.get("result")

            except httpx.HTTPStatusError as e:
                if attempt == self.max_retries - 1:
                    raise SolanaRpcError(f"{method}: HTTP error {e.response.status_code}")
                await asyncio.sleep(0.5 * (attempt + 1))
            except SolanaRpcError:
                raise
            except Exception as e:
                if attempt == self.max_retries - 1:
                    raise SolanaRpcError(f"{method}: {str(e) or type(e).__name__}")
                await asyncio.sleep(0.5 * (attempt + 1))

        raise SolanaRpcError(f"{method}: max retries exceeded")

    # ---------------------------
    # Reads
    # ---------------------------
    async def get_parsed_transaction(
        self,
        signature: str,
        commitment: Optional[str] = None,
    ) -> Optional[ParsedTransaction]:
        """
        Fetch a transaction with ``jsonParsed`` encoding.

        Returns None when the node does not (yet) have it at the requested
        commitment, or when the call fails.
        """
        commitment = commitment or self.commitment
        if commitment == "processed":
            # getTransaction only accepts confirmed/finalized.
            logger.warning("Commitment 'processed' not supported by getTransaction, using 'confirmed' for %s", signature)
            commitment = "confirmed"

        options = {
            "encoding": "jsonParsed",
            "commitment": commitment,
            "maxSupportedTransactionVersion": 0,
        }

        try:
            result = await self._rpc_call("getTransaction", [signature, options])
        except SolanaRpcError as e:
            logger.error("Error fetching parsed transaction %s: %s", signature, e)
            return None

        if result is None:
            logger.warning("Transaction not found or not yet processed: %s at commitment %s", signature, commitment)
            return None

        return ParsedTransaction.from_rpc(result)

    async def get_block_height(self, commitment: Optional[str] = None) -> int:
        result = await self._rpc_call("getBlockHeight", [{"commitment": commitment or self.commitment}])
        return int(result or 0)

    async def get_signature_statuses(self, signatures: List[str]) -> List[Optional[Dict[str, Any]]]:
        result = await self._rpc_call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": False}],
        )
        return list((result or {}).get("value") or [])

    async def _get_parsed_account(self, address: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc_call(
            "getAccountInfo",
            [address, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if not value:
            return None
        data = value.get("data")
        return data.get("parsed") if isinstance(data, dict) else None

    async def get_account_data(self, address: str) -> Optional[bytes]:
        """Raw account data, or None when the account does not exist."""
        result = await self._rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if not value:
            return None
        data = value.get("data")
        if isinstance(data, list) and data:
            return base64.b64decode(data[0])
        return None

    async def get_mint_decimals(self, mint: str) -> Optional[int]:
        """Read decimals from an SPL mint account. None if not a mint."""
        parsed = await self._get_parsed_account(mint)
        if not parsed or parsed.get("type") != "mint":
            return None
        decimals = (parsed.get("info") or {}).get("decimals")
        return int(decimals) if decimals is not None else None

    async def get_address_lookup_table(self, table_key: str) -> Optional[List[str]]:
        """Addresses stored in a lookup table account, or None if missing."""
        parsed = await self._get_parsed_account(table_key)
        if not parsed or parsed.get("type") != "lookupTable":
            return None
        return list((parsed.get("info") or {}).get("addresses") or [])

    async def get_needed_lookup_tables(self, table_keys: Iterable[str]) -> Dict[str, List[str]]:
        """Resolve every lookup table referenced by a v0 message. Missing tables are logged and skipped."""
        tables: Dict[str, List[str]] = {}
        for key in table_keys:
            try:
                addresses = await self.get_address_lookup_table(key)
            except SolanaRpcError as e:
                logger.warning("Failed to fetch address lookup table %s: %s", key, e)
                continue
            if addresses is None:
                logger.warning("Address lookup table not found: %s", key)
                continue
            tables[key] = addresses
        return tables

    # ---------------------------
    # Writes
    # ---------------------------
    async def send_raw_transaction(
        self,
        raw_transaction: bytes,
        *,
        skip_preflight: bool = True,
        max_retries: int = 5,
    ) -> str:
        """
        Submit a signed, serialized transaction.

        Returns:
            The transaction signature (base58).

        Raises:
            SolanaRpcError: when the node rejects the transaction.
        """
        options = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": self.commitment,
            "maxRetries": max_retries,
        }
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        signature = await self._rpc_call("sendTransaction", [encoded, options])
        if not signature:
            raise SolanaRpcError("sendTransaction: no signature returned")
        logger.info("Transaction sent. Signature: %s", signature)
        return signature

    async def confirm_transaction(
        self,
        signature: str,
        blockhash: Optional[str],
        last_valid_block_height: int,
        commitment: Optional[str] = None,
        *,
        timeout_s: float = 90.0,
        poll_interval_s: float = 1.0,
    ) -> None:
        """
        Wait until ``signature`` reaches ``commitment``.

        Polling stops with ConfirmationError when the transaction fails on
        chain, when the block height passes ``last_valid_block_height`` while
        the transaction is still unseen, or after ``timeout_s``.
        """
        commitment = commitment or self.commitment
        target = _COMMITMENT_RANK.get(commitment, 1)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        interval = poll_interval_s

        logger.info("Confirming transaction %s with commitment %s (blockhash %s)", signature, commitment, blockhash)

        while True:
            try:
                statuses = await self.get_signature_statuses([signature])
                status = statuses[0] if statuses else None

                if status is not None:
                    if status.get("err") is not None:
                        raise ConfirmationError(
                            f"Transaction confirmation failed: {status['err']}",
                            signature=signature,
                            stage="confirm",
                        )
                    reached = _COMMITMENT_RANK.get(status.get("confirmationStatus") or "processed", 0)
                    if reached >= target:
                        logger.info("Transaction %s confirmed (%s)", signature, status.get("confirmationStatus"))
                        return
                elif last_valid_block_height:
                    height = await self.get_block_height(commitment)
                    if height > last_valid_block_height:
                        raise ConfirmationError(
                            f"TransactionExpiredBlockheightExceeded: block height {height} "
                            f"exceeded {last_valid_block_height}",
                            signature=signature,
                            stage="confirm",
                        )
            except SolanaRpcError as e:
                logger.warning("Confirmation poll for %s failed: %s", signature, e)

            if loop.time() >= deadline:
                raise ConfirmationError(
                    f"Transaction confirmation timed out after {timeout_s}s",
                    signature=signature,
                    stage="confirm",
                )

            await asyncio.sleep(interval)
            interval = min(interval * 1.5, 5.0)

    async def simulate_transaction(
        self,
        transaction_b64: str,
        *,
        commitment: Optional[str] = None,
        addresses: Optional[List[str]] = None,
    ) -> SimulationResult:
        """
        Dry-run a base64 transaction.

        Args:
            transaction_b64: Base64 encoded transaction
            commitment: Bank state to simulate against
            addresses: Accounts whose post-simulation state should be returned
        """
        options: Dict[str, Any] = {
            "encoding": "base64",
            "commitment": commitment or self.commitment,
            "replaceRecentBlockhash": True,
            "sigVerify": False,
        }
        if addresses:
            options["accounts"] = {"encoding": "base64", "addresses": addresses}

        result = await self._rpc_call("simulateTransaction", [transaction_b64, options])
        value = (result or {}).get("value", {})
        return SimulationResult(
            err=value.get("err"),
            logs=value.get("logs") or [],
            units_consumed=value.get("unitsConsumed"),
        )


__all__ = [
    "SolanaRpcProvider",
    "SolanaRpcError",
    "SimulationResult",
]
