"""
Trade Classifier

Turns a watched wallet's balance changes in a parsed transaction into a
single buy or sell signal against SOL.

All comparisons run on raw integer amounts (lamports / token base units);
Decimal display amounts are only produced for the resulting DetectedTrade.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ...config import SWAP_PROGRAM_IDS, WSOL_DECIMALS, WSOL_MINT
from ...services.events.models import ParsedTransaction, TokenBalance
from ...services.token_metadata import TokenMetadataService
from .models import DetectedTrade, TradeDirection

logger = logging.getLogger(__name__)

# 0.00001 SOL
BASE_DUST_RAW = 10_000
# In whole token units
TOKEN_DUST = Decimal("0.000001")


def _owned_balances(balances: Iterable[TokenBalance], owner: str) -> Dict[str, Tuple[int, int]]:
    """mint -> (raw amount, decimals) summed over every token account ``owner`` holds."""
    result: Dict[str, Tuple[int, int]] = {}
    for balance in balances:
        if balance.owner != owner:
            continue
        try:
            raw = balance.ui_token_amount.raw
        except ValueError:
            continue
        previous, _ = result.get(balance.mint, (0, balance.ui_token_amount.decimals))
        result[balance.mint] = (previous + raw, balance.ui_token_amount.decimals)
    return result


def _to_units(raw: int, decimals: int) -> Decimal:
    return Decimal(raw) / (Decimal(10) ** decimals)


class TradeClassifier:
    """
    Classify one transaction for one watched wallet.

    Usage:
        classifier = TradeClassifier(metadata_service)
        trade = await classifier.classify(parsed_tx, wallet_address)
    """

    def __init__(
        self,
        metadata: TokenMetadataService,
        *,
        swap_program_ids: FrozenSet[str] = SWAP_PROGRAM_IDS,
        base_mint: str = WSOL_MINT,
        base_decimals: int = WSOL_DECIMALS,
        base_dust_raw: int = BASE_DUST_RAW,
        token_dust: Decimal = TOKEN_DUST,
    ):
        self._metadata = metadata
        self._swap_program_ids = frozenset(swap_program_ids)
        self._base_mint = base_mint
        self._base_decimals = base_decimals
        self._base_dust_raw = base_dust_raw
        self._token_dust = token_dust

    def is_swap_interaction(self, tx: Optional[ParsedTransaction]) -> bool:
        """True if any top-level or inner instruction calls a known swap program."""
        if tx is None or tx.meta is None:
            return False

        for instruction in tx.message.instructions:
            if instruction.program_id in self._swap_program_ids:
                logger.debug("Swap interaction found in top-level instructions: %s", instruction.program_id)
                return True

        for inner in tx.meta.inner_instructions or []:
            for instruction in inner.instructions:
                if instruction.program_id in self._swap_program_ids:
                    logger.debug("Swap interaction found in inner instructions: %s", instruction.program_id)
                    return True

        return False

    def base_delta(self, tx: ParsedTransaction, account: str) -> Tuple[int, str]:
        """
        Net SOL movement for ``account`` in lamports, with its display label.

        Native lamport delta wins when it exceeds dust; otherwise the WSOL
        token-balance delta is used (SOL wrapped or unwrapped in the same
        transaction).
        """
        meta = tx.meta
        native_delta = 0
        index = tx.account_index(account)
        if index is not None and index < len(meta.pre_balances) and index < len(meta.post_balances):
            native_delta = meta.post_balances[index] - meta.pre_balances[index]
        elif index is None:
            logger.debug("Watched wallet %s not in account keys of %s", account, tx.signature)

        if abs(native_delta) > self._base_dust_raw:
            return native_delta, "SOL"

        pre = _owned_balances(meta.pre_token_balances, account)
        post = _owned_balances(meta.post_token_balances, account)
        wsol_delta = post.get(self._base_mint, (0, 0))[0] - pre.get(self._base_mint, (0, 0))[0]
        return wsol_delta, "WSOL"

    async def classify(self, tx: Optional[ParsedTransaction], account: str) -> Optional[DetectedTrade]:
        """
        Returns None when the transaction is not a swap, when balance
        metadata is missing, or when no token pairs with the SOL movement.
        """
        if tx is None:
            return None

        meta = tx.meta
        signature = tx.signature
        if (
            meta is None
            or meta.pre_balances is None
            or meta.post_balances is None
            or meta.pre_token_balances is None
            or meta.post_token_balances is None
            or not tx.message.account_keys
            or not signature
        ):
            logger.debug("[%s] Skipping analysis for tx %s: incomplete metadata", account, signature)
            return None

        if not self.is_swap_interaction(tx):
            logger.debug("[%s] Tx %s does not touch a known swap program", account, signature)
            return None

        base_raw, base_symbol = self.base_delta(tx, account)
        if abs(base_raw) <= self._base_dust_raw:
            logger.debug("[%s] No significant SOL/WSOL change in tx %s", account, signature)
            return None

        pre = _owned_balances(meta.pre_token_balances, account)
        post = _owned_balances(meta.post_token_balances, account)

        mints: List[str] = list(dict.fromkeys([*pre, *post]))
        for mint in mints:
            if mint == self._base_mint:
                continue

            pre_raw, pre_decimals = pre.get(mint, (0, None))
            post_raw, post_decimals = post.get(mint, (0, None))
            decimals = post_decimals if post_decimals is not None else pre_decimals
            token_raw = post_raw - pre_raw
            token_units = _to_units(abs(token_raw), decimals)
            if token_units <= self._token_dust:
                continue

            if token_raw > 0 and base_raw < 0:
                direction = TradeDirection.BUY
            elif token_raw < 0 and base_raw > 0:
                direction = TradeDirection.SELL
            else:
                logger.debug(
                    "[%s] %s moved %s alongside SOL %s in tx %s; not a copyable pairing",
                    account, mint, token_raw, base_raw, signature,
                )
                continue

            token = await self._metadata.resolve(mint)
            trade = DetectedTrade(
                direction=direction,
                asset_id=mint,
                asset_amount=token_units,
                asset_decimals=decimals,
                base_amount=_to_units(abs(base_raw), self._base_decimals),
                base_symbol=base_symbol,
                source_signature=signature,
                source_account=account,
                token=token,
            )
            logger.debug(
                "[%s] %s detected for %s (%s) in tx %s",
                account, direction.value.upper(), token.symbol, mint, signature,
            )
            return trade

        logger.debug("[%s] Tx %s analyzed, no SOL/token trade pattern found", account, signature)
        return None


__all__ = ["TradeClassifier", "BASE_DUST_RAW", "TOKEN_DUST"]
