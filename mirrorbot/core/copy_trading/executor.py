"""
Copy-Trade Executor

Drives one quote -> build -> sign -> submit -> confirm run per detected trade
or SL/TP exit, and applies the resulting fill to the position store.

Every path (buy, copy-sell, risk exit) holds the asset's lock from the
position check until the store commit, so two exits can never spend the same
balance. The store is only touched after on-chain confirmation, and never in
simulation mode.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction
from structlog.contextvars import bound_contextvars

from ...config import BotConfig
from ...providers.jupiter import JupiterSwapProvider
from ...providers.solana import SolanaRpcError, SolanaRpcProvider
from ...services.address import shorten_address
from ..errors import (
    CopyTradeError,
    GatewayUnavailableError,
    SimulationError,
    SubmissionError,
    diagnose,
)
from ..wallet.transaction import (
    lookup_table_keys,
    recent_blockhash,
    resolve_account_keys,
    sign_swap_transaction,
    to_base64,
)
from .models import (
    DetectedTrade,
    ExecutionResult,
    ExitReason,
    PipelineKind,
    PipelineStage,
    Position,
    SkipReason,
    TradeDirection,
)
from .positions import AssetLocks, PositionStore, PositionStoreError

logger = logging.getLogger(__name__)


class CopyTradeExecutor:
    """
    Execute copy trades and SL/TP exits for the bot wallet.

    Usage:
        executor = CopyTradeExecutor(config, swap=jupiter, rpc=rpc, keypair=keypair, store=store)
        result = await executor.process_trade(trade)
        result = await executor.process_risk_exit(mint, position, ExitReason.TAKE_PROFIT)
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        swap: JupiterSwapProvider,
        rpc: SolanaRpcProvider,
        keypair: Keypair,
        store: PositionStore,
        locks: Optional[AssetLocks] = None,
    ):
        self._config = config
        self._swap = swap
        self._rpc = rpc
        self._keypair = keypair
        self._store = store
        self._locks = locks or AssetLocks()
        self._public_key = str(keypair.pubkey())
        self._wallet_short = shorten_address(self._public_key, 6)

    @property
    def locks(self) -> AssetLocks:
        return self._locks

    @property
    def mode(self) -> str:
        return "REAL EXECUTION" if self._config.execute_trades else "SIMULATION ONLY"

    # ---------------------------
    # Entry points
    # ---------------------------
    async def process_trade(self, trade: DetectedTrade) -> ExecutionResult:
        """Mirror a watched wallet's buy or sell."""
        with bound_contextvars(asset=trade.asset_id, source_signature=trade.source_signature):
            if trade.direction == TradeDirection.BUY:
                return await self._process_buy(trade)
            return await self._process_copy_sell(trade)

    async def process_risk_exit(
        self,
        asset_id: str,
        position: Position,
        reason: ExitReason,
    ) -> ExecutionResult:
        """
        Sell the whole position because a stop-loss or take-profit fired.

        ``position`` is the snapshot the trigger was computed from. The store
        is re-read under the asset lock, and the amount held at that point is
        what gets sold.
        """
        with bound_contextvars(asset=asset_id, exit_reason=reason.value):
            async with self._locks.get(asset_id):
                current = self._store.get(asset_id)
                if current is None:
                    logger.info(
                        "[%s] %s exit for %s skipped: position already closed",
                        self._wallet_short, reason.value, asset_id,
                    )
                    return ExecutionResult(
                        success=False,
                        kind=PipelineKind.RISK_EXIT,
                        asset_id=asset_id,
                        skipped=SkipReason.NO_POSITION,
                    )
                if current.amount_raw != position.amount_raw:
                    logger.info(
                        "[%s] Position %s changed since the %s trigger (%s -> %s); exiting current amount",
                        self._wallet_short, asset_id, reason.value, position.amount_raw, current.amount_raw,
                    )

                logger.info(
                    "[%s] %s triggered for %s: selling %s raw units. Mode: %s",
                    self._wallet_short, reason.value, asset_id, current.amount_raw, self.mode,
                )
                result = await self._run_pipeline(
                    PipelineKind.RISK_EXIT,
                    asset_id=asset_id,
                    input_mint=asset_id,
                    output_mint=self._config.base_mint,
                    amount_raw=current.amount_raw,
                    label=asset_id,
                )
                if result.stage == PipelineStage.CONFIRMED:
                    return self._commit_exit(result)
                return result

    # ---------------------------
    # Buy / copy-sell
    # ---------------------------
    async def _process_buy(self, trade: DetectedTrade) -> ExecutionResult:
        asset_id = trade.asset_id
        logger.info(
            "BUY detected [%s] tx %s: ~%s %s -> %s %s (%s)",
            trade.source_account, trade.source_signature,
            trade.base_amount, trade.base_symbol, trade.asset_amount, trade.symbol, asset_id,
        )
        logger.info(
            "[%s] Preparing copy trade: buy %s with %s SOL. Mode: %s",
            self._wallet_short, trade.symbol, self._config.copy_trade_amount_sol, self.mode,
        )

        async with self._locks.get(asset_id):
            result = await self._run_pipeline(
                PipelineKind.BUY,
                asset_id=asset_id,
                input_mint=self._config.base_mint,
                output_mint=asset_id,
                amount_raw=self._config.copy_trade_amount_lamports,
                label=trade.symbol,
            )
            if result.stage != PipelineStage.CONFIRMED:
                if not result.success:
                    logger.warning(
                        "[%s] BUY failed for %s. Positions not updated.", self._wallet_short, trade.symbol,
                    )
                return result

            existing = self._store.get(asset_id)
            decimals = trade.asset_decimals
            if decimals is None:
                decimals = existing.decimals if existing else (trade.token.decimals if trade.token else None)
            if decimals is None:
                return self._commit_failed(result, ValueError("token decimals unknown"))

            try:
                self._store.record_buy(
                    asset_id,
                    amount_raw=result.out_amount_raw,
                    decimals=decimals,
                    signature=result.signature,
                    trigger_account=trade.source_account,
                    base_spent_raw=result.in_amount_raw,
                    track_cost_basis=self._config.manage_with_sltp,
                )
            except (PositionStoreError, ValueError) as e:
                return self._commit_failed(result, e)
            return result

    async def _process_copy_sell(self, trade: DetectedTrade) -> ExecutionResult:
        asset_id = trade.asset_id
        logger.info(
            "SELL detected [%s] tx %s: %s (%s)",
            trade.source_account, trade.source_signature, trade.symbol, asset_id,
        )

        async with self._locks.get(asset_id):
            position = self._store.get(asset_id)
            if position is None:
                logger.info(
                    "[%s] Sell detected for %s, but bot does not hold this token. Ignoring.",
                    self._wallet_short, trade.symbol,
                )
                return ExecutionResult(
                    success=False,
                    kind=PipelineKind.COPY_SELL,
                    asset_id=asset_id,
                    skipped=SkipReason.NO_POSITION,
                )

            if self._config.manage_with_sltp and position.has_entry_price:
                logger.info(
                    "[%s] Sell of %s by %s ignored: position is managed by SL/TP",
                    self._wallet_short, trade.symbol, shorten_address(trade.source_account),
                )
                return ExecutionResult(
                    success=False,
                    kind=PipelineKind.COPY_SELL,
                    asset_id=asset_id,
                    skipped=SkipReason.SLTP_MANAGED,
                )

            logger.info(
                "[%s] Bot holds %s raw units (%s) of %s. Preparing to sell. Mode: %s",
                self._wallet_short, position.amount_raw, position.held_units, trade.symbol, self.mode,
            )
            result = await self._run_pipeline(
                PipelineKind.COPY_SELL,
                asset_id=asset_id,
                input_mint=asset_id,
                output_mint=self._config.base_mint,
                amount_raw=position.amount_raw,
                label=trade.symbol,
            )
            if result.stage == PipelineStage.CONFIRMED:
                return self._commit_exit(result)
            if not result.success:
                logger.warning(
                    "[%s] SELL failed for %s. Positions not removed.", self._wallet_short, trade.symbol,
                )
            return result

    # ---------------------------
    # Pipeline
    # ---------------------------
    async def _run_pipeline(
        self,
        kind: PipelineKind,
        *,
        asset_id: str,
        input_mint: str,
        output_mint: str,
        amount_raw: int,
        label: str,
    ) -> ExecutionResult:
        """
        One attempt, no retries. Any failure ends in FAILED with the store
        untouched; ``failed_at`` records the last stage reached.
        """
        result = ExecutionResult(success=False, kind=kind, asset_id=asset_id)
        kind_label = kind.value.upper()

        with bound_contextvars(pipeline=kind.value):
            try:
                result.stage = PipelineStage.QUOTE_REQUESTED
                quote = await self._swap.quote(input_mint, output_mint, amount_raw, self._config.slippage_bps)
                if quote is None:
                    raise GatewayUnavailableError("Jupiter quote unavailable", asset_id=asset_id, stage=result.stage.value)
                result.in_amount_raw = quote.in_amount
                result.out_amount_raw = quote.out_amount
                result.stage = PipelineStage.QUOTE_RECEIVED
                logger.info(
                    "[%s] %s quote for %s: %s in -> %s out (min %s, impact %s%%)",
                    self._wallet_short, kind_label, label, quote.in_amount, quote.out_amount,
                    quote.other_amount_threshold, quote.price_impact_pct,
                )

                result.stage = PipelineStage.BUILD_REQUESTED
                swap = await self._swap.build_swap(self._public_key, quote, wrap_unwrap_base=True)
                if swap is None:
                    raise GatewayUnavailableError(
                        "Jupiter swap transaction unavailable", asset_id=asset_id, stage=result.stage.value,
                    )
                result.stage = PipelineStage.BUILD_RECEIVED

                tx = sign_swap_transaction(swap.swap_transaction, self._keypair)
                result.stage = PipelineStage.SIGNED
                logger.debug("[%s] %s swap transaction signed by bot", self._wallet_short, kind_label)

                if not self._config.execute_trades:
                    await self._simulate(tx, asset_id=asset_id, kind_label=kind_label, label=label)
                    result.stage = PipelineStage.SIMULATED
                    result.simulated = True
                    result.success = True
                    return result

                try:
                    signature = await self._rpc.send_raw_transaction(bytes(tx))
                except SolanaRpcError as e:
                    raise SubmissionError(str(e), asset_id=asset_id, stage=result.stage.value) from e
                result.signature = signature
                result.stage = PipelineStage.SUBMITTED
                logger.info(
                    "[%s] %s copy trade sent! Sig: %s -> Explorer: %s",
                    self._wallet_short, kind_label, signature, self._config.explorer_tx_url(signature),
                )

                await self._rpc.confirm_transaction(
                    signature,
                    recent_blockhash(tx),
                    swap.last_valid_block_height,
                    self._config.confirmation_commitment,
                    timeout_s=self._config.confirmation_timeout_seconds,
                )
                result.stage = PipelineStage.CONFIRMED
                result.success = True
                logger.info("[%s] %s transaction confirmed for %s", self._wallet_short, kind_label, label)
                return result

            except CopyTradeError as e:
                return self._fail(result, e.message, label)
            except Exception as e:
                logger.error(
                    "[%s] Unexpected error in %s pipeline for %s: %s",
                    self._wallet_short, kind_label, label, e, exc_info=True,
                )
                return self._fail(result, str(e) or type(e).__name__, label)

    async def _simulate(self, tx: VersionedTransaction, *, asset_id: str, kind_label: str, label: str) -> None:
        table_keys = lookup_table_keys(tx.message)
        tables = {}
        if table_keys:
            tables = await self._rpc.get_needed_lookup_tables(table_keys)
        addresses = resolve_account_keys(tx.message, tables) if tables else None

        try:
            simulation = await self._rpc.simulate_transaction(
                to_base64(tx),
                commitment=self._config.confirmation_commitment,
                addresses=addresses,
            )
        except SolanaRpcError as e:
            raise SimulationError(
                f"Error calling simulation API: {e}", asset_id=asset_id, stage=PipelineStage.SIGNED.value,
            ) from e

        if simulation.err is not None:
            error = json.dumps(simulation.err)
            logger.error("[%s] %s SIMULATION FAILED for %s: %s", self._wallet_short, kind_label, label, error)
            if simulation.logs:
                for line in simulation.logs:
                    logger.warning("    | %s", line)
            else:
                logger.warning("    No simulation logs available.")
            raise SimulationError(
                f"Simulation failed: {error}", asset_id=asset_id, stage=PipelineStage.SIGNED.value,
            )

        logger.info(
            "[%s] %s SIMULATION SUCCEEDED for %s. Compute units consumed: %s",
            self._wallet_short, kind_label, label,
            simulation.units_consumed if simulation.units_consumed is not None else "N/A",
        )
        for line in simulation.logs:
            logger.debug("    | %s", line)

    # ---------------------------
    # Outcomes
    # ---------------------------
    def _fail(self, result: ExecutionResult, message: str, label: str) -> ExecutionResult:
        result.failed_at = result.stage
        result.stage = PipelineStage.FAILED
        result.success = False
        result.error_message = message

        logger.error(
            "[%s] CRITICAL: %s for %s (%s) aborted at stage %s: %s",
            self._wallet_short, result.kind.value.upper(), label, result.asset_id,
            result.failed_at.value if result.failed_at else "n/a", message,
        )
        hint = diagnose(message)
        if hint:
            logger.error("    -> Diagnosis: %s", hint)
        if result.signature:
            logger.error("    -> Check Tx Status Manually: %s", self._config.explorer_tx_url(result.signature))
        return result

    def _commit_exit(self, result: ExecutionResult) -> ExecutionResult:
        try:
            self._store.remove(result.asset_id)
        except PositionStoreError as e:
            return self._commit_failed(result, e)
        return result

    def _commit_failed(self, result: ExecutionResult, error: Exception) -> ExecutionResult:
        logger.critical(
            "[%s] %s for %s confirmed on chain as %s but the position store was not updated: %s. "
            "Reconcile manually: %s",
            self._wallet_short, result.kind.value.upper(), result.asset_id, result.signature, error,
            self._config.explorer_tx_url(result.signature or ""),
        )
        result.failed_at = PipelineStage.CONFIRMED
        result.stage = PipelineStage.FAILED
        result.success = False
        result.error_message = f"position store commit failed: {error}"
        return result


__all__ = ["CopyTradeExecutor"]
