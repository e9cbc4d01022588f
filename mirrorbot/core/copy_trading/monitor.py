"""
Position Monitor

Periodically re-prices every SL/TP-managed position by quoting its full
balance into SOL, and hands positions that crossed a threshold to the
executor's risk-exit path.

Only one tick runs at a time. A slow tick delays the next one; ticks are
never dropped and never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import List, Optional

from ...config import BotConfig
from ...providers.jupiter import JupiterSwapProvider
from ...services.token_metadata import TokenMetadataService
from .executor import CopyTradeExecutor
from .models import ExecutionResult, ExitReason, Position
from .positions import PositionStore

logger = logging.getLogger(__name__)


def current_price(position: Position, quoted_out_raw: int, base_decimals: int) -> Optional[Decimal]:
    """SOL per whole token implied by selling the full position for ``quoted_out_raw`` lamports."""
    units = position.held_units
    if units <= 0:
        return None
    return (Decimal(quoted_out_raw) / (Decimal(10) ** base_decimals)) / units


class PositionMonitor:
    """
    SL/TP price engine.

    Usage:
        monitor = PositionMonitor(config, swap=jupiter, store=store, executor=executor)
        monitor.start()
        ...
        await monitor.stop(timeout=2.0)
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        swap: JupiterSwapProvider,
        store: PositionStore,
        executor: CopyTradeExecutor,
        metadata: Optional[TokenMetadataService] = None,
    ):
        self._config = config
        self._swap = swap
        self._store = store
        self._executor = executor
        self._metadata = metadata

        self._take_profit = Decimal(str(config.take_profit_percentage)) / 100
        self._stop_loss = Decimal(str(config.stop_loss_percentage)) / 100

        self._stop_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self._config.manage_with_sltp

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> Optional[asyncio.Task]:
        """Spawn the monitoring loop. Returns None when SL/TP mode is off."""
        if not self.enabled:
            logger.info("[PriceEngine] SL/TP disabled; price monitoring not started")
            return None
        if self.is_running:
            return self._task

        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="sltp-price-monitor")
        return self._task

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Signal the loop to stop and wait for it.

        An exit already in flight is allowed to finish; after ``timeout``
        seconds the loop task is cancelled.
        """
        self._stop_event.set()
        task = self._task
        if task is None:
            return

        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning("[PriceEngine] Monitor did not stop within %ss; cancelling", timeout)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def run(self) -> None:
        if not self.enabled:
            return

        logger.info(
            "[PriceEngine] SL/TP price monitoring active. Interval: %ss",
            self._config.price_check_interval_seconds,
        )
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("[PriceEngine] Error in SL/TP price monitoring loop: %s", e, exc_info=True)

            if await self._wait_for_stop(self._config.price_check_interval_seconds):
                break

        logger.info("[PriceEngine] SL/TP price monitoring loop stopped.")

    async def tick(self) -> List[ExecutionResult]:
        """
        Check every managed position once.

        Returns the results of the exits attempted during this tick.
        """
        if not self.enabled:
            return []

        async with self._tick_lock:
            positions = [p for p in self._store.all().values() if p.has_entry_price]
            if positions:
                logger.info("[PriceEngine] Checking prices for %d SL/TP managed positions...", len(positions))

            results: List[ExecutionResult] = []
            for position in positions:
                if self._stop_event.is_set():
                    break
                try:
                    result = await self._check_position(position)
                except Exception as e:
                    logger.error(
                        "[PriceEngine] Error checking %s: %s", position.asset_id, e, exc_info=True,
                    )
                    continue

                if result is not None:
                    results.append(result)
                    await self._wait_for_stop(self._config.risk_exit_pause_seconds)
            return results

    async def _check_position(self, position: Position) -> Optional[ExecutionResult]:
        asset_id = position.asset_id
        symbol = await self._symbol(asset_id)

        quote = await self._swap.quote(
            asset_id, self._config.base_mint, position.amount_raw, self._config.slippage_bps,
        )
        if quote is None or not quote.out_amount:
            logger.warning(
                "[PriceEngine] Could not get price quote for %s (%s) to check SL/TP. Skipping this cycle.",
                symbol, asset_id,
            )
            return None

        price = current_price(position, quote.out_amount, self._config.base_decimals)
        if price is None:
            return None

        entry = Decimal(str(position.avg_entry_price))
        logger.info("[PriceEngine] %s | Avg Buy: %.6f SOL | Current: %.6f SOL", symbol, entry, price)

        take_profit_price = entry * (1 + self._take_profit)
        if price >= take_profit_price:
            logger.info(
                "[PriceEngine] TAKE PROFIT for %s at %.6f SOL (Target: >=%.6f SOL)",
                symbol, price, take_profit_price,
            )
            return await self._executor.process_risk_exit(asset_id, position, ExitReason.TAKE_PROFIT)

        stop_loss_price = entry * (1 - self._stop_loss)
        if price <= stop_loss_price:
            logger.info(
                "[PriceEngine] STOP LOSS for %s at %.6f SOL (Target: <=%.6f SOL)",
                symbol, price, stop_loss_price,
            )
            return await self._executor.process_risk_exit(asset_id, position, ExitReason.STOP_LOSS)

        return None

    async def _symbol(self, asset_id: str) -> str:
        if self._metadata is None:
            return asset_id
        return (await self._metadata.resolve(asset_id)).symbol

    async def _wait_for_stop(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if a stop was requested meanwhile."""
        if seconds <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


__all__ = ["PositionMonitor", "current_price"]
