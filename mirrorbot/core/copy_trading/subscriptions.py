"""
Subscription Manager

Owns one logs subscription per watched wallet. Each notification is handled
in its own task: fetch the full transaction, classify it, and pass any trade
to the executor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence, Set, Tuple

from ...config import BotConfig
from ...providers.solana import SolanaRpcProvider
from ...services.address import shorten_address
from ...services.events.models import LogNotification
from ...services.events.websocket_monitor import SolanaLogsMonitor
from .classifier import TradeClassifier
from .executor import CopyTradeExecutor
from .models import ExecutionResult, TradeDirection
from .positions import PositionStore

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """
    Watched-wallet dispatcher.

    Usage:
        manager = SubscriptionManager(config, logs=monitor, rpc=rpc, classifier=classifier,
                                      executor=executor, store=store)
        await manager.start(config.monitored_wallets)
        ...
        await manager.stop()
        await manager.drain(timeout=2.0)
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        logs: SolanaLogsMonitor,
        rpc: SolanaRpcProvider,
        classifier: TradeClassifier,
        executor: CopyTradeExecutor,
        store: PositionStore,
    ):
        self._config = config
        self._logs = logs
        self._rpc = rpc
        self._classifier = classifier
        self._executor = executor
        self._store = store

        self._handles: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[Tuple[str, str]] = set()
        self._accepting = False

    @property
    def handles(self) -> Dict[str, int]:
        return dict(self._handles)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def start(self, accounts: Sequence[str]) -> Dict[str, int]:
        """Subscribe to every account. Returns account -> handle for the ones that succeeded."""
        logger.info("Starting wallet monitoring for %d wallets...", len(accounts))
        self._accepting = True

        for account in accounts:
            if account in self._handles:
                continue
            try:
                handle = await self._logs.subscribe_logs(
                    account,
                    self._config.subscription_commitment,
                    lambda notification, account=account: self.handle_notification(account, notification),
                )
            except Exception as e:
                logger.error("CRITICAL: Failed to subscribe to logs for wallet %s: %s", account, e)
                continue
            self._handles[account] = handle
            logger.info(" --> Subscribed to logs for wallet: %s (handle %s)", account, handle)

        if self._handles:
            logger.info("--- %d wallet log subscriptions initialized ---", len(self._handles))
        elif accounts:
            logger.error("--- Failed to initialize any wallet log subscriptions ---")
        else:
            logger.warning("--- No wallets configured to monitor ---")
        return self.handles

    async def stop(self) -> None:
        """Stop accepting notifications and tear down every subscription."""
        logger.info("Stopping wallet monitoring...")
        self._accepting = False

        if not self._handles:
            logger.info("No active subscriptions to remove.")
            return

        for account, handle in list(self._handles.items()):
            try:
                await self._logs.unsubscribe(handle)
                logger.info("Removed subscription for %s (handle %s)", shorten_address(account), handle)
            except Exception as e:
                logger.error("Error removing subscription %s for %s: %s", handle, account, e)
        self._handles.clear()
        logger.info("All log subscriptions removed.")

    async def drain(self, timeout: float) -> int:
        """
        Wait up to ``timeout`` seconds for in-flight notifications.

        Returns the number of tasks still running afterwards.
        """
        if not self._tasks:
            return 0
        logger.info("Waiting up to %ss for %d in-flight trades...", timeout, len(self._tasks))
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d in-flight trades still running after %ss", len(pending), timeout)
        return len(pending)

    def handle_notification(self, account: str, notification: LogNotification) -> Optional[asyncio.Task]:
        """Logs callback. Never blocks; the work runs in its own task."""
        if not self._accepting:
            return None

        key = (account, notification.signature)
        if key in self._in_flight:
            logger.debug("[%s] Duplicate notification for %s ignored", shorten_address(account), notification.signature)
            return None
        self._in_flight.add(key)

        task = asyncio.create_task(self._run(account, notification), name=f"notification-{notification.signature[:8]}")
        self._tasks.add(task)
        task.add_done_callback(lambda t, key=key: self._finished(t, key))
        return task

    def _finished(self, task: asyncio.Task, key: Tuple[str, str]) -> None:
        self._tasks.discard(task)
        self._in_flight.discard(key)

    async def _run(self, account: str, notification: LogNotification) -> Optional[ExecutionResult]:
        try:
            return await self.process_notification(account, notification)
        except Exception as e:
            logger.error(
                "[%s] Error processing signature %s: %s",
                shorten_address(account), notification.signature, e, exc_info=True,
            )
            return None

    async def process_notification(self, account: str, notification: LogNotification) -> Optional[ExecutionResult]:
        signature = notification.signature
        short = shorten_address(account)
        logger.info("[%s] Received log for signature: %s", short, signature)

        if notification.failed:
            logger.info("[%s] Skipping tx %s: log contains error.", short, signature)
            return None

        tx = await self._rpc.get_parsed_transaction(signature, self._config.fetch_commitment)
        if tx is None:
            logger.warning(
                "[%s] Could not fetch transaction details for %s. It might be dropped or not yet visible at %s commitment.",
                short, signature, self._config.fetch_commitment,
            )
            return None

        trade = await self._classifier.classify(tx, account)
        if trade is None:
            logger.info("[%s] Tx %s analyzed, no copyable trade pattern found.", short, signature)
            return None

        if trade.direction == TradeDirection.SELL and self._config.manage_with_sltp:
            position = self._store.get(trade.asset_id)
            if position is not None and position.has_entry_price:
                logger.info(
                    "[%s] Sell of %s in %s ignored: position is managed by SL/TP.",
                    short, trade.symbol, signature,
                )
                return None

        logger.info(
            "[%s] Trade detected for %s in tx %s. Passing to executor.", short, trade.symbol, signature,
        )
        return await self._executor.process_trade(trade)


__all__ = ["SubscriptionManager"]
