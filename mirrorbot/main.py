"""
Bot runtime: builds every component from one BotConfig, runs until
SIGINT/SIGTERM, then shuts down in order.

Shutdown order:
1. stop accepting notifications and tear down subscriptions
2. signal the SL/TP monitor
3. give in-flight trades up to ``shutdown_grace_seconds`` to finish
4. save positions, close connections
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from .config import BotConfig
from .core.copy_trading.classifier import TradeClassifier
from .core.copy_trading.executor import CopyTradeExecutor
from .core.copy_trading.monitor import PositionMonitor
from .core.copy_trading.positions import AssetLocks, PositionStore, PositionStoreError
from .core.copy_trading.subscriptions import SubscriptionManager
from .core.wallet.keypair import load_keypair
from .providers.jupiter import JupiterProvider, JupiterSwapProvider
from .providers.solana import SolanaRpcProvider
from .services.events.websocket_monitor import SolanaLogsMonitor
from .services.token_metadata import TokenMetadataService

logger = logging.getLogger(__name__)


class CopyTradingBot:
    """Owns the component graph and its lifecycle."""

    def __init__(
        self,
        config: BotConfig,
        *,
        rpc: Optional[SolanaRpcProvider] = None,
        logs: Optional[SolanaLogsMonitor] = None,
        swap: Optional[JupiterSwapProvider] = None,
        token_list: Optional[JupiterProvider] = None,
    ) -> None:
        self.config = config
        self.keypair = load_keypair(config.bot_secret_key)

        self.rpc = rpc or SolanaRpcProvider(
            config.rpc_endpoint,
            commitment=config.confirmation_commitment,
            timeout_s=config.request_timeout_seconds,
        )
        self.logs = logs or SolanaLogsMonitor(config.ws_endpoint)
        self.swap = swap or JupiterSwapProvider(
            quote_url=config.jupiter_quote_api_url,
            swap_url=config.jupiter_swap_api_url,
            timeout_s=config.request_timeout_seconds,
        )
        self.token_list = token_list or JupiterProvider(config.jupiter_token_list_url)
        self.metadata = TokenMetadataService(self.token_list, self.rpc)

        self.store = PositionStore(config.state_file, base_decimals=config.base_decimals)
        self.locks = AssetLocks()
        self.classifier = TradeClassifier(
            self.metadata,
            swap_program_ids=config.swap_program_ids,
            base_mint=config.base_mint,
            base_decimals=config.base_decimals,
        )
        self.executor = CopyTradeExecutor(
            config,
            swap=self.swap,
            rpc=self.rpc,
            keypair=self.keypair,
            store=self.store,
            locks=self.locks,
        )
        self.monitor = PositionMonitor(
            config,
            swap=self.swap,
            store=self.store,
            executor=self.executor,
            metadata=self.metadata,
        )
        self.subscriptions = SubscriptionManager(
            config,
            logs=self.logs,
            rpc=self.rpc,
            classifier=self.classifier,
            executor=self.executor,
            store=self.store,
        )

        self._stop_requested = asyncio.Event()
        self._lock = asyncio.Lock()
        self._running = False
        self._store_loaded = False

    @property
    def is_running(self) -> bool:
        return self._running

    def request_stop(self) -> None:
        self._stop_requested.set()

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._log_banner()

            try:
                await self.metadata.initialize()
                report = self.store.load()
                self._store_loaded = True
                if report.skipped_count:
                    logger.warning(
                        "%d malformed position entries were skipped: %s",
                        report.skipped_count, ", ".join(report.skipped),
                    )

                await self.logs.start()
                await self.subscriptions.start(self.config.monitored_wallets)
                self.monitor.start()
            except Exception as e:
                logger.error("Startup failed: %s. Releasing connections.", e)
                await self._shutdown()
                raise

            self._running = True
            logger.info("Bot is now running. Press CTRL+C to stop.")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            logger.info("Gracefully shutting down bot...")
            await self._shutdown()
            logger.info("Bot shutdown complete.")

    async def _shutdown(self) -> None:
        grace = self.config.shutdown_grace_seconds
        await self.subscriptions.stop()
        await asyncio.gather(
            self.monitor.stop(timeout=grace),
            self.subscriptions.drain(grace),
        )

        # Never overwrite a positions file that was not read in
        if self._store_loaded:
            try:
                self.store.save()
            except PositionStoreError as e:
                logger.critical("Final position save failed: %s", e)

        await self.logs.stop()
        for provider in (self.token_list, self.rpc):
            await provider.close()

    async def run_until_stopped(self) -> None:
        """Start, wait for SIGINT/SIGTERM (or ``request_stop``), then stop."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                # Platforms without loop signal handlers fall back to KeyboardInterrupt
                pass

        try:
            await self.start()
            await self._stop_requested.wait()
        finally:
            await self.stop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass

    def _log_banner(self) -> None:
        config = self.config
        logger.info("--- Solana copy-trading bot starting ---")
        logger.info("RPC endpoint: %s", config.rpc_endpoint)
        logger.info("Bot wallet: %s", self.keypair.pubkey())
        logger.info("Monitoring %d wallets: %s", len(config.monitored_wallets), ", ".join(config.monitored_wallets))
        logger.info("Copy trade amount: %s SOL, slippage: %s bps", config.copy_trade_amount_sol, config.slippage_bps)
        logger.info("Mode: %s", "REAL EXECUTION" if config.execute_trades else "SIMULATION ONLY")
        if config.manage_with_sltp:
            logger.info(
                "SL/TP management ON: take profit %s%%, stop loss %s%%, check every %ss",
                config.take_profit_percentage, config.stop_loss_percentage, config.price_check_interval_seconds,
            )
        else:
            logger.info("SL/TP management OFF: mirroring watched wallets' sells")


async def run_bot(config: BotConfig) -> None:
    bot = CopyTradingBot(config)
    await bot.run_until_stopped()


__all__ = ["CopyTradingBot", "run_bot"]
