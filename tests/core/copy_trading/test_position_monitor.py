"""
Position Monitor Tests

SL/TP threshold checks and the monitoring loop lifecycle.
"""

import asyncio

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from mirrorbot.config import WSOL_MINT
from mirrorbot.core.copy_trading import (
    ExecutionResult,
    ExitReason,
    PipelineKind,
    PipelineStage,
    PositionMonitor,
    PositionStore,
)
from mirrorbot.core.copy_trading.monitor import current_price
from mirrorbot.providers.jupiter import JupiterQuote


MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def quote_for(out_amount):
    return JupiterQuote(
        input_mint=MINT,
        output_mint=WSOL_MINT,
        in_amount=100_000_000,
        out_amount=out_amount,
        other_amount_threshold=out_amount,
        slippage_bps=50,
        price_impact_pct=0.0,
    )


@pytest.fixture
def store(tmp_path):
    store = PositionStore(tmp_path / "bot_holdings.json")
    store.load()
    return store


@pytest.fixture
def tracked_position(store):
    """100 tokens (6 decimals) bought for 1 SOL: entry 0.01 SOL."""
    return store.record_buy(
        MINT,
        amount_raw=100_000_000,
        decimals=6,
        signature="fillSig",
        trigger_account="w",
        base_spent_raw=1_000_000_000,
        track_cost_basis=True,
    )


@pytest.fixture
def swap():
    gateway = MagicMock()
    gateway.quote = AsyncMock(return_value=quote_for(1_000_000_000))
    return gateway


@pytest.fixture
def executor():
    mock = MagicMock()
    mock.process_risk_exit = AsyncMock(
        return_value=ExecutionResult(
            success=True, kind=PipelineKind.RISK_EXIT, asset_id=MINT, stage=PipelineStage.CONFIRMED,
        )
    )
    return mock


@pytest.fixture
def make_monitor(make_config, swap, store, executor):
    def factory(**overrides):
        values = dict(manage_with_sltp=True, take_profit_percentage=20.0, stop_loss_percentage=10.0)
        values.update(overrides)
        return PositionMonitor(make_config(**values), swap=swap, store=store, executor=executor)

    return factory


class TestThresholds:
    """Tests for a single monitoring tick."""

    @pytest.mark.asyncio
    async def test_take_profit_fires_once(self, make_monitor, tracked_position, swap, executor):
        """Quote of 1.3 SOL for the position is 0.013/token, above 0.012."""
        swap.quote = AsyncMock(return_value=quote_for(1_300_000_000))
        monitor = make_monitor()

        results = await monitor.tick()

        assert len(results) == 1
        swap.quote.assert_awaited_once_with(MINT, WSOL_MINT, 100_000_000, 50)
        executor.process_risk_exit.assert_awaited_once_with(MINT, tracked_position, ExitReason.TAKE_PROFIT)

    @pytest.mark.asyncio
    async def test_stop_loss(self, make_monitor, tracked_position, swap, executor):
        swap.quote = AsyncMock(return_value=quote_for(850_000_000))
        monitor = make_monitor()

        await monitor.tick()

        executor.process_risk_exit.assert_awaited_once_with(MINT, tracked_position, ExitReason.STOP_LOSS)

    @pytest.mark.asyncio
    async def test_thresholds_are_inclusive(self, make_monitor, tracked_position, swap, executor):
        """Exactly entry * 1.2 triggers take profit."""
        swap.quote = AsyncMock(return_value=quote_for(1_200_000_000))
        monitor = make_monitor()

        await monitor.tick()

        assert executor.process_risk_exit.await_args.args[2] == ExitReason.TAKE_PROFIT

    @pytest.mark.asyncio
    async def test_price_within_band_holds(self, make_monitor, tracked_position, executor):
        monitor = make_monitor()

        results = await monitor.tick()

        assert results == []
        executor.process_risk_exit.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_quote_skips_position(self, make_monitor, tracked_position, swap, executor):
        swap.quote = AsyncMock(return_value=None)
        monitor = make_monitor()

        results = await monitor.tick()

        assert results == []
        executor.process_risk_exit.assert_not_called()

    @pytest.mark.asyncio
    async def test_untracked_positions_ignored(self, make_monitor, store, swap):
        store.record_buy(MINT, amount_raw=100, decimals=6, signature="s", trigger_account="w")
        monitor = make_monitor()

        await monitor.tick()

        swap.quote.assert_not_called()

    @pytest.mark.asyncio
    async def test_one_failing_position_does_not_stop_tick(self, make_monitor, store, tracked_position, swap, executor):
        other = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
        store.record_buy(
            other, amount_raw=100_000_000, decimals=6, signature="s", trigger_account="w",
            base_spent_raw=1_000_000_000, track_cost_basis=True,
        )

        async def quote(input_mint, *args):
            if input_mint == MINT:
                raise RuntimeError("boom")
            return quote_for(2_000_000_000)

        swap.quote = AsyncMock(side_effect=quote)
        monitor = make_monitor()

        results = await monitor.tick()

        assert len(results) == 1
        assert executor.process_risk_exit.await_args.args[0] == other

    @pytest.mark.asyncio
    async def test_disabled_monitor_is_noop(self, make_monitor, tracked_position, swap):
        monitor = make_monitor(manage_with_sltp=False)

        assert monitor.start() is None
        assert await monitor.tick() == []
        swap.quote.assert_not_called()


class TestLifecycle:
    """Tests for the background loop."""

    @pytest.mark.asyncio
    async def test_loop_runs_and_stops(self, make_monitor, tracked_position, swap):
        monitor = make_monitor(price_check_interval_seconds=0.01)

        task = monitor.start()
        assert task is not None
        assert monitor.is_running is True

        await asyncio.sleep(0.05)
        await monitor.stop(timeout=1.0)

        assert monitor.is_running is False
        assert swap.quote.await_count >= 1

    @pytest.mark.asyncio
    async def test_stop_cancels_after_timeout(self, make_monitor, tracked_position, swap):
        async def hang(*args):
            await asyncio.sleep(10)

        swap.quote = AsyncMock(side_effect=hang)
        monitor = make_monitor()

        monitor.start()
        await asyncio.sleep(0.01)
        await monitor.stop(timeout=0.05)

        assert monitor.is_running is False


OTHER = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def track_other(store):
    return store.record_buy(
        OTHER, amount_raw=100_000_000, decimals=6, signature="s2", trigger_account="w",
        base_spent_raw=1_000_000_000, track_cost_basis=True,
    )


class TestTickOrdering:
    """Tests for overlap, stop and pause handling inside a tick."""

    @pytest.mark.asyncio
    async def test_concurrent_ticks_are_serialized(self, make_monitor, tracked_position, swap):
        release = asyncio.Event()
        active = 0
        peak = 0

        async def slow_quote(*args):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1
            return quote_for(1_000_000_000)

        swap.quote = AsyncMock(side_effect=slow_quote)
        monitor = make_monitor()

        first = asyncio.create_task(monitor.tick())
        second = asyncio.create_task(monitor.tick())
        await asyncio.sleep(0.02)

        assert swap.quote.await_count == 1
        release.set()
        await asyncio.gather(first, second)

        assert peak == 1
        assert swap.quote.await_count == 2

    @pytest.mark.asyncio
    async def test_stop_during_tick_skips_remaining_positions(self, make_monitor, store, tracked_position, swap):
        track_other(store)
        monitor = make_monitor()

        async def quote_then_stop(input_mint, *args):
            monitor._stop_event.set()
            return quote_for(1_000_000_000)

        swap.quote = AsyncMock(side_effect=quote_then_stop)

        await monitor.tick()

        swap.quote.assert_awaited_once()
        assert swap.quote.await_args.args[0] == MINT

    @pytest.mark.asyncio
    async def test_pause_after_exit_precedes_next_position(self, make_monitor, store, tracked_position, swap, executor):
        track_other(store)
        loop = asyncio.get_running_loop()
        events = []

        async def quote(input_mint, *args):
            events.append(("quote", input_mint, loop.time()))
            return quote_for(2_000_000_000)

        async def exit_position(asset_id, position, reason):
            events.append(("exit", asset_id, loop.time()))
            return ExecutionResult(
                success=True, kind=PipelineKind.RISK_EXIT, asset_id=asset_id, stage=PipelineStage.CONFIRMED,
            )

        swap.quote = AsyncMock(side_effect=quote)
        executor.process_risk_exit = AsyncMock(side_effect=exit_position)
        monitor = make_monitor(risk_exit_pause_seconds=0.1)

        results = await monitor.tick()

        assert len(results) == 2
        assert [(kind, mint) for kind, mint, _ in events] == [
            ("quote", MINT), ("exit", MINT), ("quote", OTHER), ("exit", OTHER),
        ]
        assert events[2][2] - events[1][2] >= 0.09

    @pytest.mark.asyncio
    async def test_stop_during_pause_ends_tick(self, make_monitor, store, tracked_position, swap, executor):
        track_other(store)
        swap.quote = AsyncMock(return_value=quote_for(2_000_000_000))
        monitor = make_monitor(risk_exit_pause_seconds=5)

        tick = asyncio.create_task(monitor.tick())
        await asyncio.sleep(0.02)
        await monitor.stop()
        results = await asyncio.wait_for(tick, 1.0)

        assert len(results) == 1
        swap.quote.assert_awaited_once()


def test_current_price(store):
    position = store.record_buy(MINT, amount_raw=100_000_000, decimals=6, signature="s", trigger_account="w")
    assert current_price(position, 1_300_000_000, 9) == Decimal("0.013")
