"""
Copy Trading Module

Watches Solana wallets, classifies their swaps, and mirrors them from the bot
wallet, with optional stop-loss / take-profit exits.
"""

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
from .positions import AssetLocks, LoadReport, PositionStore, PositionStoreError
from .classifier import TradeClassifier
from .executor import CopyTradeExecutor
from .monitor import PositionMonitor
from .subscriptions import SubscriptionManager

__all__ = [
    # Models
    "DetectedTrade",
    "ExecutionResult",
    "ExitReason",
    "PipelineKind",
    "PipelineStage",
    "Position",
    "SkipReason",
    "TradeDirection",
    # State
    "AssetLocks",
    "LoadReport",
    "PositionStore",
    "PositionStoreError",
    # Pipeline
    "TradeClassifier",
    "CopyTradeExecutor",
    "PositionMonitor",
    "SubscriptionManager",
]
