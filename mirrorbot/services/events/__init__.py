"""
Event Monitoring

Websocket logs subscriptions for watched Solana accounts and the parsed
transaction models they lead to.
"""

from .models import (
    AccountKey,
    InnerInstructionSet,
    LogNotification,
    ParsedInstruction,
    ParsedMessage,
    ParsedTransaction,
    TokenBalance,
    TransactionMeta,
    UiTokenAmount,
)
from .websocket_monitor import SolanaLogsMonitor

__all__ = [
    "AccountKey",
    "InnerInstructionSet",
    "LogNotification",
    "ParsedInstruction",
    "ParsedMessage",
    "ParsedTransaction",
    "TokenBalance",
    "TransactionMeta",
    "UiTokenAmount",
    "SolanaLogsMonitor",
]
