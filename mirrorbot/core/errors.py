"""
Error Classification

Error types for the copy-trading pipeline. Every error is local to one
pipeline run, one monitor tick, or one notification; none of them is allowed
to stop the bot, except InvalidConfigurationError at startup.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of copy-trading failures."""

    GATEWAY_UNAVAILABLE = "gateway_unavailable"  # Quote/build/fetch/subscribe failed
    SIGNING = "signing"                          # Could not decode or sign the swap tx
    SUBMISSION = "submission"                    # RPC rejected sendTransaction
    CONFIRMATION = "confirmation"                # Submitted but not confirmed
    SIMULATION = "simulation"                    # Dry-run failed
    INVALID_CONFIGURATION = "invalid_configuration"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error, enough for manual recovery."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    asset_id: Optional[str] = None
    stage: Optional[str] = None
    signature: Optional[str] = None
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class CopyTradeError(Exception):
    """Base class for pipeline errors."""

    category = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        asset_id: Optional[str] = None,
        stage: Optional[str] = None,
        signature: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(
            category=self.category,
            asset_id=asset_id,
            stage=stage,
            signature=signature,
            suggested_action=diagnose(message),
        )


class GatewayUnavailableError(CopyTradeError):
    """Jupiter or the RPC node could not serve a request."""

    category = ErrorCategory.GATEWAY_UNAVAILABLE


class SigningError(CopyTradeError):
    """The swap transaction could not be decoded or signed."""

    category = ErrorCategory.SIGNING


class SubmissionError(CopyTradeError):
    """The node refused the signed transaction."""

    category = ErrorCategory.SUBMISSION


class ConfirmationError(CopyTradeError):
    """
    Transaction was submitted but never confirmed.

    Funds may have moved without a committed position update, so the
    signature is always carried for manual reconciliation.
    """

    category = ErrorCategory.CONFIRMATION


class SimulationError(CopyTradeError):
    """Dry-run simulation reported an error."""

    category = ErrorCategory.SIMULATION


class InvalidConfigurationError(Exception):
    """Configuration detected as invalid at startup. Fatal."""

    category = ErrorCategory.INVALID_CONFIGURATION


_DIAGNOSES = (
    (
        ("transactionexpiredblockheightexceeded", "blockhash not found", "block height exceeded"),
        "Confirmation timed out or blockhash expired",
    ),
    (("timed out", "timeout"), "Confirmation timed out; check the signature on the explorer"),
    (("insufficient lamports", "insufficient funds"), "Insufficient SOL in bot wallet for fees"),
    (("insufficientfundsforrent",), "An account needs more SOL for rent exemption"),
    (
        ("accountnotfound", "accountinuse"),
        "Missing pool/ATA, lookup table resolution failure, or insufficient rent/fees",
    ),
    (("instructionerror",), "Error within the program's execution; check program logs"),
    (("node is behind",), "RPC node might be lagging"),
    (("failed to fetch",), "RPC failed to fetch account or lookup table; check RPC health/limits"),
)


def diagnose(message: str) -> Optional[str]:
    """Map a raw RPC/simulation error message to an operator hint."""
    lowered = (message or "").lower()
    for patterns, hint in _DIAGNOSES:
        if any(p in lowered for p in patterns):
            return hint
    return None


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CopyTradeError",
    "GatewayUnavailableError",
    "SigningError",
    "SubmissionError",
    "ConfirmationError",
    "SimulationError",
    "InvalidConfigurationError",
    "diagnose",
]
