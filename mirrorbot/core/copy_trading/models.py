"""
Copy Trading Models

Data structures for detected trades, bot positions, and pipeline results.
All on-chain amounts are Python ints in the smallest unit; Decimal display
amounts only appear on DetectedTrade and in logs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...services.token_metadata import TokenInfo


class TradeDirection(str, Enum):
    """Side of a detected trade, from the watched wallet's point of view."""

    BUY = "buy"    # Token in, SOL out
    SELL = "sell"  # Token out, SOL in


class PipelineKind(str, Enum):
    """Which orchestrator path a pipeline run belongs to."""

    BUY = "buy"
    COPY_SELL = "copy_sell"
    RISK_EXIT = "risk_exit"


class ExitReason(str, Enum):
    """Why the position monitor is exiting a position."""

    STOP_LOSS = "SL"
    TAKE_PROFIT = "TP"


class PipelineStage(str, Enum):
    """Stages of one quote -> build -> sign -> submit -> confirm run."""

    QUOTE_REQUESTED = "quote_requested"
    QUOTE_RECEIVED = "quote_received"
    BUILD_REQUESTED = "build_requested"
    BUILD_RECEIVED = "build_received"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"  # Terminal success (real execution)
    SIMULATED = "simulated"  # Terminal success (dry run, store untouched)
    FAILED = "failed"        # Terminal failure, from any stage


class SkipReason(str, Enum):
    """Reasons a trade was not attempted at all."""

    NO_POSITION = "no_position"
    SLTP_MANAGED = "sltp_managed"


class DetectedTrade(BaseModel):
    """A copyable trade seen in a watched wallet's transaction."""

    model_config = ConfigDict(frozen=True)

    direction: TradeDirection
    asset_id: str
    asset_amount: Decimal  # Display units, magnitude only
    asset_decimals: Optional[int] = None  # From the token balance entry
    base_amount: Decimal   # SOL, magnitude only
    base_symbol: str = "SOL"  # "SOL" or "WSOL"; display only, settlement is always WSOL
    source_signature: str
    source_account: str
    token: Optional[TokenInfo] = None

    @field_validator("asset_amount", "base_amount")
    @classmethod
    def _positive(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("trade amounts must be strictly positive")
        return value

    @property
    def symbol(self) -> str:
        return self.token.symbol if self.token else self.asset_id


class Position(BaseModel):
    """
    One bot-held balance of a non-base token.

    Instances are immutable snapshots; the position store replaces them
    wholesale on every fill.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    asset_id: str = Field(alias="assetId")
    amount_raw: int = Field(alias="amountRaw")
    decimals: int
    last_fill_signature: str = Field(alias="lastFillSignature")
    trigger_account: str = Field(alias="triggerAccount")
    total_base_spent_raw: Optional[int] = Field(default=None, alias="totalBaseSpentRaw")
    avg_entry_price: Optional[float] = Field(default=None, alias="avgEntryPrice")  # SOL per whole token

    @field_validator("amount_raw", "total_base_spent_raw", mode="before")
    @classmethod
    def _parse_raw_int(cls, value: Any) -> Any:
        # Raw amounts travel as decimal strings; floats would lose precision.
        if value is None or (isinstance(value, int) and not isinstance(value, bool)):
            return value
        if isinstance(value, str):
            return int(value.strip())
        raise ValueError("raw amounts must be integers or decimal strings")

    @field_validator("amount_raw")
    @classmethod
    def _amount_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("a position must hold a positive amount")
        return value

    @field_validator("decimals")
    @classmethod
    def _decimals_range(cls, value: int) -> int:
        if value < 0:
            raise ValueError("decimals must be non-negative")
        return value

    @property
    def has_entry_price(self) -> bool:
        return self.avg_entry_price is not None

    @property
    def held_units(self) -> Decimal:
        """Held amount in whole tokens."""
        return Decimal(self.amount_raw) / (Decimal(10) ** self.decimals)

    def to_json_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "amountRaw": str(self.amount_raw),
            "decimals": self.decimals,
            "lastFillSignature": self.last_fill_signature,
            "triggerAccount": self.trigger_account,
        }
        if self.total_base_spent_raw is not None:
            data["totalBaseSpentRaw"] = str(self.total_base_spent_raw)
        if self.avg_entry_price is not None:
            data["avgEntryPrice"] = self.avg_entry_price
        return data

    @classmethod
    def from_json_dict(cls, asset_id: str, data: Dict[str, Any]) -> "Position":
        if not isinstance(data, dict):
            raise ValueError("position entry must be an object")
        return cls.model_validate({**data, "assetId": asset_id})


@dataclass
class ExecutionResult:
    """Result of one orchestrator invocation."""

    success: bool
    kind: PipelineKind
    asset_id: str
    stage: Optional[PipelineStage] = None
    failed_at: Optional[PipelineStage] = None  # Last stage reached before a failure
    signature: Optional[str] = None
    in_amount_raw: Optional[int] = None
    out_amount_raw: Optional[int] = None
    simulated: bool = False
    skipped: Optional[SkipReason] = None
    error_message: Optional[str] = None

    @property
    def committed(self) -> bool:
        """True when the position store was mutated by this run."""
        return self.success and self.stage == PipelineStage.CONFIRMED


__all__ = [
    "TradeDirection",
    "PipelineKind",
    "ExitReason",
    "PipelineStage",
    "SkipReason",
    "DetectedTrade",
    "Position",
    "ExecutionResult",
]
