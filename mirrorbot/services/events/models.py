"""
Event Monitoring Models

Data structures for logs notifications and parsed Solana transactions as
returned by ``getTransaction`` with ``jsonParsed`` encoding.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _RpcModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UiTokenAmount(_RpcModel):
    """Token amount as reported by the RPC node."""

    amount: str  # Raw integer amount, smallest unit
    decimals: int
    ui_amount: Optional[float] = Field(default=None, alias="uiAmount")
    ui_amount_string: Optional[str] = Field(default=None, alias="uiAmountString")

    @property
    def raw(self) -> int:
        return int(self.amount)


class TokenBalance(_RpcModel):
    """One entry of ``meta.preTokenBalances`` / ``meta.postTokenBalances``."""

    account_index: int = Field(alias="accountIndex")
    mint: str
    owner: Optional[str] = None
    program_id: Optional[str] = Field(default=None, alias="programId")
    ui_token_amount: UiTokenAmount = Field(alias="uiTokenAmount")


class ParsedInstruction(_RpcModel):
    program_id: Optional[str] = Field(default=None, alias="programId")
    program: Optional[str] = None
    parsed: Optional[Any] = None


class InnerInstructionSet(_RpcModel):
    index: int
    instructions: List[ParsedInstruction] = Field(default_factory=list)


class AccountKey(_RpcModel):
    pubkey: str
    signer: bool = False
    writable: bool = False
    source: Optional[str] = None


class TransactionMeta(_RpcModel):
    err: Optional[Any] = None
    fee: Optional[int] = None
    pre_balances: Optional[List[int]] = Field(default=None, alias="preBalances")
    post_balances: Optional[List[int]] = Field(default=None, alias="postBalances")
    pre_token_balances: Optional[List[TokenBalance]] = Field(default=None, alias="preTokenBalances")
    post_token_balances: Optional[List[TokenBalance]] = Field(default=None, alias="postTokenBalances")
    inner_instructions: Optional[List[InnerInstructionSet]] = Field(default=None, alias="innerInstructions")
    log_messages: Optional[List[str]] = Field(default=None, alias="logMessages")


class ParsedMessage(_RpcModel):
    account_keys: List[AccountKey] = Field(default_factory=list, alias="accountKeys")
    instructions: List[ParsedInstruction] = Field(default_factory=list)
    recent_blockhash: Optional[str] = Field(default=None, alias="recentBlockhash")

    @field_validator("account_keys", mode="before")
    @classmethod
    def _accept_plain_keys(cls, value: Any) -> Any:
        # "json" encoding returns bare strings, "jsonParsed" returns objects.
        if isinstance(value, list):
            return [{"pubkey": item} if isinstance(item, str) else item for item in value]
        return value


class ParsedTransaction(_RpcModel):
    """A confirmed transaction with its balance-change metadata."""

    slot: Optional[int] = None
    block_time: Optional[int] = Field(default=None, alias="blockTime")
    signatures: List[str] = Field(default_factory=list)
    message: ParsedMessage = Field(default_factory=ParsedMessage)
    meta: Optional[TransactionMeta] = None

    @property
    def signature(self) -> Optional[str]:
        return self.signatures[0] if self.signatures else None

    def account_index(self, address: str) -> Optional[int]:
        for index, key in enumerate(self.message.account_keys):
            if key.pubkey == address:
                return index
        return None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "ParsedTransaction":
        """Build from a ``getTransaction`` result object."""
        transaction = data.get("transaction") or {}
        return cls.model_validate(
            {
                "slot": data.get("slot"),
                "blockTime": data.get("blockTime"),
                "signatures": transaction.get("signatures") or [],
                "message": transaction.get("message") or {},
                "meta": data.get("meta"),
            }
        )


class LogNotification(_RpcModel):
    """A ``logsNotification`` for one watched account."""

    signature: str
    err: Optional[Any] = None
    logs: List[str] = Field(default_factory=list)
    slot: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.err is not None
