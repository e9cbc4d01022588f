"""
Jupiter swap transactions.

Jupiter returns swaps as base64 encoded, unsigned versioned transactions
with the bot as fee payer and only signer. Decoding, signing and
serialisation are done with solders; this module adds the lookups the bot
needs around them (signer check, blockhash, lookup-table account keys).
"""

from __future__ import annotations

import base64
from typing import Dict, List, Optional, Union

from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.transaction import VersionedTransaction

from ..errors import SigningError

AnyMessage = Union[Message, MessageV0]


def decode_transaction(payload: str) -> VersionedTransaction:
    try:
        return VersionedTransaction.from_bytes(base64.b64decode(payload, validate=True))
    except Exception as e:
        raise SigningError(f"Could not decode swap transaction: {e}", stage="sign") from e


def signer_keys(message: AnyMessage) -> List[str]:
    """Required signers, in signature-slot order."""
    count = message.header.num_required_signatures
    return [str(key) for key in message.account_keys[:count]]


def sign_swap_transaction(payload: str, keypair: Keypair) -> VersionedTransaction:
    """Decode a Jupiter swap payload and sign it with the bot key."""
    unsigned = decode_transaction(payload)
    message = unsigned.message

    public_key = str(keypair.pubkey())
    signers = signer_keys(message)
    if public_key not in signers:
        raise SigningError(f"{public_key} is not a required signer of this transaction", stage="sign")
    if len(signers) > 1:
        raise SigningError(
            f"Transaction needs {len(signers)} signers; only the bot key is available",
            stage="sign",
        )

    return VersionedTransaction(message, [keypair])


def recent_blockhash(tx: VersionedTransaction) -> str:
    return str(tx.message.recent_blockhash)


def lookup_table_keys(message: AnyMessage) -> List[str]:
    """Address lookup tables referenced by a v0 message. Legacy messages have none."""
    if not isinstance(message, MessageV0):
        return []
    return [str(lookup.account_key) for lookup in message.address_table_lookups]


def resolve_account_keys(
    message: AnyMessage,
    lookup_tables: Optional[Dict[str, List[str]]] = None,
) -> List[str]:
    """
    Static keys followed by keys loaded from lookup tables (all writable
    lookups first, then all readonly ones). Tables missing from
    ``lookup_tables`` contribute nothing.
    """
    static = [str(key) for key in message.account_keys]
    if not isinstance(message, MessageV0):
        return static

    lookup_tables = lookup_tables or {}
    writable: List[str] = []
    readonly: List[str] = []
    for lookup in message.address_table_lookups:
        table = lookup_tables.get(str(lookup.account_key))
        if table is None:
            continue
        writable.extend(table[i] for i in lookup.writable_indexes if i < len(table))
        readonly.extend(table[i] for i in lookup.readonly_indexes if i < len(table))
    return static + writable + readonly


def to_base64(tx: VersionedTransaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


__all__ = [
    "decode_transaction",
    "lookup_table_keys",
    "recent_blockhash",
    "resolve_account_keys",
    "sign_swap_transaction",
    "signer_keys",
    "to_base64",
]
