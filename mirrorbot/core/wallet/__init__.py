"""
Bot Wallet

The bot's ed25519 keypair and the helpers used to sign Jupiter swap
transactions locally.
"""

from .keypair import keypair_from_base58, load_keypair
from .transaction import (
    decode_transaction,
    lookup_table_keys,
    recent_blockhash,
    resolve_account_keys,
    sign_swap_transaction,
    to_base64,
)

__all__ = [
    "load_keypair",
    "keypair_from_base58",
    "decode_transaction",
    "lookup_table_keys",
    "recent_blockhash",
    "resolve_account_keys",
    "sign_swap_transaction",
    "to_base64",
]
