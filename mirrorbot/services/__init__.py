"""Service layer helpers"""

from .address import base58_decode, base58_encode, is_valid_solana_address, shorten_address

__all__ = [
    "base58_decode",
    "base58_encode",
    "is_valid_solana_address",
    "shorten_address",
]
