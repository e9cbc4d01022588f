"""Helpers for base58 encoding and validating Solana addresses."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(_BASE58_ALPHABET)}


def base58_decode(value: str) -> bytes:
    if not value:
        return b""
    num = 0
    for char in value:
        if char not in _BASE58_INDEX:
            raise ValueError("Invalid base58 character")
        num = num * 58 + _BASE58_INDEX[char]
    combined = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(value) - len(value.lstrip("1"))
    return b"\x00" * pad + combined


def base58_encode(data: bytes) -> str:
    if not data:
        return ""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, rem = divmod(num, 58)
        encoded = _BASE58_ALPHABET[rem] + encoded
    pad = 0
    for byte in data:
        if byte == 0:
            pad += 1
        else:
            break
    return "1" * pad + encoded


@lru_cache(maxsize=512)
def is_valid_solana_address(address: str) -> bool:
    if not address:
        return False
    length = len(address)
    if length < 32 or length > 44:
        return False
    try:
        return len(base58_decode(address)) == 32
    except ValueError:
        return False


def shorten_address(address: Optional[str], chars: int = 4) -> str:
    """Shorten an address for display, e.g. ``ABCD...WXYZ``."""
    if not address:
        return "N/A"
    if len(address) <= chars * 2:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


__all__ = [
    "base58_decode",
    "base58_encode",
    "is_valid_solana_address",
    "shorten_address",
]
