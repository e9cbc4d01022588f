"""Bot wallet keypair (ed25519, via solders)."""

from __future__ import annotations

from solders.keypair import Keypair

from ...services.address import base58_decode


def load_keypair(secret_key: bytes) -> Keypair:
    """
    Build the bot keypair from Solana's 64-byte secret key layout
    (32-byte seed followed by the 32-byte public key).

    Raises:
        ValueError: wrong length, or the public half does not belong to the seed.
    """
    if len(secret_key) != 64:
        raise ValueError("Secret key must be 64 bytes")

    keypair = Keypair.from_seed(bytes(secret_key[:32]))
    if bytes(keypair.pubkey()) != bytes(secret_key[32:]):
        raise ValueError("Secret key does not match its embedded public key")
    return keypair


def keypair_from_base58(value: str) -> Keypair:
    return load_keypair(base58_decode(value.strip()))


__all__ = ["load_keypair", "keypair_from_base58"]
