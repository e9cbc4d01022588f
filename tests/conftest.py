"""Shared fixtures: bot keys, runtime config, and builders for on-chain payloads."""

import base64
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from mirrorbot.config import BotConfig, WSOL_MINT
from mirrorbot.core.wallet.keypair import load_keypair
from mirrorbot.services.address import base58_encode
from mirrorbot.services.events.models import ParsedTransaction

JUPITER_PROGRAM = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
SYSTEM_PROGRAM = "11111111111111111111111111111111"


def _address(seed: int) -> str:
    return base58_encode(bytes([seed]) * 32)


@pytest.fixture
def make_address():
    """Deterministic valid Solana address for a small integer seed."""
    return _address


@pytest.fixture
def bot_secret_key() -> bytes:
    return bytes(Keypair.from_seed(bytes(range(32))))


@pytest.fixture
def bot_keypair(bot_secret_key) -> Keypair:
    return load_keypair(bot_secret_key)


@pytest.fixture
def make_config(bot_secret_key, tmp_path):
    """BotConfig factory with test-friendly defaults."""

    def factory(**overrides) -> BotConfig:
        values = dict(
            rpc_endpoint="http://localhost:8899",
            ws_endpoint="ws://localhost:8900",
            bot_secret_key=bot_secret_key,
            copy_trade_amount_lamports=100_000_000,
            copy_trade_amount_sol=0.1,
            slippage_bps=50,
            execute_trades=True,
            monitored_wallets=(_address(7),),
            price_check_interval_seconds=0.01,
            risk_exit_pause_seconds=0,
            shutdown_grace_seconds=0.5,
            state_file=tmp_path / "bot_holdings.json",
        )
        values.update(overrides)
        return BotConfig(**values)

    return factory


@pytest.fixture
def make_swap_transaction(bot_keypair):
    """
    Build an unsigned v0 transaction as Jupiter's /swap would return it.

    ``lookup_table`` is ``(table_key, [address_a, address_b])``; the swap
    instruction then reads address_a and writes address_b through it.
    ``co_signer`` adds a second required signer.

    Returns (base64 payload, message).
    """

    def factory(
        signer: Optional[str] = None,
        *,
        blockhash_seed: int = 9,
        lookup_table: Optional[Tuple[str, List[str]]] = None,
        co_signer: Optional[str] = None,
    ) -> Tuple[str, MessageV0]:
        payer = Pubkey.from_string(signer) if signer else bot_keypair.pubkey()
        accounts = [AccountMeta(payer, True, True)]
        tables = []
        if lookup_table is not None:
            table_key, (readonly, writable) = lookup_table
            accounts.append(AccountMeta(Pubkey.from_string(writable), False, True))
            accounts.append(AccountMeta(Pubkey.from_string(readonly), False, False))
            tables.append(AddressLookupTableAccount(
                Pubkey.from_string(table_key),
                [Pubkey.from_string(readonly), Pubkey.from_string(writable)],
            ))
        if co_signer is not None:
            accounts.append(AccountMeta(Pubkey.from_string(co_signer), True, False))

        instruction = Instruction(Pubkey.from_string(JUPITER_PROGRAM), b"\x01\x02\x03\x04", accounts)
        message = MessageV0.try_compile(payer, [instruction], tables, Hash(bytes([blockhash_seed]) * 32))
        unsigned = VersionedTransaction.populate(
            message, [Signature.default()] * message.header.num_required_signatures,
        )
        return base64.b64encode(bytes(unsigned)).decode("ascii"), message

    return factory


def _token_balance(index: int, mint: str, raw: int, decimals: int, owner: str) -> Dict:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "programId": "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
        "uiTokenAmount": {
            "amount": str(raw),
            "decimals": decimals,
            "uiAmount": raw / (10 ** decimals),
            "uiAmountString": str(raw / (10 ** decimals)),
        },
    }


@pytest.fixture
def make_parsed_tx():
    """
    Build a ``getTransaction`` (jsonParsed) result for a watched wallet.

    Token balances are given as ``(mint, raw, decimals)`` or
    ``(mint, raw, decimals, owner)``; the owner defaults to the wallet.
    """

    def factory(
        wallet: str,
        *,
        signature: str = "5igSig1111111111111111111111111111111111111111",
        pre_lamports: int = 10_000_000_000,
        post_lamports: int = 10_000_000_000,
        pre_tokens: Sequence[Tuple] = (),
        post_tokens: Sequence[Tuple] = (),
        programs: Sequence[str] = (JUPITER_PROGRAM,),
        inner_programs: Sequence[str] = (),
        drop_meta_fields: Sequence[str] = (),
    ) -> ParsedTransaction:
        def balances(entries):
            out = []
            for i, entry in enumerate(entries):
                mint, raw, decimals = entry[:3]
                owner = entry[3] if len(entry) > 3 else wallet
                out.append(_token_balance(i + 2, mint, raw, decimals, owner))
            return out

        meta = {
            "err": None,
            "fee": 5000,
            "preBalances": [pre_lamports, 1],
            "postBalances": [post_lamports, 1],
            "preTokenBalances": balances(pre_tokens),
            "postTokenBalances": balances(post_tokens),
            "innerInstructions": [
                {"index": 0, "instructions": [{"programId": p} for p in inner_programs]}
            ] if inner_programs else [],
        }
        for name in drop_meta_fields:
            meta[name] = None

        data = {
            "slot": 250_000_000,
            "blockTime": 1_700_000_000,
            "transaction": {
                "signatures": [signature],
                "message": {
                    "accountKeys": [
                        {"pubkey": wallet, "signer": True, "writable": True, "source": "transaction"},
                        {"pubkey": SYSTEM_PROGRAM, "signer": False, "writable": False, "source": "transaction"},
                    ],
                    "instructions": [{"programId": p, "accounts": [], "data": ""} for p in programs],
                    "recentBlockhash": _address(9),
                },
            },
            "meta": meta,
        }
        return ParsedTransaction.from_rpc(data)

    return factory


@pytest.fixture
def wsol_mint() -> str:
    return WSOL_MINT
