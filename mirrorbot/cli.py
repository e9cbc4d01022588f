"""Command line entry point for the copy-trading bot"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from .config import WSOL_DECIMALS, load_bot_config, load_settings
from .core.copy_trading.classifier import TradeClassifier
from .core.copy_trading.positions import PositionStore
from .core.errors import CopyTradeError, InvalidConfigurationError
from .logging_config import setup_logging
from .main import run_bot
from .providers.jupiter import JupiterProvider
from .providers.solana import SolanaRpcProvider
from .services.address import is_valid_solana_address
from .services.token_metadata import TokenMetadataService


def print_positions(store: PositionStore) -> None:
    """Pretty print stored positions"""
    if not len(store):
        print(f"No open positions in {store.path}")
        return

    print(f"\nOpen positions ({len(store)}) in {store.path}")
    print("=" * 60)
    for i, (asset_id, position) in enumerate(sorted(store.items()), 1):
        entry = f"{position.avg_entry_price:.9f} SOL" if position.has_entry_price else "not tracked"
        print(f"{i:2d}. {asset_id}")
        print(f"    Amount: {position.held_units} ({position.amount_raw} raw, {position.decimals} decimals)")
        print(f"    Entry:  {entry}")
        print(f"    Last fill: {position.last_fill_signature}")


def cli_positions(state_file: Optional[str]) -> int:
    path = Path(state_file) if state_file else Path(load_settings().state_file)
    store = PositionStore(path, base_decimals=WSOL_DECIMALS)
    report = store.load()
    if report.reset:
        print(f"⚠️  {path} could not be read; it would be reset on next start")
    if report.skipped_count:
        print(f"⚠️  Skipped {report.skipped_count} malformed entries: {', '.join(report.skipped)}")
    print_positions(store)
    return 0


async def cli_classify(signature: str, wallet: str, rpc_url: Optional[str]) -> int:
    """Fetch one transaction and show what the bot would copy from it"""
    settings = load_settings()
    rpc_url = rpc_url or settings.rpc_endpoint
    if not rpc_url:
        print("❌ RPC_ENDPOINT is not set (use --rpc)")
        return 1
    if not is_valid_solana_address(wallet):
        print(f"❌ Invalid wallet address: {wallet}")
        return 1

    rpc = SolanaRpcProvider(rpc_url, timeout_s=settings.request_timeout_seconds)
    try:
        metadata = TokenMetadataService(JupiterProvider(settings.jupiter_token_list_url), rpc)
        await metadata.initialize()
        classifier = TradeClassifier(metadata)

        print(f"🔍 Fetching {signature}...")
        tx = await rpc.get_parsed_transaction(signature, settings.fetch_commitment)
        if tx is None:
            print("❌ Transaction not found")
            return 1

        trade = await classifier.classify(tx, wallet)
        if trade is None:
            print("No copyable trade found for this wallet.")
            return 0

        print(f"\n{trade.direction.value.upper()} {trade.symbol} ({trade.asset_id})")
        print(f"  Token amount: {trade.asset_amount}")
        print(f"  Base amount:  {trade.base_amount} {trade.base_symbol}")
        return 0
    finally:
        await rpc.close()


def cli_run(log_level: Optional[str]) -> int:
    settings = load_settings()
    setup_logging(log_level or settings.log_level)
    config = load_bot_config(settings)

    try:
        asyncio.run(run_bot(config))
    except KeyboardInterrupt:
        pass
    except CopyTradeError as e:
        print(f"❌ Startup failed: {e}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solana copy-trading bot")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start the bot (configured from the environment)")
    run_parser.add_argument("--log-level", help="Override LOG_LEVEL")

    positions_parser = subparsers.add_parser("positions", help="Show stored positions")
    positions_parser.add_argument("--state-file", help="Positions file (default: STATE_FILE)")

    classify_parser = subparsers.add_parser("classify", help="Classify a transaction for a wallet")
    classify_parser.add_argument("signature", help="Transaction signature")
    classify_parser.add_argument("wallet", help="Wallet address to classify for")
    classify_parser.add_argument("--rpc", help="RPC endpoint (default: RPC_ENDPOINT)")

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command == "run":
            return cli_run(args.log_level)

        if args.command == "positions":
            return cli_positions(args.state_file)

        if args.command == "classify":
            setup_logging("WARNING")
            return asyncio.run(cli_classify(args.signature, args.wallet, args.rpc))
    except InvalidConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 1

    print(f"❌ Unknown command: {args.command}")
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
