import json
import logging

from pathlib import Path
from typing import Any, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import InvalidConfigurationError
from .core.wallet.keypair import load_keypair
from .services.address import base58_decode, is_valid_solana_address


BASE_DIR = Path(__file__).resolve().parents[1]

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

# Wrapped SOL. Quotes always settle in this mint, even when native SOL moved.
WSOL_MINT = "So11111111111111111111111111111111111111112"
WSOL_DECIMALS = 9

SWAP_PROGRAM_IDS: FrozenSet[str] = frozenset(
    {
        "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",  # Jupiter v6
        "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc",  # Orca Whirlpools
        "PhoeNiXZ8ByJGLkxNfZRnkUfjvmuYqLR89jjFHGqdXY",  # Phoenix
        "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1",  # Raydium AMM v4
        "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",  # Raydium CLMM
    }
)

VALID_COMMITMENTS = {"processed", "confirmed", "finalized"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Solana RPC
    rpc_endpoint: str = Field(default="", description="Solana JSON-RPC HTTP endpoint")
    ws_endpoint: str = Field(
        default="",
        description="Solana websocket endpoint (derived from rpc_endpoint when empty)",
    )
    explorer_url: str = Field(default="https://solscan.io", description="Explorer base URL used in logs")
    fetch_commitment: str = Field(default="confirmed", description="Commitment for getTransaction")
    subscription_commitment: str = Field(default="confirmed", description="Commitment for logsSubscribe")
    confirmation_commitment: str = Field(default="confirmed", description="Commitment required to confirm a bot fill")

    # Bot wallet
    bot_private_key: str = Field(default="", description="Base58 encoded 64-byte bot secret key")

    # Trading parameters
    copy_trade_amount_sol: float = Field(default=0.0, description="SOL spent on every copied buy")
    slippage_bps: int = Field(default=50, description="Slippage tolerance in basis points")
    execute_trades: bool = Field(default=False, description="Send real transactions instead of simulating")
    monitored_wallets: str = Field(
        default="",
        description="Comma separated (or JSON list of) wallet addresses to copy",
    )

    # Stop-loss / take-profit
    manage_with_sltp: bool = Field(default=False, description="Exit via SL/TP instead of mirroring sells")
    take_profit_percentage: float = Field(default=20.0, description="Take-profit trigger above entry, in percent")
    stop_loss_percentage: float = Field(default=10.0, description="Stop-loss trigger below entry, in percent")
    price_check_interval_ms: int = Field(default=10_000, description="Delay between SL/TP price checks")
    risk_exit_pause_seconds: float = Field(default=1.0, description="Pause after each SL/TP exit attempt")

    # Jupiter
    jupiter_quote_api_url: str = Field(default="https://quote-api.jup.ag/v6/quote", description="Jupiter quote endpoint")
    jupiter_swap_api_url: str = Field(default="https://quote-api.jup.ag/v6/swap", description="Jupiter swap endpoint")
    jupiter_token_list_url: str = Field(default="https://token.jup.ag/strict", description="Jupiter strict token list")

    # Timeouts and state
    request_timeout_seconds: int = Field(default=30, description="HTTP request timeout")
    confirmation_timeout_seconds: int = Field(default=90, description="Max wait for a bot transaction to confirm")
    shutdown_grace_seconds: float = Field(default=2.0, description="Time allowed for in-flight trades on shutdown")
    state_file: str = Field(default="bot_holdings.json", description="Path of the durable positions file")

    def resolve_ws_endpoint(self) -> str:
        if self.ws_endpoint:
            return self.ws_endpoint
        if self.rpc_endpoint.startswith("https://"):
            return "wss://" + self.rpc_endpoint[len("https://"):]
        if self.rpc_endpoint.startswith("http://"):
            return "ws://" + self.rpc_endpoint[len("http://"):]
        return self.rpc_endpoint

    def parse_monitored_wallets(self) -> Tuple[str, ...]:
        raw = (self.monitored_wallets or "").strip()
        if not raw:
            return ()
        if raw.startswith("["):
            try:
                candidates = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise InvalidConfigurationError(f"MONITORED_WALLETS is not valid JSON: {exc}") from exc
        else:
            candidates = raw.split(",")

        wallets = []
        for candidate in candidates:
            address = str(candidate).strip()
            if not address:
                continue
            if not is_valid_solana_address(address):
                logger.warning("Invalid address found in monitored list: %s. Skipping.", address)
                continue
            if address not in wallets:
                wallets.append(address)
        return tuple(wallets)

    def to_bot_config(self) -> "BotConfig":
        """Validate settings and freeze them into the runtime configuration."""

        missing = []
        if not self.rpc_endpoint:
            missing.append("RPC_ENDPOINT")
        if not self.bot_private_key:
            missing.append("BOT_PRIVATE_KEY")
        if missing:
            raise InvalidConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        try:
            secret = base58_decode(self.bot_private_key.strip())
        except ValueError as exc:
            raise InvalidConfigurationError("BOT_PRIVATE_KEY is not valid base58") from exc
        try:
            load_keypair(secret)
        except ValueError as exc:
            raise InvalidConfigurationError(f"BOT_PRIVATE_KEY is not a valid keypair: {exc}") from exc

        if self.copy_trade_amount_sol <= 0:
            raise InvalidConfigurationError("COPY_TRADE_AMOUNT_SOL must be a positive number")
        if self.slippage_bps < 0:
            raise InvalidConfigurationError("SLIPPAGE_BPS must be a non-negative integer")

        for name in ("fetch_commitment", "subscription_commitment", "confirmation_commitment"):
            value = getattr(self, name)
            if value not in VALID_COMMITMENTS:
                raise InvalidConfigurationError(f"{name.upper()} must be one of {sorted(VALID_COMMITMENTS)}")

        if self.manage_with_sltp:
            if self.take_profit_percentage <= 0 or self.stop_loss_percentage <= 0:
                raise InvalidConfigurationError("SL/TP percentages must be positive")
            if self.stop_loss_percentage >= 100:
                raise InvalidConfigurationError("STOP_LOSS_PERCENTAGE must be below 100")
        if self.price_check_interval_ms <= 0:
            raise InvalidConfigurationError("PRICE_CHECK_INTERVAL_MS must be positive")

        wallets = self.parse_monitored_wallets()
        if not wallets:
            raise InvalidConfigurationError(
                "MONITORED_WALLETS is empty or contains only invalid addresses"
            )

        return BotConfig(
            rpc_endpoint=self.rpc_endpoint,
            ws_endpoint=self.resolve_ws_endpoint(),
            explorer_url=self.explorer_url.rstrip("/"),
            bot_secret_key=secret,
            copy_trade_amount_lamports=int(self.copy_trade_amount_sol * LAMPORTS_PER_SOL),
            copy_trade_amount_sol=self.copy_trade_amount_sol,
            slippage_bps=self.slippage_bps,
            execute_trades=self.execute_trades,
            monitored_wallets=wallets,
            fetch_commitment=self.fetch_commitment,
            subscription_commitment=self.subscription_commitment,
            confirmation_commitment=self.confirmation_commitment,
            manage_with_sltp=self.manage_with_sltp,
            take_profit_percentage=self.take_profit_percentage,
            stop_loss_percentage=self.stop_loss_percentage,
            price_check_interval_seconds=self.price_check_interval_ms / 1000,
            risk_exit_pause_seconds=self.risk_exit_pause_seconds,
            jupiter_quote_api_url=self.jupiter_quote_api_url,
            jupiter_swap_api_url=self.jupiter_swap_api_url,
            jupiter_token_list_url=self.jupiter_token_list_url,
            request_timeout_seconds=self.request_timeout_seconds,
            confirmation_timeout_seconds=self.confirmation_timeout_seconds,
            shutdown_grace_seconds=self.shutdown_grace_seconds,
            state_file=Path(self.state_file),
        )


class BotConfig(BaseModel):
    """Immutable runtime configuration, built once and handed to every component."""

    model_config = ConfigDict(frozen=True)

    rpc_endpoint: str
    ws_endpoint: str
    explorer_url: str = "https://solscan.io"
    bot_secret_key: bytes = Field(repr=False)

    copy_trade_amount_lamports: int
    copy_trade_amount_sol: float
    slippage_bps: int = 50
    execute_trades: bool = False
    monitored_wallets: Tuple[str, ...] = ()

    fetch_commitment: str = "confirmed"
    subscription_commitment: str = "confirmed"
    confirmation_commitment: str = "confirmed"

    manage_with_sltp: bool = False
    take_profit_percentage: float = 20.0
    stop_loss_percentage: float = 10.0
    price_check_interval_seconds: float = 10.0
    risk_exit_pause_seconds: float = 1.0

    swap_program_ids: FrozenSet[str] = SWAP_PROGRAM_IDS
    base_mint: str = WSOL_MINT
    base_decimals: int = WSOL_DECIMALS

    jupiter_quote_api_url: str = "https://quote-api.jup.ag/v6/quote"
    jupiter_swap_api_url: str = "https://quote-api.jup.ag/v6/swap"
    jupiter_token_list_url: str = "https://token.jup.ag/strict"

    request_timeout_seconds: int = 30
    confirmation_timeout_seconds: int = 90
    shutdown_grace_seconds: float = 2.0
    state_file: Path = Path("bot_holdings.json")

    def explorer_tx_url(self, signature: str) -> str:
        return f"{self.explorer_url}/tx/{signature}"


def load_settings(**overrides: Any) -> Settings:
    """Read settings from the environment.

    Raises:
        InvalidConfigurationError: when a value cannot be parsed.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']).upper()}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidConfigurationError(f"Invalid settings: {problems}") from exc


def load_bot_config(settings: Optional[Settings] = None, **overrides: Any) -> BotConfig:
    """Build the runtime configuration from the environment.

    Raises:
        InvalidConfigurationError: when a required value is missing or invalid.
    """
    settings = settings or load_settings(**overrides)
    return settings.to_bot_config()
