from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from modules.common import ConfigurationError

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_STABLECOIN_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
DEFAULT_REDEEM_PROGRAM_ID = "BHTRWbEGRfJZSVXkJXj1Cv48knuALpUvijJwvuobyvvB"


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(slots=True)
class AppSettings:
    rpc_url: str
    admin_private_key: str
    factory_program_id: str
    redeem_program_id: str
    stablecoin_mint: str
    network: str
    jupiter_quote_api: str
    jupiter_swap_api: str
    jupiter_price_api: str
    jupiter_api_key: str
    swap_slippage_bps: int
    swap_max_accounts: int
    swap_exclude_dexes: tuple[str, ...]
    swap_batch_size: int
    http_timeout_seconds: float
    retry_max_attempts: int
    retry_base_delay_seconds: float
    retry_jitter_seconds: float
    send_max_attempts: int
    confirm_max_attempts: int
    confirm_timeout_seconds: float
    confirm_poll_interval_seconds: float
    verify_max_attempts: int
    verify_initial_delay_seconds: float
    verify_base_delay_seconds: float
    min_operator_balance_lamports: int
    log_level: str

    @classmethod
    def from_env(cls) -> "AppSettings":
        rpc_url = (
            os.getenv("HELIUS_RPC_URL", "").strip()
            or os.getenv("SOLANA_RPC_URL", "").strip()
            or DEFAULT_RPC_URL
        )
        return cls(
            rpc_url=rpc_url,
            admin_private_key=os.getenv("SOLANA_ADMIN_PRIVATE_KEY", ""),
            factory_program_id=os.getenv("SOLANA_VAULT_FACTORY_ADDRESS", "").strip(),
            redeem_program_id=os.getenv("SOLANA_REDEEM_PROGRAM_ADDRESS", DEFAULT_REDEEM_PROGRAM_ID).strip(),
            stablecoin_mint=os.getenv("STABLECOIN_MINT", DEFAULT_STABLECOIN_MINT).strip(),
            network=os.getenv("SOLANA_NETWORK", "mainnet").strip() or "mainnet",
            jupiter_quote_api=os.getenv(
                "JUPITER_QUOTE_API",
                "https://lite-api.jup.ag/swap/v1/quote",
            ).strip(),
            jupiter_swap_api=os.getenv(
                "JUPITER_SWAP_API",
                "https://lite-api.jup.ag/swap/v1/swap-instructions",
            ).strip(),
            jupiter_price_api=os.getenv("JUPITER_PRICE_API", "https://lite-api.jup.ag/price/v3").strip(),
            jupiter_api_key=os.getenv("JUPITER_API_KEY", "").strip(),
            swap_slippage_bps=max(1, to_int(os.getenv("SWAP_SLIPPAGE_BPS"), 200)),
            swap_max_accounts=max(8, to_int(os.getenv("SWAP_MAX_ACCOUNTS"), 64)),
            swap_exclude_dexes=_split_csv(os.getenv("SWAP_EXCLUDE_DEXES", "Sanctum,Sanctum Infinity")),
            swap_batch_size=max(1, to_int(os.getenv("SWAP_BATCH_SIZE"), 5)),
            http_timeout_seconds=max(1.0, to_float(os.getenv("HTTP_TIMEOUT_SECONDS"), 15.0)),
            retry_max_attempts=max(1, to_int(os.getenv("RETRY_MAX_ATTEMPTS"), 5)),
            retry_base_delay_seconds=max(0.0, to_float(os.getenv("RETRY_BASE_DELAY_SECONDS"), 1.0)),
            retry_jitter_seconds=max(0.0, to_float(os.getenv("RETRY_JITTER_SECONDS"), 1.0)),
            send_max_attempts=max(1, to_int(os.getenv("SEND_MAX_ATTEMPTS"), 3)),
            confirm_max_attempts=max(1, to_int(os.getenv("CONFIRM_MAX_ATTEMPTS"), 3)),
            confirm_timeout_seconds=max(5.0, to_float(os.getenv("CONFIRM_TIMEOUT_SECONDS"), 60.0)),
            confirm_poll_interval_seconds=max(
                0.25,
                to_float(os.getenv("CONFIRM_POLL_INTERVAL_SECONDS"), 1.0),
            ),
            verify_max_attempts=max(1, to_int(os.getenv("VERIFY_MAX_ATTEMPTS"), 5)),
            verify_initial_delay_seconds=max(
                0.0,
                to_float(os.getenv("VERIFY_INITIAL_DELAY_SECONDS"), 0.5),
            ),
            verify_base_delay_seconds=max(0.0, to_float(os.getenv("VERIFY_BASE_DELAY_SECONDS"), 0.2)),
            min_operator_balance_lamports=max(
                0,
                to_int(os.getenv("MIN_OPERATOR_BALANCE_LAMPORTS"), 100_000_000),
            ),
            log_level=(os.getenv("LOG_LEVEL", "INFO").strip() or "INFO").upper(),
        )

    def require_swap_config(self) -> None:
        if not self.admin_private_key.strip():
            raise ConfigurationError("SOLANA_ADMIN_PRIVATE_KEY is required for swap operations.")
        if not self.factory_program_id:
            raise ConfigurationError("SOLANA_VAULT_FACTORY_ADDRESS is required for swap operations.")
