from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass

from solders.keypair import Keypair

from modules.chain import SolanaRpcClient
from modules.common import ConfigurationError
from modules.swap.builder import TransactionBuilder
from modules.swap.executor import TransactionExecutor
from modules.swap.jupiter import JupiterClient
from modules.swap.retry import RetryPolicy
from modules.vault import AddressDeriver

from .collaborators import EngineStore
from .settings import AppSettings
from .side_effects import SideEffectQueue


def parse_private_key(raw: str) -> Keypair:
    value = raw.strip()

    if value.startswith("["):
        arr = json.loads(value)
        if not isinstance(arr, list):
            raise ValueError("SOLANA_ADMIN_PRIVATE_KEY JSON must be an integer array.")
        return Keypair.from_bytes(bytes(arr))

    with contextlib.suppress(Exception):
        return Keypair.from_base58_string(value)

    raise ValueError("Unsupported SOLANA_ADMIN_PRIVATE_KEY format.")


@dataclass(slots=True)
class EngineContext:
    """Clients and collaborators shared by one engine instance.

    Built once at startup and passed explicitly; nothing here is global.
    """

    settings: AppSettings
    logger: logging.Logger
    rpc: SolanaRpcClient
    jupiter: JupiterClient
    store: EngineStore
    side_effects: SideEffectQueue
    retry_policy: RetryPolicy
    signer: Keypair | None = None
    deriver: AddressDeriver | None = None
    builder: TransactionBuilder | None = None
    executor: TransactionExecutor | None = None

    @classmethod
    def create(cls, *, settings: AppSettings, logger: logging.Logger, store: EngineStore) -> "EngineContext":
        signer: Keypair | None = None
        if settings.admin_private_key.strip():
            try:
                signer = parse_private_key(settings.admin_private_key)
            except ValueError as error:
                raise ConfigurationError(str(error)) from error

        rpc = SolanaRpcClient(
            logger=logger,
            rpc_url=settings.rpc_url,
            timeout_seconds=settings.http_timeout_seconds,
        )
        jupiter = JupiterClient(
            logger=logger,
            quote_url=settings.jupiter_quote_api,
            swap_instructions_url=settings.jupiter_swap_api,
            price_url=settings.jupiter_price_api,
            api_key=settings.jupiter_api_key,
            slippage_bps=settings.swap_slippage_bps,
            max_accounts=settings.swap_max_accounts,
            exclude_dexes=settings.swap_exclude_dexes,
            timeout_seconds=settings.http_timeout_seconds,
        )
        retry_policy = RetryPolicy(
            logger=logger,
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            jitter_seconds=settings.retry_jitter_seconds,
        )
        deriver = AddressDeriver(settings.factory_program_id) if settings.factory_program_id else None

        builder: TransactionBuilder | None = None
        executor: TransactionExecutor | None = None
        if signer is not None:
            builder = TransactionBuilder(logger=logger, rpc=rpc, jupiter=jupiter, signer=signer)
            executor = TransactionExecutor(
                logger=logger,
                rpc=rpc,
                builder=builder,
                retry_policy=retry_policy,
                send_max_attempts=settings.send_max_attempts,
                confirm_max_attempts=settings.confirm_max_attempts,
                confirm_timeout_seconds=settings.confirm_timeout_seconds,
                confirm_poll_interval_seconds=settings.confirm_poll_interval_seconds,
                verify_max_attempts=settings.verify_max_attempts,
                verify_initial_delay_seconds=settings.verify_initial_delay_seconds,
                verify_base_delay_seconds=settings.verify_base_delay_seconds,
            )

        return cls(
            settings=settings,
            logger=logger,
            rpc=rpc,
            jupiter=jupiter,
            store=store,
            side_effects=SideEffectQueue(logger=logger),
            retry_policy=retry_policy,
            signer=signer,
            deriver=deriver,
            builder=builder,
            executor=executor,
        )

    def require_swap_stack(self) -> tuple[Keypair, AddressDeriver, TransactionBuilder, TransactionExecutor]:
        self.settings.require_swap_config()
        if self.signer is None or self.builder is None or self.executor is None:
            raise ConfigurationError("SOLANA_ADMIN_PRIVATE_KEY is required for swap operations.")
        if self.deriver is None:
            raise ConfigurationError("SOLANA_VAULT_FACTORY_ADDRESS is required for swap operations.")
        return self.signer, self.deriver, self.builder, self.executor

    async def close(self) -> None:
        await self.side_effects.close()
        await self.jupiter.close()
        await self.rpc.close()
