from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from solders.pubkey import Pubkey

from modules.common import (
    InsufficientOperatorBalance,
    NoUnderlyingAssets,
    ValidationError,
    VaultNotFound,
    VaultTransferError,
    log_event,
    run_in_batches,
)
from modules.runtime.collaborators import FailedTransactionRecord
from modules.vault import (
    EMPTY_MINT,
    UnderlyingAsset,
    VaultSnapshot,
    associated_token_address,
    create_associated_token_account_ix,
    decode_vault_account,
    mint_decimals,
    token_program_for_owner,
    token_transfer_ix,
    transfer_vault_to_user_ix,
    vault_index_seed,
)

from .builder import RETURN_TRANSFER_BUDGET, TransactionBuilder
from .executor import TransactionExecutor
from .types import (
    BuildRequest,
    FailedSwapsInfo,
    LegOutcome,
    OrchestrationResult,
    SwapLeg,
)

if TYPE_CHECKING:
    from modules.runtime.context import EngineContext

BPS_DENOMINATOR = 10_000
RAW_USDC_SCALE = 1_000_000


def plan_legs(assets: Iterable[UnderlyingAsset], amount_to_use: int) -> list[SwapLeg]:
    """One leg per funded asset: ``floor(amount_to_use * bps / 10000)``; zero targets are skipped."""
    legs: list[SwapLeg] = []
    for asset in assets:
        if asset.allocation_bps <= 0 or asset.mint == EMPTY_MINT:
            continue
        target = amount_to_use * asset.allocation_bps // BPS_DENOMINATOR
        if target <= 0:
            continue
        legs.append(SwapLeg(asset_mint=asset.mint, allocation_bps=asset.allocation_bps, target_amount=target))
    return legs


def validate_vault_index(vault_index: Any) -> int:
    try:
        vault_index_seed(vault_index)
    except ValueError as error:
        raise ValidationError(str(error)) from error
    return vault_index


def validate_positive_amount(value: Any, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")
    return value


class VaultSwapOrchestratorBase:
    """Chain reads, account setup and per-leg swap execution shared by both directions."""

    def __init__(self, context: "EngineContext") -> None:
        self._context = context
        self._logger: logging.Logger = context.logger
        self._settings = context.settings
        self._rpc = context.rpc
        self._jupiter = context.jupiter
        self._retry = context.retry_policy
        self._store = context.store
        self._side_effects = context.side_effects

    @property
    def _batch_size(self) -> int:
        return self._settings.swap_batch_size

    @property
    def _stablecoin_mint(self) -> str:
        return self._settings.stablecoin_mint

    async def _load_vault(self, vault: Pubkey) -> VaultSnapshot:
        account = await self._rpc.get_account_info(vault)
        if account is None or not account.data:
            raise VaultNotFound(str(vault))
        return decode_vault_account(str(vault), account.data)

    async def _require_operator_balance(self, operator: Pubkey) -> int:
        required = self._settings.min_operator_balance_lamports
        balance = await self._rpc.get_balance(operator)
        if balance < required:
            raise InsufficientOperatorBalance(balance_lamports=balance, required_lamports=required)
        return balance

    async def _mint_info(self, mint: str) -> tuple[Pubkey, int]:
        account = await self._rpc.get_account_info(mint)
        if account is None:
            return token_program_for_owner(None), mint_decimals(None)
        return token_program_for_owner(account.owner), mint_decimals(account.data)

    async def _ensure_token_account(
        self,
        *,
        owner: Pubkey,
        mint: str,
        token_program: Pubkey,
        executor: TransactionExecutor,
        builder: TransactionBuilder,
        **log_fields: Any,
    ) -> Pubkey:
        mint_key = Pubkey.from_string(mint)
        address = associated_token_address(owner, mint_key, token_program)
        if await self._rpc.get_account_info(address) is not None:
            return address

        log_event(
            self._logger,
            level="info",
            event="token_account_create",
            message="Creating associated token account",
            token_account=str(address),
            owner=str(owner),
            asset_mint=mint,
            token_program=str(token_program),
            **log_fields,
        )
        instruction = create_associated_token_account_ix(
            payer=builder.payer,
            owner=owner,
            mint=mint_key,
            token_program=token_program,
        )
        request = await builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET)
        await executor.execute(
            request,
            rebuild=lambda: builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET),
            token_account=str(address),
            asset_mint=mint,
            **log_fields,
        )
        return address

    async def _quote_leg(self, leg: SwapLeg, *, vault_index: int) -> dict[str, Any]:
        return await self._retry.with_retry(
            lambda: self._jupiter.quote(
                input_mint=leg.input_mint,
                output_mint=leg.output_mint,
                amount=leg.target_amount,
            ),
            operation_name="swap_quote",
            vault_index=vault_index,
            asset_mint=leg.asset_mint,
        )

    async def _fetch_quotes(self, legs: Sequence[SwapLeg], *, vault_index: int) -> list[SwapLeg]:
        async def worker(leg: SwapLeg) -> SwapLeg:
            try:
                leg.quote = await self._quote_leg(leg, vault_index=vault_index)
            except asyncio.CancelledError:
                raise
            except Exception as error:
                self._fail_leg(leg, "quote", error, vault_index=vault_index)
            return leg

        await run_in_batches(legs, worker, batch_size=self._batch_size)
        return [leg for leg in legs if not leg.failed]

    async def _fetch_instructions(
        self,
        legs: Sequence[SwapLeg],
        *,
        vault_index: int,
        builder: TransactionBuilder,
    ) -> list[SwapLeg]:
        async def worker(leg: SwapLeg) -> SwapLeg:
            quote = leg.quote or {}
            destination = leg.destination_account
            try:
                if destination is None:
                    raise RuntimeError("Swap destination account is not resolved.")
                leg.instructions = await self._retry.with_retry(
                    lambda: builder.fetch_instructions(quote=quote, destination=destination),
                    operation_name="swap_instructions",
                    vault_index=vault_index,
                    asset_mint=leg.asset_mint,
                )
            except asyncio.CancelledError:
                raise
            except Exception as error:
                self._fail_leg(leg, "instructions", error, vault_index=vault_index)
            return leg

        await run_in_batches(legs, worker, batch_size=self._batch_size)
        return [leg for leg in legs if not leg.failed]

    async def _rebuild_leg(self, leg: SwapLeg, *, builder: TransactionBuilder) -> BuildRequest:
        if leg.destination_account is None:
            raise RuntimeError("Swap destination account is not resolved.")
        request, quote, instructions = await builder.fresh_swap_request(
            input_mint=leg.input_mint,
            output_mint=leg.output_mint,
            amount=leg.target_amount,
            destination=leg.destination_account,
        )
        leg.quote = quote
        leg.instructions = instructions
        return request

    async def _execute_swap(
        self,
        leg: SwapLeg,
        *,
        vault_index: int,
        builder: TransactionBuilder,
        executor: TransactionExecutor,
    ) -> SwapLeg:
        log_fields = {"vault_index": vault_index, "asset_mint": leg.asset_mint}
        try:
            if leg.quote is None or leg.instructions is None:
                raise RuntimeError("Swap leg has no prepared quote or instructions.")
            request = await builder.swap_request(quote=leg.quote, instructions=leg.instructions)
            leg.swap_signature = await executor.send(
                request,
                rebuild=lambda: self._rebuild_leg(leg, builder=builder),
                **log_fields,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self._fail_leg(leg, "send", error, vault_index=vault_index)
            return leg

        try:
            await executor.confirm(leg.swap_signature, **log_fields)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self._fail_leg(leg, "execution", error, vault_index=vault_index)
            return leg

        log_event(
            self._logger,
            level="info",
            event="swap_leg_completed",
            message="Swap leg executed successfully",
            tx_signature=leg.swap_signature,
            amount=leg.target_amount,
            **log_fields,
        )
        return leg

    def _fail_leg(self, leg: SwapLeg, stage: str, error: BaseException, *, vault_index: int) -> None:
        leg.fail(stage, error)
        log_event(
            self._logger,
            level="warning" if stage in {"account", "quote", "instructions", "withdraw"} else "error",
            event="swap_leg_failed",
            message="Swap leg failed",
            vault_index=vault_index,
            asset_mint=leg.asset_mint,
            stage=stage,
            amount=leg.target_amount,
            error=str(error),
        )

    def _submit_audit(
        self,
        *,
        action: str,
        description: str,
        actor: str,
        vault_address: str,
        metadata: dict[str, Any],
        signature: str | None,
    ) -> None:
        async def write() -> None:
            vault_record = await self._store.find_vault_by_address(vault_address)
            await self._store.record_transaction(
                action=action,
                description=description,
                actor=actor,
                vault_id=vault_record.id if vault_record else None,
                metadata=metadata,
                signature=signature,
            )

        self._side_effects.submit("audit_record", write, action=action, tx_signature=signature)

    def _submit_cache_invalidation(self) -> None:
        self._side_effects.submit("cache_invalidation", self._store.invalidate_cache)


class SwapOrchestrator(VaultSwapOrchestratorBase):
    """Moves a vault's stablecoin reserve into its underlying assets by allocation.

    Legs are independent: a leg that fails to quote, build, send or execute is
    recorded and its stablecoin is returned to the vault reserve when it had
    already been transferred out. Only validation errors and the consolidated
    vault transfer raise to the caller.
    """

    async def execute(self, vault_index: int, amount_in_raw: int) -> OrchestrationResult:
        validate_vault_index(vault_index)
        validate_positive_amount(amount_in_raw, name="amount_in_raw")
        signer, deriver, builder, executor = self._context.require_swap_stack()
        operator = signer.pubkey()

        factory, vault, vault_reserve = deriver.vault_addresses(vault_index)
        snapshot = await self._load_vault(vault)
        assets = [asset for asset in snapshot.underlying_assets if asset.mint != EMPTY_MINT]
        if not assets:
            raise NoUnderlyingAssets(str(vault))

        reserve_balance = await self._rpc.get_token_account_balance(vault_reserve)
        log_event(
            self._logger,
            level="info",
            event="admin_swap_started",
            message="Admin swap started",
            vault_index=vault_index,
            vault=str(vault),
            amount_requested=amount_in_raw,
            vault_usdc_balance=reserve_balance,
            asset_count=len(assets),
        )
        if reserve_balance <= 0:
            return OrchestrationResult(
                vault_index=vault_index,
                amount_requested=amount_in_raw,
                amount_used=0,
                vault_usdc_balance=0,
                note="Vault USDC balance is 0; nothing to swap.",
            )

        amount_to_use = min(amount_in_raw, reserve_balance)
        await self._require_operator_balance(operator)

        legs = plan_legs(assets, amount_to_use)
        for leg in legs:
            leg.input_mint = self._stablecoin_mint
            leg.output_mint = leg.asset_mint

        result = OrchestrationResult(
            vault_index=vault_index,
            amount_requested=amount_in_raw,
            amount_used=amount_to_use,
            vault_usdc_balance=reserve_balance,
        )

        prepared = await self._prepare_destinations(
            legs,
            vault=vault,
            vault_index=vault_index,
            builder=builder,
            executor=executor,
        )
        quoted = await self._fetch_quotes(prepared, vault_index=vault_index) if prepared else []
        ready = await self._fetch_instructions(quoted, vault_index=vault_index, builder=builder) if quoted else []
        if not ready:
            if not prepared:
                note = "No valid assets could be prepared."
            elif not quoted:
                note = "No valid quotes could be obtained."
            else:
                note = "No valid swaps could be prepared."
            return self._finish_early(
                result,
                legs,
                vault=vault,
                vault_reserve=vault_reserve,
                operator=operator,
                note=note,
            )

        transfer_amount = min(amount_to_use, sum(leg.target_amount for leg in ready))
        stable_program, _ = await self._mint_info(self._stablecoin_mint)
        try:
            admin_usdc = await self._ensure_token_account(
                owner=operator,
                mint=self._stablecoin_mint,
                token_program=stable_program,
                executor=executor,
                builder=builder,
                vault_index=vault_index,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            raise VaultTransferError(f"Failed to transfer USDC from vault: {error}") from error
        result.transfer_signature = await self._transfer_from_vault(
            vault_index=vault_index,
            amount=transfer_amount,
            operator=operator,
            factory=factory,
            vault=vault,
            vault_reserve=vault_reserve,
            admin_usdc=admin_usdc,
            token_program=stable_program,
            builder=builder,
            executor=executor,
        )
        for leg in ready:
            leg.transfer_signature = result.transfer_signature

        async def run_leg(leg: SwapLeg) -> SwapLeg:
            return await self._execute_swap(leg, vault_index=vault_index, builder=builder, executor=executor)

        await run_in_batches(ready, run_leg, batch_size=self._batch_size)

        for leg in ready:
            if leg.failed:
                continue
            result.swaps.append(LegOutcome.from_leg(leg))
            self._submit_audit(
                action="swap_completed",
                description=(
                    f"Swap completed: {leg.target_amount} USDC -> {leg.asset_mint} for vault index {vault_index}"
                ),
                actor=str(operator),
                vault_address=str(vault),
                metadata={
                    "vault_index": vault_index,
                    "vault_address": str(vault),
                    "asset_mint": leg.asset_mint,
                    "usdc_portion": str(leg.target_amount),
                    "transfer_signature": leg.transfer_signature,
                    "swap_signature": leg.swap_signature,
                },
                signature=leg.swap_signature,
            )

        failed = [leg for leg in legs if leg.failed]
        result.errors = [LegOutcome.from_leg(leg) for leg in failed]
        if failed:
            result.failed_swaps = await self._reconcile_failures(
                failed,
                vault=vault,
                vault_index=vault_index,
                vault_reserve=vault_reserve,
                admin_usdc=admin_usdc,
                token_program=stable_program,
                operator=operator,
                builder=builder,
                executor=executor,
            )

        self._submit_cache_invalidation()
        log_event(
            self._logger,
            level="info",
            event="admin_swap_finished",
            message="Admin swap finished",
            vault_index=vault_index,
            amount_used=amount_to_use,
            transfer_amount=transfer_amount,
            succeeded=len(result.swaps),
            failed=len(result.errors),
            total_failed_usdc=result.total_failed_usdc,
        )
        return result

    async def _prepare_destinations(
        self,
        legs: list[SwapLeg],
        *,
        vault: Pubkey,
        vault_index: int,
        builder: TransactionBuilder,
        executor: TransactionExecutor,
    ) -> list[SwapLeg]:
        async def worker(leg: SwapLeg) -> SwapLeg:
            try:
                leg.token_program, leg.decimals = await self._mint_info(leg.asset_mint)
                leg.destination_account = await self._ensure_token_account(
                    owner=vault,
                    mint=leg.asset_mint,
                    token_program=leg.token_program,
                    executor=executor,
                    builder=builder,
                    vault_index=vault_index,
                )
            except asyncio.CancelledError:
                raise
            except Exception as error:
                self._fail_leg(leg, "account", error, vault_index=vault_index)
            return leg

        await run_in_batches(legs, worker, batch_size=self._batch_size)
        return [leg for leg in legs if not leg.failed]

    async def _transfer_from_vault(
        self,
        *,
        vault_index: int,
        amount: int,
        operator: Pubkey,
        factory: Pubkey,
        vault: Pubkey,
        vault_reserve: Pubkey,
        admin_usdc: Pubkey,
        token_program: Pubkey,
        builder: TransactionBuilder,
        executor: TransactionExecutor,
    ) -> str:
        current_balance = await self._rpc.get_token_account_balance(vault_reserve)
        if current_balance < amount:
            raise VaultTransferError(
                f"Vault USDC balance {current_balance} is below the transfer amount {amount}"
            )

        instruction = transfer_vault_to_user_ix(
            program_id=Pubkey.from_string(self._settings.factory_program_id),
            user=operator,
            factory=factory,
            vault=vault,
            vault_stablecoin_account=vault_reserve,
            user_stablecoin_account=admin_usdc,
            vault_index=vault_index,
            amount=amount,
            token_program=token_program,
        )
        try:
            request = await builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET)
            signature = await executor.execute(
                request,
                rebuild=lambda: builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET),
                vault_index=vault_index,
                amount=amount,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="error",
                event="vault_transfer_failed",
                message="Consolidated vault transfer failed",
                vault_index=vault_index,
                amount=amount,
                error=str(error),
            )
            raise VaultTransferError(f"Failed to transfer USDC from vault: {error}") from error

        log_event(
            self._logger,
            level="info",
            event="vault_transfer_completed",
            message="Transferred USDC from the vault reserve to the operator",
            vault_index=vault_index,
            amount=amount,
            tx_signature=signature,
        )
        return signature

    def _finish_early(
        self,
        result: OrchestrationResult,
        legs: list[SwapLeg],
        *,
        vault: Pubkey,
        vault_reserve: Pubkey,
        operator: Pubkey,
        note: str,
    ) -> OrchestrationResult:
        failed = [leg for leg in legs if leg.failed]
        result.note = note
        result.errors = [LegOutcome.from_leg(leg) for leg in failed]
        for leg in failed:
            self._submit_failure_record(leg, vault=vault, operator=operator)
        if failed:
            result.failed_swaps = FailedSwapsInfo(
                count=len(failed),
                total_failed_usdc=sum(leg.target_amount for leg in failed),
                return_required_usdc=0,
                admin_usdc_account=None,
                vault_usdc_account=str(vault_reserve),
                note="No USDC left the vault; nothing to return.",
            )
        log_event(
            self._logger,
            level="warning",
            event="admin_swap_aborted",
            message=note,
            vault_index=result.vault_index,
            failed=len(failed),
        )
        return result

    async def _reconcile_failures(
        self,
        failed: list[SwapLeg],
        *,
        vault: Pubkey,
        vault_index: int,
        vault_reserve: Pubkey,
        admin_usdc: Pubkey,
        token_program: Pubkey,
        operator: Pubkey,
        builder: TransactionBuilder,
        executor: TransactionExecutor,
    ) -> FailedSwapsInfo:
        total_failed = sum(leg.target_amount for leg in failed)
        # only legs whose USDC already left the vault are owed back
        return_required = sum(leg.target_amount for leg in failed if leg.transfer_signature)

        for leg in failed:
            self._submit_failure_record(leg, vault=vault, operator=operator)

        info = FailedSwapsInfo(
            count=len(failed),
            total_failed_usdc=total_failed,
            return_required_usdc=return_required,
            admin_usdc_account=str(admin_usdc),
            vault_usdc_account=str(vault_reserve),
        )
        if return_required <= 0:
            return replace(info, note="No USDC left the vault for the failed legs.")
        manual_recovery = replace(
            info,
            shortfall=return_required,
            manual_recovery_required=True,
            note="USDC return failed - manual recovery required",
        )

        try:
            operator_balance = await self._rpc.get_token_account_balance(admin_usdc)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="error",
                event="usdc_return_failed",
                message="Could not read the operator USDC balance for the return transfer",
                vault_index=vault_index,
                amount=return_required,
                error=str(error),
                manual_recovery_required=True,
            )
            return manual_recovery

        return_amount = min(return_required, operator_balance)
        shortfall = return_required - return_amount
        if return_amount <= 0:
            log_event(
                self._logger,
                level="error",
                event="usdc_return_failed",
                message="Operator holds no USDC to return to the vault",
                vault_index=vault_index,
                amount=return_required,
                manual_recovery_required=True,
            )
            return manual_recovery

        instruction = token_transfer_ix(
            source=admin_usdc,
            destination=vault_reserve,
            owner=operator,
            amount=return_amount,
            token_program=token_program,
        )
        try:
            request = await builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET)
            signature = await executor.execute(
                request,
                rebuild=lambda: builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET),
                vault_index=vault_index,
                amount=return_amount,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="error",
                event="usdc_return_failed",
                message="Returning failed-swap USDC to the vault failed",
                vault_index=vault_index,
                amount=return_amount,
                error=str(error),
                manual_recovery_required=True,
            )
            return manual_recovery

        note = f"USDC successfully returned to vault (tx: {signature})"
        if shortfall > 0:
            note = f"{note}; shortfall of {shortfall} raw units requires manual recovery"
        log_event(
            self._logger,
            level="warning" if shortfall > 0 else "info",
            event="usdc_returned",
            message="Returned failed-swap USDC to the vault",
            vault_index=vault_index,
            amount=return_amount,
            shortfall=shortfall,
            tx_signature=signature,
            manual_recovery_required=shortfall > 0,
        )
        return replace(
            info,
            returned_amount=return_amount,
            return_transfer_signature=signature,
            shortfall=shortfall,
            manual_recovery_required=shortfall > 0,
            note=note,
        )

    def _submit_failure_record(self, leg: SwapLeg, *, vault: Pubkey, operator: Pubkey) -> None:
        network = self._settings.network
        tx_hash = leg.swap_signature or leg.transfer_signature or "unknown"

        async def write() -> None:
            asset = await self._store.find_asset_by_mint(leg.asset_mint, network)
            vault_record = await self._store.find_vault_by_address(str(vault))
            if asset is None or vault_record is None:
                log_event(
                    self._logger,
                    level="warning",
                    event="failed_transaction_record_skipped",
                    message="Asset or vault is not registered; failed swap was not recorded",
                    asset_mint=leg.asset_mint,
                    vault=str(vault),
                    asset_found=asset is not None,
                    vault_found=vault_record is not None,
                )
                return
            await self._store.record_failure(
                FailedTransactionRecord(
                    vault_id=vault_record.id,
                    user_id=str(operator),
                    usdc_amount=leg.target_amount / RAW_USDC_SCALE,
                    asset_id=asset.id,
                    tx_hash=tx_hash,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )
            )

        self._side_effects.submit("failed_transaction_record", write, asset_mint=leg.asset_mint, tx_hash=tx_hash)
