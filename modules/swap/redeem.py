from __future__ import annotations

import asyncio
from decimal import Decimal
from solders.pubkey import Pubkey

from modules.chain import RpcMethodError
from modules.common import NoUnderlyingAssets, VaultNotFound, log_event, run_in_batches
from modules.vault import (
    AddressDeriver,
    UnderlyingAsset,
    associated_token_address,
    read_factory_admin,
    withdraw_underlying_to_user_ix,
)

from .builder import RETURN_TRANSFER_BUDGET, TransactionBuilder
from .executor import TransactionExecutor
from .orchestrator import (
    BPS_DENOMINATOR,
    RAW_USDC_SCALE,
    VaultSwapOrchestratorBase,
    validate_positive_amount,
    validate_vault_index,
)
from .types import RedeemLegOutcome, RedeemResult, SwapLeg


def required_usdc_for(shares: int, share_price_raw: int) -> int:
    return shares * share_price_raw // RAW_USDC_SCALE


def adjusted_shares_for(*, shares: int, share_price_raw: int, required_usdc: int, reserve_balance: int) -> int:
    """Largest share count the reserve can currently cover at ``share_price_raw``."""
    if reserve_balance >= required_usdc:
        return shares
    return reserve_balance * RAW_USDC_SCALE // share_price_raw


def withdraw_amount_for(
    *,
    required_usdc: int,
    allocation_bps: int,
    decimals: int,
    price_raw: int,
    vault_balance: int,
) -> int:
    if price_raw <= 0 or vault_balance <= 0:
        return 0
    usd_allocation = required_usdc * allocation_bps // BPS_DENOMINATOR
    tokens_needed = usd_allocation * (10**decimals) // price_raw
    return min(tokens_needed, vault_balance)


def format_share_price(share_price_raw: int) -> str:
    return format((Decimal(share_price_raw) / Decimal(RAW_USDC_SCALE)).normalize(), "f")


class RedeemSwapOrchestrator(VaultSwapOrchestratorBase):
    """Sells a USD-value slice of each underlying asset back into the vault reserve.

    The required stablecoin is ``shares * share_price_raw / 1e6`` with fees left
    to the on-chain finalize step. When the reserve still cannot cover it after
    the swaps, ``adjusted_shares`` reports how many shares are redeemable now.
    """

    async def execute(self, vault_index: int, shares: int, share_price_raw: int) -> RedeemResult:
        validate_vault_index(vault_index)
        validate_positive_amount(shares, name="shares")
        validate_positive_amount(share_price_raw, name="share_price_raw")
        signer, _, builder, executor = self._context.require_swap_stack()
        operator = signer.pubkey()

        deriver = AddressDeriver(self._settings.redeem_program_id)
        factory, vault, vault_reserve = deriver.vault_addresses(vault_index)
        snapshot = await self._load_vault(vault)
        assets = snapshot.active_assets()
        if not assets:
            raise NoUnderlyingAssets(str(vault))

        factory_admin = await self._factory_admin(factory, operator=operator)
        required_usdc = required_usdc_for(shares, share_price_raw)
        log_event(
            self._logger,
            level="info",
            event="redeem_swap_started",
            message="Redeem swap started",
            vault_index=vault_index,
            vault=str(vault),
            shares=shares,
            share_price_raw=share_price_raw,
            required_usdc=required_usdc,
            total_assets=snapshot.total_assets,
            total_supply=snapshot.total_supply,
            asset_count=len(assets),
        )

        result = RedeemResult(
            vault_index=vault_index,
            shares=shares,
            share_price_raw=share_price_raw,
            required_usdc=required_usdc,
            vault_usdc_balance=0,
            adjusted_shares=0,
            share_price_after=format_share_price(share_price_raw),
            total_value_usdc_raw=required_usdc,
        )

        legs = await self._plan_redeem_legs(assets, vault=vault, vault_index=vault_index, required_usdc=required_usdc)
        if not legs:
            return self._finish_early(result, legs, note="No assets could be prepared for redemption.")

        prepared = await self._prepare_recipient_accounts(
            legs,
            recipient=factory_admin,
            vault_reserve=vault_reserve,
            vault_index=vault_index,
            builder=builder,
            executor=executor,
        )
        quoted = await self._fetch_quotes(prepared, vault_index=vault_index) if prepared else []
        ready = await self._fetch_instructions(quoted, vault_index=vault_index, builder=builder) if quoted else []
        if not ready:
            if not prepared:
                note = "No assets could be prepared for redemption."
            elif not quoted:
                note = "No valid quotes could be obtained."
            else:
                note = "No valid swaps could be prepared."
            return self._finish_early(result, legs, note=note)

        async def withdraw(leg: SwapLeg) -> SwapLeg:
            return await self._withdraw_leg(
                leg,
                vault_index=vault_index,
                factory=factory,
                vault=vault,
                recipient=factory_admin,
                builder=builder,
                executor=executor,
            )

        await run_in_batches(ready, withdraw, batch_size=self._batch_size)
        withdrawn = [leg for leg in ready if not leg.failed]
        if not withdrawn:
            return self._finish_early(result, legs, note="No withdrawals succeeded.")

        async def swap(leg: SwapLeg) -> SwapLeg:
            await self._refresh_leg(leg, vault_index=vault_index, builder=builder)
            leg = await self._execute_swap(leg, vault_index=vault_index, builder=builder, executor=executor)
            if leg.failed:
                log_event(
                    self._logger,
                    level="error",
                    event="redeem_swap_stranded_asset",
                    message="Withdrawn asset was not swapped back; it remains in the operator account",
                    vault_index=vault_index,
                    asset_mint=leg.asset_mint,
                    amount=leg.target_amount,
                    withdraw_signature=leg.transfer_signature,
                    manual_recovery_required=True,
                )
            return leg

        await run_in_batches(withdrawn, swap, batch_size=self._batch_size)

        for leg in withdrawn:
            if leg.failed:
                continue
            result.swaps.append(RedeemLegOutcome.from_leg(leg))
            self._submit_audit(
                action="swap_completed",
                description=f"Admin redeem swap executed for {leg.asset_mint} -> USDC",
                actor=str(operator),
                vault_address=str(vault),
                metadata={
                    "vault_index": vault_index,
                    "vault_address": str(vault),
                    "asset_mint": leg.asset_mint,
                    "input_amount": str(leg.target_amount),
                    "withdraw_signature": leg.transfer_signature,
                },
                signature=leg.swap_signature,
            )
        result.errors = [RedeemLegOutcome.from_leg(leg) for leg in legs if leg.failed]

        reserve_balance = await self._rpc.get_token_account_balance(vault_reserve)
        result.vault_usdc_balance = reserve_balance
        result.adjusted_shares = adjusted_shares_for(
            shares=shares,
            share_price_raw=share_price_raw,
            required_usdc=required_usdc,
            reserve_balance=reserve_balance,
        )

        self._submit_audit(
            action="swap_completed",
            description=f"Admin redeem swaps completed for vault index {vault_index}",
            actor=str(operator),
            vault_address=str(vault),
            metadata={
                "vault_index": vault_index,
                "vault_address": str(vault),
                "legs": len(result.swaps),
                "vault_usdc_balance": str(reserve_balance),
                "required_usdc": str(required_usdc),
                "adjusted_shares": str(result.adjusted_shares),
            },
            signature=None,
        )
        self._submit_cache_invalidation()
        log_event(
            self._logger,
            level="info",
            event="redeem_swap_finished",
            message="Redeem swap finished",
            vault_index=vault_index,
            required_usdc=required_usdc,
            vault_usdc_balance=reserve_balance,
            adjusted_shares=result.adjusted_shares,
            succeeded=len(result.swaps),
            failed=len(result.errors),
        )
        return result

    async def _factory_admin(self, factory: Pubkey, *, operator: Pubkey) -> Pubkey:
        account = await self._rpc.get_account_info(factory)
        if account is None or not account.data:
            raise VaultNotFound(str(factory))
        admin = Pubkey.from_string(read_factory_admin(account.data))
        if admin != operator:
            log_event(
                self._logger,
                level="warning",
                event="redeem_admin_mismatch",
                message="Operator key is not the factory admin; withdrawals will fail their constraints",
                operator=str(operator),
                factory_admin=str(admin),
            )
        return admin

    async def _vault_asset_balance(self, account: Pubkey) -> int:
        try:
            return await self._rpc.get_token_account_balance(account)
        except RpcMethodError as error:
            log_event(
                self._logger,
                level="warning",
                event="vault_asset_balance_unavailable",
                message="Vault asset account balance could not be read",
                token_account=str(account),
                error=str(error),
            )
            return 0

    async def _plan_redeem_legs(
        self,
        assets: list[UnderlyingAsset],
        *,
        vault: Pubkey,
        vault_index: int,
        required_usdc: int,
    ) -> list[SwapLeg]:
        async def plan(asset: UnderlyingAsset) -> SwapLeg | None:
            token_program, decimals = await self._mint_info(asset.mint)
            vault_asset = associated_token_address(vault, Pubkey.from_string(asset.mint), token_program)
            vault_balance = await self._vault_asset_balance(vault_asset)
            if vault_balance <= 0:
                log_event(
                    self._logger,
                    level="info",
                    event="redeem_asset_skipped",
                    message="Vault holds none of this asset",
                    vault_index=vault_index,
                    asset_mint=asset.mint,
                )
                return None

            price_raw = await self._jupiter.price_raw(asset.mint, retry_policy=self._retry, vault_index=vault_index)
            if price_raw <= 0:
                await self._flag_price_unavailable(asset.mint, vault_index=vault_index)
                return None

            withdraw = withdraw_amount_for(
                required_usdc=required_usdc,
                allocation_bps=asset.allocation_bps,
                decimals=decimals,
                price_raw=price_raw,
                vault_balance=vault_balance,
            )
            if withdraw <= 0:
                return None
            return SwapLeg(
                asset_mint=asset.mint,
                allocation_bps=asset.allocation_bps,
                target_amount=withdraw,
                input_mint=asset.mint,
                output_mint=self._stablecoin_mint,
                token_program=token_program,
                source_account=vault_asset,
                decimals=decimals,
            )

        planned = await run_in_batches(assets, plan, batch_size=self._batch_size)
        legs: list[SwapLeg] = []
        for asset, outcome in zip(assets, planned):
            if isinstance(outcome, BaseException):
                log_event(
                    self._logger,
                    level="warning",
                    event="redeem_asset_prepare_failed",
                    message="Failed to prepare asset for redemption",
                    vault_index=vault_index,
                    asset_mint=asset.mint,
                    error=str(outcome),
                )
            elif outcome is not None:
                legs.append(outcome)
        return legs

    async def _flag_price_unavailable(self, mint: str, *, vault_index: int) -> None:
        try:
            asset = await self._store.find_asset_by_mint(mint, self._settings.network)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            asset = None
            log_event(
                self._logger,
                level="warning",
                event="asset_catalog_lookup_failed",
                message="Asset catalog lookup failed",
                asset_mint=mint,
                error=str(error),
            )
        log_event(
            self._logger,
            level="warning",
            event="redeem_asset_price_unavailable",
            message="Skipping asset without a usable spot price",
            vault_index=vault_index,
            asset_mint=mint,
            asset_id=asset.id if asset else None,
            asset_symbol=asset.symbol if asset else None,
        )

    async def _prepare_recipient_accounts(
        self,
        legs: list[SwapLeg],
        *,
        recipient: Pubkey,
        vault_reserve: Pubkey,
        vault_index: int,
        builder: TransactionBuilder,
        executor: TransactionExecutor,
    ) -> list[SwapLeg]:
        async def worker(leg: SwapLeg) -> SwapLeg:
            leg.destination_account = vault_reserve
            try:
                await self._ensure_token_account(
                    owner=recipient,
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

    async def _withdraw_leg(
        self,
        leg: SwapLeg,
        *,
        vault_index: int,
        factory: Pubkey,
        vault: Pubkey,
        recipient: Pubkey,
        builder: TransactionBuilder,
        executor: TransactionExecutor,
    ) -> SwapLeg:
        mint = Pubkey.from_string(leg.asset_mint)
        try:
            if leg.source_account is None:
                raise RuntimeError("Vault asset account is not resolved.")
            instruction = withdraw_underlying_to_user_ix(
                program_id=Pubkey.from_string(self._settings.redeem_program_id),
                user=recipient,
                factory=factory,
                vault=vault,
                vault_asset_account=leg.source_account,
                user_asset_account=associated_token_address(recipient, mint, leg.token_program),
                mint=mint,
                vault_index=vault_index,
                amount=leg.target_amount,
                decimals=leg.decimals,
                token_program=leg.token_program,
            )
            request = await builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET)
            leg.transfer_signature = await executor.execute(
                request,
                rebuild=lambda: builder.simple_request([instruction], compute_budget=RETURN_TRANSFER_BUDGET),
                vault_index=vault_index,
                asset_mint=leg.asset_mint,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self._fail_leg(leg, "withdraw", error, vault_index=vault_index)
        return leg

    async def _refresh_leg(self, leg: SwapLeg, *, vault_index: int, builder: TransactionBuilder) -> None:
        """Re-quote right before building; keeps the prepared quote if the refresh fails."""
        if leg.destination_account is None:
            return
        try:
            quote = await self._quote_leg(leg, vault_index=vault_index)
            instructions = await self._retry.with_retry(
                lambda: builder.fetch_instructions(quote=quote, destination=leg.destination_account),
                operation_name="swap_instructions",
                vault_index=vault_index,
                asset_mint=leg.asset_mint,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="warning",
                event="redeem_quote_refresh_failed",
                message="Quote refresh failed; using the prepared quote",
                vault_index=vault_index,
                asset_mint=leg.asset_mint,
                error=str(error),
            )
            return
        leg.quote = quote
        leg.instructions = instructions

    def _finish_early(self, result: RedeemResult, legs: list[SwapLeg], *, note: str) -> RedeemResult:
        result.note = note
        result.required_usdc = 0
        result.vault_usdc_balance = 0
        result.adjusted_shares = 0
        result.errors = [RedeemLegOutcome.from_leg(leg) for leg in legs if leg.failed]
        log_event(
            self._logger,
            level="warning",
            event="redeem_swap_aborted",
            message=note,
            vault_index=result.vault_index,
            failed=len(result.errors),
        )
        return result
