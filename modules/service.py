from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from modules.common import TransactionNotFound, log_event
from modules.events import (
    CreationRecord,
    DecodedEvent,
    DepositRecord,
    EventDiscriminatorDecoder,
    FactoryFeesUpdated,
    RedeemRecord,
    extract_creation,
    extract_deposit,
    extract_program_logs,
    extract_redeem,
)
from modules.runtime.context import EngineContext
from modules.swap import OrchestrationResult, RedeemResult, RedeemSwapOrchestrator, SwapOrchestrator

NO_DEPOSIT_MESSAGE = "No deposit data found in transaction logs"
NO_REDEEM_MESSAGE = "No redeem data found in transaction logs"


@dataclass(slots=True, frozen=True)
class FeeEventUpdate:
    event_type: str
    factory: str
    updated_by: str
    fee_config_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class FeeUpdateRecord:
    signature: str
    events: list[FeeEventUpdate] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ProcessedTransaction:
    """Outcome of registering a deposit or redeem found in a transaction's logs."""

    signature: str
    event_type: str
    record: dict[str, Any] | None = None
    vault_address: str | None = None
    vault_id: str | None = None
    slot: int | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TxEventService:
    """Inbound operations: vault swaps and transaction decoding."""

    def __init__(self, context: EngineContext, *, decoder: EventDiscriminatorDecoder | None = None) -> None:
        self._context = context
        self._logger: logging.Logger = context.logger
        self._rpc = context.rpc
        self._store = context.store
        self._side_effects = context.side_effects
        self._decoder = decoder or EventDiscriminatorDecoder(logger=context.logger)
        self._swap = SwapOrchestrator(context)
        self._redeem = RedeemSwapOrchestrator(context)

    async def execute_admin_swap(self, vault_index: int, amount_in_raw: int) -> OrchestrationResult:
        return await self._swap.execute(vault_index, amount_in_raw)

    async def execute_redeem_swap_admin(
        self,
        vault_index: int,
        share_amount: int,
        share_price_raw: int,
    ) -> RedeemResult:
        return await self._redeem.execute(vault_index, share_amount, share_price_raw)

    async def _fetch_transaction(self, signature: str) -> dict[str, Any]:
        transaction = await self._rpc.get_transaction(signature, commitment="confirmed")
        if transaction is None:
            raise TransactionNotFound(signature)
        return transaction

    @staticmethod
    def _log_messages(transaction: dict[str, Any]) -> list[str]:
        meta = transaction.get("meta") or {}
        messages = meta.get("logMessages") or []
        return [line for line in messages if isinstance(line, str)]

    async def decode_transaction(self, signature: str) -> list[DecodedEvent]:
        transaction = await self._fetch_transaction(signature)
        events = self._decoder.decode_logs(self._log_messages(transaction))
        log_event(
            self._logger,
            level="info",
            event="transaction_decoded",
            message="Transaction events decoded",
            tx_signature=signature,
            events=[event.event_type for event in events],
        )
        return events

    async def decode_factory_fees_event(self, signature: str) -> FeeUpdateRecord:
        events = await self.decode_transaction(signature)
        record = FeeUpdateRecord(signature=signature)
        for event in events:
            if not isinstance(event, FactoryFeesUpdated):
                continue
            try:
                fee_config = await self._store.update_fees_from_event(event)
            except Exception as error:
                log_event(
                    self._logger,
                    level="error",
                    event="fee_update_failed",
                    message="Failed to apply factory fee update",
                    tx_signature=signature,
                    factory=event.factory,
                    error=str(error),
                )
                record.events.append(
                    FeeEventUpdate(
                        event_type=event.event_type,
                        factory=event.factory,
                        updated_by=event.updated_by,
                        error=str(error),
                    )
                )
                continue
            record.events.append(
                FeeEventUpdate(
                    event_type=event.event_type,
                    factory=event.factory,
                    updated_by=event.updated_by,
                    fee_config_id=fee_config.id,
                )
            )
        return record

    async def read_vault_creation(self, signature: str) -> CreationRecord | None:
        transaction = await self._fetch_transaction(signature)
        creation = extract_creation(extract_program_logs(self._log_messages(transaction)))
        if not creation.is_complete():
            log_event(
                self._logger,
                level="info",
                event="vault_creation_incomplete",
                message="Transaction logs do not describe a complete vault creation",
                tx_signature=signature,
            )
            return None
        return creation

    async def process_deposit_transaction(self, signature: str) -> ProcessedTransaction:
        transaction = await self._fetch_transaction(signature)
        deposit = extract_deposit(extract_program_logs(self._log_messages(transaction)))
        if deposit.is_empty():
            return ProcessedTransaction(signature=signature, event_type="VaultDeposited", message=NO_DEPOSIT_MESSAGE)

        result = await self._register(
            signature,
            event_type="VaultDeposited",
            record=deposit,
            slot=transaction.get("slot"),
        )
        if result.vault_address and deposit.swap_outputs_by_mint:
            outputs = dict(deposit.swap_outputs_by_mint)
            vault_address = result.vault_address
            self._side_effects.submit(
                "locked_assets_increment",
                lambda: self._store.increment_total_asset_locked(vault_address, outputs),
                vault=vault_address,
            )
        self._side_effects.submit("cache_invalidation", self._store.invalidate_cache)
        return result

    async def process_redeem_transaction(self, signature: str) -> ProcessedTransaction:
        transaction = await self._fetch_transaction(signature)
        redeem = extract_redeem(extract_program_logs(self._log_messages(transaction)))
        if redeem.is_empty():
            return ProcessedTransaction(signature=signature, event_type="VaultRedeemed", message=NO_REDEEM_MESSAGE)

        result = await self._register(
            signature,
            event_type="VaultRedeemed",
            record=redeem,
            slot=transaction.get("slot"),
        )
        self._side_effects.submit("cache_invalidation", self._store.invalidate_cache)
        return result

    async def _register(
        self,
        signature: str,
        *,
        event_type: str,
        record: DepositRecord | RedeemRecord,
        slot: int | None,
    ) -> ProcessedTransaction:
        vault = None
        if record.vault_name and record.vault_symbol:
            vault = await self._store.find_vault_by_name_and_symbol(record.vault_name, record.vault_symbol)
        if vault is None:
            log_event(
                self._logger,
                level="warning",
                event="vault_unresolved",
                message="Vault could not be resolved by name and symbol",
                tx_signature=signature,
                vault_name=record.vault_name,
                vault_symbol=record.vault_symbol,
            )

        if isinstance(record, DepositRecord):
            action = "deposit_completed"
            description = (
                f"Deposit completed: {record.amount} tokens deposited into "
                f"{record.vault_name} ({record.vault_symbol})"
            )
            metadata: dict[str, Any] = {
                "amount": record.amount,
                "vault_tokens_minted": record.vault_tokens_to_mint,
                "entry_fee": record.entry_fee,
                "management_fee": record.management_fee,
                "net_amount": record.net_amount,
            }
        else:
            action = "redeem_completed"
            description = (
                f"Redeem completed: {record.vault_tokens_to_redeem} vault tokens redeemed from "
                f"{record.vault_name} ({record.vault_symbol})"
            )
            metadata = {
                "vault_tokens_redeemed": record.vault_tokens_to_redeem,
                "net_stablecoin_amount": record.net_stablecoin_amount,
                "exit_fee": record.exit_fee,
                "management_fee": record.management_fee,
                "total_fees": record.total_fees,
            }
        metadata.update(
            {
                "vault_name": record.vault_name,
                "vault_symbol": record.vault_symbol,
                "vault_index": record.vault_index,
                "user_address": record.user,
                "timestamp": record.timestamp,
                "block_number": slot,
            }
        )

        vault_id = vault.id if vault else None
        self._side_effects.submit(
            "audit_record",
            lambda: self._store.record_transaction(
                action=action,
                description=description,
                actor=record.user or "",
                vault_id=vault_id,
                metadata=metadata,
                signature=signature,
            ),
            action=action,
            tx_signature=signature,
        )
        log_event(
            self._logger,
            level="info",
            event="transaction_processed",
            message="Vault transaction processed",
            tx_signature=signature,
            event_type=event_type,
            vault_id=vault_id,
        )
        return ProcessedTransaction(
            signature=signature,
            event_type=event_type,
            record=record.to_dict(),
            vault_address=vault.address if vault else None,
            vault_id=vault_id,
            slot=slot,
        )
