from __future__ import annotations

import logging
from typing import Any

from modules.common import log_event
from modules.events import FactoryFeesUpdated
from modules.runtime.collaborators import AssetRecord, FailedTransactionRecord, FeeConfig, VaultRecord


class LoggingStore:
    """Collaborator stand-in for runs without Firestore or Redis: lookups miss, writes are logged."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _skipped(self, operation: str, **fields: Any) -> None:
        log_event(
            self._logger,
            level="info",
            event="store_write_skipped",
            message="Storage disabled; write logged only",
            operation=operation,
            **fields,
        )

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def find_asset_by_mint(self, mint: str, network: str) -> AssetRecord | None:
        return None

    async def find_vault_by_address(self, address: str) -> VaultRecord | None:
        return None

    async def find_vault_by_name_and_symbol(self, name: str, symbol: str) -> VaultRecord | None:
        return None

    async def increment_total_asset_locked(self, address: str, outputs_by_mint: dict[str, int]) -> None:
        self._skipped("increment_total_asset_locked", vault=address, outputs=outputs_by_mint)

    async def update_fees_from_event(self, event: FactoryFeesUpdated) -> FeeConfig:
        self._skipped("update_fees_from_event", factory=event.factory)
        return FeeConfig(
            id="",
            entry_fee_bps=event.new_entry_fee_bps,
            exit_fee_bps=event.new_exit_fee_bps,
            vault_creation_fee_usdc=event.new_vault_creation_fee_usdc,
            min_management_fee_bps=event.new_min_management_fee_bps,
            max_management_fee_bps=event.new_max_management_fee_bps,
        )

    async def record_transaction(
        self,
        *,
        action: str,
        description: str,
        actor: str,
        vault_id: str | None,
        metadata: dict[str, Any],
        signature: str | None,
    ) -> None:
        self._skipped(
            "record_transaction",
            action=action,
            description=description,
            actor=actor,
            vault_id=vault_id,
            tx_signature=signature,
            metadata=metadata,
        )

    async def record_failure(self, record: FailedTransactionRecord) -> None:
        self._skipped("record_failure", **record.to_dict())

    async def invalidate_cache(self) -> None:
        self._skipped("invalidate_cache")
