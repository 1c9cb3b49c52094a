from __future__ import annotations

import asyncio
from typing import Any

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from modules.common import log_event
from modules.events import FactoryFeesUpdated
from modules.runtime.collaborators import AssetRecord, FailedTransactionRecord, FeeConfig, VaultRecord

from .helpers import apply_fee_event as _apply_fee_event
from .helpers import apply_locked_outputs as _apply_locked_outputs


class FirestoreStorageOps:
    async def _first(self, collection: str, *filters: tuple[str, Any]) -> Any | None:
        query: Any = self._require_firestore().collection(collection)
        for field_path, value in filters:
            query = query.where(filter=FieldFilter(field_path, "==", value))
        snapshots = await asyncio.to_thread(query.limit(1).get)
        return snapshots[0] if snapshots else None

    @staticmethod
    def _vault_record(snapshot: Any) -> VaultRecord:
        data = snapshot.to_dict() or {}
        return VaultRecord(
            id=snapshot.id,
            address=str(data.get("vaultAddress") or ""),
            name=str(data.get("vaultName") or ""),
            symbol=str(data.get("vaultSymbol") or ""),
        )

    async def find_asset_by_mint(self, mint: str, network: str) -> AssetRecord | None:
        snapshot = await self._first(
            self.settings.assets_collection,
            ("mintAddress", mint),
            ("network", network),
        )
        if snapshot is None:
            return None
        data = snapshot.to_dict() or {}
        return AssetRecord(
            id=snapshot.id,
            mint=mint,
            network=network,
            symbol=str(data.get("symbol") or ""),
            name=str(data.get("name") or ""),
        )

    async def find_vault_by_address(self, address: str) -> VaultRecord | None:
        snapshot = await self._first(self.settings.vaults_collection, ("vaultAddress", address))
        return self._vault_record(snapshot) if snapshot is not None else None

    async def find_vault_by_name_and_symbol(self, name: str, symbol: str) -> VaultRecord | None:
        snapshot = await self._first(
            self.settings.vaults_collection,
            ("vaultName", name),
            ("vaultSymbol", symbol),
        )
        return self._vault_record(snapshot) if snapshot is not None else None

    async def increment_total_asset_locked(self, address: str, outputs_by_mint: dict[str, int]) -> None:
        snapshot = await self._first(self.settings.vaults_collection, ("vaultAddress", address))
        if snapshot is None:
            log_event(
                self._logger,
                level="warning",
                event="locked_assets_vault_missing",
                message="Vault is not registered; locked asset totals left unchanged",
                vault=address,
            )
            return

        data = snapshot.to_dict() or {}
        assets, updated = _apply_locked_outputs(list(data.get("underlyingAssets") or []), outputs_by_mint)
        if not updated:
            return
        payload = {"underlyingAssets": assets, "updatedAt": firestore.SERVER_TIMESTAMP}
        await asyncio.to_thread(snapshot.reference.update, payload)
        log_event(
            self._logger,
            level="info",
            event="locked_assets_incremented",
            message="Vault locked asset totals updated",
            vault=address,
            mints=sorted(outputs_by_mint),
        )

    async def update_fees_from_event(self, event: FactoryFeesUpdated) -> FeeConfig:
        query = (
            self._require_firestore()
            .collection(self.settings.fees_collection)
            .where(filter=FieldFilter("isActive", "==", True))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(1)
        )
        snapshots = await asyncio.to_thread(query.get)
        if not snapshots:
            raise LookupError("No active fee configuration found to update")

        snapshot = snapshots[0]
        data = snapshot.to_dict() or {}
        payload = {
            "fees": _apply_fee_event(list(data.get("fees") or []), event),
            "lastFactoryEvent": {
                "factory": event.factory,
                "updatedBy": event.updated_by,
                "timestamp": event.timestamp,
            },
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        await asyncio.to_thread(snapshot.reference.update, payload)
        log_event(
            self._logger,
            level="info",
            event="fee_config_updated",
            message="Fee configuration updated from factory event",
            fee_config_id=snapshot.id,
            factory=event.factory,
        )
        return FeeConfig(
            id=snapshot.id,
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
        payload: dict[str, Any] = {
            "action": action,
            "description": description,
            "performedBy": actor,
            "vaultId": vault_id,
            "relatedEntity": "transaction",
            "metadata": metadata,
            "transactionSignature": signature,
            "createdAt": firestore.SERVER_TIMESTAMP,
        }
        collection = self._require_firestore().collection(self.settings.history_collection)
        await asyncio.to_thread(collection.add, payload)

    async def record_failure(self, record: FailedTransactionRecord) -> None:
        payload = {
            "vaultId": record.vault_id,
            "user": record.user_id,
            "usdcAmt": record.usdc_amount,
            "assetId": record.asset_id,
            "txhash": record.tx_hash,
            "status": record.status,
            "timestamp": record.timestamp,
            "createdAt": firestore.SERVER_TIMESTAMP,
        }
        collection = self._require_firestore().collection(self.settings.failed_transactions_collection)
        await asyncio.to_thread(collection.add, payload)
        log_event(
            self._logger,
            level="info",
            event="failed_transaction_recorded",
            message="Failed transaction record saved",
            tx_signature=record.tx_hash,
            asset_id=record.asset_id,
        )

    def _require_firestore(self) -> firestore.Client:
        if self._firestore is None:
            raise RuntimeError("Firestore client is not initialized.")
        return self._firestore
