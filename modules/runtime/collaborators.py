from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol

from modules.events import FactoryFeesUpdated


@dataclass(slots=True, frozen=True)
class AssetRecord:
    id: str
    mint: str
    network: str
    symbol: str = ""
    name: str = ""


@dataclass(slots=True, frozen=True)
class VaultRecord:
    id: str
    address: str
    name: str = ""
    symbol: str = ""


@dataclass(slots=True, frozen=True)
class FeeConfig:
    id: str
    entry_fee_bps: int
    exit_fee_bps: int
    vault_creation_fee_usdc: int
    min_management_fee_bps: int
    max_management_fee_bps: int


@dataclass(slots=True, frozen=True)
class FailedTransactionRecord:
    vault_id: str
    user_id: str
    usdc_amount: float
    asset_id: str
    tx_hash: str
    timestamp: str
    status: str = "failed"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AssetCatalog(Protocol):
    async def find_asset_by_mint(self, mint: str, network: str) -> AssetRecord | None:
        ...


class VaultRegistry(Protocol):
    async def find_vault_by_address(self, address: str) -> VaultRecord | None:
        ...

    async def find_vault_by_name_and_symbol(self, name: str, symbol: str) -> VaultRecord | None:
        ...

    async def increment_total_asset_locked(self, address: str, outputs_by_mint: dict[str, int]) -> None:
        ...


class FeeScheduleStore(Protocol):
    async def update_fees_from_event(self, event: FactoryFeesUpdated) -> FeeConfig:
        ...


class AuditHistory(Protocol):
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
        ...


class FailedTransactionLedger(Protocol):
    async def record_failure(self, record: FailedTransactionRecord) -> None:
        ...


class CacheInvalidator(Protocol):
    async def invalidate_cache(self) -> None:
        ...


class EngineStore(
    AssetCatalog,
    VaultRegistry,
    FeeScheduleStore,
    AuditHistory,
    FailedTransactionLedger,
    CacheInvalidator,
    Protocol,
):
    """Every outbound collaborator the engine talks to, as one store."""
