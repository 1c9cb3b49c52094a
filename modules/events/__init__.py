from .decoder import EVENT_DISCRIMINATORS, EventDiscriminatorDecoder, decode_generic
from .log_extractor import (
    CreationRecord,
    DepositRecord,
    RedeemRecord,
    extract_creation,
    extract_deposit,
    extract_program_logs,
    extract_redeem,
)
from .schemas import HeuristicVaultCreatedSchema, VaultCreatedSchema, get_vault_created_schema
from .types import (
    DecodedEvent,
    FactoryAssetsUpdated,
    FactoryFeesUpdated,
    FactoryInitialized,
    ProtocolFeesCollected,
    UnknownEvent,
    VaultCreated,
    VaultDeposited,
    VaultFeesUpdated,
)

__all__ = [
    "CreationRecord",
    "DecodedEvent",
    "DepositRecord",
    "EVENT_DISCRIMINATORS",
    "EventDiscriminatorDecoder",
    "FactoryAssetsUpdated",
    "FactoryFeesUpdated",
    "FactoryInitialized",
    "HeuristicVaultCreatedSchema",
    "ProtocolFeesCollected",
    "RedeemRecord",
    "UnknownEvent",
    "VaultCreated",
    "VaultCreatedSchema",
    "VaultDeposited",
    "VaultFeesUpdated",
    "decode_generic",
    "extract_creation",
    "extract_deposit",
    "extract_program_logs",
    "extract_redeem",
    "get_vault_created_schema",
]
