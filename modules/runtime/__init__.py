from .collaborators import (
    AssetCatalog,
    AssetRecord,
    AuditHistory,
    CacheInvalidator,
    EngineStore,
    FailedTransactionLedger,
    FailedTransactionRecord,
    FeeConfig,
    FeeScheduleStore,
    VaultRecord,
    VaultRegistry,
)
from .context import EngineContext, parse_private_key
from .logging import setup_logger
from .settings import AppSettings
from .side_effects import SideEffectQueue

__all__ = [
    "AppSettings",
    "AssetCatalog",
    "AssetRecord",
    "AuditHistory",
    "CacheInvalidator",
    "EngineContext",
    "EngineStore",
    "FailedTransactionLedger",
    "FailedTransactionRecord",
    "FeeConfig",
    "FeeScheduleStore",
    "SideEffectQueue",
    "VaultRecord",
    "VaultRegistry",
    "parse_private_key",
    "setup_logger",
]
