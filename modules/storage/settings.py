from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

DEFAULT_CACHE_PATTERNS = ("vaults:*", "vault-deposit:*", "history:findTransactionHistory:*")
DEFAULT_CACHE_KEYS = ("dashboard:vault-stats",)


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _split_csv(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    firestore_project_id: str | None
    assets_collection: str
    vaults_collection: str
    fees_collection: str
    history_collection: str
    failed_transactions_collection: str
    cache_patterns: tuple[str, ...]
    cache_keys: tuple[str, ...]
    cache_scan_count: int

    @classmethod
    def from_env(cls) -> "StorageSettings":
        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
            assets_collection=os.getenv("FIRESTORE_ASSETS_COLLECTION", "asset_allocations"),
            vaults_collection=os.getenv("FIRESTORE_VAULTS_COLLECTION", "vault_factories"),
            fees_collection=os.getenv("FIRESTORE_FEES_COLLECTION", "fees_management"),
            history_collection=os.getenv("FIRESTORE_HISTORY_COLLECTION", "history"),
            failed_transactions_collection=os.getenv(
                "FIRESTORE_FAILED_TRANSACTIONS_COLLECTION",
                "failed_transactions",
            ),
            cache_patterns=_split_csv(os.getenv("REDIS_CACHE_PATTERNS"), DEFAULT_CACHE_PATTERNS),
            cache_keys=_split_csv(os.getenv("REDIS_CACHE_KEYS"), DEFAULT_CACHE_KEYS),
            cache_scan_count=max(10, to_int(os.getenv("REDIS_CACHE_SCAN_COUNT"), 500)),
        )
