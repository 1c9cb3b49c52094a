from __future__ import annotations

import struct
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Union

from solders.pubkey import Pubkey

# field kinds used by fixed-layout events; sizes are little-endian widths
FIELD_FORMATS = {
    "pubkey": None,
    "u8": "<B",
    "u16": "<H",
    "u64": "<Q",
    "i64": "<q",
}
FIELD_SIZES = {"pubkey": 32, "u8": 1, "u16": 2, "u64": 8, "i64": 8}


def unix_to_iso(timestamp: int | None) -> str | None:
    if timestamp is None:
        return None
    try:
        return datetime.fromtimestamp(timestamp, timezone.utc).isoformat().replace("+00:00", "Z")
    except (OverflowError, OSError, ValueError):
        return None


class FixedLayoutEvent:
    """Mixin for events whose payload is a fixed sequence of little-endian fields."""

    __slots__ = ()

    event_type: ClassVar[str]
    LAYOUT: ClassVar[tuple[tuple[str, str], ...]]

    discriminator: str

    @classmethod
    def layout_size(cls) -> int:
        return 8 + sum(FIELD_SIZES[kind] for _, kind in cls.LAYOUT)

    @classmethod
    def unpack(cls, discriminator: str, data: bytes) -> "FixedLayoutEvent":
        if len(data) < cls.layout_size():
            raise ValueError(f"{cls.event_type} payload too short: {len(data)} < {cls.layout_size()}")
        offset = 8
        values: dict[str, Any] = {}
        for name, kind in cls.LAYOUT:
            size = FIELD_SIZES[kind]
            chunk = data[offset : offset + size]
            if kind == "pubkey":
                values[name] = str(Pubkey.from_bytes(chunk))
            else:
                values[name] = struct.unpack(FIELD_FORMATS[kind], chunk)[0]
            offset += size
        return cls(discriminator=discriminator, **values)  # type: ignore[call-arg]

    def encode(self) -> bytes:
        parts = [bytes.fromhex(self.discriminator)]
        for name, kind in self.LAYOUT:
            value = getattr(self, name)
            if kind == "pubkey":
                parts.append(bytes(Pubkey.from_string(value)))
            else:
                parts.append(struct.pack(FIELD_FORMATS[kind], value))
        return b"".join(parts)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"event_type": self.event_type}
        payload.update(asdict(self))  # type: ignore[call-overload]
        if "timestamp" in payload:
            payload["timestamp_iso"] = unix_to_iso(payload["timestamp"])
        return payload


@dataclass(slots=True, frozen=True)
class FactoryAssetsUpdated(FixedLayoutEvent):
    discriminator: str
    factory: str
    updated_by: str
    old_assets_count: int
    new_assets_count: int
    timestamp: int

    event_type: ClassVar[str] = "FactoryAssetsUpdated"
    LAYOUT: ClassVar[tuple[tuple[str, str], ...]] = (
        ("factory", "pubkey"),
        ("updated_by", "pubkey"),
        ("old_assets_count", "u8"),
        ("new_assets_count", "u8"),
        ("timestamp", "i64"),
    )


@dataclass(slots=True, frozen=True)
class FactoryInitialized(FixedLayoutEvent):
    discriminator: str
    factory: str
    initializer: str
    timestamp: int

    event_type: ClassVar[str] = "FactoryInitialized"
    LAYOUT: ClassVar[tuple[tuple[str, str], ...]] = (
        ("factory", "pubkey"),
        ("initializer", "pubkey"),
        ("timestamp", "i64"),
    )


@dataclass(slots=True, frozen=True)
class FactoryFeesUpdated(FixedLayoutEvent):
    discriminator: str
    factory: str
    updated_by: str
    old_entry_fee_bps: int
    new_entry_fee_bps: int
    old_exit_fee_bps: int
    new_exit_fee_bps: int
    old_vault_creation_fee_usdc: int
    new_vault_creation_fee_usdc: int
    old_min_management_fee_bps: int
    new_min_management_fee_bps: int
    old_max_management_fee_bps: int
    new_max_management_fee_bps: int
    timestamp: int

    event_type: ClassVar[str] = "FactoryFeesUpdated"
    LAYOUT: ClassVar[tuple[tuple[str, str], ...]] = (
        ("factory", "pubkey"),
        ("updated_by", "pubkey"),
        ("old_entry_fee_bps", "u16"),
        ("new_entry_fee_bps", "u16"),
        ("old_exit_fee_bps", "u16"),
        ("new_exit_fee_bps", "u16"),
        ("old_vault_creation_fee_usdc", "u64"),
        ("new_vault_creation_fee_usdc", "u64"),
        ("old_min_management_fee_bps", "u16"),
        ("new_min_management_fee_bps", "u16"),
        ("old_max_management_fee_bps", "u16"),
        ("new_max_management_fee_bps", "u16"),
        ("timestamp", "i64"),
    )


@dataclass(slots=True, frozen=True)
class VaultFeesUpdated(FixedLayoutEvent):
    discriminator: str
    vault: str
    updated_by: str
    old_management_fee_bps: int
    new_management_fee_bps: int
    timestamp: int

    event_type: ClassVar[str] = "VaultFeesUpdated"
    LAYOUT: ClassVar[tuple[tuple[str, str], ...]] = (
        ("vault", "pubkey"),
        ("updated_by", "pubkey"),
        ("old_management_fee_bps", "u16"),
        ("new_management_fee_bps", "u16"),
        ("timestamp", "i64"),
    )


@dataclass(slots=True, frozen=True)
class ProtocolFeesCollected(FixedLayoutEvent):
    discriminator: str
    vault: str
    collector: str
    fee_amount: int
    timestamp: int

    event_type: ClassVar[str] = "ProtocolFeesCollected"
    LAYOUT: ClassVar[tuple[tuple[str, str], ...]] = (
        ("vault", "pubkey"),
        ("collector", "pubkey"),
        ("fee_amount", "u64"),
        ("timestamp", "i64"),
    )


@dataclass(slots=True, frozen=True)
class VaultDeposited(FixedLayoutEvent):
    discriminator: str
    vault: str
    user: str
    amount: int
    shares_minted: int
    entry_fee: int
    net_amount: int
    total_assets: int
    total_shares: int
    timestamp: int

    event_type: ClassVar[str] = "VaultDeposited"
    LAYOUT: ClassVar[tuple[tuple[str, str], ...]] = (
        ("vault", "pubkey"),
        ("user", "pubkey"),
        ("amount", "u64"),
        ("shares_minted", "u64"),
        ("entry_fee", "u64"),
        ("net_amount", "u64"),
        ("total_assets", "u64"),
        ("total_shares", "u64"),
        ("timestamp", "i64"),
    )


@dataclass(slots=True, frozen=True)
class CreatedUnderlyingAsset:
    mint: str
    allocation_bps: int

    @property
    def percentage(self) -> str:
        return f"{self.allocation_bps / 100:.2f}%"


@dataclass(slots=True, frozen=True)
class VaultCreated:
    discriminator: str
    schema_version: str
    vault: str
    factory: str
    creator: str
    vault_name: str
    vault_symbol: str
    management_fee_bps: int
    underlying_assets: tuple[CreatedUnderlyingAsset, ...]
    vault_index: int
    etf_vault_pda: str
    etf_mint: str
    vault_treasury: str
    total_supply: int
    nav: int
    timestamp: int

    event_type: ClassVar[str] = "VaultCreated"

    @property
    def management_fee_percent(self) -> str:
        return f"{self.management_fee_bps / 100:.2f}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"event_type": self.event_type}
        payload.update(asdict(self))
        payload["management_fee_percent"] = self.management_fee_percent
        payload["underlying_assets_count"] = len(self.underlying_assets)
        payload["created_at"] = unix_to_iso(self.timestamp) if self.timestamp > 0 else None
        return payload


@dataclass(slots=True, frozen=True)
class UnknownEvent:
    """Generic fallback; ``event_type`` keeps the recognised name when a typed decode failed."""

    discriminator: str
    data_hex: str
    data_length: int
    heuristic_pubkeys: tuple[str, ...]
    raw_base64: str
    event_type: str = "Unknown"
    decode_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


DecodedEvent = Union[
    VaultCreated,
    FactoryAssetsUpdated,
    FactoryFeesUpdated,
    VaultFeesUpdated,
    FactoryInitialized,
    ProtocolFeesCollected,
    VaultDeposited,
    UnknownEvent,
]

FIXED_LAYOUT_EVENTS: tuple[type[FixedLayoutEvent], ...] = (
    FactoryAssetsUpdated,
    FactoryInitialized,
    FactoryFeesUpdated,
    VaultFeesUpdated,
    ProtocolFeesCollected,
    VaultDeposited,
)
