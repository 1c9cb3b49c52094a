from __future__ import annotations

import struct
from dataclasses import asdict, dataclass
from typing import Any

from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

ACCOUNT_DISCRIMINATOR_SIZE = 8
MINT_DECIMALS_OFFSET = 44
DEFAULT_MINT_DECIMALS = 6
EMPTY_MINT = "11111111111111111111111111111111"

VAULT_STATES = ("Active", "Paused", "Closed")


class AccountLayoutError(ValueError):
    pass


class _Reader:
    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = data
        self.offset = offset

    def _take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self._data):
            raise AccountLayoutError(f"account data truncated at offset {self.offset} (need {size} bytes)")
        chunk = self._data[self.offset : end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(8))[0]

    def i64(self) -> int:
        return struct.unpack("<q", self._take(8))[0]

    def pubkey(self) -> str:
        return str(Pubkey.from_bytes(self._take(32)))

    def string(self) -> str:
        length = self.u32()
        return self._take(length).decode("utf-8", errors="replace")


@dataclass(slots=True, frozen=True)
class UnderlyingAsset:
    mint: str
    allocation_bps: int


@dataclass(slots=True, frozen=True)
class VaultSnapshot:
    address: str
    vault_index: int
    factory: str
    admin: str
    name: str
    symbol: str
    underlying_assets: tuple[UnderlyingAsset, ...]
    management_fee_bps: int
    state: str
    total_assets: int
    total_supply: int
    created_at: int
    last_fee_accrual_ts: int = 0
    accrued_management_fees: int = 0

    def active_assets(self) -> list[UnderlyingAsset]:
        return [
            asset
            for asset in self.underlying_assets
            if asset.mint != EMPTY_MINT and asset.allocation_bps > 0
        ]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def decode_vault_account(address: str, data: bytes) -> VaultSnapshot:
    if len(data) < ACCOUNT_DISCRIMINATOR_SIZE:
        raise AccountLayoutError(f"vault account {address} is too short ({len(data)} bytes)")

    reader = _Reader(data, ACCOUNT_DISCRIMINATOR_SIZE)
    reader.u8()  # bump
    vault_index = reader.u32()
    factory = reader.pubkey()
    admin = reader.pubkey()
    name = reader.string()
    symbol = reader.string()
    asset_count = reader.u32()
    assets = tuple(UnderlyingAsset(mint=reader.pubkey(), allocation_bps=reader.u16()) for _ in range(asset_count))
    management_fee_bps = reader.u16()
    state_index = reader.u8()
    total_assets = reader.u64()
    total_supply = reader.u64()
    created_at = reader.i64()

    # fee-accrual fields were appended later; older accounts stop here
    last_fee_accrual_ts = 0
    accrued = 0
    if reader.offset + 16 <= len(data):
        last_fee_accrual_ts = reader.i64()
        accrued = reader.u64()

    return VaultSnapshot(
        address=address,
        vault_index=vault_index,
        factory=factory,
        admin=admin,
        name=name,
        symbol=symbol,
        underlying_assets=assets,
        management_fee_bps=management_fee_bps,
        state=VAULT_STATES[state_index] if state_index < len(VAULT_STATES) else f"Unknown({state_index})",
        total_assets=total_assets,
        total_supply=total_supply,
        created_at=created_at,
        last_fee_accrual_ts=last_fee_accrual_ts,
        accrued_management_fees=accrued,
    )


def read_factory_admin(data: bytes) -> str:
    """Admin key only; avoids failing on factories with a shorter trailing layout."""
    return _Reader(data, ACCOUNT_DISCRIMINATOR_SIZE + 1).pubkey()


def mint_decimals(data: bytes | None) -> int:
    if not data or len(data) <= MINT_DECIMALS_OFFSET:
        return DEFAULT_MINT_DECIMALS
    return data[MINT_DECIMALS_OFFSET] or DEFAULT_MINT_DECIMALS


def token_program_for_owner(owner: str | None) -> Pubkey:
    if owner and owner == str(TOKEN_2022_PROGRAM_ID):
        return TOKEN_2022_PROGRAM_ID
    return TOKEN_PROGRAM_ID
