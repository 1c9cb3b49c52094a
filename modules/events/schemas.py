from __future__ import annotations

import re
import struct
from typing import Protocol

from solders.pubkey import Pubkey

from .types import CreatedUnderlyingAsset, VaultCreated

HEADER_END = 8 + 32 * 3
TRAILER_FALLBACK = 50

TIMESTAMP_MIN = 1577836800  # 2020-01-01
TIMESTAMP_MAX = 1893456000  # 2030-01-01
AMOUNT_MAX = 1_000_000_000_000_000

VAULT_NAME_RE = re.compile(r"DirectVault_\d+")
VAULT_SYMBOL_RE = re.compile(r"[A-Z]{3,6}")


class VaultCreatedSchema(Protocol):
    version: str

    def parse(self, discriminator: str, data: bytes) -> VaultCreated:
        ...


class HeuristicVaultCreatedSchema:
    """Best-effort recovery of ``VaultCreated`` payloads.

    The event's trailing strings and auxiliary keys have no confirmed layout, so
    everything after the three header keys is found by bounded-range scans.
    Replace by registering a schema with a confirmed layout under a new version.
    """

    version = "heuristic-v1"

    def parse(self, discriminator: str, data: bytes) -> VaultCreated:
        if len(data) < HEADER_END:
            raise ValueError(f"VaultCreated payload too short: {len(data)}")

        vault = str(Pubkey.from_bytes(data[8:40]))
        factory = str(Pubkey.from_bytes(data[40:72]))
        creator = str(Pubkey.from_bytes(data[72:104]))
        header_keys = {vault, factory, creator}

        text = data.decode("latin-1")
        name_match = VAULT_NAME_RE.search(text)
        symbol_match = VAULT_SYMBOL_RE.search(text)
        vault_name = name_match.group(0) if name_match else "Unknown"
        vault_symbol = symbol_match.group(0) if symbol_match else "UNK"

        symbol_start = data.find(vault_symbol.encode("ascii")) if symbol_match else -1
        data_start = HEADER_END
        data_end = symbol_start if symbol_start > 0 else len(data) - TRAILER_FALLBACK

        management_fee = 0
        for offset in range(data_start, data_end - 2):
            value = struct.unpack_from("<H", data, offset)[0]
            if 0 < value < 10_000:
                management_fee = value
                break

        auxiliary: list[str] = []
        for offset in range(data_start, data_end - 32):
            candidate = str(Pubkey.from_bytes(data[offset : offset + 32]))
            if candidate not in header_keys:
                auxiliary.append(candidate)
                if len(auxiliary) == 3:
                    break
        auxiliary.extend([""] * (3 - len(auxiliary)))

        timestamp = 0
        for offset in range(data_start, data_end - 8):
            value = struct.unpack_from("<q", data, offset)[0]
            if TIMESTAMP_MIN < value < TIMESTAMP_MAX:
                timestamp = value
                break

        amounts: list[int] = []
        for offset in range(data_start, data_end - 8):
            value = struct.unpack_from("<Q", data, offset)[0]
            if 0 < value < AMOUNT_MAX:
                amounts.append(value)
                if len(amounts) == 2:
                    break
        amounts.extend([0] * (2 - len(amounts)))

        vault_index = 0
        for offset in range(data_start, data_end - 1):
            if 0 < data[offset] < 255:
                vault_index = data[offset]
                break

        assets: list[CreatedUnderlyingAsset] = []
        for offset in range(data_start, data_end - 32):
            if offset + 34 > data_end:
                break
            candidate = str(Pubkey.from_bytes(data[offset : offset + 32]))
            if candidate in header_keys:
                continue
            bps = struct.unpack_from("<H", data, offset + 32)[0]
            if 0 < bps <= 10_000:
                assets.append(CreatedUnderlyingAsset(mint=candidate, allocation_bps=bps))

        return VaultCreated(
            discriminator=discriminator,
            schema_version=self.version,
            vault=vault,
            factory=factory,
            creator=creator,
            vault_name=vault_name,
            vault_symbol=vault_symbol,
            management_fee_bps=management_fee,
            underlying_assets=tuple(assets),
            vault_index=vault_index,
            etf_vault_pda=auxiliary[0],
            etf_mint=auxiliary[1],
            vault_treasury=auxiliary[2],
            total_supply=amounts[0],
            nav=amounts[1],
            timestamp=timestamp,
        )


VAULT_CREATED_SCHEMAS: dict[str, VaultCreatedSchema] = {
    HeuristicVaultCreatedSchema.version: HeuristicVaultCreatedSchema(),
}
DEFAULT_VAULT_CREATED_SCHEMA = HeuristicVaultCreatedSchema.version


def get_vault_created_schema(version: str | None = None) -> VaultCreatedSchema:
    key = version or DEFAULT_VAULT_CREATED_SCHEMA
    try:
        return VAULT_CREATED_SCHEMAS[key]
    except KeyError as error:
        raise ValueError(f"Unknown VaultCreated schema version: {key}") from error
