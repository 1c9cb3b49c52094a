from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable


VAULT_LABEL_RE = re.compile(r"🏦 Vault: (.+)")
VAULT_NAME_SYMBOL_RE = re.compile(r"^(.+?)\s+\((.+?)\)$")
USER_RE = re.compile(r"👤 User: ([A-Za-z0-9]+)")
PREVIOUS_TOTAL_ASSETS_RE = re.compile(r"Previous total assets: (\d+)")
PREVIOUS_TOTAL_SUPPLY_RE = re.compile(r"Previous total supply: (\d+)")
NEW_TOTAL_ASSETS_RE = re.compile(r"New total assets: (\d+)")
NEW_TOTAL_SUPPLY_RE = re.compile(r"New total supply: (\d+)")
MANAGEMENT_FEE_RE = re.compile(r"Management fee: (\d+) raw units")
TOTAL_FEES_RE = re.compile(r"Total fees: (\d+) raw units")

DEPOSIT_VAULT_INDEX_RE = re.compile(r"Starting deposit process for vault #(\d+)")
DEPOSIT_AMOUNT_RE = re.compile(r"💵 Deposit amount: (\d+) raw units")
ENTRY_FEE_RE = re.compile(r"Entry fee: (\d+) raw units")
NET_DEPOSIT_RE = re.compile(r"Net deposit: (\d+) raw units")
TOKENS_TO_MINT_RE = re.compile(r"Vault tokens to mint: (\d+) raw units")
SWAP_TARGET_MINT_RE = re.compile(r"\[Raydium\] swapping -> mint:\s+([A-Za-z0-9]+)")
SWAP_OUTPUT_RE = re.compile(r"output_amount:(\d+)")

REDEEM_VAULT_INDEX_RE = re.compile(r"Starting redeem process for vault #(\d+)")
FINALIZE_REDEEM_RE = re.compile(r"Finalizing redeem for\s+(\d+)\s+vault tokens", re.IGNORECASE)
FEES_WITH_MGMT_RE = re.compile(r"Fees:\s*exit=(\d+),\s*mgmt=(\d+),\s*net_to_user=(\d+)", re.IGNORECASE)
FEES_EXIT_ONLY_RE = re.compile(r"Fees:\s*exit=(\d+),\s*net_to_user=(\d+)", re.IGNORECASE)
TOKENS_TO_REDEEM_RE = re.compile(r"🪙 Vault tokens to redeem: (\d+) raw units")
EXIT_FEE_RE = re.compile(r"Exit fee: (\d+) raw units")
NET_STABLECOIN_RE = re.compile(r"Net stablecoin amount: (\d+) raw units")

CREATION_NAME_RE = re.compile(r"📝 Vault Name: (.+)")
CREATION_SYMBOL_RE = re.compile(r"🏷️ Vault Symbol: (.+)")
CREATION_FEES_RE = re.compile(r"💰 Management Fees: (\d+) bps")
CREATION_ASSET_COUNT_RE = re.compile(r"📊 Number of underlying assets: (\d+)")
CREATION_ASSET_RE = re.compile(r"Asset \d+: Mint=([A-Za-z0-9]+), BPS=(\d+)")
CREATION_TOTAL_BPS_RE = re.compile(r"📈 Total BPS allocation: (\d+)")
CREATION_FACTORY_RE = re.compile(r"🏭 Factory key: ([A-Za-z0-9]+)")
CREATION_INDEX_RE = re.compile(r"🔢 Current vault count: \d+, creating vault #(\d+)")
CREATION_VAULT_PDA_RE = re.compile(r"🔑 Vault PDA: ([A-Za-z0-9]+)")
CREATION_ADMIN_RE = re.compile(r"👑 Vault Admin: ([A-Za-z0-9]+)")
CREATION_MINT_PDA_RE = re.compile(r"🪙 Vault Mint PDA: ([A-Za-z0-9]+)")
CREATION_TOKEN_ACCOUNT_RE = re.compile(r"💳 Vault Token Account PDA: ([A-Za-z0-9]+)")
CREATION_CREATED_AT_RE = re.compile(r"📅 Created at: (\d+)")


@dataclass(slots=True)
class DepositRecord:
    vault_name: str | None = None
    vault_symbol: str | None = None
    vault_index: int | None = None
    user: str | None = None
    amount: int | None = None
    entry_fee: int | None = None
    management_fee: int | None = None
    total_fees: int | None = None
    net_amount: int | None = None
    vault_tokens_to_mint: int | None = None
    previous_total_assets: int | None = None
    previous_total_supply: int | None = None
    new_total_assets: int | None = None
    new_total_supply: int | None = None
    swap_outputs_by_mint: dict[str, int] = field(default_factory=dict)
    timestamp: str | None = None

    def is_empty(self) -> bool:
        return self.user is None or self.amount is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class RedeemRecord:
    vault_name: str | None = None
    vault_symbol: str | None = None
    vault_index: int | None = None
    user: str | None = None
    vault_tokens_to_redeem: int | None = None
    exit_fee: int | None = None
    management_fee: int | None = None
    total_fees: int | None = None
    net_stablecoin_amount: int | None = None
    previous_total_assets: int | None = None
    previous_total_supply: int | None = None
    new_total_assets: int | None = None
    new_total_supply: int | None = None
    timestamp: str | None = None

    def is_empty(self) -> bool:
        return self.user is None or self.vault_tokens_to_redeem is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class CreationAsset:
    mint: str
    bps: int

    @property
    def percentage(self) -> str:
        return f"{self.bps / 100:.2f}%"


@dataclass(slots=True)
class CreationRecord:
    vault_name: str | None = None
    vault_symbol: str | None = None
    vault_index: int | None = None
    management_fee_bps: int | None = None
    assets_count: int | None = None
    underlying_assets: list[CreationAsset] = field(default_factory=list)
    total_bps_allocation: int | None = None
    factory_key: str | None = None
    vault_pda: str | None = None
    vault_admin: str | None = None
    vault_mint_pda: str | None = None
    vault_token_account_pda: str | None = None
    created_at: int | None = None

    def is_complete(self) -> bool:
        return all(
            (self.vault_pda, self.factory_key, self.vault_admin, self.vault_name, self.vault_symbol)
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if self.management_fee_bps is not None:
            payload["management_fee_percentage"] = f"{self.management_fee_bps / 100:.2f}%"
        return payload


def extract_program_logs(log_messages: Iterable[str] | None) -> list[str]:
    """Keep program-emitted lines (``Program log:`` and instruction lines)."""
    return [line for line in (log_messages or []) if isinstance(line, str) and line.startswith("Program ")]


def _extracted_at() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _capture(pattern: re.Pattern[str], line: str, convert: Callable[[str], Any] = str) -> Any:
    match = pattern.search(line)
    if match is None:
        return None
    return convert(match.group(1))


def _assign(record: Any, name: str, pattern: re.Pattern[str], line: str, convert: Callable[[str], Any]) -> None:
    value = _capture(pattern, line, convert)
    if value is not None:
        setattr(record, name, value)


def _vault_label(record: DepositRecord | RedeemRecord, line: str) -> None:
    label = _capture(VAULT_LABEL_RE, line, str.strip)
    if not label:
        return
    match = VAULT_NAME_SYMBOL_RE.match(label)
    if match:
        record.vault_name = match.group(1).strip()
        record.vault_symbol = match.group(2).strip()


_SHARED_INT_FIELDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("management_fee", MANAGEMENT_FEE_RE),
    ("total_fees", TOTAL_FEES_RE),
    ("previous_total_assets", PREVIOUS_TOTAL_ASSETS_RE),
    ("previous_total_supply", PREVIOUS_TOTAL_SUPPLY_RE),
    ("new_total_assets", NEW_TOTAL_ASSETS_RE),
    ("new_total_supply", NEW_TOTAL_SUPPLY_RE),
)

_DEPOSIT_INT_FIELDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("vault_index", DEPOSIT_VAULT_INDEX_RE),
    ("amount", DEPOSIT_AMOUNT_RE),
    ("entry_fee", ENTRY_FEE_RE),
    ("net_amount", NET_DEPOSIT_RE),
    ("vault_tokens_to_mint", TOKENS_TO_MINT_RE),
    *_SHARED_INT_FIELDS,
)

_REDEEM_INT_FIELDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("vault_index", REDEEM_VAULT_INDEX_RE),
    ("vault_tokens_to_redeem", TOKENS_TO_REDEEM_RE),
    ("exit_fee", EXIT_FEE_RE),
    ("net_stablecoin_amount", NET_STABLECOIN_RE),
    *_SHARED_INT_FIELDS,
)


def extract_deposit(lines: Iterable[str]) -> DepositRecord:
    record = DepositRecord()
    current_swap_mint: str | None = None
    for line in lines:
        _vault_label(record, line)
        _assign(record, "user", USER_RE, line, str)
        for name, pattern in _DEPOSIT_INT_FIELDS:
            _assign(record, name, pattern, line, int)

        swap_mint = _capture(SWAP_TARGET_MINT_RE, line)
        if swap_mint:
            current_swap_mint = swap_mint

        if current_swap_mint:
            output = _capture(SWAP_OUTPUT_RE, line, int)
            if output:
                record.swap_outputs_by_mint[current_swap_mint] = (
                    record.swap_outputs_by_mint.get(current_swap_mint, 0) + output
                )
    record.timestamp = _extracted_at()
    return record


def extract_redeem(lines: Iterable[str]) -> RedeemRecord:
    record = RedeemRecord()
    for line in lines:
        _assign(record, "vault_tokens_to_redeem", FINALIZE_REDEEM_RE, line, int)

        if "Fees:" in line:
            full = FEES_WITH_MGMT_RE.search(line)
            if full:
                record.exit_fee = int(full.group(1))
                record.management_fee = int(full.group(2))
                record.net_stablecoin_amount = int(full.group(3))
                record.total_fees = record.exit_fee + record.management_fee
            else:
                exit_only = FEES_EXIT_ONLY_RE.search(line)
                if exit_only:
                    record.exit_fee = int(exit_only.group(1))
                    record.management_fee = 0
                    record.net_stablecoin_amount = int(exit_only.group(2))
                    record.total_fees = record.exit_fee

        _vault_label(record, line)
        _assign(record, "user", USER_RE, line, str)
        for name, pattern in _REDEEM_INT_FIELDS:
            _assign(record, name, pattern, line, int)
    record.timestamp = _extracted_at()
    return record


def extract_creation(lines: Iterable[str]) -> CreationRecord:
    record = CreationRecord()
    for line in lines:
        _assign(record, "vault_name", CREATION_NAME_RE, line, str.strip)
        _assign(record, "vault_symbol", CREATION_SYMBOL_RE, line, str.strip)
        _assign(record, "management_fee_bps", CREATION_FEES_RE, line, int)
        _assign(record, "assets_count", CREATION_ASSET_COUNT_RE, line, int)
        _assign(record, "total_bps_allocation", CREATION_TOTAL_BPS_RE, line, int)
        _assign(record, "factory_key", CREATION_FACTORY_RE, line, str)
        _assign(record, "vault_pda", CREATION_VAULT_PDA_RE, line, str)
        _assign(record, "vault_admin", CREATION_ADMIN_RE, line, str)
        _assign(record, "vault_mint_pda", CREATION_MINT_PDA_RE, line, str)
        _assign(record, "vault_token_account_pda", CREATION_TOKEN_ACCOUNT_RE, line, str)
        _assign(record, "created_at", CREATION_CREATED_AT_RE, line, int)
        # logs count vaults from 1; on-chain indices start at 0
        _assign(record, "vault_index", CREATION_INDEX_RE, line, lambda raw: int(raw) - 1)

        asset = CREATION_ASSET_RE.search(line)
        if asset:
            record.underlying_assets.append(CreationAsset(mint=asset.group(1), bps=int(asset.group(2))))
    return record
