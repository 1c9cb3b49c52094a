from __future__ import annotations

from typing import Any

from modules.events import FactoryFeesUpdated


def _bps_to_percent(value: int) -> float:
    return value / 100


def apply_locked_outputs(
    underlying_assets: list[dict[str, Any]],
    outputs_by_mint: dict[str, int],
) -> tuple[list[dict[str, Any]], bool]:
    """Adds raw swap outputs onto each matching asset's ``totalAssetLocked``."""
    updated = False
    assets: list[dict[str, Any]] = []
    for raw in underlying_assets:
        asset = dict(raw)
        mint = str(asset.get("mintAddress") or "")
        if mint and mint in outputs_by_mint:
            try:
                previous = int(asset.get("totalAssetLocked") or 0)
            except (TypeError, ValueError):
                previous = 0
            asset["totalAssetLocked"] = previous + int(outputs_by_mint[mint])
            updated = True
        assets.append(asset)
    return assets, updated


def apply_fee_event(fee_rows: list[dict[str, Any]], event: FactoryFeesUpdated) -> list[dict[str, Any]]:
    """Rewrites fee rows by ``type``: bps become percentages, the creation fee whole USDC."""
    rows: list[dict[str, Any]] = []
    for raw in fee_rows:
        row = dict(raw)
        fee_type = row.get("type")
        if fee_type == "entry_fee":
            row["feeRate"] = _bps_to_percent(event.new_entry_fee_bps)
            row["description"] = (
                f"Entry fee updated from {_bps_to_percent(event.old_entry_fee_bps)}% "
                f"to {_bps_to_percent(event.new_entry_fee_bps)}%"
            )
        elif fee_type == "exit_fee":
            row["feeRate"] = _bps_to_percent(event.new_exit_fee_bps)
            row["description"] = (
                f"Exit fee updated from {_bps_to_percent(event.old_exit_fee_bps)}% "
                f"to {_bps_to_percent(event.new_exit_fee_bps)}%"
            )
        elif fee_type == "vault_creation_fee":
            old_fee = event.old_vault_creation_fee_usdc / 1_000_000
            new_fee = event.new_vault_creation_fee_usdc / 1_000_000
            row["feeRate"] = new_fee
            row["description"] = f"Vault creation fee updated from {old_fee} USDC to {new_fee} USDC"
        elif fee_type == "management":
            row["minFeeRate"] = _bps_to_percent(event.new_min_management_fee_bps)
            row["maxFeeRate"] = _bps_to_percent(event.new_max_management_fee_bps)
            row["description"] = (
                "Management fee range updated from "
                f"{_bps_to_percent(event.old_min_management_fee_bps)}%-"
                f"{_bps_to_percent(event.old_max_management_fee_bps)}% to "
                f"{_bps_to_percent(event.new_min_management_fee_bps)}%-"
                f"{_bps_to_percent(event.new_max_management_fee_bps)}%"
            )
        rows.append(row)
    return rows
