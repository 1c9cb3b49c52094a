from __future__ import annotations

import unittest

from modules.events import extract_creation, extract_deposit, extract_program_logs, extract_redeem

MINT_A = "So11111111111111111111111111111111111111112"
MINT_B = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"


class DepositExtractionTests(unittest.TestCase):
    def test_reads_amounts_and_accumulates_swap_outputs(self) -> None:
        lines = [
            "Program log: 🏦 Vault: Blue Chip (BLUE)",
            "Program log: Starting deposit process for vault #4",
            "Program log: 👤 User: 9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
            "Program log: 💵 Deposit amount: 1000000 raw units",
            "Program log: Entry fee: 2500 raw units",
            "Program log: Management fee: 100 raw units",
            "Program log: Total fees: 2600 raw units",
            "Program log: Net deposit: 997400 raw units",
            "Program log: Vault tokens to mint: 997400 raw units",
            "Program log: Previous total assets: 5000000",
            "Program log: New total assets: 5997400",
            f"Program log: [Raydium] swapping -> mint: {MINT_A}",
            "Program log: output_amount:1500",
            "Program log: output_amount:0",
            "Program log: output_amount:500",
            f"Program log: [Raydium] swapping -> mint: {MINT_B}",
            "Program log: output_amount:42",
        ]
        record = extract_deposit(lines)

        self.assertFalse(record.is_empty())
        self.assertEqual(record.vault_name, "Blue Chip")
        self.assertEqual(record.vault_symbol, "BLUE")
        self.assertEqual(record.vault_index, 4)
        self.assertEqual(record.amount, 1_000_000)
        self.assertEqual(record.entry_fee, 2_500)
        self.assertEqual(record.management_fee, 100)
        self.assertEqual(record.total_fees, 2_600)
        self.assertEqual(record.net_amount, 997_400)
        self.assertEqual(record.vault_tokens_to_mint, 997_400)
        self.assertEqual(record.previous_total_assets, 5_000_000)
        self.assertEqual(record.new_total_assets, 5_997_400)
        self.assertEqual(record.swap_outputs_by_mint, {MINT_A: 2_000, MINT_B: 42})
        self.assertIsNotNone(record.timestamp)

    def test_output_lines_before_any_swap_target_are_ignored(self) -> None:
        record = extract_deposit(["Program log: output_amount:99"])
        self.assertEqual(record.swap_outputs_by_mint, {})
        self.assertTrue(record.is_empty())


class RedeemExtractionTests(unittest.TestCase):
    def _base_lines(self) -> list[str]:
        return [
            "Program log: 🏦 Vault: Blue Chip (BLUE)",
            "Program log: Starting redeem process for vault #4",
            "Program log: 👤 User: 9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
            "Program log: 🪙 Vault tokens to redeem: 1000000 raw units",
            "Program log: Previous total supply: 9000000",
            "Program log: New total supply: 8000000",
        ]

    def test_fee_line_with_management_component(self) -> None:
        lines = self._base_lines() + ["Program log: Fees: exit=23015, mgmt=184123, net_to_user=8999053"]
        record = extract_redeem(lines)

        self.assertEqual(record.vault_index, 4)
        self.assertEqual(record.vault_tokens_to_redeem, 1_000_000)
        self.assertEqual(record.exit_fee, 23_015)
        self.assertEqual(record.management_fee, 184_123)
        self.assertEqual(record.total_fees, 23_015 + 184_123)
        self.assertEqual(record.net_stablecoin_amount, 8_999_053)
        self.assertEqual(record.previous_total_supply, 9_000_000)
        self.assertEqual(record.new_total_supply, 8_000_000)

    def test_fee_line_with_exit_fee_only(self) -> None:
        lines = self._base_lines() + ["Program log: Fees: exit=2497, net_to_user=996493"]
        record = extract_redeem(lines)

        self.assertEqual(record.exit_fee, 2_497)
        self.assertEqual(record.management_fee, 0)
        self.assertEqual(record.total_fees, 2_497)
        self.assertEqual(record.net_stablecoin_amount, 996_493)

    def test_finalize_line_sets_redeemed_tokens(self) -> None:
        record = extract_redeem(["Program log: Finalizing redeem for 750 vault tokens"])
        self.assertEqual(record.vault_tokens_to_redeem, 750)
        self.assertTrue(record.is_empty())


class CreationExtractionTests(unittest.TestCase):
    def test_complete_creation_record(self) -> None:
        raw_logs = [
            "Program BHTRWbEGRfJZSVXkJXj1Cv48knuALpUvijJwvuobyvvB invoke [1]",
            "Program log: 📝 Vault Name: Blue Chip",
            "Program log: 🏷️ Vault Symbol: BLUE",
            "Program log: 💰 Management Fees: 150 bps",
            "Program log: 📊 Number of underlying assets: 2",
            f"Program log: Asset 1: Mint={MINT_A}, BPS=6000",
            f"Program log: Asset 2: Mint={MINT_B}, BPS=4000",
            "Program log: 📈 Total BPS allocation: 10000",
            "Program log: 🏭 Factory key: 4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T",
            "Program log: 🔢 Current vault count: 7, creating vault #8",
            "Program log: 🔑 Vault PDA: 7dHbWXmci3dT8UFYWYZweBLXgycu7Y3iL6trKn1Y7ARj",
            "Program log: 👑 Vault Admin: 9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
            "Program log: 📅 Created at: 1720000000",
            "Transfer: unrelated system line",
        ]
        record = extract_creation(extract_program_logs(raw_logs))

        self.assertTrue(record.is_complete())
        self.assertEqual(record.vault_name, "Blue Chip")
        self.assertEqual(record.vault_symbol, "BLUE")
        self.assertEqual(record.management_fee_bps, 150)
        self.assertEqual(record.assets_count, 2)
        self.assertEqual([asset.bps for asset in record.underlying_assets], [6000, 4000])
        self.assertEqual(record.total_bps_allocation, 10_000)
        self.assertEqual(record.vault_index, 7)
        self.assertEqual(record.created_at, 1_720_000_000)
        self.assertEqual(record.to_dict()["management_fee_percentage"], "1.50%")

    def test_missing_vault_pda_is_incomplete(self) -> None:
        record = extract_creation(["Program log: 📝 Vault Name: Blue Chip"])
        self.assertFalse(record.is_complete())


if __name__ == "__main__":
    unittest.main()
