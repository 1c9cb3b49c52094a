from __future__ import annotations

import json
import logging
import os
import unittest
from unittest.mock import AsyncMock, patch

from solders.keypair import Keypair

from modules.common import ConfigurationError, sanitize_text
from modules.events import FactoryFeesUpdated
from modules.runtime import AppSettings, SideEffectQueue, parse_private_key
from modules.runtime.logging import JsonFormatter
from modules.storage import LoggingStore, StorageSettings
from modules.storage.helpers import apply_fee_event, apply_locked_outputs

MINT_A = "So11111111111111111111111111111111111111112"
MINT_B = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"


def _fee_event() -> FactoryFeesUpdated:
    return FactoryFeesUpdated(
        "978890413dd89840",
        MINT_A,
        MINT_B,
        25,
        50,
        30,
        75,
        10_000_000,
        25_000_000,
        10,
        20,
        200,
        300,
        1_700_000_000,
    )


class AppSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.rpc_url, "https://api.mainnet-beta.solana.com")
        self.assertEqual(settings.network, "mainnet")
        self.assertEqual(settings.swap_batch_size, 5)
        self.assertEqual(settings.swap_exclude_dexes, ("Sanctum", "Sanctum Infinity"))
        self.assertEqual(settings.min_operator_balance_lamports, 100_000_000)
        self.assertEqual(settings.log_level, "INFO")
        with self.assertRaises(ConfigurationError):
            settings.require_swap_config()

    def test_env_overrides_and_bounds(self) -> None:
        env = {
            "HELIUS_RPC_URL": "https://rpc.example/?api-key=secret",
            "SOLANA_RPC_URL": "https://ignored.example",
            "SWAP_BATCH_SIZE": "0",
            "SWAP_SLIPPAGE_BPS": "75",
            "SWAP_EXCLUDE_DEXES": " Obric V2 , ,Sanctum ",
            "CONFIRM_TIMEOUT_SECONDS": "1",
            "RETRY_MAX_ATTEMPTS": "not-a-number",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.rpc_url, "https://rpc.example/?api-key=secret")
        self.assertEqual(settings.swap_batch_size, 1)
        self.assertEqual(settings.swap_slippage_bps, 75)
        self.assertEqual(settings.swap_exclude_dexes, ("Obric V2", "Sanctum"))
        self.assertEqual(settings.confirm_timeout_seconds, 5.0)
        self.assertEqual(settings.retry_max_attempts, 5)
        self.assertEqual(settings.log_level, "DEBUG")


class PrivateKeyTests(unittest.TestCase):
    def test_accepts_json_array_and_base58(self) -> None:
        keypair = Keypair()
        from_json = parse_private_key(json.dumps(list(bytes(keypair))))
        from_base58 = parse_private_key(f"  {keypair}  ")
        self.assertEqual(from_json.pubkey(), keypair.pubkey())
        self.assertEqual(from_base58.pubkey(), keypair.pubkey())

    def test_rejects_garbage(self) -> None:
        with self.assertRaises(ValueError):
            parse_private_key("definitely-not-a-key")


class StorageSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = StorageSettings.from_env()
        self.assertEqual(settings.redis_url, "redis://redis:6379/0")
        self.assertIsNone(settings.firestore_project_id)
        self.assertEqual(settings.vaults_collection, "vault_factories")
        self.assertEqual(
            settings.cache_patterns,
            ("vaults:*", "vault-deposit:*", "history:findTransactionHistory:*"),
        )
        self.assertEqual(settings.cache_keys, ("dashboard:vault-stats",))
        self.assertEqual(settings.cache_scan_count, 500)

    def test_overrides(self) -> None:
        env = {"REDIS_CACHE_PATTERNS": "a:*, b:*", "REDIS_CACHE_KEYS": "", "REDIS_CACHE_SCAN_COUNT": "3"}
        with patch.dict(os.environ, env, clear=True):
            settings = StorageSettings.from_env()
        self.assertEqual(settings.cache_patterns, ("a:*", "b:*"))
        self.assertEqual(settings.cache_keys, ())
        self.assertEqual(settings.cache_scan_count, 10)


class StorageHelperTests(unittest.TestCase):
    def test_locked_outputs_add_to_matching_assets(self) -> None:
        assets = [
            {"mintAddress": MINT_A, "totalAssetLocked": 100, "pct": 60},
            {"mintAddress": MINT_B},
        ]
        updated_assets, updated = apply_locked_outputs(assets, {MINT_A: 50, "unknown": 7})

        self.assertTrue(updated)
        self.assertEqual(updated_assets[0]["totalAssetLocked"], 150)
        self.assertEqual(updated_assets[0]["pct"], 60)
        self.assertNotIn("totalAssetLocked", updated_assets[1])
        self.assertEqual(assets[0]["totalAssetLocked"], 100)

        _, untouched = apply_locked_outputs(assets, {"unknown": 7})
        self.assertFalse(untouched)

    def test_fee_rows_follow_event_by_type(self) -> None:
        rows = apply_fee_event(
            [
                {"type": "entry_fee", "feeRate": 0.25},
                {"type": "exit_fee", "feeRate": 0.5},
                {"type": "vault_creation_fee", "feeRate": 10},
                {"type": "management", "minFeeRate": 0.1, "maxFeeRate": 2},
                {"type": "other", "feeRate": 1},
            ],
            _fee_event(),
        )

        self.assertEqual(rows[0]["feeRate"], 0.5)
        self.assertEqual(rows[0]["description"], "Entry fee updated from 0.25% to 0.5%")
        self.assertEqual(rows[1]["feeRate"], 0.75)
        self.assertEqual(rows[2]["feeRate"], 25.0)
        self.assertEqual(rows[2]["description"], "Vault creation fee updated from 10.0 USDC to 25.0 USDC")
        self.assertEqual((rows[3]["minFeeRate"], rows[3]["maxFeeRate"]), (0.2, 3.0))
        self.assertEqual(rows[4], {"type": "other", "feeRate": 1})


class LoggingStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_lookups_miss_and_fee_update_echoes_event(self) -> None:
        store = LoggingStore(logging.getLogger("test.logging_store"))

        self.assertIsNone(await store.find_vault_by_address("vault"))
        self.assertIsNone(await store.find_asset_by_mint(MINT_A, "mainnet"))
        with self.assertLogs("test.logging_store", level="INFO") as captured:
            fee_config = await store.update_fees_from_event(_fee_event())
            await store.invalidate_cache()

        self.assertEqual(fee_config.entry_fee_bps, 50)
        self.assertEqual(fee_config.max_management_fee_bps, 300)
        self.assertEqual([record.event for record in captured.records], ["store_write_skipped"] * 2)


class SideEffectQueueTests(unittest.IsolatedAsyncioTestCase):
    async def test_action_log_field_does_not_clash_with_effect(self) -> None:
        queue = SideEffectQueue(logger=logging.getLogger("test.side_effects"))
        write = AsyncMock()

        queue.submit("audit_record", write, action="swap_completed", tx_signature="sig")
        await queue.close()

        write.assert_awaited_once_with()
        self.assertEqual((queue.completed, queue.failed, queue.dropped), (1, 0, 0))

    async def test_failing_effect_is_logged_with_its_fields(self) -> None:
        queue = SideEffectQueue(logger=logging.getLogger("test.side_effects"))
        failing = AsyncMock(side_effect=RuntimeError("firestore down"))
        follow_up = AsyncMock()

        with self.assertLogs("test.side_effects", level="WARNING") as captured:
            queue.submit("audit_record", failing, action="redeem_completed")
            queue.submit("cache_invalidation", follow_up)
            await queue.close()

        follow_up.assert_awaited_once()
        self.assertEqual((queue.completed, queue.failed), (1, 1))
        record = captured.records[0]
        self.assertEqual(record.event, "side_effect_failed")
        self.assertEqual(record.action, "redeem_completed")
        self.assertEqual(record.error, "firestore down")


class LoggingFormatTests(unittest.TestCase):
    def test_sanitize_masks_api_keys_and_queries(self) -> None:
        self.assertEqual(
            sanitize_text("GET https://rpc.example/path?api-key=abc123 failed"),
            "GET https://rpc.example/path failed",
        )
        self.assertEqual(sanitize_text("api_key=abc123"), "api_key=***")

    def test_json_formatter_includes_extra_fields(self) -> None:
        record = logging.LogRecord("vault_engine", logging.INFO, __file__, 1, "hello", None, None)
        record.event = "unit_test"
        record.vault_index = 3

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "hello")
        self.assertEqual(payload["event"], "unit_test")
        self.assertEqual(payload["vault_index"], 3)
        self.assertEqual(payload["level"], "INFO")


if __name__ == "__main__":
    unittest.main()
