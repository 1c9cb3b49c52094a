from __future__ import annotations

import base64
import struct
import unittest

from solders.pubkey import Pubkey

from modules.events import (
    EventDiscriminatorDecoder,
    FactoryAssetsUpdated,
    FactoryFeesUpdated,
    FactoryInitialized,
    ProtocolFeesCollected,
    UnknownEvent,
    VaultCreated,
    VaultDeposited,
    VaultFeesUpdated,
)


def _key(seed: int) -> Pubkey:
    return Pubkey.from_bytes(bytes([seed]) * 32)


def _deposit_payload() -> bytes:
    return (
        bytes.fromhex("3b3e2bc8dc686443")
        + bytes(_key(1))
        + bytes(_key(2))
        + struct.pack("<6Q", 1_000_000, 990_000, 10_000, 990_000, 5_000_000, 4_950_000)
        + struct.pack("<q", 1_720_000_000)
    )


class EventDecoderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.decoder = EventDiscriminatorDecoder()

    def test_vault_deposited_layout(self) -> None:
        event = self.decoder.decode(_deposit_payload())

        self.assertIsInstance(event, VaultDeposited)
        self.assertEqual(event.event_type, "VaultDeposited")
        self.assertEqual(event.vault, str(_key(1)))
        self.assertEqual(event.user, str(_key(2)))
        self.assertEqual(event.amount, 1_000_000)
        self.assertEqual(event.shares_minted, 990_000)
        self.assertEqual(event.entry_fee, 10_000)
        self.assertEqual(event.net_amount, 990_000)
        self.assertEqual(event.total_assets, 5_000_000)
        self.assertEqual(event.total_shares, 4_950_000)
        self.assertEqual(event.timestamp, 1_720_000_000)

    def test_decode_is_idempotent(self) -> None:
        payload = _deposit_payload()
        self.assertEqual(self.decoder.decode(payload), self.decoder.decode(payload))
        self.assertEqual(self.decoder.decode(payload).to_dict(), self.decoder.decode(payload).to_dict())

    def test_fixed_layout_events_reencode_to_original_bytes(self) -> None:
        events = [
            FactoryAssetsUpdated("ed363f30d7c928d7", str(_key(3)), str(_key(4)), 2, 3, 1_700_000_000),
            FactoryInitialized("145688f675618ff0", str(_key(5)), str(_key(6)), 1_700_000_001),
            FactoryFeesUpdated(
                "978890413dd89840",
                str(_key(7)),
                str(_key(8)),
                25,
                50,
                30,
                60,
                10_000_000,
                20_000_000,
                10,
                20,
                200,
                300,
                1_700_000_002,
            ),
            VaultFeesUpdated("fbdd7e1809d86367", str(_key(9)), str(_key(10)), 100, 150, 1_700_000_003),
            ProtocolFeesCollected("a5227d54fb89a39b", str(_key(11)), str(_key(12)), 123_456, 1_700_000_004),
        ]
        for event in events:
            with self.subTest(event=event.event_type):
                raw = event.encode()
                decoded = self.decoder.decode(raw)
                self.assertEqual(decoded, event)
                self.assertEqual(decoded.encode(), raw)

        deposit = _deposit_payload()
        self.assertEqual(self.decoder.decode(deposit).encode(), deposit)

    def test_alternate_fee_discriminator_decodes_same_layout(self) -> None:
        original = FactoryFeesUpdated(
            "97883a29bd5908f0", str(_key(7)), str(_key(8)), 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 1_700_000_000
        )
        decoded = self.decoder.decode(original.encode())
        self.assertIsInstance(decoded, FactoryFeesUpdated)
        self.assertEqual(decoded.new_max_management_fee_bps, 10)

    def test_unknown_discriminator_falls_back_to_generic(self) -> None:
        payload = bytes.fromhex("0102030405060708") + b"".join(bytes(_key(i)) for i in range(1, 8)) + b"\x09"
        event = self.decoder.decode(payload)

        self.assertIsInstance(event, UnknownEvent)
        self.assertEqual(event.event_type, "Unknown")
        self.assertEqual(event.discriminator, "0102030405060708")
        self.assertEqual(event.data_length, 32 * 7 + 1)
        self.assertEqual(len(event.heuristic_pubkeys), 5)
        self.assertEqual(event.heuristic_pubkeys[0], str(_key(1)))
        self.assertEqual(base64.b64decode(event.raw_base64), payload)

    def test_truncated_known_event_keeps_its_name(self) -> None:
        event = self.decoder.decode(_deposit_payload()[:60])

        self.assertIsInstance(event, UnknownEvent)
        self.assertEqual(event.event_type, "VaultDeposited")
        self.assertIsNotNone(event.decode_error)

    def test_factory_state_changed_uses_generic_decoding(self) -> None:
        payload = bytes.fromhex("ca0c99be7ba73f0e") + bytes(_key(4)) + b"\x01"
        event = self.decoder.decode(payload)

        self.assertIsInstance(event, UnknownEvent)
        self.assertEqual(event.event_type, "FactoryStateChanged")
        self.assertEqual(event.heuristic_pubkeys, (str(_key(4)),))

    def test_vault_created_heuristic_reads_header_and_labels(self) -> None:
        payload = (
            bytes.fromhex("751978fe4bec4e73")
            + bytes(_key(1))
            + bytes(_key(2))
            + bytes(_key(3))
            + struct.pack("<H", 500)
            + b"\x00" * 40
            + b"DirectVault_7"
            + b"\x00" * 4
            + b"ETFX"
            + b"\x00" * 60
        )
        event = self.decoder.decode(payload)

        self.assertIsInstance(event, VaultCreated)
        self.assertEqual(event.schema_version, "heuristic-v1")
        self.assertEqual(self.decoder.vault_created_schema_version, event.schema_version)
        self.assertEqual(event.vault, str(_key(1)))
        self.assertEqual(event.factory, str(_key(2)))
        self.assertEqual(event.creator, str(_key(3)))
        self.assertEqual(event.vault_name, "DirectVault_7")
        self.assertEqual(event.vault_symbol, "ETFX")
        self.assertEqual(event.management_fee_bps, 500)
        self.assertEqual(event.to_dict()["management_fee_percent"], "5.00")

    def test_decode_logs_reads_only_program_data_lines(self) -> None:
        encoded = base64.b64encode(_deposit_payload()).decode("ascii")
        events = self.decoder.decode_logs(
            [
                "Program log: Instruction: Deposit",
                f"Program data: {encoded}",
                "Program data: not-base64!!",
                "Program data: ",
            ]
        )

        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], VaultDeposited)


if __name__ == "__main__":
    unittest.main()
