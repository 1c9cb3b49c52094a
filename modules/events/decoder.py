from __future__ import annotations

import base64
import binascii
import logging
from typing import Iterable

from solders.pubkey import Pubkey

from modules.common import log_event

from .schemas import VaultCreatedSchema, get_vault_created_schema
from .types import (
    DecodedEvent,
    FactoryAssetsUpdated,
    FactoryFeesUpdated,
    FactoryInitialized,
    FixedLayoutEvent,
    ProtocolFeesCollected,
    UnknownEvent,
    VaultDeposited,
    VaultFeesUpdated,
)

PROGRAM_DATA_PREFIX = "Program data: "
MAX_HEURISTIC_PUBKEYS = 5

EVENT_DISCRIMINATORS: dict[str, str] = {
    "ed363f30d7c928d7": "FactoryAssetsUpdated",
    "751978fe4bec4e73": "VaultCreated",
    "b42bcf021247034b": "VaultCreated",
    "978890413dd89840": "FactoryFeesUpdated",
    "97883a29bd5908f0": "FactoryFeesUpdated",
    "fbdd7e1809d86367": "VaultFeesUpdated",
    "145688f675618ff0": "FactoryInitialized",
    "a5227d54fb89a39b": "ProtocolFeesCollected",
    "ca0c99be7ba73f0e": "FactoryStateChanged",
    "3b3e2bc8dc686443": "VaultDeposited",
}

FIXED_LAYOUT_DECODERS: dict[str, type[FixedLayoutEvent]] = {
    "FactoryAssetsUpdated": FactoryAssetsUpdated,
    "FactoryInitialized": FactoryInitialized,
    "FactoryFeesUpdated": FactoryFeesUpdated,
    "VaultFeesUpdated": VaultFeesUpdated,
    "ProtocolFeesCollected": ProtocolFeesCollected,
    "VaultDeposited": VaultDeposited,
}


def decode_generic(data: bytes, event_type: str = "Unknown", *, error: str | None = None) -> UnknownEvent:
    payload = data[8:]
    pubkeys: list[str] = []
    for offset in range(0, len(payload) - 31, 32):
        if len(pubkeys) >= MAX_HEURISTIC_PUBKEYS:
            break
        pubkeys.append(str(Pubkey.from_bytes(payload[offset : offset + 32])))
    return UnknownEvent(
        discriminator=data[:8].hex(),
        data_hex=payload.hex(),
        data_length=len(payload),
        heuristic_pubkeys=tuple(pubkeys),
        raw_base64=base64.b64encode(data).decode("ascii"),
        event_type=event_type,
        decode_error=error,
    )


class EventDiscriminatorDecoder:
    """Turns raw program-event payloads into typed events.

    ``decode`` never raises: payloads it cannot parse come back as
    :class:`UnknownEvent` carrying the discriminator, hex payload and
    candidate public keys.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger | None = None,
        vault_created_schema: VaultCreatedSchema | None = None,
    ) -> None:
        self._logger = logger
        self._vault_created_schema = vault_created_schema or get_vault_created_schema()

    @property
    def vault_created_schema_version(self) -> str:
        return self._vault_created_schema.version

    def decode(self, data: bytes) -> DecodedEvent:
        data = bytes(data)
        discriminator = data[:8].hex()
        event_type = EVENT_DISCRIMINATORS.get(discriminator) if len(data) >= 8 else None
        if event_type is None:
            return decode_generic(data)

        try:
            if event_type == "VaultCreated":
                return self._vault_created_schema.parse(discriminator, data)
            event_cls = FIXED_LAYOUT_DECODERS.get(event_type)
            if event_cls is None:
                return decode_generic(data, event_type)
            return event_cls.unpack(discriminator, data)  # type: ignore[return-value]
        except Exception as error:
            if self._logger is not None:
                log_event(
                    self._logger,
                    level="debug",
                    event="event_decode_fallback",
                    message="Typed event decode failed; using generic decoding",
                    event_type=event_type,
                    discriminator=discriminator,
                    error=str(error),
                )
            return decode_generic(data, event_type, error=str(error))

    def decode_base64(self, encoded: str) -> DecodedEvent | None:
        try:
            data = base64.b64decode(encoded.strip(), validate=True)
        except (binascii.Error, ValueError):
            return None
        if not data:
            return None
        return self.decode(data)

    def decode_logs(self, log_lines: Iterable[str]) -> list[DecodedEvent]:
        events: list[DecodedEvent] = []
        for line in log_lines:
            if not isinstance(line, str) or not line.startswith(PROGRAM_DATA_PREFIX):
                continue
            event = self.decode_base64(line[len(PROGRAM_DATA_PREFIX) :])
            if event is not None:
                events.append(event)
        return events
