from __future__ import annotations

import struct

from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

FACTORY_SEED = b"factory_v2"
VAULT_SEED = b"vault"
VAULT_STABLECOIN_SEED = b"vault_stablecoin_account"

MAX_VAULT_INDEX = 0xFFFFFFFF


def vault_index_seed(vault_index: int) -> bytes:
    if not isinstance(vault_index, int) or isinstance(vault_index, bool):
        raise ValueError(f"vault_index must be an integer, got {vault_index!r}")
    if vault_index < 0 or vault_index > MAX_VAULT_INDEX:
        raise ValueError(f"vault_index out of range: {vault_index}")
    return struct.pack("<I", vault_index)


def associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    # off-curve owners (PDAs) are valid here; the derivation never checks the curve
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


class AddressDeriver:
    """Program-derived addresses for one vault-factory program."""

    def __init__(self, program_id: Pubkey | str) -> None:
        self.program_id = program_id if isinstance(program_id, Pubkey) else Pubkey.from_string(program_id)

    def factory(self) -> Pubkey:
        address, _ = Pubkey.find_program_address([FACTORY_SEED], self.program_id)
        return address

    def vault(self, vault_index: int, factory: Pubkey | None = None) -> Pubkey:
        factory_key = factory or self.factory()
        address, _ = Pubkey.find_program_address(
            [VAULT_SEED, bytes(factory_key), vault_index_seed(vault_index)],
            self.program_id,
        )
        return address

    def vault_reserve(self, vault: Pubkey) -> Pubkey:
        address, _ = Pubkey.find_program_address([VAULT_STABLECOIN_SEED, bytes(vault)], self.program_id)
        return address

    def vault_addresses(self, vault_index: int) -> tuple[Pubkey, Pubkey, Pubkey]:
        """Return ``(factory, vault, vault_reserve)`` for ``vault_index``."""
        factory = self.factory()
        vault = self.vault(vault_index, factory)
        return factory, vault, self.vault_reserve(vault)
