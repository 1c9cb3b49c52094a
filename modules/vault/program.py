from __future__ import annotations

import hashlib
import struct

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import transfer
from spl.token.models import TransferParams

from .pda import associated_token_address, vault_index_seed

MAX_U64 = (1 << 64) - 1


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


TRANSFER_VAULT_TO_USER = instruction_discriminator("transfer_vault_to_user")
WITHDRAW_UNDERLYING_TO_USER = instruction_discriminator("withdraw_underlying_to_user")


def _u64(value: int, *, name: str) -> bytes:
    if value < 0 or value > MAX_U64:
        raise ValueError(f"{name} out of u64 range: {value}")
    return struct.pack("<Q", value)


def transfer_vault_to_user_ix(
    *,
    program_id: Pubkey,
    user: Pubkey,
    factory: Pubkey,
    vault: Pubkey,
    vault_stablecoin_account: Pubkey,
    user_stablecoin_account: Pubkey,
    vault_index: int,
    amount: int,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    data = TRANSFER_VAULT_TO_USER + vault_index_seed(vault_index) + _u64(amount, name="amount")
    accounts = [
        AccountMeta(user, is_signer=True, is_writable=True),
        AccountMeta(factory, is_signer=False, is_writable=False),
        AccountMeta(vault, is_signer=False, is_writable=True),
        AccountMeta(vault_stablecoin_account, is_signer=False, is_writable=True),
        AccountMeta(user_stablecoin_account, is_signer=False, is_writable=True),
        AccountMeta(token_program, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, accounts)


def withdraw_underlying_to_user_ix(
    *,
    program_id: Pubkey,
    user: Pubkey,
    factory: Pubkey,
    vault: Pubkey,
    vault_asset_account: Pubkey,
    user_asset_account: Pubkey,
    mint: Pubkey,
    vault_index: int,
    amount: int,
    decimals: int,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    if decimals < 0 or decimals > 255:
        raise ValueError(f"decimals out of u8 range: {decimals}")
    data = (
        WITHDRAW_UNDERLYING_TO_USER
        + vault_index_seed(vault_index)
        + _u64(amount, name="amount")
        + bytes([decimals])
    )
    accounts = [
        AccountMeta(user, is_signer=True, is_writable=True),
        AccountMeta(factory, is_signer=False, is_writable=False),
        AccountMeta(vault, is_signer=False, is_writable=True),
        AccountMeta(vault_asset_account, is_signer=False, is_writable=True),
        AccountMeta(user_asset_account, is_signer=False, is_writable=True),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(token_program, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, accounts)


def create_associated_token_account_ix(
    *,
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
    idempotent: bool = True,
) -> Instruction:
    ata = associated_token_address(owner, mint, token_program)
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(ata, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(token_program, is_signer=False, is_writable=False),
    ]
    # 0 = Create, 1 = CreateIdempotent
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, bytes([1 if idempotent else 0]), accounts)


def token_transfer_ix(
    *,
    source: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    return transfer(
        TransferParams(
            program_id=token_program,
            source=source,
            dest=destination,
            owner=owner,
            amount=amount,
        )
    )
