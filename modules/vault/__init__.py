from .accounts import (
    EMPTY_MINT,
    AccountLayoutError,
    UnderlyingAsset,
    VaultSnapshot,
    decode_vault_account,
    mint_decimals,
    read_factory_admin,
    token_program_for_owner,
)
from .pda import AddressDeriver, associated_token_address, vault_index_seed
from .program import (
    create_associated_token_account_ix,
    instruction_discriminator,
    token_transfer_ix,
    transfer_vault_to_user_ix,
    withdraw_underlying_to_user_ix,
)

__all__ = [
    "AccountLayoutError",
    "AddressDeriver",
    "EMPTY_MINT",
    "UnderlyingAsset",
    "VaultSnapshot",
    "associated_token_address",
    "create_associated_token_account_ix",
    "decode_vault_account",
    "instruction_discriminator",
    "mint_decimals",
    "read_factory_admin",
    "token_program_for_owner",
    "token_transfer_ix",
    "transfer_vault_to_user_ix",
    "vault_index_seed",
    "withdraw_underlying_to_user_ix",
]
