from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID


@dataclass(slots=True, frozen=True)
class ComputeBudget:
    unit_limit: int
    unit_price_micro_lamports: int


@dataclass(slots=True, frozen=True)
class SwapInstructionSet:
    setup: tuple[Instruction, ...]
    swap: Instruction
    cleanup: Instruction | None
    lookup_table_addresses: tuple[str, ...] = ()

    def ordered(self) -> list[Instruction]:
        instructions = [*self.setup, self.swap]
        if self.cleanup is not None:
            instructions.append(self.cleanup)
        return instructions


@dataclass(slots=True, frozen=True)
class BuildRequest:
    """Everything needed to produce one signed transaction.

    Retries never mutate a request; a rebuild produces a new one with a fresh
    quote and blockhash.
    """

    instructions: tuple[Instruction, ...]
    blockhash: str
    compute_budget: ComputeBudget
    lookup_tables: tuple[AddressLookupTableAccount, ...] = ()
    quote: dict[str, Any] | None = None
    last_valid_block_height: int | None = None


@dataclass(slots=True, frozen=True)
class SignedTransaction:
    signature: str
    raw: bytes
    blockhash: str
    last_valid_block_height: int | None = None


@dataclass(slots=True)
class SwapLeg:
    """Per-asset working state owned by a single orchestration call."""

    asset_mint: str
    allocation_bps: int
    target_amount: int
    input_mint: str = ""
    output_mint: str = ""
    token_program: Pubkey = TOKEN_PROGRAM_ID
    destination_account: Pubkey | None = None
    source_account: Pubkey | None = None
    decimals: int = 6
    quote: dict[str, Any] | None = None
    instructions: SwapInstructionSet | None = None
    transfer_signature: str | None = None
    swap_signature: str | None = None
    error: str | None = None
    failed_stage: str | None = None

    def fail(self, stage: str, error: BaseException | str) -> None:
        self.failed_stage = stage
        self.error = str(error)

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True, frozen=True)
class LegOutcome:
    asset_mint: str
    usdc_portion: int
    transfer_signature: str | None = None
    swap_signature: str | None = None
    error: str | None = None
    stage: str | None = None

    @classmethod
    def from_leg(cls, leg: SwapLeg) -> "LegOutcome":
        return cls(
            asset_mint=leg.asset_mint,
            usdc_portion=leg.target_amount,
            transfer_signature=leg.transfer_signature,
            swap_signature=leg.swap_signature,
            error=leg.error,
            stage=leg.failed_stage,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class FailedSwapsInfo:
    count: int
    total_failed_usdc: int
    return_required_usdc: int
    admin_usdc_account: str | None
    vault_usdc_account: str
    returned_amount: int = 0
    return_transfer_signature: str | None = None
    shortfall: int = 0
    manual_recovery_required: bool = False
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class OrchestrationResult:
    vault_index: int
    amount_requested: int
    amount_used: int
    vault_usdc_balance: int
    transfer_signature: str | None = None
    swaps: list[LegOutcome] = field(default_factory=list)
    errors: list[LegOutcome] = field(default_factory=list)
    failed_swaps: FailedSwapsInfo | None = None
    note: str | None = None

    @property
    def total_failed_usdc(self) -> int:
        return self.failed_swaps.total_failed_usdc if self.failed_swaps else 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class RedeemLegOutcome:
    asset_mint: str
    input_amount: int
    withdraw_signature: str | None = None
    swap_signature: str | None = None
    error: str | None = None
    stage: str | None = None

    @classmethod
    def from_leg(cls, leg: SwapLeg) -> "RedeemLegOutcome":
        return cls(
            asset_mint=leg.asset_mint,
            input_amount=leg.target_amount,
            withdraw_signature=leg.transfer_signature,
            swap_signature=leg.swap_signature,
            error=leg.error,
            stage=leg.failed_stage,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class RedeemResult:
    vault_index: int
    shares: int
    share_price_raw: int
    required_usdc: int
    vault_usdc_balance: int
    adjusted_shares: int
    share_price_after: str
    total_value_usdc_raw: int
    swaps: list[RedeemLegOutcome] = field(default_factory=list)
    errors: list[RedeemLegOutcome] = field(default_factory=list)
    mode: str = "price-based"
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
