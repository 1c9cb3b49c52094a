from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any, Sequence

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from modules.common import log_event

from .types import BuildRequest, ComputeBudget, SignedTransaction, SwapInstructionSet

if TYPE_CHECKING:
    from modules.chain import SolanaRpcClient

    from .jupiter import JupiterClient

MAX_TRANSACTION_SIZE = 1232
MAX_COMPUTE_UNITS = 1_400_000
SANCTUM_INFINITY_AMM_KEY = "Gb7m4daakbVbrFLR33FKMDVMHAprRZ66CSYt4bpFwUgS"
SANCTUM_INFINITY_LABEL = "Sanctum Infinity"

HEAVY_ROUTE_BUDGET = ComputeBudget(MAX_COMPUTE_UNITS, 2000)
COMPLEX_ROUTE_BUDGET = ComputeBudget(MAX_COMPUTE_UNITS, 1000)
SIMPLE_ROUTE_BUDGET = ComputeBudget(MAX_COMPUTE_UNITS, 500)
RETURN_TRANSFER_BUDGET = ComputeBudget(200_000, 1000)


def decode_instruction(raw: Any, *, section: str) -> Instruction:
    if not isinstance(raw, dict):
        raise RuntimeError(f"Invalid instruction payload in {section}: {raw}")

    program_id = str(raw.get("programId") or "").strip()
    if not program_id:
        raise RuntimeError(f"Instruction programId is missing in {section}")

    raw_accounts = raw.get("accounts")
    if not isinstance(raw_accounts, list):
        raise RuntimeError(f"Instruction accounts are missing in {section}")

    metas: list[AccountMeta] = []
    for idx, account in enumerate(raw_accounts):
        if not isinstance(account, dict):
            raise RuntimeError(f"Instruction account[{idx}] is invalid in {section}: {account}")
        pubkey = str(account.get("pubkey") or "").strip()
        if not pubkey:
            raise RuntimeError(f"Instruction account[{idx}] pubkey is missing in {section}")
        metas.append(
            AccountMeta(
                pubkey=Pubkey.from_string(pubkey),
                is_signer=bool(account.get("isSigner")),
                is_writable=bool(account.get("isWritable")),
            )
        )

    try:
        data = base64.b64decode(str(raw.get("data") or ""))
    except Exception as error:  # pragma: no cover - malformed upstream payload
        raise RuntimeError(f"Instruction data decode failed in {section}: {error}") from error

    return Instruction(Pubkey.from_string(program_id), data, metas)


def decode_instruction_list(raw: Any, *, section: str) -> list[Instruction]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise RuntimeError(f"Instruction list is invalid in {section}: {raw}")
    return [decode_instruction(item, section=f"{section}[{index}]") for index, item in enumerate(raw)]


def extract_swap_instructions(payload: dict[str, Any]) -> SwapInstructionSet:
    swap_instruction = payload.get("swapInstruction")
    if not isinstance(swap_instruction, dict):
        raise RuntimeError("swapInstruction is missing from the instruction payload.")

    cleanup = payload.get("cleanupInstruction")
    lookup_addresses: list[str] = []
    raw_lookup_addresses = payload.get("addressLookupTableAddresses")
    if isinstance(raw_lookup_addresses, list):
        for raw_address in raw_lookup_addresses:
            address = str(raw_address or "").strip()
            if address and address not in lookup_addresses:
                lookup_addresses.append(address)

    return SwapInstructionSet(
        setup=tuple(decode_instruction_list(payload.get("setupInstructions"), section="setupInstructions")),
        swap=decode_instruction(swap_instruction, section="swapInstruction"),
        cleanup=decode_instruction(cleanup, section="cleanupInstruction") if cleanup else None,
        lookup_table_addresses=tuple(lookup_addresses),
    )


def _route_touches_sanctum(quote: dict[str, Any]) -> bool:
    for step in quote.get("routePlan") or []:
        swap_info = step.get("swapInfo") if isinstance(step, dict) else None
        if not isinstance(swap_info, dict):
            continue
        if swap_info.get("ammKey") == SANCTUM_INFINITY_AMM_KEY or swap_info.get("label") == SANCTUM_INFINITY_LABEL:
            return True
    return False


def select_compute_budget(quote: dict[str, Any] | None) -> ComputeBudget:
    """Compute-unit limit and priority fee tier for a swap route."""
    if not quote:
        return SIMPLE_ROUTE_BUDGET
    if _route_touches_sanctum(quote):
        return HEAVY_ROUTE_BUDGET
    try:
        in_amount = int(quote.get("inAmount") or 0)
    except (TypeError, ValueError):
        in_amount = 0
    if len(quote.get("routePlan") or []) > 2 or in_amount > 1_000_000:
        return COMPLEX_ROUTE_BUDGET
    return SIMPLE_ROUTE_BUDGET


def build_transaction(request: BuildRequest, signer: Keypair) -> SignedTransaction:
    """Compile, sign and serialize ``request``; no I/O."""
    prelude = [
        set_compute_unit_limit(request.compute_budget.unit_limit),
        set_compute_unit_price(request.compute_budget.unit_price_micro_lamports),
    ]
    message = MessageV0.try_compile(
        signer.pubkey(),
        [*prelude, *request.instructions],
        list(request.lookup_tables),
        Hash.from_string(request.blockhash),
    )
    signature = signer.sign_message(to_bytes_versioned(message))
    transaction = VersionedTransaction.populate(message, [signature])
    raw = bytes(transaction)
    if len(raw) > MAX_TRANSACTION_SIZE:
        raise RuntimeError(f"Transaction is oversized: size={len(raw)} bytes")
    return SignedTransaction(
        signature=str(transaction.signatures[0]),
        raw=raw,
        blockhash=request.blockhash,
        last_valid_block_height=request.last_valid_block_height,
    )


class TransactionBuilder:
    """Assembles build requests from chain state and signs them with the operator key."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc: "SolanaRpcClient",
        jupiter: "JupiterClient",
        signer: Keypair,
    ) -> None:
        self._logger = logger
        self._rpc = rpc
        self._jupiter = jupiter
        self._signer = signer

    @property
    def payer(self) -> Pubkey:
        return self._signer.pubkey()

    def build(self, request: BuildRequest) -> SignedTransaction:
        return build_transaction(request, self._signer)

    async def swap_request(self, *, quote: dict[str, Any], instructions: SwapInstructionSet) -> BuildRequest:
        lookup_tables = await self._rpc.get_lookup_table_accounts(list(instructions.lookup_table_addresses))
        blockhash, last_valid_block_height = await self._rpc.get_latest_blockhash()
        budget = select_compute_budget(quote)
        log_event(
            self._logger,
            level="debug",
            event="swap_request_built",
            message="Swap build request assembled",
            instruction_count=len(instructions.ordered()),
            lookup_table_count=len(lookup_tables),
            lookup_table_requested_count=len(instructions.lookup_table_addresses),
            compute_unit_limit=budget.unit_limit,
            compute_unit_price=budget.unit_price_micro_lamports,
        )
        return BuildRequest(
            instructions=tuple(instructions.ordered()),
            blockhash=blockhash,
            compute_budget=budget,
            lookup_tables=tuple(lookup_tables),
            quote=quote,
            last_valid_block_height=last_valid_block_height,
        )

    async def fetch_instructions(self, *, quote: dict[str, Any], destination: Pubkey) -> SwapInstructionSet:
        payload = await self._jupiter.swap_instructions(
            quote_response=quote,
            user_public_key=str(self.payer),
            destination_token_account=str(destination),
        )
        return extract_swap_instructions(payload)

    async def fresh_swap_request(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        destination: Pubkey,
    ) -> tuple[BuildRequest, dict[str, Any], SwapInstructionSet]:
        """Rebuild from scratch: new quote, new instructions, new blockhash."""
        quote = await self._jupiter.quote(input_mint=input_mint, output_mint=output_mint, amount=amount)
        instructions = await self.fetch_instructions(quote=quote, destination=destination)
        request = await self.swap_request(quote=quote, instructions=instructions)
        return request, quote, instructions

    async def simple_request(
        self,
        instructions: Sequence[Instruction],
        *,
        compute_budget: ComputeBudget = RETURN_TRANSFER_BUDGET,
    ) -> BuildRequest:
        blockhash, last_valid_block_height = await self._rpc.get_latest_blockhash()
        return BuildRequest(
            instructions=tuple(instructions),
            blockhash=blockhash,
            compute_budget=compute_budget,
            last_valid_block_height=last_valid_block_height,
        )
