from .builder import (
    COMPLEX_ROUTE_BUDGET,
    HEAVY_ROUTE_BUDGET,
    RETURN_TRANSFER_BUDGET,
    SIMPLE_ROUTE_BUDGET,
    TransactionBuilder,
    build_transaction,
    extract_swap_instructions,
    select_compute_budget,
)
from .executor import TransactionExecutor
from .jupiter import JupiterClient
from .orchestrator import SwapOrchestrator, plan_legs
from .redeem import RedeemSwapOrchestrator
from .retry import RetryPolicy, classify_send_error, is_retryable
from .types import (
    BuildRequest,
    ComputeBudget,
    FailedSwapsInfo,
    LegOutcome,
    OrchestrationResult,
    RedeemLegOutcome,
    RedeemResult,
    SignedTransaction,
    SwapInstructionSet,
    SwapLeg,
)

__all__ = [
    "BuildRequest",
    "COMPLEX_ROUTE_BUDGET",
    "ComputeBudget",
    "FailedSwapsInfo",
    "HEAVY_ROUTE_BUDGET",
    "JupiterClient",
    "LegOutcome",
    "OrchestrationResult",
    "RETURN_TRANSFER_BUDGET",
    "RedeemLegOutcome",
    "RedeemResult",
    "RedeemSwapOrchestrator",
    "RetryPolicy",
    "SIMPLE_ROUTE_BUDGET",
    "SignedTransaction",
    "SwapInstructionSet",
    "SwapLeg",
    "SwapOrchestrator",
    "TransactionBuilder",
    "TransactionExecutor",
    "build_transaction",
    "classify_send_error",
    "extract_swap_instructions",
    "is_retryable",
    "plan_legs",
    "select_compute_budget",
]
