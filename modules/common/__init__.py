from .async_utils import cancel_task, guarded_call, run_in_batches
from .errors import (
    AggregatorError,
    ConfigurationError,
    ConfirmationTimeoutError,
    EngineError,
    InstructionError,
    InsufficientOperatorBalance,
    NoUnderlyingAssets,
    PriceError,
    QuoteError,
    SendFailedError,
    TransactionExecutionError,
    TransactionNotFound,
    ValidationError,
    VaultNotFound,
    VaultTransferError,
)
from .logging import log_event, sanitize_text, sanitize_value

__all__ = [
    "AggregatorError",
    "ConfigurationError",
    "ConfirmationTimeoutError",
    "EngineError",
    "InstructionError",
    "InsufficientOperatorBalance",
    "NoUnderlyingAssets",
    "PriceError",
    "QuoteError",
    "SendFailedError",
    "TransactionExecutionError",
    "TransactionNotFound",
    "ValidationError",
    "VaultNotFound",
    "VaultTransferError",
    "cancel_task",
    "guarded_call",
    "log_event",
    "run_in_batches",
    "sanitize_text",
    "sanitize_value",
]
