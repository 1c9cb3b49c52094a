from __future__ import annotations


class EngineError(RuntimeError):
    pass


class ValidationError(EngineError):
    pass


class ConfigurationError(ValidationError):
    pass


class VaultNotFound(ValidationError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Vault account not found: {address}")
        self.address = address


class NoUnderlyingAssets(EngineError):
    def __init__(self, vault: str) -> None:
        super().__init__(f"No underlying assets configured for vault {vault}")
        self.vault = vault


class InsufficientOperatorBalance(EngineError):
    def __init__(self, *, balance_lamports: int, required_lamports: int) -> None:
        super().__init__(
            "Operator wallet balance is below the fee reserve: "
            f"balance={balance_lamports} required={required_lamports} lamports"
        )
        self.balance_lamports = balance_lamports
        self.required_lamports = required_lamports


class VaultTransferError(EngineError):
    pass


class TransactionNotFound(EngineError):
    def __init__(self, signature: str) -> None:
        super().__init__(f"Transaction not found on chain: {signature}")
        self.signature = signature


class AggregatorError(RuntimeError):
    def __init__(self, message: str, *, endpoint: str, status: int | None = None, payload: object = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status
        self.payload = payload


class QuoteError(AggregatorError):
    pass


class InstructionError(AggregatorError):
    pass


class PriceError(AggregatorError):
    pass


class SendFailedError(RuntimeError):
    def __init__(self, message: str, *, kind: str, attempts: int) -> None:
        super().__init__(message)
        self.kind = kind
        self.attempts = attempts


class ConfirmationTimeoutError(RuntimeError):
    def __init__(self, signature: str, timeout_seconds: float) -> None:
        super().__init__(f"Transaction {signature} was not confirmed within {timeout_seconds:.1f}s")
        self.signature = signature
        self.timeout_seconds = timeout_seconds


class TransactionExecutionError(RuntimeError):
    def __init__(self, signature: str, error: object) -> None:
        super().__init__(f"Transaction {signature} failed on chain: {error}")
        self.signature = signature
        self.error = error
