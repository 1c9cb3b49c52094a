from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from modules.common import (
    ConfirmationTimeoutError,
    SendFailedError,
    TransactionExecutionError,
    log_event,
)

from .retry import RetryPolicy, classify_send_error
from .types import BuildRequest

if TYPE_CHECKING:
    from modules.chain import SolanaRpcClient

    from .builder import TransactionBuilder

Rebuild = Callable[[], Awaitable[BuildRequest]]

CONFIRMED_STATUSES = {"confirmed", "finalized"}


class TransactionExecutor:
    """Send, confirm and verify signed transactions for one operator key."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc: "SolanaRpcClient",
        builder: "TransactionBuilder",
        retry_policy: RetryPolicy,
        send_max_attempts: int = 3,
        confirm_max_attempts: int = 3,
        confirm_timeout_seconds: float = 60.0,
        confirm_poll_interval_seconds: float = 1.0,
        verify_max_attempts: int = 5,
        verify_initial_delay_seconds: float = 0.5,
        verify_base_delay_seconds: float = 0.2,
    ) -> None:
        self._logger = logger
        self._rpc = rpc
        self._builder = builder
        self._retry = retry_policy
        self._send_max_attempts = max(1, send_max_attempts)
        self._confirm_max_attempts = max(1, confirm_max_attempts)
        self._confirm_timeout_seconds = confirm_timeout_seconds
        self._confirm_poll_interval_seconds = confirm_poll_interval_seconds
        self._verify_max_attempts = max(1, verify_max_attempts)
        self._verify_initial_delay_seconds = verify_initial_delay_seconds
        self._verify_base_delay_seconds = verify_base_delay_seconds

    async def _submit(self, request: BuildRequest, *, skip_preflight: bool) -> str:
        signed = self._builder.build(request)
        return await self._rpc.send_transaction(signed.raw, skip_preflight=skip_preflight)

    async def send(
        self,
        request: BuildRequest,
        *,
        rebuild: Rebuild | None = None,
        **log_fields: Any,
    ) -> str:
        """Submit ``request`` and return its signature.

        A stale blockhash or quote triggers one immediate rebuild and resend with
        preflight disabled. Other failures back off and retry the same request;
        after the last attempt one final rebuild is tried when ``rebuild`` is set.
        Terminal errors raise at once.
        """
        current = request
        skip_preflight = False
        stale_rebuilt = False
        last_error: Exception | None = None

        for attempt in range(1, self._send_max_attempts + 1):
            try:
                signature = await self._submit(current, skip_preflight=skip_preflight)
                log_event(
                    self._logger,
                    level="info",
                    event="transaction_sent",
                    message="Transaction submitted",
                    tx_signature=signature,
                    attempt=attempt,
                    skip_preflight=skip_preflight,
                    **log_fields,
                )
                return signature
            except asyncio.CancelledError:
                raise
            except Exception as error:
                last_error = error
                kind = classify_send_error(error)
                log_event(
                    self._logger,
                    level="warning",
                    event="transaction_send_failed",
                    message="Transaction submission failed",
                    attempt=attempt,
                    max_attempts=self._send_max_attempts,
                    error_kind=kind,
                    error=str(error),
                    **log_fields,
                )
                if kind == "terminal":
                    raise SendFailedError(
                        f"Transaction send failed with a terminal error: {error}",
                        kind=kind,
                        attempts=attempt,
                    ) from error
                if attempt >= self._send_max_attempts:
                    break
                if kind == "stale" and rebuild is not None and not stale_rebuilt:
                    stale_rebuilt = True
                    current = await self._rebuild(rebuild, attempt=attempt, reason=kind, **log_fields)
                    skip_preflight = True
                    continue
                await self._retry.sleep(self._retry.delay_for(attempt))

        if rebuild is not None:
            attempts = self._send_max_attempts + 1
            current = await self._rebuild(rebuild, attempt=attempts, reason="exhausted", **log_fields)
            try:
                signature = await self._submit(current, skip_preflight=True)
            except asyncio.CancelledError:
                raise
            except Exception as error:
                raise SendFailedError(
                    f"Transaction send failed after rebuild: {error}",
                    kind=classify_send_error(error),
                    attempts=attempts,
                ) from error
            log_event(
                self._logger,
                level="info",
                event="transaction_sent",
                message="Transaction submitted after final rebuild",
                tx_signature=signature,
                attempt=attempts,
                skip_preflight=True,
                **log_fields,
            )
            return signature

        raise SendFailedError(
            f"Transaction send failed after {self._send_max_attempts} attempts: {last_error}",
            kind=classify_send_error(last_error) if last_error is not None else "other",
            attempts=self._send_max_attempts,
        ) from last_error

    async def _rebuild(self, rebuild: Rebuild, *, attempt: int, reason: str, **log_fields: Any) -> BuildRequest:
        log_event(
            self._logger,
            level="warning",
            event="transaction_rebuild",
            message="Rebuilding transaction with a fresh quote and blockhash",
            attempt=attempt,
            reason=reason,
            **log_fields,
        )
        try:
            return await rebuild()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            raise SendFailedError(
                f"Transaction rebuild failed: {error}",
                kind="stale" if reason == "stale" else "other",
                attempts=attempt,
            ) from error

    async def _wait_for_status(self, signature: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._confirm_timeout_seconds
        while True:
            statuses = await self._rpc.get_signature_statuses([signature])
            status = statuses[0] if statuses else None
            if status is not None:
                if status.get("err") is not None:
                    raise TransactionExecutionError(signature, status["err"])
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return
            if loop.time() >= deadline:
                raise ConfirmationTimeoutError(signature, self._confirm_timeout_seconds)
            await self._retry.sleep(self._confirm_poll_interval_seconds)

    async def confirm(self, signature: str, **log_fields: Any) -> None:
        """Wait for inclusion, then check the executed transaction for an error.

        A transaction that stays unindexed after the verification window is
        treated as successful because its inclusion was already confirmed.
        """
        await self._retry.with_retry(
            lambda: self._wait_for_status(signature),
            operation_name="confirm_transaction",
            max_attempts=self._confirm_max_attempts,
            retry_if=lambda error: not isinstance(error, TransactionExecutionError),
            tx_signature=signature,
            **log_fields,
        )

        await self._retry.sleep(self._verify_initial_delay_seconds)
        for attempt in range(1, self._verify_max_attempts + 1):
            commitment = "finalized" if attempt == self._verify_max_attempts else "confirmed"
            try:
                transaction = await self._rpc.get_transaction(signature, commitment=commitment)
            except asyncio.CancelledError:
                raise
            except Exception as error:
                log_event(
                    self._logger,
                    level="warning",
                    event="transaction_verify_fetch_failed",
                    message="Fetching the executed transaction failed",
                    tx_signature=signature,
                    attempt=attempt,
                    error=str(error),
                    **log_fields,
                )
                transaction = None

            if transaction is not None:
                meta = transaction.get("meta") or {}
                if meta.get("err") is not None:
                    raise TransactionExecutionError(signature, meta["err"])
                log_event(
                    self._logger,
                    level="info",
                    event="transaction_verified",
                    message="Transaction executed successfully",
                    tx_signature=signature,
                    commitment=commitment,
                    **log_fields,
                )
                return

            if attempt < self._verify_max_attempts:
                await self._retry.sleep(self._verify_base_delay_seconds * (2 ** (attempt - 1)))

        log_event(
            self._logger,
            level="warning",
            event="transaction_not_indexed",
            message="Transaction was confirmed but is not yet retrievable; treating it as successful",
            tx_signature=signature,
            verify_attempts=self._verify_max_attempts,
            **log_fields,
        )

    async def execute(
        self,
        request: BuildRequest,
        *,
        rebuild: Rebuild | None = None,
        **log_fields: Any,
    ) -> str:
        signature = await self.send(request, rebuild=rebuild, **log_fields)
        await self.confirm(signature, **log_fields)
        return signature
