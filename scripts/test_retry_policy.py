from __future__ import annotations

import logging
import unittest
from unittest.mock import AsyncMock, MagicMock

from solders.hash import Hash

from modules.common import SendFailedError, TransactionExecutionError
from modules.swap import (
    RETURN_TRANSFER_BUDGET,
    BuildRequest,
    RetryPolicy,
    SignedTransaction,
    TransactionExecutor,
    classify_send_error,
    is_retryable,
)


def _request() -> BuildRequest:
    return BuildRequest(instructions=(), blockhash=str(Hash.default()), compute_budget=RETURN_TRANSFER_BUDGET)


class SendErrorClassificationTests(unittest.TestCase):
    def test_classification(self) -> None:
        self.assertEqual(classify_send_error("Blockhash not found"), "stale")
        self.assertEqual(classify_send_error(RuntimeError("custom program error: 0x1788")), "stale")
        self.assertEqual(classify_send_error("Transfer: insufficient funds for fee"), "terminal")
        self.assertEqual(classify_send_error("AnchorError caused by account: ConstraintSeeds"), "terminal")
        self.assertEqual(classify_send_error("connection reset by peer"), "other")
        self.assertFalse(is_retryable(RuntimeError("Attempt to debit: insufficient lamports")))
        self.assertTrue(is_retryable(RuntimeError("503 service unavailable")))

    def test_slippage_code_only_matches_as_error_code(self) -> None:
        self.assertEqual(classify_send_error("AnchorError occurred. Error Code: 6024. Error Number: 6024."), "stale")
        self.assertEqual(classify_send_error("custom program error: 6024"), "stale")
        self.assertEqual(classify_send_error("swap failed: out amount 16024 below minimum"), "other")
        self.assertEqual(classify_send_error("node is behind by 6024 slots"), "other")
        self.assertEqual(classify_send_error("custom program error: 0x17880"), "other")


class RetryPolicyTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.policy = RetryPolicy(
            logger=logging.getLogger("test.retry"),
            max_attempts=3,
            base_delay_seconds=1.0,
            jitter_seconds=0.0,
        )
        self.policy.sleep = AsyncMock()  # type: ignore[method-assign]

    def test_delay_doubles_per_attempt(self) -> None:
        self.assertEqual([self.policy.delay_for(n) for n in (1, 2, 3)], [1.0, 2.0, 4.0])

    async def test_retries_until_success(self) -> None:
        operation = AsyncMock(side_effect=[RuntimeError("timeout"), RuntimeError("timeout"), "ok"])

        result = await self.policy.with_retry(operation, operation_name="quote")

        self.assertEqual(result, "ok")
        self.assertEqual(operation.await_count, 3)
        self.assertEqual([call.args[0] for call in self.policy.sleep.await_args_list], [1.0, 2.0])

    async def test_exhaustion_raises_last_error(self) -> None:
        operation = AsyncMock(side_effect=[RuntimeError("first"), RuntimeError("second"), RuntimeError("third")])

        with self.assertRaisesRegex(RuntimeError, "third"):
            await self.policy.with_retry(operation, operation_name="quote")
        self.assertEqual(operation.await_count, 3)

    async def test_terminal_error_is_not_retried(self) -> None:
        operation = AsyncMock(side_effect=RuntimeError("insufficient funds"))

        with self.assertRaises(RuntimeError):
            await self.policy.with_retry(operation, operation_name="send")
        self.assertEqual(operation.await_count, 1)
        self.policy.sleep.assert_not_awaited()


class ExecutorSendTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        logger = logging.getLogger("test.executor")
        self.retry = RetryPolicy(logger=logger, max_attempts=3, base_delay_seconds=0.0, jitter_seconds=0.0)
        self.retry.sleep = AsyncMock()  # type: ignore[method-assign]
        self.rpc = MagicMock()
        self.rpc.send_transaction = AsyncMock()
        self.rpc.get_signature_statuses = AsyncMock()
        self.rpc.get_transaction = AsyncMock()
        self.builder = MagicMock()
        self.builder.build.return_value = SignedTransaction(signature="sig", raw=b"raw", blockhash="hash")
        self.executor = TransactionExecutor(
            logger=logger,
            rpc=self.rpc,
            builder=self.builder,
            retry_policy=self.retry,
            send_max_attempts=3,
            confirm_max_attempts=2,
            verify_max_attempts=2,
        )

    async def test_stale_error_rebuilds_once_and_skips_preflight(self) -> None:
        self.rpc.send_transaction.side_effect = [RuntimeError("Blockhash not found"), "sig-2"]
        rebuilt = _request()
        rebuild = AsyncMock(return_value=rebuilt)

        signature = await self.executor.send(_request(), rebuild=rebuild)

        self.assertEqual(signature, "sig-2")
        rebuild.assert_awaited_once()
        self.builder.build.assert_called_with(rebuilt)
        self.assertTrue(self.rpc.send_transaction.await_args_list[-1].kwargs["skip_preflight"])

    async def test_terminal_error_raises_without_rebuild(self) -> None:
        self.rpc.send_transaction.side_effect = RuntimeError("insufficient funds for rent")
        rebuild = AsyncMock(return_value=_request())

        with self.assertRaises(SendFailedError) as caught:
            await self.executor.send(_request(), rebuild=rebuild)

        self.assertEqual(caught.exception.kind, "terminal")
        self.assertEqual(caught.exception.attempts, 1)
        rebuild.assert_not_awaited()

    async def test_exhausted_attempts_try_one_final_rebuild(self) -> None:
        self.rpc.send_transaction.side_effect = [
            RuntimeError("node is behind"),
            RuntimeError("node is behind"),
            RuntimeError("node is behind"),
            "sig-final",
        ]
        rebuild = AsyncMock(return_value=_request())

        signature = await self.executor.send(_request(), rebuild=rebuild)

        self.assertEqual(signature, "sig-final")
        rebuild.assert_awaited_once()
        self.assertEqual(self.rpc.send_transaction.await_count, 4)

    async def test_exhausted_attempts_without_rebuild_raise(self) -> None:
        self.rpc.send_transaction.side_effect = RuntimeError("node is behind")

        with self.assertRaises(SendFailedError) as caught:
            await self.executor.send(_request())
        self.assertEqual(caught.exception.attempts, 3)

    async def test_confirm_raises_on_execution_error(self) -> None:
        self.rpc.get_signature_statuses.return_value = [
            {"confirmationStatus": "confirmed", "err": {"InstructionError": [2, {"Custom": 6001}]}}
        ]

        with self.assertRaises(TransactionExecutionError):
            await self.executor.confirm("sig")
        self.assertEqual(self.rpc.get_signature_statuses.await_count, 1)

    async def test_confirmed_but_unindexed_transaction_counts_as_success(self) -> None:
        self.rpc.get_signature_statuses.return_value = [{"confirmationStatus": "confirmed", "err": None}]
        self.rpc.get_transaction.return_value = None

        await self.executor.confirm("sig")

        self.assertEqual(self.rpc.get_transaction.await_count, 2)
        self.assertEqual(self.rpc.get_transaction.await_args_list[-1].kwargs["commitment"], "finalized")

    async def test_confirm_checks_executed_transaction_meta(self) -> None:
        self.rpc.get_signature_statuses.return_value = [{"confirmationStatus": "finalized", "err": None}]
        self.rpc.get_transaction.return_value = {"meta": {"err": {"InsufficientFundsForRent": {"account_index": 1}}}}

        with self.assertRaises(TransactionExecutionError):
            await self.executor.confirm("sig")


if __name__ == "__main__":
    unittest.main()
