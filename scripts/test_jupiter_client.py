from __future__ import annotations

import asyncio
import logging
import unittest
from unittest.mock import AsyncMock, MagicMock

from modules.common import InstructionError, PriceError, QuoteError
from modules.swap import JupiterClient, RetryPolicy
from modules.swap.jupiter import is_transient_price_error

MINT_A = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class JupiterClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.client = JupiterClient(
            logger=logging.getLogger("test.jupiter"),
            quote_url="https://lite-api.jup.ag/swap/v1/quote",
            swap_instructions_url="https://lite-api.jup.ag/swap/v1/swap-instructions",
            price_url="https://lite-api.jup.ag/price/v3",
            slippage_bps=150,
            max_accounts=40,
            exclude_dexes=("Sanctum", "Sanctum Infinity"),
        )

    async def test_quote_sends_routing_parameters(self) -> None:
        self.client._request = AsyncMock(  # type: ignore[method-assign]
            return_value={"inAmount": "1000", "outAmount": "7", "routePlan": []}
        )

        quote = await self.client.quote(input_mint=USDC_MINT, output_mint=MINT_A, amount=1_000)

        self.assertEqual(quote["outAmount"], "7")
        params = self.client._request.await_args.kwargs["params"]
        self.assertEqual(params["amount"], "1000")
        self.assertEqual(params["slippageBps"], "150")
        self.assertEqual(params["maxAccounts"], "40")
        self.assertEqual(params["excludeDexes"], "Sanctum,Sanctum Infinity")

    async def test_quote_without_route_plan_is_rejected(self) -> None:
        self.client._request = AsyncMock(return_value={"inAmount": "1000"})  # type: ignore[method-assign]
        with self.assertRaises(QuoteError):
            await self.client.quote(input_mint=USDC_MINT, output_mint=MINT_A, amount=1_000)

    async def test_swap_instructions_require_swap_instruction(self) -> None:
        self.client._request = AsyncMock(return_value={"setupInstructions": []})  # type: ignore[method-assign]
        with self.assertRaises(InstructionError):
            await self.client.swap_instructions(
                quote_response={},
                user_public_key=MINT_A,
                destination_token_account=USDC_MINT,
            )

    async def test_price_raw_scales_and_floors(self) -> None:
        self.client._request = AsyncMock(  # type: ignore[method-assign]
            return_value={MINT_A: {"usdPrice": 151.2345678}}
        )
        self.assertEqual(await self.client.price_raw(MINT_A), 151_234_567)

    async def test_price_raw_is_zero_when_unavailable(self) -> None:
        for payload in ({}, {MINT_A: {"usdPrice": None}}, {MINT_A: {"usdPrice": 0}}):
            with self.subTest(payload=payload):
                self.client._request = AsyncMock(return_value=payload)  # type: ignore[method-assign]
                self.assertEqual(await self.client.price_raw(MINT_A), 0)

        self.client._request = AsyncMock(  # type: ignore[method-assign]
            side_effect=PriceError("status=500", endpoint="price")
        )
        self.assertEqual(await self.client.price_raw(MINT_A), 0)

    def _retry_policy(self) -> RetryPolicy:
        policy = RetryPolicy(logger=logging.getLogger("test.jupiter"), max_attempts=3, jitter_seconds=0.0)
        policy.sleep = AsyncMock()  # type: ignore[method-assign]
        return policy

    async def test_price_raw_retries_rate_limited_lookup(self) -> None:
        policy = self._retry_policy()
        self.client.usd_price = AsyncMock(  # type: ignore[method-assign]
            side_effect=[PriceError("status=429 error=Too Many Requests", endpoint="price", status=429), 150.0]
        )

        self.assertEqual(await self.client.price_raw(MINT_A, retry_policy=policy, vault_index=3), 150_000_000)
        self.assertEqual(self.client.usd_price.await_count, 2)
        policy.sleep.assert_awaited_once()  # type: ignore[attr-defined]

    async def test_price_raw_retries_transport_failures_until_exhausted(self) -> None:
        policy = self._retry_policy()
        self.client.usd_price = AsyncMock(  # type: ignore[method-assign]
            side_effect=PriceError("Request to price failed: TimeoutError", endpoint="price")
        )

        self.assertEqual(await self.client.price_raw(MINT_A, retry_policy=policy), 0)
        self.assertEqual(self.client.usd_price.await_count, 3)

    async def test_price_raw_does_not_retry_missing_price(self) -> None:
        policy = self._retry_policy()
        self.client._request = AsyncMock(return_value={})  # type: ignore[method-assign]

        self.assertEqual(await self.client.price_raw(MINT_A, retry_policy=policy), 0)
        self.client._request.assert_awaited_once()
        policy.sleep.assert_not_awaited()  # type: ignore[attr-defined]

    def test_transient_price_errors(self) -> None:
        self.assertTrue(is_transient_price_error(PriceError("timeout", endpoint="price")))
        self.assertTrue(is_transient_price_error(PriceError("busy", endpoint="price", status=503)))
        self.assertFalse(is_transient_price_error(PriceError("bad", endpoint="price", status=400)))
        self.assertFalse(is_transient_price_error(PriceError("missing", endpoint="price", payload={})))

    async def test_request_timeout_maps_to_endpoint_error(self) -> None:
        session = MagicMock()
        session.request.side_effect = asyncio.TimeoutError()
        self.client._session = session

        with self.assertRaises(PriceError) as raised:
            await self.client.usd_price(MINT_A)
        self.assertIn("TimeoutError", str(raised.exception))
        self.assertEqual(await self.client.price_raw(MINT_A), 0)


if __name__ == "__main__":
    unittest.main()
