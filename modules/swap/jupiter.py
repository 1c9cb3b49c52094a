from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any

import aiohttp

from modules.common import InstructionError, PriceError, QuoteError, log_event

from .retry import RetryPolicy, is_retryable

PRICE_SCALE = 1_000_000


def is_transient_price_error(error: BaseException) -> bool:
    """Rate limits, 5xx and transport failures; a missing or invalid price is final."""
    if not isinstance(error, PriceError):
        return is_retryable(error)
    if error.status is None:
        return error.payload is None
    return error.status == 429 or error.status >= 500


def _error_message_from_payload(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)


def _preview(body: str, limit: int = 300) -> str:
    text = " ".join(body.split())
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


class JupiterClient:
    """Quote, swap-instruction and spot-price calls against the Jupiter HTTP API."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        quote_url: str,
        swap_instructions_url: str,
        price_url: str,
        api_key: str = "",
        slippage_bps: int = 200,
        max_accounts: int = 64,
        exclude_dexes: tuple[str, ...] = ("Sanctum", "Sanctum Infinity"),
        timeout_seconds: float = 15.0,
    ) -> None:
        self._logger = logger
        self._quote_url = quote_url
        self._swap_instructions_url = swap_instructions_url
        self._price_url = price_url
        self._api_key = api_key
        self._slippage_bps = slippage_bps
        self._max_accounts = max_accounts
        self._exclude_dexes = exclude_dexes
        self._timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[QuoteError] | type[InstructionError] | type[PriceError],
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Jupiter HTTP session is not initialized.")

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers(),
            ) as response:
                status = response.status
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise error_cls(f"Request to {url} failed: {error or type(error).__name__}", endpoint=url) from error

        if not body:
            raise error_cls(f"Empty response body (status={status})", endpoint=url, status=status)

        try:
            parsed: Any = json.loads(body)
        except json.JSONDecodeError as error:
            raise error_cls(
                f"Unparsable response (status={status}): {_preview(body)}",
                endpoint=url,
                status=status,
            ) from error

        if status >= 400:
            message = _error_message_from_payload(parsed.get("error") if isinstance(parsed, dict) else parsed)
            raise error_cls(f"status={status} error={message}", endpoint=url, status=status, payload=parsed)

        if not isinstance(parsed, dict):
            raise error_cls(f"Unexpected response: {_preview(body)}", endpoint=url, status=status, payload=parsed)

        if parsed.get("error"):
            raise error_cls(
                f"API error: {_error_message_from_payload(parsed['error'])}",
                endpoint=url,
                status=status,
                payload=parsed,
            )
        return parsed

    async def quote(self, *, input_mint: str, output_mint: str, amount: int) -> dict[str, Any]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(self._slippage_bps),
            "onlyDirectRoutes": "false",
            "maxAccounts": str(self._max_accounts),
        }
        if self._exclude_dexes:
            params["excludeDexes"] = ",".join(self._exclude_dexes)

        quote = await self._request("GET", self._quote_url, params=params, error_cls=QuoteError)
        if not isinstance(quote.get("routePlan"), list):
            raise QuoteError("Quote response has no routePlan", endpoint=self._quote_url, payload=quote)

        log_event(
            self._logger,
            level="debug",
            event="jupiter_quote_received",
            message="Swap quote received",
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=quote.get("inAmount"),
            out_amount=quote.get("outAmount"),
            route_hops=len(quote["routePlan"]),
        )
        return quote

    async def swap_instructions(
        self,
        *,
        quote_response: dict[str, Any],
        user_public_key: str,
        destination_token_account: str,
    ) -> dict[str, Any]:
        payload = {
            "quoteResponse": quote_response,
            "userPublicKey": user_public_key,
            "destinationTokenAccount": destination_token_account,
        }
        result = await self._request(
            "POST",
            self._swap_instructions_url,
            json_body=payload,
            error_cls=InstructionError,
        )
        if not isinstance(result.get("swapInstruction"), dict):
            raise InstructionError(
                "swapInstruction is missing in swap-instructions response",
                endpoint=self._swap_instructions_url,
                payload=result,
            )
        return result

    async def usd_price(self, mint: str) -> float:
        result = await self._request("GET", self._price_url, params={"ids": mint}, error_cls=PriceError)
        entry = result.get(mint)
        if not isinstance(entry, dict):
            raise PriceError(f"No price returned for {mint}", endpoint=self._price_url, payload=result)
        try:
            price = float(entry.get("usdPrice"))
        except (TypeError, ValueError) as error:
            raise PriceError(
                f"Invalid usdPrice for {mint}: {entry}",
                endpoint=self._price_url,
                payload=result,
            ) from error
        if not math.isfinite(price) or price <= 0:
            raise PriceError(f"Non-positive usdPrice for {mint}: {price}", endpoint=self._price_url, payload=result)
        return price

    async def price_raw(self, mint: str, *, retry_policy: RetryPolicy | None = None, **log_fields: Any) -> int:
        """Spot price scaled by 1e6; 0 when no usable price is available.

        With ``retry_policy`` set, rate limits, server errors and transport
        failures are retried before the price is given up on.
        """
        try:
            if retry_policy is None:
                price = await self.usd_price(mint)
            else:
                price = await retry_policy.with_retry(
                    lambda: self.usd_price(mint),
                    operation_name="spot_price",
                    retry_if=is_transient_price_error,
                    asset_mint=mint,
                    **log_fields,
                )
        except PriceError as error:
            log_event(
                self._logger,
                level="warning",
                event="jupiter_price_unavailable",
                message="Spot price is unavailable",
                asset_mint=mint,
                error=str(error),
                **log_fields,
            )
            return 0
        return math.floor(price * PRICE_SCALE)
