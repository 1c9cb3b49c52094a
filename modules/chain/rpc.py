from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp
from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.pubkey import Pubkey

from modules.common import log_event


class RpcMethodError(RuntimeError):
    def __init__(
        self,
        *,
        method: str,
        message: str,
        status: int | None = None,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.status = status
        self.code = code
        self.data = data


def _error_payload_to_message(payload: Any) -> str:
    if isinstance(payload, dict):
        message = str(payload.get("message") or "").strip() or str(payload)
        data = payload.get("data")
        if isinstance(data, dict):
            logs = data.get("logs")
            if isinstance(logs, list) and logs:
                message = f"{message} logs={' | '.join(str(line) for line in logs[-6:])}"
            if data.get("err") is not None:
                message = f"{message} err={data['err']}"
        return message
    return str(payload)


@dataclass(slots=True, frozen=True)
class AccountInfo:
    pubkey: str
    owner: str
    lamports: int
    data: bytes
    executable: bool = False


def _parse_account(pubkey: str, value: Any) -> AccountInfo | None:
    if not isinstance(value, dict):
        return None
    raw_data = value.get("data")
    data = b""
    if isinstance(raw_data, list) and raw_data:
        data = base64.b64decode(str(raw_data[0] or ""))
    elif isinstance(raw_data, str):
        data = base64.b64decode(raw_data)
    return AccountInfo(
        pubkey=pubkey,
        owner=str(value.get("owner") or ""),
        lamports=int(value.get("lamports") or 0),
        data=data,
        executable=bool(value.get("executable")),
    )


class SolanaRpcClient:
    """Thin JSON-RPC client over one shared aiohttp session."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc_url: str,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._logger = logger
        self._rpc_url = rpc_url
        self._timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None
        self._request_id = 0

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def connect(self) -> None:
        if not self._rpc_url:
            raise ValueError("RPC URL is required.")
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("RPC HTTP session is not initialized.")

        self._request_id += 1
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            async with self._session.post(self._rpc_url, json=payload) as response:
                body = await response.json(content_type=None)
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise RpcMethodError(
                method=method,
                message=f"RPC transport error for {method}: {error or type(error).__name__}",
            ) from error

        if status >= 400:
            raise RpcMethodError(
                method=method,
                status=status,
                data=body,
                message=f"RPC call failed: method={method} status={status} body={body}",
            )

        if not isinstance(body, dict):
            raise RpcMethodError(method=method, message=f"Invalid RPC response for {method}: {body}")

        error_payload = body.get("error")
        if error_payload:
            code = error_payload.get("code") if isinstance(error_payload, dict) else None
            raise RpcMethodError(
                method=method,
                code=code if isinstance(code, int) else None,
                data=error_payload,
                message=f"RPC error for {method}: {_error_payload_to_message(error_payload)}",
            )

        return body.get("result")

    async def get_account_info(self, pubkey: Pubkey | str, *, commitment: str = "confirmed") -> AccountInfo | None:
        address = str(pubkey)
        result = await self._rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": commitment}],
        )
        if not isinstance(result, dict):
            raise RpcMethodError(method="getAccountInfo", message=f"Unexpected getAccountInfo response: {result}")
        return _parse_account(address, result.get("value"))

    async def get_multiple_accounts(
        self,
        pubkeys: list[Pubkey | str],
        *,
        commitment: str = "confirmed",
    ) -> list[AccountInfo | None]:
        if not pubkeys:
            return []
        addresses = [str(pubkey) for pubkey in pubkeys]
        result = await self._rpc_call(
            "getMultipleAccounts",
            [addresses, {"encoding": "base64", "commitment": commitment}],
        )
        if not isinstance(result, dict) or not isinstance(result.get("value"), list):
            raise RpcMethodError(
                method="getMultipleAccounts",
                message=f"Unexpected getMultipleAccounts response: {result}",
            )
        return [_parse_account(address, value) for address, value in zip(addresses, result["value"])]

    async def get_balance(self, pubkey: Pubkey | str, *, commitment: str = "confirmed") -> int:
        result = await self._rpc_call("getBalance", [str(pubkey), {"commitment": commitment}])
        if not isinstance(result, dict):
            raise RpcMethodError(method="getBalance", message=f"Unexpected getBalance response: {result}")
        return int(result.get("value") or 0)

    async def get_token_account_balance(self, pubkey: Pubkey | str, *, commitment: str = "confirmed") -> int:
        result = await self._rpc_call("getTokenAccountBalance", [str(pubkey), {"commitment": commitment}])
        if not isinstance(result, dict) or not isinstance(result.get("value"), dict):
            raise RpcMethodError(
                method="getTokenAccountBalance",
                message=f"Unexpected getTokenAccountBalance response: {result}",
            )
        return int(result["value"].get("amount") or 0)

    async def get_latest_blockhash(self, *, commitment: str = "confirmed") -> tuple[str, int | None]:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": commitment}])
        if not isinstance(result, dict):
            raise RpcMethodError(method="getLatestBlockhash", message=f"Unexpected getLatestBlockhash response: {result}")

        value = result.get("value")
        if not isinstance(value, dict):
            raise RpcMethodError(method="getLatestBlockhash", message=f"Unexpected getLatestBlockhash payload: {result}")

        blockhash = str(value.get("blockhash") or "").strip()
        if not blockhash:
            raise RpcMethodError(method="getLatestBlockhash", message=f"Missing blockhash in RPC response: {result}")
        height = value.get("lastValidBlockHeight")
        return blockhash, int(height) if isinstance(height, int) else None

    async def send_transaction(
        self,
        raw_transaction: bytes,
        *,
        skip_preflight: bool = False,
        preflight_commitment: str = "confirmed",
        max_retries: int = 3,
    ) -> str:
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        result = await self._rpc_call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": preflight_commitment,
                    "maxRetries": max_retries,
                },
            ],
        )
        if not isinstance(result, str) or not result:
            raise RpcMethodError(method="sendTransaction", message=f"Unexpected sendTransaction response: {result}")
        return result

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict[str, Any] | None]:
        result = await self._rpc_call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": True}],
        )
        if not isinstance(result, dict) or not isinstance(result.get("value"), list):
            raise RpcMethodError(
                method="getSignatureStatuses",
                message=f"Unexpected getSignatureStatuses response: {result}",
            )
        return [item if isinstance(item, dict) else None for item in result["value"]]

    async def get_transaction(self, signature: str, *, commitment: str = "confirmed") -> dict[str, Any] | None:
        result = await self._rpc_call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None
        if not isinstance(result, dict):
            raise RpcMethodError(method="getTransaction", message=f"Unexpected getTransaction response: {result}")
        return result

    async def get_lookup_table_accounts(self, addresses: list[str]) -> list[AddressLookupTableAccount]:
        """Resolve lookup tables; tables that are missing or undecodable are skipped."""
        unique: list[str] = []
        for address in addresses:
            if address and address not in unique:
                unique.append(address)
        if not unique:
            return []

        accounts = await self.get_multiple_accounts(unique)
        lookup_tables: list[AddressLookupTableAccount] = []
        for address, account in zip(unique, accounts):
            if account is None or not account.data:
                log_event(
                    self._logger,
                    level="warning",
                    event="lookup_table_missing",
                    message="Address lookup table account was not found; skipping",
                    lookup_table=address,
                )
                continue
            try:
                table = AddressLookupTable.deserialize(account.data)
            except Exception as error:
                log_event(
                    self._logger,
                    level="warning",
                    event="lookup_table_decode_failed",
                    message="Address lookup table could not be decoded; skipping",
                    lookup_table=address,
                    error=str(error),
                )
                continue
            lookup_tables.append(AddressLookupTableAccount(Pubkey.from_string(address), list(table.addresses)))
        return lookup_tables
