# interfaces/rpc.py
# NEAR JSON-RPC client for validator, view-call, receipt and block queries

import asyncio
import base64
import json
from datetime import timedelta
from typing import Any

import aiohttp

from ..logging_utils import get_logger


logger = get_logger(__name__)

# Handler error causes that mean "no staking pool code to ask", not a failure
CONTRACT_ABSENT_CAUSES = frozenset({"NO_CONTRACT_CODE", "CONTRACT_EXECUTION_ERROR"})


class RpcError(Exception):
    pass


class RpcTransientError(RpcError):
    """Network failures, timeouts, 5xx answers and unrecognised handler errors."""


class ContractAbsentError(RpcError):
    """The account has no contract deployed, or the view call reverted."""


class RpcParseError(RpcError):
    """The response could not be decoded into the expected shape."""


def raise_for_rpc_error(body: Any) -> Any:
    """Return the `result` member of a JSON-RPC response or raise the matching RpcError."""
    if not isinstance(body, dict):
        raise RpcParseError(f"Unexpected JSON-RPC response: {body!r}")
    error = body.get("error")
    if error is not None:
        cause = error.get("cause") if isinstance(error, dict) else None
        cause_name = cause.get("name") if isinstance(cause, dict) else None
        if cause_name in CONTRACT_ABSENT_CAUSES:
            raise ContractAbsentError(cause_name)
        raise RpcTransientError(f"JSON-RPC error: {error}")
    if "result" not in body:
        raise RpcParseError(f"JSON-RPC response without result: {body!r}")
    return body["result"]


def decode_call_result(result: Any) -> Any:
    """Decode the byte array returned by a call_function query as JSON."""
    if not isinstance(result, dict):
        raise RpcParseError(f"Unexpected call_function result: {result!r}")
    # Older nodes report a reverted view call inside the result itself
    if result.get("error"):
        raise ContractAbsentError(result["error"])
    try:
        raw = bytes(result["result"])
        return json.loads(raw)
    except (KeyError, TypeError, ValueError) as e:
        raise RpcParseError(f"Failed to parse view-function call result: {e}") from e


def block_params(block_height: int | None) -> dict:
    if block_height is None:
        return {"finality": "final"}
    return {"block_id": block_height}


class NearRpcClient:
    def __init__(
        self,
        url: str,
        timeout: timedelta = timedelta(seconds=30),
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "NearRpcClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout.total_seconds())
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def call(self, method: str, params: Any) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": method,
            "params": params,
        }
        session = self._get_session()
        try:
            async with session.post(self.url, json=payload) as resp:
                if resp.status >= 500:
                    raise RpcTransientError(f"{method}: HTTP {resp.status}")
                try:
                    body = await resp.json(content_type=None)
                except ValueError as e:
                    raise RpcParseError(f"{method}: invalid JSON body: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RpcTransientError(f"{method}: {e!r}") from e
        return raise_for_rpc_error(body)

    async def validators(self, block_height: int | None = None) -> dict:
        result = await self.call("validators", [block_height])
        if not isinstance(result, dict):
            raise RpcParseError(f"Unexpected validators result: {result!r}")
        return result

    async def view_call(
        self,
        account_id: str,
        method_name: str,
        args: Any = None,
        block_height: int | None = None,
    ) -> Any:
        params = {
            "request_type": "call_function",
            "account_id": account_id,
            "method_name": method_name,
            "args_base64": base64.b64encode(json.dumps(args).encode()).decode(),
            **block_params(block_height),
        }
        result = await self.call("query", params)
        return decode_call_result(result)

    async def receipt_receiver(self, receipt_id: str) -> str:
        logger.info("Fetching receipt")
        result = await self.call("EXPERIMENTAL_receipt", {"receipt_id": receipt_id})
        try:
            return str(result["receiver_id"])
        except (KeyError, TypeError) as e:
            raise RpcParseError(f"Receipt without receiver_id: {result!r}") from e

    async def block_height(self, block_hash: str | None = None) -> int:
        logger.info("Fetching block ID")
        params = {"finality": "final"} if block_hash is None else {"block_id": block_hash}
        result = await self.call("block", params)
        try:
            return int(result["header"]["height"])
        except (KeyError, TypeError, ValueError) as e:
            raise RpcParseError(f"Block without header height: {result!r}") from e
