"""
Execution-layer JSON-RPC client.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from runecore.errors import ExternalServiceError
from runecore.wire import SettlementEnvelope

DEFAULT_TIMEOUT = 30.0


class ExecutionRpcError(ExternalServiceError):
    """The execution layer answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: Any, message: str) -> None:
        super().__init__(f"RPC error {code} in {method}: {message}")
        self.code = code
        self.rpc_message = message


class ExecutionClient:
    def __init__(
        self,
        rpc_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.rpc_url = rpc_url
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def _rpc_call(self, method: str, params: Any = None) -> Any:
        """
        Make a JSON-RPC 2.0 call.

        Raises:
            ExecutionRpcError: The call returned an error object
            ExternalServiceError: Connection, timeout or HTTP status failure
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params if params is not None else [],
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Execution RPC call timed out: {method} - {e}")
            raise ExternalServiceError(f"Execution RPC call timed out: {method}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Execution RPC call failed: {method} - {e}")
            raise ExternalServiceError(f"Execution RPC call failed: {method} - {e}") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            code = error.get("code", "unknown") if isinstance(error, dict) else "unknown"
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.debug(f"Execution RPC {method} returned error {code}: {message}")
            raise ExecutionRpcError(method, code, message)

        return data.get("result") if isinstance(data, dict) else None

    async def get_account_address(self, account_pubkey: bytes) -> str:
        result = await self._rpc_call("get_account_address", list(account_pubkey))
        if not isinstance(result, str) or not result:
            raise ExternalServiceError(f"No address for account {account_pubkey.hex()}")
        return result

    async def send_transaction(self, envelope: SettlementEnvelope) -> str:
        """Submit a signed envelope, returning the execution-layer txid."""
        result = await self._rpc_call("send_transaction", envelope.to_json())
        if not isinstance(result, str) or not result:
            raise ExternalServiceError(f"send_transaction returned no txid: {result!r}")
        logger.debug(f"Execution layer accepted envelope as {result}")
        return result

    async def get_processed_transaction(self, txid: str) -> dict[str, Any] | None:
        """
        Look up a processed transaction.

        Returns None while the execution layer does not know the txid yet.
        """
        try:
            result = await self._rpc_call("get_processed_transaction", txid)
        except ExecutionRpcError as e:
            if "not found" in e.rpc_message.lower():
                return None
            raise
        if result is None:
            return None
        if not isinstance(result, dict):
            raise ExternalServiceError(f"Unexpected processed transaction record: {result!r}")
        return result

    async def close(self) -> None:
        await self.client.aclose()
