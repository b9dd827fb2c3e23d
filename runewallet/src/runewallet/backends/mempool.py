"""
mempool.space REST backend: fee oracle, transaction status and relay.

Esplora-compatible, so it also works against a self-hosted instance.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from runecore.errors import BroadcastRejected, ExternalServiceError
from runewallet.backends.base import ChainBackend, TxStatus

DEFAULT_TIMEOUT = 30.0

# Node policy rejection that clears once ancestors confirm
RETRYABLE_BROADCAST_ERRORS = ("too-long-mempool-chain",)


class MempoolClient(ChainBackend):
    def __init__(
        self,
        base_url: str = "https://mempool.space/testnet4/api",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _api_call(self, endpoint: str, allow_not_found: bool = False) -> Any:
        """GET an endpoint; JSON responses are decoded, text returned as-is."""
        url = f"{self.base_url}/{endpoint}"
        try:
            response = await self.client.get(url)

            if allow_not_found and response.status_code == 404:
                return None
            response.raise_for_status()
            if response.headers.get("content-type", "").startswith("application/json"):
                return response.json()
            return response.text

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Mempool API call failed: {endpoint} - {e}")
            raise ExternalServiceError(f"Mempool API call failed: {endpoint} - {e}") from e

    async def get_recommended_fee_rate(self) -> float:
        data = await self._api_call("v1/fees/recommended")
        try:
            return float(data["fastestFee"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalServiceError(f"Unexpected fee response: {data!r}") from e

    async def get_transaction_status(self, txid: str) -> TxStatus | None:
        data = await self._api_call(f"tx/{txid}/status", allow_not_found=True)
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ExternalServiceError(f"Unexpected status response for {txid}: {data!r}")
        return TxStatus(
            confirmed=bool(data.get("confirmed", False)),
            block_height=data.get("block_height"),
            block_time=data.get("block_time"),
        )

    async def is_spent(self, txid: str, vout: int) -> bool:
        data = await self._api_call(f"tx/{txid}/outspend/{vout}")
        if not isinstance(data, dict):
            raise ExternalServiceError(f"Unexpected outspend response for {txid}:{vout}: {data!r}")
        return bool(data.get("spent", False))

    async def broadcast_transaction(self, tx_hex: str) -> str:
        """
        Broadcast a raw transaction.

        Raises:
            BroadcastRejected: The node refused the transaction. retryable is
                set only for mempool chain-limit rejections.
            ExternalServiceError: The API could not be reached
        """
        url = f"{self.base_url}/tx"
        try:
            response = await self.client.post(url, content=tx_hex)
        except httpx.HTTPError as e:
            logger.error(f"Broadcast request failed: {e}")
            raise ExternalServiceError(f"Broadcast request failed: {e}") from e

        if response.status_code >= 400:
            reason = response.text
            retryable = any(marker in reason for marker in RETRYABLE_BROADCAST_ERRORS)
            logger.warning(f"Broadcast rejected (retryable={retryable}): {reason}")
            raise BroadcastRejected(f"Broadcast rejected: {reason}", retryable=retryable)

        txid = response.text.strip()
        logger.info(f"Broadcast transaction {txid}")
        return txid

    async def broadcast_with_retry(
        self, tx_hex: str, max_attempts: int = 3, delay: float = 10.0
    ) -> str:
        """Broadcast, retrying only rejections the node marks as transient."""
        attempt = 1
        while True:
            try:
                return await self.broadcast_transaction(tx_hex)
            except BroadcastRejected as e:
                if not e.retryable or attempt >= max_attempts:
                    raise
            logger.info(f"Retrying broadcast in {delay}s (attempt {attempt}/{max_attempts})")
            await asyncio.sleep(delay)
            attempt += 1

    async def close(self) -> None:
        await self.client.aclose()
