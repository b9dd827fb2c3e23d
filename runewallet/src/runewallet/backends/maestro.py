"""
GoMaestro indexer backend.

UTXO listings come from Maestro's cursor-paginated address endpoints.
Confirmation and spent checks are delegated to a mempool.space client,
which sees the mempool without indexer lag.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

import httpx
from loguru import logger

from runecore.errors import ExternalServiceError, RateLimited
from runecore.models import AssetUtxo, TokenUtxo, ValueUtxo
from runecore.runestone import to_minimal_units
from runewallet.backends.base import ChainBackend, IndexerBackend, TokenBalance, UtxoPage

DEFAULT_TIMEOUT = 30.0

# Jittered exponential backoff for HTTP 429 on asset lookups
RATE_LIMIT_MAX_RETRIES = 5
RATE_LIMIT_BASE_DELAY = 1.0

RATE_LIMIT_MESSAGE = "We're hitting our rate limit. Please try again in one minute."

T = TypeVar("T")


class MaestroIndexer(IndexerBackend):
    def __init__(
        self,
        base_url: str,
        api_key: str,
        chain: ChainBackend,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain = chain
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"api-key": api_key, "Accept": "application/json"}
        self._divisibility: dict[str, int] = {}

    async def _api_call(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        retry_rate_limit: bool = False,
    ) -> Any:
        """Make a GET call to the Maestro API."""
        url = f"{self.base_url}/{endpoint}"
        attempts = RATE_LIMIT_MAX_RETRIES if retry_rate_limit else 1

        for attempt in range(attempts):
            try:
                response = await self.client.get(url, params=params, headers=self._headers)
                if response.status_code == 429:
                    if attempt < attempts - 1:
                        delay = RATE_LIMIT_BASE_DELAY * (2**attempt) + random.uniform(0, 0.5)
                        logger.debug(
                            f"Indexer rate limited, retrying in {delay:.2f}s "
                            f"(attempt {attempt + 1}/{attempts})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    logger.warning(f"Indexer rate limit persisted after {attempts} attempts")
                    raise RateLimited(RATE_LIMIT_MESSAGE)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPError as e:
                logger.error(f"Maestro API call failed: {endpoint} - {e}")
                raise ExternalServiceError(f"Maestro API call failed: {endpoint} - {e}") from e
            except ValueError as e:
                logger.error(f"Maestro returned a non-JSON body: {endpoint} - {e}")
                raise ExternalServiceError(f"Maestro returned a non-JSON body: {endpoint}") from e

        raise RateLimited(RATE_LIMIT_MESSAGE)

    @staticmethod
    def _cursor_params(cursor: str | None) -> dict[str, Any] | None:
        return {"cursor": cursor} if cursor else None

    @staticmethod
    def _parse_page(
        endpoint: str, data: Any, parse: Callable[[dict[str, Any]], T | None]
    ) -> UtxoPage[T]:
        """Parse a cursor page, skipping entries ``parse`` returns None for."""
        try:
            items = [item for item in map(parse, data.get("data") or []) if item is not None]
            return UtxoPage(items=items, next_cursor=data.get("next_cursor"))
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Malformed Maestro response: {endpoint} - {e!r}")
            raise ExternalServiceError(f"Malformed Maestro response: {endpoint}") from e

    async def list_payment_utxos(
        self, address: str, cursor: str | None = None
    ) -> UtxoPage[ValueUtxo]:
        endpoint = f"mempool/addresses/{address}/utxos"
        data = await self._api_call(endpoint, params=self._cursor_params(cursor))

        def parse(entry: dict[str, Any]) -> ValueUtxo | None:
            if entry.get("runes") or entry.get("inscriptions"):
                return None
            return ValueUtxo(
                txid=entry["txid"],
                vout=int(entry["vout"]),
                value=int(entry["satoshis"]),
                script=bytes.fromhex(entry.get("script_pubkey") or ""),
            )

        return self._parse_page(endpoint, data, parse)

    async def list_token_utxos(
        self, address: str, token_id: str, cursor: str | None = None
    ) -> UtxoPage[TokenUtxo]:
        divisibility = await self.get_token_divisibility(token_id)
        endpoint = f"addresses/{address}/runes/{token_id}"
        data = await self._api_call(endpoint, params=self._cursor_params(cursor))

        def parse(entry: dict[str, Any]) -> TokenUtxo:
            return TokenUtxo(
                txid=entry["txid"],
                vout=int(entry["vout"]),
                value=int(entry["satoshis"]),
                token_id=token_id,
                amount=to_minimal_units(entry["rune_amount"], divisibility),
                divisibility=divisibility,
            )

        return self._parse_page(endpoint, data, parse)

    async def list_asset_utxos(
        self, address: str, cursor: str | None = None
    ) -> UtxoPage[AssetUtxo]:
        endpoint = f"addresses/{address}/inscriptions"
        data = await self._api_call(
            endpoint, params=self._cursor_params(cursor), retry_rate_limit=True
        )

        def parse(entry: dict[str, Any]) -> AssetUtxo:
            return AssetUtxo(
                txid=entry["utxo_txid"],
                vout=int(entry["utxo_vout"]),
                value=int(entry["satoshis"]),
                asset_id=entry["inscription_id"],
            )

        return self._parse_page(endpoint, data, parse)

    async def get_token_divisibility(self, token_id: str) -> int:
        # Divisibility is fixed at etching, safe to keep for the process lifetime
        if token_id not in self._divisibility:
            data = await self._api_call(f"assets/runes/{token_id}")
            try:
                self._divisibility[token_id] = int(data["data"]["divisibility"])
            except (KeyError, TypeError, ValueError) as e:
                raise ExternalServiceError(f"No divisibility for token {token_id}") from e
        return self._divisibility[token_id]

    async def get_token_balances(self, address: str) -> list[TokenBalance]:
        endpoint = f"addresses/{address}/runes"
        data = await self._api_call(endpoint)
        try:
            entries = (data.get("data") or {}).items()
        except AttributeError as e:
            raise ExternalServiceError(f"Malformed Maestro response: {endpoint}") from e
        balances = []
        for token_id, amount in entries:
            try:
                balances.append(TokenBalance(token_id=token_id, amount=Decimal(str(amount))))
            except InvalidOperation:
                logger.warning(f"Skipping unparseable balance for {token_id}: {amount!r}")
        return balances

    async def is_confirmed(self, txid: str) -> bool:
        status = await self.chain.get_transaction_status(txid)
        return status is not None and status.confirmed

    async def is_spent(self, txid: str, vout: int) -> bool:
        return await self.chain.is_spent(txid, vout)

    async def close(self) -> None:
        await self.client.aclose()
