"""
Base interfaces for the indexer and base-chain backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Generic, TypeVar

from runecore.models import AssetUtxo, TokenUtxo, ValueUtxo

T = TypeVar("T")


@dataclass
class UtxoPage(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_cursor: str | None = None


@dataclass
class TxStatus:
    confirmed: bool
    block_height: int | None = None
    block_time: int | None = None


@dataclass
class TokenBalance:
    token_id: str
    amount: Decimal  # display units


async def iter_pages(
    fetch: Callable[[str | None], Awaitable[UtxoPage[T]]],
) -> AsyncIterator[list[T]]:
    """Follow cursors until the indexer reports no next page."""
    cursor: str | None = None
    seen: set[str] = set()
    while True:
        page = await fetch(cursor)
        yield page.items
        cursor = page.next_cursor
        if not cursor or cursor in seen:
            return
        seen.add(cursor)


class ChainBackend(ABC):
    """
    Base-chain data source: fee oracle, relay, and transaction status.
    """

    @abstractmethod
    async def get_recommended_fee_rate(self) -> float:
        """Fastest-confirmation fee rate in sat/vbyte"""

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def get_transaction_status(self, txid: str) -> TxStatus | None:
        """Status of a transaction, or None if the node does not know it"""

    @abstractmethod
    async def is_spent(self, txid: str, vout: int) -> bool:
        """Whether the output has a spending transaction (mempool included)"""

    async def close(self) -> None:
        """Close backend connection"""
        pass


class IndexerBackend(ABC):
    """
    Address and asset indexer: paginated UTXO listings and token metadata.

    Listings are returned in the indexer's order; callers must not assume
    anything about confirmation or spent status, see UtxoSelector.
    """

    @abstractmethod
    async def list_payment_utxos(
        self, address: str, cursor: str | None = None
    ) -> UtxoPage[ValueUtxo]:
        """Plain bitcoin UTXOs (no runes, no inscriptions) held by address"""

    @abstractmethod
    async def list_token_utxos(
        self, address: str, token_id: str, cursor: str | None = None
    ) -> UtxoPage[TokenUtxo]:
        """UTXOs of address carrying token_id, amounts in minimal units"""

    @abstractmethod
    async def list_asset_utxos(
        self, address: str, cursor: str | None = None
    ) -> UtxoPage[AssetUtxo]:
        """Inscription-carrying UTXOs held by address"""

    @abstractmethod
    async def get_token_divisibility(self, token_id: str) -> int:
        """Number of decimal places of token_id"""

    @abstractmethod
    async def get_token_balances(self, address: str) -> list[TokenBalance]:
        """All token balances of address, in display units"""

    @abstractmethod
    async def is_confirmed(self, txid: str) -> bool:
        """Whether txid is in a block"""

    @abstractmethod
    async def is_spent(self, txid: str, vout: int) -> bool:
        """Whether txid:vout already has a spending transaction"""

    def iter_payment_utxos(self, address: str) -> AsyncIterator[list[ValueUtxo]]:
        return iter_pages(lambda cursor: self.list_payment_utxos(address, cursor))

    def iter_token_utxos(self, address: str, token_id: str) -> AsyncIterator[list[TokenUtxo]]:
        return iter_pages(lambda cursor: self.list_token_utxos(address, token_id, cursor))

    def iter_asset_utxos(self, address: str) -> AsyncIterator[list[AssetUtxo]]:
        return iter_pages(lambda cursor: self.list_asset_utxos(address, cursor))

    async def close(self) -> None:
        """Close backend connection"""
        pass
