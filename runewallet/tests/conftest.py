"""
Test configuration for runewallet tests.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from runecore.errors import ExternalServiceError
from runecore.models import AssetUtxo, TokenUtxo, ValueUtxo
from runewallet.backends.base import IndexerBackend, TokenBalance, UtxoPage


def _page(pages: list[list], cursor: str | None) -> UtxoPage:
    index = int(cursor) if cursor else 0
    if index >= len(pages):
        return UtxoPage()
    next_cursor = str(index + 1) if index + 1 < len(pages) else None
    return UtxoPage(items=list(pages[index]), next_cursor=next_cursor)


class FakeIndexer(IndexerBackend):
    """In-memory indexer. Every listed UTXO is confirmed and unspent unless marked."""

    def __init__(self) -> None:
        self.payment_pages: list[list[ValueUtxo]] = []
        self.token_pages: dict[str, list[list[TokenUtxo]]] = {}
        self.asset_pages: list[list[AssetUtxo]] = []
        self.divisibility: dict[str, int] = {}
        self.unconfirmed: set[str] = set()
        self.spent: set[str] = set()
        self.failing_status: set[str] = set()
        self.failing_outspend: set[str] = set()
        self.payment_fetches = 0

    async def list_payment_utxos(self, address, cursor=None):
        self.payment_fetches += 1
        return _page(self.payment_pages, cursor)

    async def list_token_utxos(self, address, token_id, cursor=None):
        return _page(self.token_pages.get(token_id, []), cursor)

    async def list_asset_utxos(self, address, cursor=None):
        return _page(self.asset_pages, cursor)

    async def get_token_divisibility(self, token_id):
        return self.divisibility.get(token_id, 0)

    async def get_token_balances(self, address):
        return [
            TokenBalance(token_id=token_id, amount=Decimal(sum(u.amount for p in pages for u in p)))
            for token_id, pages in self.token_pages.items()
        ]

    async def is_confirmed(self, txid):
        if txid in self.failing_status:
            raise ExternalServiceError(f"status lookup failed for {txid}")
        return txid not in self.unconfirmed

    async def is_spent(self, txid, vout):
        outpoint = f"{txid}:{vout}"
        if outpoint in self.failing_outspend:
            raise ExternalServiceError(f"outspend lookup failed for {outpoint}")
        return outpoint in self.spent


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()
