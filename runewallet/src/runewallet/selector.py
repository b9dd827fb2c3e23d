"""
UTXO selection over indexer listings.

Candidates are taken in the indexer's order. Every candidate is revalidated
(confirmed and not spent) before it counts; the checks for one page run
concurrently and are joined before selection continues.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from loguru import logger

from runecore.constants import MIN_PAYMENT_UTXO_VALUE
from runecore.errors import ExternalServiceError, InsufficientFunds
from runecore.models import AssetUtxo, TokenUtxo, UtxoRef, ValueUtxo
from runewallet.backends.base import IndexerBackend

U = TypeVar("U", bound=UtxoRef)

BASE_ASSET_CLASS = "btc"


@dataclass
class ValueSelection:
    utxos: list[ValueUtxo] = field(default_factory=list)
    total: int = 0
    fee: int = 0


@dataclass
class TokenSelection:
    token_id: str
    utxos: list[TokenUtxo] = field(default_factory=list)
    total: int = 0
    divisibility: int = 0


class UtxoSelector:
    def __init__(
        self,
        indexer: IndexerBackend,
        min_payment_value: int = MIN_PAYMENT_UTXO_VALUE,
    ):
        self.indexer = indexer
        self.min_payment_value = min_payment_value

    async def _is_confirmed(self, txid: str) -> bool:
        try:
            return await self.indexer.is_confirmed(txid)
        except ExternalServiceError as e:
            logger.warning(f"Status check failed for {txid}, treating as unconfirmed: {e}")
            return False

    async def _is_spent(self, txid: str, vout: int) -> bool:
        try:
            return await self.indexer.is_spent(txid, vout)
        except ExternalServiceError as e:
            logger.warning(f"Outspend check failed for {txid}:{vout}, treating as spent: {e}")
            return True

    async def validate_utxo(self, txid: str, vout: int) -> bool:
        """A UTXO is usable when it is confirmed and has no spender."""
        confirmed, spent = await asyncio.gather(
            self._is_confirmed(txid), self._is_spent(txid, vout)
        )
        return confirmed and not spent

    async def _validated(self, candidates: Sequence[U]) -> list[U]:
        results = await asyncio.gather(*(self.validate_utxo(u.txid, u.vout) for u in candidates))
        valid = [u for u, ok in zip(candidates, results, strict=True) if ok]
        if len(valid) != len(candidates):
            logger.debug(f"Dropped {len(candidates) - len(valid)} unusable candidate(s)")
        return valid

    async def select_value_utxos(
        self,
        address: str,
        base_target: int,
        fee_for: Callable[[int], int],
        exclude: Collection[str] = (),
        script: bytes | None = None,
    ) -> ValueSelection:
        """
        Select payment UTXOs covering base_target plus the fee.

        The fee depends on how many inputs get selected, so the required
        total is recomputed after every addition:

            required(n) = base_target + fee_for(n)

        Selection stops as soon as total >= required(len(selected)). Each
        step either stops or consumes one more candidate, so the loop runs
        at most once per candidate. fee_for must be non-decreasing in n.

        Args:
            address: Payment address to fund from
            base_target: Value that must be covered besides the fee
            fee_for: Fee given the number of payment inputs selected
            exclude: Outpoints ("txid:vout") that must not be reused
            script: Spending script to attach when the indexer omits it

        Raises:
            InsufficientFunds: Candidates ran out before the target was met
        """
        selection = ValueSelection()

        def satisfied() -> bool:
            return selection.total >= base_target + fee_for(len(selection.utxos))

        done = satisfied()
        pages = self.indexer.iter_payment_utxos(address)
        while not done:
            page = await anext(pages, None)
            if page is None:
                break
            candidates = [
                u
                for u in page
                if u.value > self.min_payment_value and u.outpoint not in exclude
            ]
            for utxo in await self._validated(candidates):
                if script is not None and not utxo.script:
                    utxo = dataclasses.replace(utxo, script=script)
                selection.utxos.append(utxo)
                selection.total += utxo.value
                if satisfied():
                    done = True
                    break

        selection.fee = fee_for(len(selection.utxos))
        required = base_target + selection.fee
        if selection.total < required:
            logger.warning(
                f"Insufficient payment funds at {address}: have {selection.total}, need {required}"
            )
            raise InsufficientFunds(
                BASE_ASSET_CLASS,
                f"Insufficient BTC balance: have {selection.total} sats, need {required} sats",
            )
        logger.debug(
            f"Selected {len(selection.utxos)} payment UTXO(s) totalling {selection.total} "
            f"(fee {selection.fee})"
        )
        return selection

    async def select_token_utxos(
        self, address: str, token_id: str, amount: int, exclude: Collection[str] = ()
    ) -> TokenSelection:
        """
        Select token UTXOs holding at least amount minimal units of token_id.

        Outpoints ("txid:vout") in exclude are never selected.

        Raises:
            InsufficientFunds: Candidates ran out before amount was reached
        """
        if amount <= 0:
            raise ValueError(f"Token amount must be positive, got {amount}")

        selection = TokenSelection(token_id=token_id)
        async for page in self.indexer.iter_token_utxos(address, token_id):
            candidates = [u for u in page if u.outpoint not in exclude]
            for utxo in await self._validated(candidates):
                selection.utxos.append(utxo)
                selection.total += utxo.amount
                selection.divisibility = utxo.divisibility
                if selection.total >= amount:
                    logger.debug(
                        f"Selected {len(selection.utxos)} UTXO(s) with {selection.total} of "
                        f"{token_id}"
                    )
                    return selection

        logger.warning(
            f"Insufficient {token_id} at {address}: have {selection.total}, need {amount}"
        )
        raise InsufficientFunds(
            token_id, f"Insufficient {token_id} balance: have {selection.total}, need {amount}"
        )

    async def find_asset_utxo(
        self, address: str, asset_ids: Collection[str] | None = None
    ) -> AssetUtxo | None:
        """First usable asset UTXO at address whose id is in asset_ids (any when None)."""
        async for page in self.indexer.iter_asset_utxos(address):
            candidates = [u for u in page if asset_ids is None or u.asset_id in asset_ids]
            valid = await self._validated(candidates)
            if valid:
                return valid[0]
        return None

    async def usable_asset_utxos(
        self, address: str, asset_ids: Collection[str] | None = None
    ) -> list[AssetUtxo]:
        """Every usable asset UTXO at address whose id is in asset_ids (any when None)."""
        usable: list[AssetUtxo] = []
        async for page in self.indexer.iter_asset_utxos(address):
            candidates = [u for u in page if asset_ids is None or u.asset_id in asset_ids]
            usable.extend(await self._validated(candidates))
        return usable
