"""
Swap service: the caller-facing operations.

SwapService wires the indexer, chain, execution-layer and ledger
backends to the planner, builder and settlement submitter. It owns the
claim rate limiter, so limiter state lives exactly as long as the
service instance.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from loguru import logger

from runecore.errors import InputValidationError
from runecore.models import SwapShape, UtxoRef, WalletType
from runecore.runestone import to_display_units
from runewallet.backends.base import IndexerBackend, TokenBalance
from runewallet.backends.maestro import MaestroIndexer
from runewallet.backends.mempool import MempoolClient
from runewallet.fees import FeeEstimator
from runewallet.selector import UtxoSelector
from runeswap.builder import DraftBuilder, DraftResult
from runeswap.config import SwapSettings
from runeswap.eligibility import ClaimPolicy
from runeswap.escrow import EscrowAccount, EscrowResolver
from runeswap.execution import ExecutionClient
from runeswap.ledger import SCOPE_COLLECTION, SCOPE_USER, InMemoryLedgerStore, LedgerStore
from runeswap.rate_limiter import RateLimiter
from runeswap.settlement import (
    CounterCommit,
    ProgramAuthority,
    SettlementLeg,
    SettlementReceipt,
    SettlementSubmitter,
)
from runeswap.shapes import ShapePlanner
from runeswap.wallet import WalletInfo

CLAIM_SCOPE = "claim"


class SwapService:
    def __init__(
        self,
        settings: SwapSettings,
        indexer: IndexerBackend,
        chain: MempoolClient,
        execution: ExecutionClient,
        ledger: LedgerStore | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.settings = settings
        self.indexer = indexer
        self.chain = chain
        self.execution = execution
        self.ledger = ledger or InMemoryLedgerStore()
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit_requests, settings.rate_limit_window_sec
        )

        self.fees = FeeEstimator(chain, settings.min_fee_rate, settings.min_absolute_fee)
        self.selector = UtxoSelector(indexer, settings.min_payment_utxo_value)
        self.resolver = EscrowResolver(execution)
        self.planner = ShapePlanner(settings, indexer, self.selector, self.resolver)
        self.builder = DraftBuilder(self.selector, self.fees)
        self.claims = ClaimPolicy(settings, self.ledger)
        self.submitter = SettlementSubmitter(
            execution,
            chain,
            self.ledger,
            submit_max_retries=settings.submit_max_retries,
            submit_retry_delay=settings.submit_retry_delay,
            processed_poll_interval=settings.processed_poll_interval,
            processed_poll_attempts=settings.processed_poll_attempts,
            confirmation_poll_interval=settings.confirmation_poll_interval,
            confirmation_poll_attempts=settings.confirmation_poll_attempts,
        )

    @classmethod
    def from_settings(
        cls, settings: SwapSettings, ledger: LedgerStore | None = None
    ) -> SwapService:
        chain = MempoolClient(settings.mempool_api_url, timeout=settings.http_timeout)
        indexer = MaestroIndexer(
            settings.maestro_url, settings.maestro_api_key, chain, timeout=settings.http_timeout
        )
        execution = ExecutionClient(settings.execution_rpc_url, timeout=settings.http_timeout)
        return cls(settings, indexer, chain, execution, ledger=ledger)

    async def close(self) -> None:
        await self.indexer.close()
        await self.chain.close()
        await self.execution.close()
        await self.ledger.close()

    def _authority(self, shape: SwapShape) -> ProgramAuthority:
        if shape == SwapShape.TOKEN_BASKET_REDEMPTION:
            return ProgramAuthority.from_hex(
                self.settings.basket_private_key, self.settings.basket_program_id
            )
        return ProgramAuthority.from_hex(
            self.settings.escrow_private_key, self.settings.swap_program_id
        )

    async def fee_rate(self) -> float:
        return await self.fees.get_fee_rate()

    async def escrow_address(self, basket: bool = False) -> EscrowAccount:
        pubkey = (
            self.settings.basket_account_pubkey if basket else self.settings.escrow_account_pubkey
        )
        return await self.resolver.resolve(pubkey)

    async def build_draft(
        self,
        shape: SwapShape,
        wallet: WalletInfo,
        amount_or_asset_id: Decimal | int | str | None = None,
    ) -> list[DraftResult]:
        """
        Build the unsigned drafts for one swap request.

        Claims are rate limited and checked against the claim policy first.

        Returns:
            One DraftResult per leg, in settlement order
        """
        if shape == SwapShape.ASSET_CLAIM:
            self.rate_limiter.acquire(CLAIM_SCOPE)
            await self.claims.check(wallet.payment_address)

        plan = await self.planner.plan(shape, wallet, amount_or_asset_id)
        results = await self.builder.build(plan, wallet)
        logger.info(
            f"Prepared {len(results)} {shape.value} draft(s) for {wallet.payment_address}, "
            f"total fee {sum(r.fee for r in results)} sats"
        )
        return results

    async def settle(
        self,
        shape: SwapShape,
        wallet_type: WalletType,
        signed_drafts: list[str],
        referenced_utxos: list[list[UtxoRef]],
        user_address: str | None = None,
    ) -> SettlementReceipt:
        """
        Settle signed drafts, in the order build_draft returned them.

        referenced_utxos[i] are the escrow UTXOs that came with draft i.
        Claims also need user_address, whose counter is bumped on success.
        """
        if len(signed_drafts) != len(referenced_utxos):
            raise InputValidationError(
                f"Got {len(signed_drafts)} signed drafts but "
                f"{len(referenced_utxos)} referenced UTXO lists"
            )
        commit = None
        if shape == SwapShape.ASSET_CLAIM:
            if not user_address:
                raise InputValidationError("Claims need the claiming user address")
            commit = CounterCommit(self.settings.collection_name, user_address)

        legs = [
            SettlementLeg(signed_draft=draft, referenced_utxos=list(refs))
            for draft, refs in zip(signed_drafts, referenced_utxos, strict=True)
        ]
        return await self.submitter.settle(
            shape, wallet_type, legs, self._authority(shape), commit=commit
        )

    async def broadcast(self, tx_hex: str) -> str:
        try:
            bytes.fromhex(tx_hex)
        except ValueError as e:
            raise InputValidationError(f"Transaction is not valid hex: {e}") from e
        return await self.chain.broadcast_with_retry(
            tx_hex,
            max_attempts=self.settings.broadcast_max_attempts,
            delay=self.settings.broadcast_retry_delay,
        )

    async def token_balance(self, address: str, token_id: str) -> dict[str, Any]:
        """Spendable balance of one token at address, from its UTXOs."""
        divisibility = await self.indexer.get_token_divisibility(token_id)
        total = 0
        async for page in self.indexer.iter_token_utxos(address, token_id):
            total += sum(u.amount for u in page)
        return {
            "token_id": token_id,
            "amount": str(to_display_units(total, divisibility)),
            "minimal_units": total,
            "divisibility": divisibility,
        }

    async def escrow_balances(self, basket: bool = False) -> list[TokenBalance]:
        escrow = await self.escrow_address(basket=basket)
        return await self.indexer.get_token_balances(escrow.address)

    async def claim_count(self, address: str | None = None) -> dict[str, Any]:
        result: dict[str, Any] = {
            "collection": self.settings.collection_name,
            "claimed": await self.ledger.get(SCOPE_COLLECTION, self.settings.collection_name),
            "supply": self.claims.collection_cap,
        }
        if address is not None:
            result["user_claimed"] = await self.ledger.get(SCOPE_USER, address)
            result["user_cap"] = self.claims.user_cap(address)
        return result

    async def inscription_list(self, address: str) -> list[str]:
        """Collection asset ids held at address on confirmed, unspent UTXOs."""
        utxos = await self.selector.usable_asset_utxos(address, set(self.settings.collection))
        return [u.asset_id for u in utxos]
