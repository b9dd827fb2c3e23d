"""
Tests for the swap service, end to end against fake backends.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from runecore.errors import (
    ExternalServiceError,
    InputValidationError,
    InsufficientFunds,
    NoAvailableCounterAsset,
    RateLimited,
)
from runecore.models import SwapShape, UtxoRef, WalletType
from runeswap.ledger import SCOPE_COLLECTION, SCOPE_USER
from runeswap.service import SwapService


@pytest.fixture
def service(settings, indexer, chain, execution) -> SwapService:
    return SwapService(settings, indexer, chain, execution)


class TestClaimFlow:
    @pytest.mark.asyncio
    async def test_build_sign_settle(self, service, indexer, wallet, sign_hex, swap_env):
        indexer.add_asset(swap_env.escrow_address, swap_env.collection[0], 1)
        indexer.add_payment(swap_env.user_address, 2, 50_000)

        [result] = await service.build_draft(SwapShape.ASSET_CLAIM, wallet)
        receipt = await service.settle(
            SwapShape.ASSET_CLAIM,
            WalletType.UNISAT,
            [sign_hex(result.psbt_hex)],
            [result.referenced_utxos],
            user_address=wallet.payment_address,
        )

        assert receipt.bitcoin_txid == "ab" * 32
        assert await service.ledger.get(SCOPE_COLLECTION, "Chimera") == 1
        assert await service.ledger.get(SCOPE_USER, wallet.payment_address) == 1

        with pytest.raises(InputValidationError, match="any more"):
            await service.build_draft(SwapShape.ASSET_CLAIM, wallet)

    @pytest.mark.asyncio
    async def test_claim_settle_needs_user_address(self, service, signed_draft):
        with pytest.raises(InputValidationError, match="claiming user"):
            await service.settle(
                SwapShape.ASSET_CLAIM,
                WalletType.UNISAT,
                [signed_draft],
                [[UtxoRef(txid="11" * 32, vout=0, value=546)]],
            )

    @pytest.mark.asyncio
    async def test_claims_are_rate_limited(
        self, settings, indexer, chain, execution, wallet, swap_env
    ):
        indexer.add_asset(swap_env.escrow_address, swap_env.collection[0], 1)
        indexer.add_payment(swap_env.user_address, 2, 50_000)
        limited = settings.model_copy(update={"rate_limit_requests": 1})
        service = SwapService(limited, indexer, chain, execution)

        with patch("runeswap.rate_limiter.time.time", return_value=1000.0):
            await service.build_draft(SwapShape.ASSET_CLAIM, wallet)
            with pytest.raises(RateLimited):
                await service.build_draft(SwapShape.ASSET_CLAIM, wallet)
        assert service.rate_limiter.get_violation_count("claim") == 1


class TestUnconfirmedUtxos:
    @pytest.mark.asyncio
    async def test_unconfirmed_payment_utxo_is_skipped(self, service, indexer, wallet, swap_env):
        indexer.add_asset(swap_env.escrow_address, swap_env.collection[0], 1)
        indexer.add_payment(swap_env.user_address, 2, 50_000)
        indexer.add_payment(swap_env.user_address, 3, 50_000)
        indexer.unconfirmed.add(swap_env.make_txid(2))

        [result] = await service.build_draft(SwapShape.ASSET_CLAIM, wallet)
        spent = {i.txid for i in result.draft.inputs}
        assert swap_env.make_txid(2) not in spent
        assert swap_env.make_txid(3) in spent

    @pytest.mark.asyncio
    async def test_only_unconfirmed_payment_is_insufficient(
        self, service, indexer, wallet, swap_env
    ):
        indexer.add_asset(swap_env.escrow_address, swap_env.collection[0], 1)
        indexer.add_payment(swap_env.user_address, 2, 50_000)
        indexer.unconfirmed.add(swap_env.make_txid(2))

        with pytest.raises(InsufficientFunds) as exc_info:
            await service.build_draft(SwapShape.ASSET_CLAIM, wallet)
        assert exc_info.value.asset_class == "btc"

    @pytest.mark.asyncio
    async def test_unconfirmed_escrow_asset_is_unavailable(
        self, service, indexer, wallet, swap_env
    ):
        indexer.add_asset(swap_env.escrow_address, swap_env.collection[0], 1)
        indexer.add_payment(swap_env.user_address, 2, 50_000)
        indexer.unconfirmed.add(swap_env.make_txid(1))

        with pytest.raises(NoAvailableCounterAsset):
            await service.build_draft(SwapShape.ASSET_CLAIM, wallet)


class TestSettle:
    @pytest.mark.asyncio
    async def test_mismatched_lengths(self, service, signed_draft):
        with pytest.raises(InputValidationError, match="2 signed drafts"):
            await service.settle(
                SwapShape.TOKEN_FOR_ASSET, WalletType.UNISAT, [signed_draft, signed_draft], [[]]
            )

    @pytest.mark.asyncio
    async def test_basket_uses_basket_program(self, service, execution, signed_draft, settings):
        ref = UtxoRef(txid="22" * 32, vout=1, value=546)
        await service.settle(
            SwapShape.TOKEN_BASKET_REDEMPTION, WalletType.UNISAT, [signed_draft], [[ref]]
        )
        envelope = execution.send_transaction.await_args.args[0]
        assert envelope.instructions[0].program_id == bytes.fromhex(settings.basket_program_id)
        assert envelope.version == 2

    @pytest.mark.asyncio
    async def test_missing_signing_key(self, settings, indexer, chain, execution, signed_draft):
        unkeyed = settings.model_copy(update={"escrow_private_key": ""})
        service = SwapService(unkeyed, indexer, chain, execution)
        ref = UtxoRef(txid="22" * 32, vout=1, value=546)
        with pytest.raises(ExternalServiceError, match="not configured"):
            await service.settle(
                SwapShape.TOKEN_FOR_ASSET, WalletType.UNISAT, [signed_draft], [[ref]]
            )
        execution.send_transaction.assert_not_awaited()


class TestQueries:
    @pytest.mark.asyncio
    async def test_fee_rate(self, service):
        assert await service.fee_rate() == 5.0

    @pytest.mark.asyncio
    async def test_escrow_address(self, service, swap_env):
        assert (await service.escrow_address()).address == swap_env.escrow_address
        assert (await service.escrow_address(basket=True)).address == swap_env.basket_address

    @pytest.mark.asyncio
    async def test_token_balance(self, service, indexer, swap_env):
        indexer.divisibility[swap_env.price_token] = 2
        indexer.add_token(swap_env.user_address, swap_env.price_token, 1, 12_345)
        indexer.add_token(swap_env.user_address, swap_env.price_token, 2, 55)

        balance = await service.token_balance(swap_env.user_address, swap_env.price_token)
        assert balance["minimal_units"] == 12_400
        assert Decimal(balance["amount"]) == Decimal("124")
        assert balance["divisibility"] == 2

    @pytest.mark.asyncio
    async def test_escrow_balances(self, service, indexer, swap_env):
        indexer.add_token(swap_env.escrow_address, swap_env.price_token, 1, 500)
        [balance] = await service.escrow_balances()
        assert balance.token_id == swap_env.price_token
        assert balance.amount == Decimal(500)

    @pytest.mark.asyncio
    async def test_claim_count(self, service):
        await service.ledger.increment(SCOPE_COLLECTION, "Chimera", by=2)
        await service.ledger.increment(SCOPE_USER, "tb1pme")
        assert await service.claim_count() == {"collection": "Chimera", "claimed": 2, "supply": 5}
        counts = await service.claim_count("tb1pme")
        assert counts["user_claimed"] == 1
        assert counts["user_cap"] == 1

    @pytest.mark.asyncio
    async def test_inscription_list_keeps_collection_members(self, service, indexer, swap_env):
        indexer.add_asset(swap_env.user_address, swap_env.collection[0], 1)
        indexer.add_asset(swap_env.user_address, "ff" * 32 + "i0", 2)
        indexer.add_asset(swap_env.user_address, swap_env.collection[2], 3)

        held = await service.inscription_list(swap_env.user_address)
        assert held == [swap_env.collection[0], swap_env.collection[2]]

    @pytest.mark.asyncio
    async def test_inscription_list_skips_unusable_utxos(self, service, indexer, swap_env):
        indexer.add_asset(swap_env.user_address, swap_env.collection[0], 1)
        indexer.add_asset(swap_env.user_address, swap_env.collection[1], 2)
        indexer.add_asset(swap_env.user_address, swap_env.collection[2], 3)
        indexer.unconfirmed.add(swap_env.make_txid(1))
        indexer.spent.add(f"{swap_env.make_txid(3)}:0")

        assert await service.inscription_list(swap_env.user_address) == [swap_env.collection[1]]

    @pytest.mark.asyncio
    async def test_inscription_list_empty(self, service, swap_env):
        assert await service.inscription_list(swap_env.user_address) == []


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_invalid_hex(self, service, chain):
        with pytest.raises(InputValidationError):
            await service.broadcast("not hex")
        chain.broadcast_with_retry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_uses_configured_budget(self, service, chain):
        chain.broadcast_with_retry.return_value = "cd" * 32
        assert await service.broadcast("0200") == "cd" * 32
        chain.broadcast_with_retry.assert_awaited_once_with("0200", max_attempts=3, delay=0)


class TestClose:
    @pytest.mark.asyncio
    async def test_closes_everything(self, service, chain, execution):
        await service.close()
        chain.close.assert_awaited_once()
        execution.close.assert_awaited_once()
