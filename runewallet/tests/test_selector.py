"""
Tests for UTXO selection and the fee fixed-point loop.
"""

import pytest

from runecore.errors import InsufficientFunds
from runecore.models import AssetUtxo, TokenUtxo, ValueUtxo
from runewallet.selector import UtxoSelector

ADDRESS = "tb1qpayment"


def txid(n: int) -> str:
    return f"{n:064x}"


def value_utxo(n: int, value: int) -> ValueUtxo:
    return ValueUtxo(txid=txid(n), vout=0, value=value, script=b"\x00\x14" + bytes(20))


def fee_for(n: int) -> int:
    """Stand-in fee curve: 1000 sats per input on top of a 500 sat base."""
    return 500 + 1000 * n


class TestSelectValueUtxos:
    @pytest.mark.asyncio
    async def test_stops_once_covered(self, indexer):
        indexer.payment_pages = [[value_utxo(n, 20_000) for n in (1, 2, 3)]]
        selection = await UtxoSelector(indexer).select_value_utxos(ADDRESS, 30_000, fee_for)
        # one input: 20000 < 31500; two inputs: 40000 >= 32500
        assert [u.txid for u in selection.utxos] == [txid(1), txid(2)]
        assert selection.total == 40_000
        assert selection.fee == fee_for(2)

    @pytest.mark.asyncio
    async def test_fixed_point_counts_the_input_that_tips_it(self, indexer):
        # 31_500 covers the target with one input's fee
        indexer.payment_pages = [[value_utxo(1, 31_500), value_utxo(2, 50_000)]]
        selection = await UtxoSelector(indexer).select_value_utxos(ADDRESS, 30_000, fee_for)
        assert len(selection.utxos) == 1
        assert selection.total >= 30_000 + fee_for(len(selection.utxos))

    @pytest.mark.asyncio
    async def test_one_sat_short_needs_another_input(self, indexer):
        indexer.payment_pages = [[value_utxo(1, 31_499), value_utxo(2, 50_000)]]
        selection = await UtxoSelector(indexer).select_value_utxos(ADDRESS, 30_000, fee_for)
        assert len(selection.utxos) == 2

    @pytest.mark.asyncio
    async def test_nothing_needed(self, indexer):
        indexer.payment_pages = [[value_utxo(1, 50_000)]]
        selection = await UtxoSelector(indexer).select_value_utxos(ADDRESS, -600, fee_for)
        assert selection.utxos == []
        assert indexer.payment_fetches == 0

    @pytest.mark.asyncio
    async def test_result_is_total(self, indexer):
        """Selection either covers the requirement or raises, for every target."""
        indexer.payment_pages = [[value_utxo(n, 15_000) for n in range(1, 6)]]
        selector = UtxoSelector(indexer)
        for target in range(0, 90_000, 7_500):
            try:
                selection = await selector.select_value_utxos(ADDRESS, target, fee_for)
            except InsufficientFunds as e:
                assert e.asset_class == "btc"
                assert 15_000 * 5 < target + fee_for(5)
            else:
                assert selection.total >= target + fee_for(len(selection.utxos))

    @pytest.mark.asyncio
    async def test_small_utxos_ignored(self, indexer):
        indexer.payment_pages = [
            [value_utxo(1, 10_000), value_utxo(2, 9_000), value_utxo(3, 40_000)]
        ]
        selection = await UtxoSelector(indexer).select_value_utxos(ADDRESS, 1_000, fee_for)
        assert [u.txid for u in selection.utxos] == [txid(3)]

    @pytest.mark.asyncio
    async def test_excluded_outpoints_skipped(self, indexer):
        indexer.payment_pages = [[value_utxo(1, 40_000), value_utxo(2, 40_000)]]
        selection = await UtxoSelector(indexer).select_value_utxos(
            ADDRESS, 1_000, fee_for, exclude={f"{txid(1)}:0"}
        )
        assert [u.txid for u in selection.utxos] == [txid(2)]

    @pytest.mark.asyncio
    async def test_unusable_candidates_dropped(self, indexer):
        indexer.payment_pages = [[value_utxo(n, 40_000) for n in (1, 2, 3, 4)]]
        indexer.unconfirmed.add(txid(1))
        indexer.spent.add(f"{txid(2)}:0")
        indexer.failing_status.add(txid(3))
        selection = await UtxoSelector(indexer).select_value_utxos(ADDRESS, 1_000, fee_for)
        assert [u.txid for u in selection.utxos] == [txid(4)]

    @pytest.mark.asyncio
    async def test_failed_outspend_check_counts_as_spent(self, indexer):
        indexer.payment_pages = [[value_utxo(1, 40_000)]]
        indexer.failing_outspend.add(f"{txid(1)}:0")
        with pytest.raises(InsufficientFunds):
            await UtxoSelector(indexer).select_value_utxos(ADDRESS, 1_000, fee_for)

    @pytest.mark.asyncio
    async def test_second_page_only_when_needed(self, indexer):
        indexer.payment_pages = [[value_utxo(1, 40_000)], [value_utxo(2, 40_000)]]
        selector = UtxoSelector(indexer)
        await selector.select_value_utxos(ADDRESS, 1_000, fee_for)
        assert indexer.payment_fetches == 1

        indexer.payment_fetches = 0
        selection = await selector.select_value_utxos(ADDRESS, 60_000, fee_for)
        assert indexer.payment_fetches == 2
        assert len(selection.utxos) == 2

    @pytest.mark.asyncio
    async def test_insufficient(self, indexer):
        indexer.payment_pages = [[value_utxo(1, 20_000)]]
        with pytest.raises(InsufficientFunds, match="Insufficient BTC balance"):
            await UtxoSelector(indexer).select_value_utxos(ADDRESS, 30_000, fee_for)

    @pytest.mark.asyncio
    async def test_script_attached_when_missing(self, indexer):
        indexer.payment_pages = [[ValueUtxo(txid=txid(1), vout=0, value=40_000)]]
        script = b"\x51\x20" + bytes(32)
        selection = await UtxoSelector(indexer).select_value_utxos(
            ADDRESS, 1_000, fee_for, script=script
        )
        assert selection.utxos[0].script == script


class TestSelectTokenUtxos:
    def token_utxo(self, n: int, amount: int) -> TokenUtxo:
        return TokenUtxo(txid=txid(n), vout=1, value=546, token_id="1:1", amount=amount)

    @pytest.mark.asyncio
    async def test_reaches_amount(self, indexer):
        indexer.token_pages["1:1"] = [
            [self.token_utxo(1, 60)],
            [self.token_utxo(2, 60), self.token_utxo(3, 60)],
        ]
        selection = await UtxoSelector(indexer).select_token_utxos(ADDRESS, "1:1", 100)
        assert selection.total == 120
        assert len(selection.utxos) == 2

    @pytest.mark.asyncio
    async def test_exact_amount(self, indexer):
        indexer.token_pages["1:1"] = [[self.token_utxo(1, 100), self.token_utxo(2, 100)]]
        selection = await UtxoSelector(indexer).select_token_utxos(ADDRESS, "1:1", 100)
        assert selection.total == 100

    @pytest.mark.asyncio
    async def test_insufficient_names_token(self, indexer):
        indexer.token_pages["1:1"] = [[self.token_utxo(1, 50)]]
        with pytest.raises(InsufficientFunds) as exc_info:
            await UtxoSelector(indexer).select_token_utxos(ADDRESS, "1:1", 100)
        assert exc_info.value.asset_class == "1:1"

    @pytest.mark.asyncio
    async def test_spent_token_utxo_skipped(self, indexer):
        indexer.token_pages["1:1"] = [[self.token_utxo(1, 100), self.token_utxo(2, 100)]]
        indexer.spent.add(f"{txid(1)}:1")
        selection = await UtxoSelector(indexer).select_token_utxos(ADDRESS, "1:1", 100)
        assert [u.txid for u in selection.utxos] == [txid(2)]

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, indexer):
        with pytest.raises(ValueError):
            await UtxoSelector(indexer).select_token_utxos(ADDRESS, "1:1", 0)


class TestFindAssetUtxo:
    @pytest.mark.asyncio
    async def test_first_matching(self, indexer):
        indexer.asset_pages = [
            [AssetUtxo(txid=txid(1), vout=0, value=546, asset_id="other")],
            [
                AssetUtxo(txid=txid(2), vout=0, value=546, asset_id="wanted"),
                AssetUtxo(txid=txid(3), vout=0, value=546, asset_id="wanted2"),
            ],
        ]
        found = await UtxoSelector(indexer).find_asset_utxo(ADDRESS, {"wanted", "wanted2"})
        assert found.asset_id == "wanted"

    @pytest.mark.asyncio
    async def test_any_asset(self, indexer):
        indexer.asset_pages = [[AssetUtxo(txid=txid(1), vout=0, value=546, asset_id="x")]]
        assert (await UtxoSelector(indexer).find_asset_utxo(ADDRESS)).asset_id == "x"

    @pytest.mark.asyncio
    async def test_none_usable(self, indexer):
        indexer.asset_pages = [[AssetUtxo(txid=txid(1), vout=0, value=546, asset_id="x")]]
        indexer.unconfirmed.add(txid(1))
        assert await UtxoSelector(indexer).find_asset_utxo(ADDRESS) is None


class TestUsableAssetUtxos:
    @pytest.mark.asyncio
    async def test_collects_across_pages(self, indexer):
        indexer.asset_pages = [
            [
                AssetUtxo(txid=txid(1), vout=0, value=546, asset_id="a"),
                AssetUtxo(txid=txid(2), vout=0, value=546, asset_id="other"),
            ],
            [AssetUtxo(txid=txid(3), vout=0, value=546, asset_id="b")],
        ]
        usable = await UtxoSelector(indexer).usable_asset_utxos(ADDRESS, {"a", "b"})
        assert [u.asset_id for u in usable] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_drops_unconfirmed_and_spent(self, indexer):
        indexer.asset_pages = [
            [
                AssetUtxo(txid=txid(1), vout=0, value=546, asset_id="a"),
                AssetUtxo(txid=txid(2), vout=0, value=546, asset_id="b"),
                AssetUtxo(txid=txid(3), vout=0, value=546, asset_id="c"),
            ]
        ]
        indexer.unconfirmed.add(txid(1))
        indexer.spent.add(f"{txid(2)}:0")
        usable = await UtxoSelector(indexer).usable_asset_utxos(ADDRESS)
        assert [u.asset_id for u in usable] == ["c"]
