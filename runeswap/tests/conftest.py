"""
Test configuration for runeswap tests.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from coincurve import PrivateKey

from runecore.address import pubkey_to_p2tr_address, pubkey_to_p2tr_script
from runecore.crypto import xonly_pubkey
from runecore.models import (
    AssetUtxo,
    DraftInput,
    OutputRole,
    SignerRole,
    TokenUtxo,
    TransactionDraft,
    ValueUtxo,
    WalletType,
)
from runecore.psbt import Psbt
from runecore.signing import sign_psbt_input
from runewallet.backends.base import IndexerBackend, TokenBalance, TxStatus, UtxoPage
from runeswap.config import SwapSettings
from runeswap.wallet import WalletInfo

USER_KEY = PrivateKey(bytes.fromhex("33" * 32))
ESCROW_KEY = PrivateKey(bytes.fromhex("44" * 32))
BASKET_KEY = PrivateKey(bytes.fromhex("55" * 32))

USER_ADDRESS = pubkey_to_p2tr_address(xonly_pubkey(USER_KEY), "testnet")
ESCROW_ADDRESS = pubkey_to_p2tr_address(xonly_pubkey(ESCROW_KEY), "testnet")
BASKET_ADDRESS = pubkey_to_p2tr_address(xonly_pubkey(BASKET_KEY), "testnet")

COLLECTION = [f"{n:064x}i0" for n in range(1, 6)]
PRICE_TOKEN = "89368:422"


def make_txid(n: int) -> str:
    return f"{n:064x}"


class FakeIndexer(IndexerBackend):
    """
    In-memory indexer keyed by address.

    Listed UTXOs are usable unless their txid is in ``unconfirmed`` or their
    "txid:vout" is in ``spent``.
    """

    def __init__(self) -> None:
        self.payment: dict[str, list[ValueUtxo]] = {}
        self.tokens: dict[tuple[str, str], list[TokenUtxo]] = {}
        self.assets: dict[str, list[AssetUtxo]] = {}
        self.divisibility: dict[str, int] = {}
        self.unconfirmed: set[str] = set()
        self.spent: set[str] = set()

    async def list_payment_utxos(self, address, cursor=None):
        return UtxoPage(items=list(self.payment.get(address, [])))

    async def list_token_utxos(self, address, token_id, cursor=None):
        return UtxoPage(items=list(self.tokens.get((address, token_id), [])))

    async def list_asset_utxos(self, address, cursor=None):
        return UtxoPage(items=list(self.assets.get(address, [])))

    async def get_token_divisibility(self, token_id):
        return self.divisibility.get(token_id, 0)

    async def get_token_balances(self, address):
        return [
            TokenBalance(token_id=token_id, amount=Decimal(sum(u.amount for u in utxos)))
            for (owner, token_id), utxos in self.tokens.items()
            if owner == address
        ]

    async def is_confirmed(self, txid):
        return txid not in self.unconfirmed

    async def is_spent(self, txid, vout):
        return f"{txid}:{vout}" in self.spent

    def add_payment(self, address: str, n: int, value: int) -> ValueUtxo:
        utxo = ValueUtxo(txid=make_txid(n), vout=0, value=value)
        self.payment.setdefault(address, []).append(utxo)
        return utxo

    def add_token(self, address: str, token_id: str, n: int, amount: int) -> TokenUtxo:
        utxo = TokenUtxo(
            txid=make_txid(n), vout=1, value=546, token_id=token_id, amount=amount
        )
        self.tokens.setdefault((address, token_id), []).append(utxo)
        return utxo

    def add_asset(self, address: str, asset_id: str, n: int, value: int = 546) -> AssetUtxo:
        utxo = AssetUtxo(txid=make_txid(n), vout=0, value=value, asset_id=asset_id)
        self.assets.setdefault(address, []).append(utxo)
        return utxo


@pytest.fixture
def settings() -> SwapSettings:
    return SwapSettings(
        _env_file=None,
        escrow_private_key="44" * 32,
        basket_private_key="55" * 32,
        collection=COLLECTION,
        submit_retry_delay=0,
        processed_poll_interval=0,
        confirmation_poll_interval=0,
        broadcast_retry_delay=0,
    )


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture
def execution(settings: SwapSettings) -> AsyncMock:
    addresses = {
        bytes.fromhex(settings.escrow_account_pubkey): ESCROW_ADDRESS,
        bytes.fromhex(settings.basket_account_pubkey): BASKET_ADDRESS,
    }
    execution = AsyncMock()
    execution.get_account_address.side_effect = lambda pubkey: addresses[bytes(pubkey)]
    execution.send_transaction.return_value = "exec-1"
    execution.get_processed_transaction.return_value = {
        "status": "Processed",
        "bitcoin_txids": ["ab" * 32],
    }
    return execution


@pytest.fixture
def chain() -> AsyncMock:
    chain = AsyncMock()
    chain.get_recommended_fee_rate.return_value = 5.0
    chain.get_transaction_status.return_value = TxStatus(confirmed=False)
    return chain


@pytest.fixture
def wallet() -> WalletInfo:
    pubkey = USER_KEY.public_key.format(compressed=True).hex()
    return WalletInfo(
        wallet_type=WalletType.UNISAT,
        payment_address=USER_ADDRESS,
        payment_pubkey=pubkey,
        ordinals_address=USER_ADDRESS,
        ordinals_pubkey=pubkey,
    )


@pytest.fixture
def sign_hex() -> Callable[[str], str]:
    """Sign every user input of a hex draft with the test user's key."""

    def sign(psbt_hex: str) -> str:
        psbt = Psbt.from_hex(psbt_hex)
        for index in range(len(psbt.inputs)):
            sign_psbt_input(psbt, index, USER_KEY)
        return psbt.to_hex()

    return sign


@pytest.fixture
def signed_draft(sign_hex) -> str:
    """A minimal one-in one-out draft, signed."""
    internal_key = xonly_pubkey(USER_KEY)
    script = pubkey_to_p2tr_script(internal_key)
    draft = TransactionDraft()
    draft.add_input(
        DraftInput(
            txid=make_txid(900),
            vout=0,
            value=20_000,
            script=script,
            role=SignerRole.PAYMENT,
            tap_internal_key=internal_key,
        )
    )
    draft.add_output(script, 15_000, OutputRole.FEE_CHANGE)
    return sign_hex(Psbt.from_draft(draft).to_hex())


@pytest.fixture
def swap_env() -> SimpleNamespace:
    """Keys, addresses and ids shared by the fixtures above."""
    return SimpleNamespace(
        user_key=USER_KEY,
        escrow_key=ESCROW_KEY,
        user_address=USER_ADDRESS,
        escrow_address=ESCROW_ADDRESS,
        basket_address=BASKET_ADDRESS,
        collection=COLLECTION,
        price_token=PRICE_TOKEN,
        make_txid=make_txid,
    )
