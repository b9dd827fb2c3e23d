"""
Data model for swap drafts and the UTXOs that fund them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from runecore.constants import SIGHASH_ALL_ANYONECANPAY

if TYPE_CHECKING:
    from runecore.runestone import Runestone


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class WalletType(str, Enum):
    """Browser wallet families, which differ in key layout and draft encoding."""

    UNISAT = "unisat"
    XVERSE = "xverse"


class SwapShape(str, Enum):
    ASSET_FOR_TOKEN = "asset_for_token"
    TOKEN_FOR_ASSET = "token_for_asset"
    TOKEN_BASKET_REDEMPTION = "token_basket_redemption"
    ASSET_CLAIM = "asset_claim"


class SignerRole(str, Enum):
    PAYMENT = "payment"
    ASSET_HOLDER = "asset_holder"


class OutputRole(str, Enum):
    USER_ASSET = "user_asset"
    ESCROW_ASSET = "escrow_asset"
    RUNESTONE = "runestone"
    USER_TOKEN = "user_token"
    ESCROW_TOKEN = "escrow_token"
    FEE_CHANGE = "fee_change"


@dataclass(frozen=True, order=True)
class RuneId:
    """Rune identifier: the block height and tx index of the etching."""

    block: int
    tx: int

    @classmethod
    def parse(cls, value: str) -> RuneId:
        try:
            block, tx = value.split(":")
            rune_id = cls(int(block), int(tx))
        except ValueError as e:
            raise ValueError(f"Invalid rune id: {value!r}") from e
        if rune_id.block < 0 or rune_id.tx < 0:
            raise ValueError(f"Invalid rune id: {value!r}")
        return rune_id

    def __str__(self) -> str:
        return f"{self.block}:{self.tx}"


@dataclass(frozen=True)
class UtxoRef:
    txid: str
    vout: int
    value: int

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class ValueUtxo(UtxoRef):
    """Plain bitcoin UTXO used only to pay fees."""

    script: bytes = b""


@dataclass(frozen=True)
class TokenUtxo(UtxoRef):
    """UTXO carrying a rune balance. amount is in minimal units."""

    token_id: str = ""
    amount: int = 0
    divisibility: int = 0


@dataclass(frozen=True)
class AssetUtxo(UtxoRef):
    """UTXO carrying exactly one inscription."""

    asset_id: str = ""


@dataclass(frozen=True)
class Edict:
    token_id: RuneId
    amount: int
    output: int


@dataclass
class DraftInput:
    txid: str
    vout: int
    value: int
    script: bytes
    role: SignerRole
    sighash: int = SIGHASH_ALL_ANYONECANPAY
    tap_internal_key: bytes | None = None
    sequence: int = 0xFFFFFFFF


@dataclass
class DraftOutput:
    script: bytes
    value: int
    role: OutputRole


@dataclass
class TransactionDraft:
    """
    Unsigned transaction under construction.

    external_inputs are escrow UTXOs that the execution layer appends to the
    transaction after the user signs. They are not part of the draft's inputs
    but they fund some of its outputs, so value accounting includes them.
    """

    inputs: list[DraftInput] = field(default_factory=list)
    outputs: list[DraftOutput] = field(default_factory=list)
    external_inputs: list[UtxoRef] = field(default_factory=list)
    runestone: Runestone | None = None
    fee: int = 0
    version: int = 2
    locktime: int = 0

    def add_input(self, draft_input: DraftInput) -> int:
        self.inputs.append(draft_input)
        return len(self.inputs) - 1

    def add_output(self, script: bytes, value: int, role: OutputRole) -> int:
        """Append an output and return the index it landed at."""
        self.outputs.append(DraftOutput(script=script, value=value, role=role))
        return len(self.outputs) - 1

    @property
    def input_total(self) -> int:
        return sum(i.value for i in self.inputs)

    @property
    def external_total(self) -> int:
        return sum(u.value for u in self.external_inputs)

    @property
    def output_total(self) -> int:
        return sum(o.value for o in self.outputs)

    @property
    def payment_indexes(self) -> list[int]:
        return [n for n, i in enumerate(self.inputs) if i.role == SignerRole.PAYMENT]

    @property
    def asset_indexes(self) -> list[int]:
        return [n for n, i in enumerate(self.inputs) if i.role == SignerRole.ASSET_HOLDER]

    @property
    def total_input_count(self) -> int:
        return len(self.inputs) + len(self.external_inputs)


@dataclass(frozen=True)
class ProcessedResult:
    execution_txid: str
    bitcoin_txid: str
