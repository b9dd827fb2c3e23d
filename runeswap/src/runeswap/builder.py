"""
Transaction draft builder.

Every shape goes through the same layout:

    [asset receive]     when an asset moves, valued at that asset
    [Runestone]         when tokens move, value 0
    per token transfer:
        receiver        546
        change          546, only when the transfer leaves a remainder
    fee change          input_total + external_credit - outputs - fee

Edicts point at the index each output landed at when it was appended.
Payment UTXOs are selected last, once every other input and output is
known, and are never reused across the legs of one request.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from runecore.constants import STANDARD_DUST_LIMIT
from runecore.models import (
    DraftInput,
    OutputRole,
    RuneId,
    SignerRole,
    SwapShape,
    TransactionDraft,
    UtxoRef,
    WalletType,
)
from runecore.psbt import Psbt
from runecore.runestone import Runestone, RunestoneError
from runewallet.fees import FeeEstimator
from runewallet.selector import UtxoSelector
from runeswap.shapes import LegPlan, ShapePlan
from runeswap.wallet import WalletInfo


class DraftInvariantError(RuntimeError):
    """A built draft broke value, token or dust accounting."""


@dataclass
class DraftResult:
    shape: SwapShape
    leg: int
    discriminant: int
    psbt_hex: str
    psbt_base64: str
    payment_sign_indexes: list[int]
    asset_sign_indexes: list[int]
    referenced_utxos: list[UtxoRef]
    fee: int
    fee_rate: float
    draft: TransactionDraft = field(repr=False)

    def encoded_for(self, wallet_type: WalletType) -> str:
        return self.psbt_base64 if wallet_type == WalletType.XVERSE else self.psbt_hex

    def to_dict(self) -> dict[str, Any]:
        return {
            "shape": self.shape.value,
            "leg": self.leg,
            "psbt_hex": self.psbt_hex,
            "psbt_base64": self.psbt_base64,
            "payment_sign_indexes": self.payment_sign_indexes,
            "asset_sign_indexes": self.asset_sign_indexes,
            "referenced_utxos": [
                {"txid": u.txid, "vout": u.vout, "value": u.value} for u in self.referenced_utxos
            ],
            "fee": self.fee,
            "fee_rate": self.fee_rate,
        }


class DraftBuilder:
    def __init__(self, selector: UtxoSelector, fees: FeeEstimator):
        self.selector = selector
        self.fees = fees

    async def build(
        self, plan: ShapePlan, wallet: WalletInfo, fee_rate: float | None = None
    ) -> list[DraftResult]:
        """Build one draft per leg. One fee rate is used for every leg."""
        if fee_rate is None:
            fee_rate = await self.fees.get_fee_rate()

        used: set[str] = set()
        results = []
        for number, leg in enumerate(plan.legs, start=1):
            result = await self.build_leg(plan.shape, number, leg, wallet, fee_rate, exclude=used)
            used.update(
                f"{i.txid}:{i.vout}" for i in result.draft.inputs if i.role == SignerRole.PAYMENT
            )
            results.append(result)
        return results

    def _layout(self, leg: LegPlan, wallet: WalletInfo) -> TransactionDraft:
        draft = TransactionDraft(external_inputs=list(leg.external_inputs))

        for utxo in leg.asset_inputs:
            draft.add_input(
                DraftInput(
                    txid=utxo.txid,
                    vout=utxo.vout,
                    value=utxo.value,
                    script=wallet.ordinals_script,
                    role=SignerRole.ASSET_HOLDER,
                    tap_internal_key=wallet.ordinals_internal_key,
                )
            )

        if leg.asset is not None:
            draft.add_output(
                leg.asset.receiver_script, leg.asset.utxo.value, leg.asset.receiver_role
            )

        if leg.transfers:
            runestone = Runestone()
            runestone_index = draft.add_output(b"", 0, OutputRole.RUNESTONE)
            escrow_script: bytes | None = None
            escrow_change: int | None = None
            for transfer in leg.transfers:
                escrow_funded = transfer.change_role == OutputRole.ESCROW_TOKEN
                if escrow_funded:
                    escrow_script = transfer.change_script
                receiver = draft.add_output(
                    transfer.receiver_script, STANDARD_DUST_LIMIT, transfer.receiver_role
                )
                runestone.add_edict(transfer.token_id, transfer.amount, receiver)
                if transfer.remainder > 0:
                    change = draft.add_output(
                        transfer.change_script, STANDARD_DUST_LIMIT, transfer.change_role
                    )
                    runestone.add_edict(transfer.token_id, transfer.remainder, change)
                    if escrow_funded and escrow_change is None:
                        escrow_change = change
            # Escrow UTXOs can hold runes no edict names; they go back to escrow
            if escrow_script is not None and escrow_change is None:
                escrow_change = draft.add_output(
                    escrow_script, STANDARD_DUST_LIMIT, OutputRole.ESCROW_TOKEN
                )
            runestone.pointer = escrow_change
            draft.outputs[runestone_index].script = runestone.script()
            draft.runestone = runestone
        return draft

    async def build_leg(
        self,
        shape: SwapShape,
        number: int,
        leg: LegPlan,
        wallet: WalletInfo,
        fee_rate: float,
        exclude: set[str] | None = None,
    ) -> DraftResult:
        draft = self._layout(leg, wallet)

        fixed_inputs = draft.total_input_count
        num_outputs = len(draft.outputs)

        def fee_for(n: int) -> int:
            return self.fees.fee(fixed_inputs + n, num_outputs, fee_rate)

        # Change must come out at or above dust
        base_target = (
            draft.output_total - leg.external_credit - draft.input_total + STANDARD_DUST_LIMIT
        )
        selection = await self.selector.select_value_utxos(
            wallet.payment_address,
            base_target,
            fee_for,
            exclude=exclude or (),
            script=wallet.payment_script,
        )
        for utxo in selection.utxos:
            draft.add_input(
                DraftInput(
                    txid=utxo.txid,
                    vout=utxo.vout,
                    value=utxo.value,
                    script=wallet.payment_script,
                    role=SignerRole.PAYMENT,
                    tap_internal_key=wallet.payment_internal_key,
                )
            )

        change = draft.input_total + leg.external_credit - draft.output_total - selection.fee
        draft.add_output(wallet.payment_script, change, OutputRole.FEE_CHANGE)
        # Escrow value beyond external_credit is left to the miner
        draft.fee = draft.input_total + draft.external_total - draft.output_total

        self.check_draft(draft, leg, minimum_fee=selection.fee)

        psbt = Psbt.from_draft(draft)
        logger.info(
            f"Built {shape.value} draft leg {number}: {len(draft.inputs)} inputs "
            f"(+{len(draft.external_inputs)} escrow), {len(draft.outputs)} outputs, "
            f"fee {draft.fee} sats at {fee_rate} sat/vB"
        )
        return DraftResult(
            shape=shape,
            leg=number,
            discriminant=leg.discriminant,
            psbt_hex=psbt.to_hex(),
            psbt_base64=psbt.to_base64(),
            payment_sign_indexes=draft.payment_indexes,
            asset_sign_indexes=draft.asset_indexes,
            referenced_utxos=leg.referenced_utxos,
            fee=draft.fee,
            fee_rate=fee_rate,
            draft=draft,
        )

    @staticmethod
    def check_draft(draft: TransactionDraft, leg: LegPlan, minimum_fee: int) -> None:
        """
        Verify a finished draft before it leaves the builder.

        Raises:
            DraftInvariantError: value, dust, edict index or token
                conservation accounting is off
        """
        if draft.input_total + draft.external_total != draft.output_total + draft.fee:
            raise DraftInvariantError("Inputs do not equal outputs plus fee")
        if draft.fee < minimum_fee:
            raise DraftInvariantError(f"Fee {draft.fee} is below the computed fee {minimum_fee}")

        for index, output in enumerate(draft.outputs):
            if output.role == OutputRole.RUNESTONE:
                if output.value != 0:
                    raise DraftInvariantError(f"Runestone output {index} carries value")
            elif output.value < STANDARD_DUST_LIMIT:
                raise DraftInvariantError(
                    f"Output {index} ({output.role.value}) is below dust: {output.value}"
                )

        expected: dict[RuneId, int] = defaultdict(int)
        for transfer in leg.transfers:
            expected[RuneId.parse(transfer.token_id)] += transfer.total

        if draft.runestone is None:
            if expected:
                raise DraftInvariantError("Token transfers planned without a runestone")
            return

        try:
            draft.runestone.validate(len(draft.outputs))
        except RunestoneError as e:
            raise DraftInvariantError(str(e)) from e
        for edict in draft.runestone.edicts:
            if draft.outputs[edict.output].role in (OutputRole.RUNESTONE, OutputRole.FEE_CHANGE):
                raise DraftInvariantError(f"Edict points at non-token output {edict.output}")
        pointer = draft.runestone.pointer
        if pointer is not None and draft.outputs[pointer].role != OutputRole.ESCROW_TOKEN:
            raise DraftInvariantError(f"Runestone pointer {pointer} is not an escrow output")
        if draft.runestone.totals() != dict(expected):
            raise DraftInvariantError("Edict totals do not match consumed token amounts")
