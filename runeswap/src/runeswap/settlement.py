"""
Settlement of user-signed drafts through the execution layer.

Each leg walks the same states:

    REQUESTED -> DRAFT_SIGNED -> FINALIZED -> SUBMITTED_TO_EXECUTION_LAYER
        -> EXECUTION_RESOLVED [-> BASE_CHAIN_CONFIRMED] -> SETTLED

FAILED is reachable from any non-terminal state. Nothing is persisted:
the position in the flow is rebuilt from the signed drafts and the
referenced UTXOs the caller hands back.

Counter commits happen only after a second, independent check that the
base chain knows the transaction. Consistency is at-least-once: a crash
between the execution layer resolving and the commit loses the commit,
and a retried settle can commit twice.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from coincurve import PrivateKey
from loguru import logger

from runecore.address import pubkey_to_p2tr_script
from runecore.constants import DISCRIMINANT_ASSET_SWAP
from runecore.crypto import xonly_pubkey
from runecore.errors import (
    ExternalServiceError,
    InputValidationError,
    SettlementTimeout,
    SwapError,
)
from runecore.models import ProcessedResult, SwapShape, UtxoRef, WalletType
from runecore.psbt import PsbtError
from runecore.signing import bip322_sign_taproot
from runecore.transaction import Transaction
from runecore.wire import (
    AccountMeta,
    AssetSwapPayload,
    Instruction,
    Message,
    SettlementEnvelope,
    TokenSwapPayload,
)
from runewallet.backends.base import ChainBackend
from runeswap.execution import ExecutionClient
from runeswap.ledger import SCOPE_COLLECTION, SCOPE_USER, LedgerStore
from runeswap.polling import PollResult, PollStatus, poll_with_budget
from runeswap.shapes import SHAPE_DISCRIMINANTS
from runeswap.wallet import decode_draft


class SettlementState(str, Enum):
    REQUESTED = "requested"
    DRAFT_SIGNED = "draft_signed"
    FINALIZED = "finalized"
    SUBMITTED = "submitted_to_execution_layer"
    EXECUTION_RESOLVED = "execution_resolved"
    BASE_CHAIN_CONFIRMED = "base_chain_confirmed"
    SETTLED = "settled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SettlementState.SETTLED, SettlementState.FAILED})


@dataclass
class SettlementTrace:
    """Ordered record of the states one leg went through."""

    leg: int
    transitions: list[tuple[SettlementState, float]] = field(default_factory=list)
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.transitions:
            self.transitions.append((SettlementState.REQUESTED, time.time()))

    @property
    def state(self) -> SettlementState:
        return self.transitions[-1][0]

    @property
    def states(self) -> list[SettlementState]:
        return [state for state, _ in self.transitions]

    def advance(self, state: SettlementState, detail: str = "") -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Leg {self.leg} is already {self.state.value}")
        self.transitions.append((state, time.time()))
        suffix = f" ({detail})" if detail else ""
        logger.info(f"Settlement leg {self.leg}: {state.value}{suffix}")

    def fail(self, error: Exception) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.error = str(error)
        self.transitions.append((SettlementState.FAILED, time.time()))
        logger.warning(f"Settlement leg {self.leg} failed in {self.states[-2].value}: {error}")

    def reached(self, state: SettlementState) -> bool:
        return state in self.states


@dataclass
class SettlementLeg:
    """What the caller hands back for one draft: the signed PSBT and its escrow UTXOs."""

    signed_draft: str
    referenced_utxos: list[UtxoRef] = field(default_factory=list)


@dataclass
class ProgramAuthority:
    """Custodial key that signs envelopes for one execution-layer program."""

    private_key: PrivateKey
    program_id: bytes

    @classmethod
    def from_hex(cls, private_key_hex: str, program_id_hex: str) -> ProgramAuthority:
        if not private_key_hex:
            raise ExternalServiceError("Custodial signing key is not configured")
        return cls(
            private_key=PrivateKey(bytes.fromhex(private_key_hex)),
            program_id=bytes.fromhex(program_id_hex),
        )

    @property
    def signer_pubkey(self) -> bytes:
        return xonly_pubkey(self.private_key)


@dataclass
class CounterCommit:
    """Counters bumped once the base chain confirms a claim."""

    collection_name: str
    user_address: str


@dataclass
class SettlementReceipt:
    shape: SwapShape
    bitcoin_txids: list[str]
    execution_txids: list[str]
    traces: list[SettlementTrace]

    @property
    def bitcoin_txid(self) -> str:
        return self.bitcoin_txids[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "shape": self.shape.value,
            "bitcoin_txid": self.bitcoin_txid,
            "bitcoin_txids": self.bitcoin_txids,
            "execution_txids": self.execution_txids,
            "states": [[s.value for s in trace.states] for trace in self.traces],
        }


@dataclass
class _FinalizedLeg:
    trace: SettlementTrace
    tx: Transaction
    referenced_utxos: list[UtxoRef]


def build_instruction(
    discriminant: int,
    referenced_utxos: list[UtxoRef],
    raw_tx: bytes,
    authority: ProgramAuthority,
) -> Instruction:
    """Wire-encode a settlement instruction for the program."""
    data: AssetSwapPayload | TokenSwapPayload
    if discriminant == DISCRIMINANT_ASSET_SWAP:
        if len(referenced_utxos) != 1:
            raise InputValidationError(
                f"Asset settlement needs exactly one referenced UTXO, got {len(referenced_utxos)}"
            )
        asset = referenced_utxos[0]
        data = AssetSwapPayload(asset_txid=asset.txid, asset_vout=asset.vout, user_tx=raw_tx)
    else:
        if not referenced_utxos:
            raise InputValidationError("Token settlement needs at least one referenced UTXO")
        data = TokenSwapPayload(
            token_txids=[u.txid for u in referenced_utxos],
            token_vouts=[u.vout for u in referenced_utxos],
            user_tx=raw_tx,
            discriminant=discriminant,
        )
    return Instruction(
        program_id=authority.program_id,
        accounts=[AccountMeta(pubkey=authority.signer_pubkey, is_signer=True, is_writable=True)],
        data=data.serialize(),
    )


def sign_envelope(instruction: Instruction, authority: ProgramAuthority) -> SettlementEnvelope:
    """
    Wrap an instruction in a message signed by the program authority.

    The signature is a BIP-322 simple signature, by the authority's P2TR
    key-path address, over the hex of the message hash.
    """
    message = Message(signers=[authority.signer_pubkey], instructions=[instruction])
    digest_hex = message.hash().hex().encode("ascii")
    script = pubkey_to_p2tr_script(authority.signer_pubkey)
    signature = bip322_sign_taproot(authority.private_key, digest_hex, script)
    return SettlementEnvelope(message=message, signatures=[signature])


def interpret_processed(
    execution_txid: str, record: dict[str, Any] | None
) -> PollResult[ProcessedResult]:
    """Map a processed-transaction record onto a poll outcome."""
    if record is None:
        return PollResult.pending("not found yet")
    status = record.get("status")
    if isinstance(status, dict) and "Failed" in status:
        return PollResult.fatal(f"Execution layer rejected the transaction: {status['Failed']}")
    if status == "Failed":
        return PollResult.fatal("Execution layer rejected the transaction")
    bitcoin_txid = record.get("bitcoin_txid")
    if not bitcoin_txid:
        txids = record.get("bitcoin_txids") or []
        bitcoin_txid = txids[0] if txids else None
    if bitcoin_txid:
        return PollResult.resolved(
            ProcessedResult(execution_txid=execution_txid, bitcoin_txid=bitcoin_txid)
        )
    return PollResult.pending(f"status {status}")


class SettlementSubmitter:
    def __init__(
        self,
        execution: ExecutionClient,
        chain: ChainBackend,
        ledger: LedgerStore,
        submit_max_retries: int = 3,
        submit_retry_delay: float = 1.0,
        processed_poll_interval: float = 10.0,
        processed_poll_attempts: int = 3,
        confirmation_poll_interval: float = 5.0,
        confirmation_poll_attempts: int = 3,
    ):
        self.execution = execution
        self.chain = chain
        self.ledger = ledger
        self.submit_max_retries = submit_max_retries
        self.submit_retry_delay = submit_retry_delay
        self.processed_poll_interval = processed_poll_interval
        self.processed_poll_attempts = processed_poll_attempts
        self.confirmation_poll_interval = confirmation_poll_interval
        self.confirmation_poll_attempts = confirmation_poll_attempts

    def finalize(
        self, wallet_type: WalletType, signed_draft: str, trace: SettlementTrace
    ) -> Transaction:
        """Decode the signed draft, finalize every input and extract the raw transaction."""
        psbt = decode_draft(signed_draft, wallet_type)
        trace.advance(SettlementState.DRAFT_SIGNED)
        try:
            psbt.finalize()
            tx = psbt.extract_transaction()
        except PsbtError as e:
            raise InputValidationError(f"Cannot finalize signed draft: {e}") from e
        trace.advance(SettlementState.FINALIZED, tx.txid)
        return tx

    async def submit(self, envelope: SettlementEnvelope) -> str:
        """
        Send an envelope, retrying transient failures with a constant delay.

        Raises:
            ExternalServiceError: Every one of submit_max_retries attempts failed
        """
        last_error: ExternalServiceError | None = None
        for attempt in range(1, self.submit_max_retries + 1):
            try:
                return await self.execution.send_transaction(envelope)
            except ExternalServiceError as e:
                last_error = e
                logger.warning(
                    f"Envelope submission failed (attempt {attempt}/{self.submit_max_retries}): {e}"
                )
                if attempt < self.submit_max_retries:
                    await asyncio.sleep(self.submit_retry_delay)

        logger.error(f"Envelope submission failed after {self.submit_max_retries} attempts")
        raise ExternalServiceError(
            f"Execution layer did not accept the transaction after "
            f"{self.submit_max_retries} attempts: {last_error}"
        ) from last_error

    async def wait_processed(self, execution_txid: str) -> ProcessedResult:
        async def check() -> PollResult[ProcessedResult]:
            record = await self.execution.get_processed_transaction(execution_txid)
            return interpret_processed(execution_txid, record)

        result = await poll_with_budget(
            check,
            self.processed_poll_interval,
            self.processed_poll_attempts,
            description=f"processed transaction {execution_txid}",
        )
        if result.status == PollStatus.FATAL:
            logger.error(result.reason)
            raise ExternalServiceError(result.reason)
        if result.status == PollStatus.PENDING or result.value is None:
            raise SettlementTimeout(
                f"Execution layer did not process {execution_txid} within "
                f"{self.processed_poll_interval * self.processed_poll_attempts:.0f}s"
            )
        return result.value

    async def wait_base_chain(self, bitcoin_txid: str) -> None:
        """Confirmation barrier: the base chain must know bitcoin_txid."""

        async def check() -> PollResult[str]:
            status = await self.chain.get_transaction_status(bitcoin_txid)
            if status is None:
                return PollResult.pending("unknown to the base chain")
            return PollResult.resolved(bitcoin_txid)

        result = await poll_with_budget(
            check,
            self.confirmation_poll_interval,
            self.confirmation_poll_attempts,
            description=f"base chain {bitcoin_txid}",
        )
        if not result.is_resolved:
            raise SettlementTimeout(f"Transaction {bitcoin_txid} did not reach the base chain")

    async def commit(self, commit: CounterCommit, bitcoin_txid: str) -> None:
        total = await self.ledger.increment(SCOPE_COLLECTION, commit.collection_name)
        claimed = await self.ledger.increment(
            SCOPE_USER, commit.user_address, fields={"txid": bitcoin_txid}
        )
        logger.info(
            f"Committed claim {bitcoin_txid}: {commit.user_address} has {claimed}, "
            f"{commit.collection_name} total {total}"
        )

    async def _settle_leg(
        self,
        leg: _FinalizedLeg,
        discriminant: int,
        authority: ProgramAuthority,
        commit: CounterCommit | None,
    ) -> ProcessedResult:
        instruction = build_instruction(
            discriminant, leg.referenced_utxos, leg.tx.serialize(), authority
        )
        envelope = sign_envelope(instruction, authority)
        execution_txid = await self.submit(envelope)
        leg.trace.advance(SettlementState.SUBMITTED, execution_txid)

        processed = await self.wait_processed(execution_txid)
        leg.trace.advance(SettlementState.EXECUTION_RESOLVED, processed.bitcoin_txid)

        if commit is not None:
            await self.wait_base_chain(processed.bitcoin_txid)
            leg.trace.advance(SettlementState.BASE_CHAIN_CONFIRMED)
            await self.commit(commit, processed.bitcoin_txid)

        leg.trace.advance(SettlementState.SETTLED)
        return processed

    async def settle(
        self,
        shape: SwapShape,
        wallet_type: WalletType,
        legs: list[SettlementLeg],
        authority: ProgramAuthority,
        commit: CounterCommit | None = None,
    ) -> SettlementReceipt:
        """
        Settle the signed drafts of one request.

        Every leg is finalized before any is submitted, so a malformed
        draft fails the request without touching the execution layer.
        Legs are then submitted in order. A failure after the first
        submission leaves earlier legs settled; nothing is rolled back.
        """
        if not legs:
            raise InputValidationError("No signed drafts to settle")
        discriminant = SHAPE_DISCRIMINANTS[shape]

        traces = [SettlementTrace(leg=n) for n in range(1, len(legs) + 1)]
        finalized: list[_FinalizedLeg] = []
        for leg, trace in zip(legs, traces, strict=True):
            try:
                tx = self.finalize(wallet_type, leg.signed_draft, trace)
            except SwapError as e:
                trace.fail(e)
                raise
            finalized.append(_FinalizedLeg(trace, tx, list(leg.referenced_utxos)))

        results: list[ProcessedResult] = []
        for leg in finalized:
            try:
                results.append(await self._settle_leg(leg, discriminant, authority, commit))
            except SwapError as e:
                leg.trace.fail(e)
                submitted = [
                    t.leg
                    for t in traces
                    if t is not leg.trace and t.reached(SettlementState.SUBMITTED)
                ]
                if submitted:
                    logger.warning(
                        f"OPERATOR: {shape.value} settlement partially applied, legs "
                        f"{submitted} were submitted before leg {leg.trace.leg} failed; "
                        f"no rollback performed"
                    )
                    e.with_context(
                        f"legs {submitted} already submitted",
                        submitted_legs=submitted,
                        bitcoin_txids=[r.bitcoin_txid for r in results],
                    )
                raise

        return SettlementReceipt(
            shape=shape,
            bitcoin_txids=[r.bitcoin_txid for r in results],
            execution_txids=[r.execution_txid for r in results],
            traces=traces,
        )
