"""
Minimal BIP-174 (version 0) PSBT codec.

Covers what swap drafts need: witness UTXOs, sighash types, taproot
internal keys, taproot key-path and segwit v0 partial signatures, and
finalization into a broadcastable transaction. Unknown fields are
preserved verbatim.
"""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass, field

from runecore.address import is_p2tr_script, is_p2wpkh_script
from runecore.crypto import hash160
from runecore.models import TransactionDraft
from runecore.transaction import (
    Transaction,
    TransactionParseError,
    TxInput,
    TxOutput,
    read_varint,
    varint,
)

PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00

PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08
PSBT_IN_TAP_KEY_SIG = 0x13
PSBT_IN_TAP_INTERNAL_KEY = 0x17


class PsbtError(Exception):
    pass


def _pair(key_type: int, key_data: bytes, value: bytes) -> bytes:
    key = bytes([key_type]) + key_data
    return varint(len(key)) + key + varint(len(value)) + value


def _read_map(data: bytes, offset: int) -> tuple[list[tuple[bytes, bytes]], int]:
    entries: list[tuple[bytes, bytes]] = []
    while True:
        key_len, offset = read_varint(data, offset)
        if key_len == 0:
            return entries, offset
        key = data[offset : offset + key_len]
        offset += key_len
        value_len, offset = read_varint(data, offset)
        value = data[offset : offset + value_len]
        if len(value) != value_len:
            raise PsbtError("Truncated PSBT value")
        offset += value_len
        entries.append((key, value))


def serialize_witness(items: list[bytes]) -> bytes:
    result = varint(len(items))
    for item in items:
        result += varint(len(item)) + item
    return result


def parse_witness(data: bytes) -> list[bytes]:
    count, offset = read_varint(data, 0)
    items = []
    for _ in range(count):
        size, offset = read_varint(data, offset)
        items.append(data[offset : offset + size])
        offset += size
    return items


@dataclass
class PsbtInput:
    witness_utxo: TxOutput | None = None
    sighash_type: int | None = None
    tap_internal_key: bytes | None = None
    tap_key_sig: bytes | None = None
    partial_sigs: dict[bytes, bytes] = field(default_factory=dict)
    final_script_witness: list[bytes] | None = None
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    def serialize(self) -> bytes:
        result = b""
        if self.witness_utxo is not None:
            result += _pair(PSBT_IN_WITNESS_UTXO, b"", self.witness_utxo.serialize())
        for pubkey, sig in self.partial_sigs.items():
            result += _pair(PSBT_IN_PARTIAL_SIG, pubkey, sig)
        if self.sighash_type is not None:
            result += _pair(PSBT_IN_SIGHASH_TYPE, b"", struct.pack("<I", self.sighash_type))
        if self.final_script_witness is not None:
            result += _pair(
                PSBT_IN_FINAL_SCRIPTWITNESS, b"", serialize_witness(self.final_script_witness)
            )
        if self.tap_key_sig is not None:
            result += _pair(PSBT_IN_TAP_KEY_SIG, b"", self.tap_key_sig)
        if self.tap_internal_key is not None:
            result += _pair(PSBT_IN_TAP_INTERNAL_KEY, b"", self.tap_internal_key)
        for key, value in self.unknown.items():
            result += varint(len(key)) + key + varint(len(value)) + value
        return result + b"\x00"

    @classmethod
    def from_entries(cls, entries: list[tuple[bytes, bytes]]) -> PsbtInput:
        psbt_in = cls()
        for key, value in entries:
            key_type, key_data = key[0], key[1:]
            if key_type == PSBT_IN_WITNESS_UTXO:
                amount = struct.unpack("<Q", value[:8])[0]
                script_len, offset = read_varint(value, 8)
                psbt_in.witness_utxo = TxOutput(value=amount, script=value[offset:])
                if len(psbt_in.witness_utxo.script) != script_len:
                    raise PsbtError("Malformed witness UTXO")
            elif key_type == PSBT_IN_PARTIAL_SIG:
                psbt_in.partial_sigs[key_data] = value
            elif key_type == PSBT_IN_SIGHASH_TYPE:
                psbt_in.sighash_type = struct.unpack("<I", value)[0]
            elif key_type == PSBT_IN_FINAL_SCRIPTWITNESS:
                psbt_in.final_script_witness = parse_witness(value)
            elif key_type == PSBT_IN_TAP_KEY_SIG:
                psbt_in.tap_key_sig = value
            elif key_type == PSBT_IN_TAP_INTERNAL_KEY:
                psbt_in.tap_internal_key = value
            else:
                psbt_in.unknown[key] = value
        return psbt_in

    def finalize(self, index: int) -> None:
        """Turn the collected signature into a final witness."""
        if self.final_script_witness is not None:
            return
        if self.witness_utxo is None:
            raise PsbtError(f"Input {index} has no witness UTXO")
        script = self.witness_utxo.script

        if is_p2tr_script(script) and self.tap_key_sig is not None:
            if len(self.tap_key_sig) not in (64, 65):
                raise PsbtError(f"Input {index} has a malformed taproot signature")
            self.final_script_witness = [self.tap_key_sig]
        elif is_p2wpkh_script(script) and self.partial_sigs:
            for pubkey, sig in self.partial_sigs.items():
                if hash160(pubkey) == script[2:]:
                    self.final_script_witness = [sig, pubkey]
                    break
            else:
                raise PsbtError(f"Input {index} has no signature for its key")
        else:
            raise PsbtError(f"Input {index} is not signed")

        self.partial_sigs.clear()
        self.tap_key_sig = None
        self.sighash_type = None
        self.tap_internal_key = None


@dataclass
class PsbtOutput:
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    def serialize(self) -> bytes:
        result = b""
        for key, value in self.unknown.items():
            result += varint(len(key)) + key + varint(len(value)) + value
        return result + b"\x00"


@dataclass
class Psbt:
    tx: Transaction
    inputs: list[PsbtInput] = field(default_factory=list)
    outputs: list[PsbtOutput] = field(default_factory=list)
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    @classmethod
    def from_draft(cls, draft: TransactionDraft) -> Psbt:
        tx = Transaction(
            version=draft.version,
            inputs=[TxInput(txid=i.txid, vout=i.vout, sequence=i.sequence) for i in draft.inputs],
            outputs=[TxOutput(value=o.value, script=o.script) for o in draft.outputs],
            locktime=draft.locktime,
        )
        inputs = [
            PsbtInput(
                witness_utxo=TxOutput(value=i.value, script=i.script),
                sighash_type=i.sighash,
                tap_internal_key=i.tap_internal_key,
            )
            for i in draft.inputs
        ]
        return cls(tx=tx, inputs=inputs, outputs=[PsbtOutput() for _ in draft.outputs])

    def serialize(self) -> bytes:
        result = PSBT_MAGIC
        result += _pair(PSBT_GLOBAL_UNSIGNED_TX, b"", self.tx.serialize(include_witness=False))
        for key, value in self.unknown.items():
            result += varint(len(key)) + key + varint(len(value)) + value
        result += b"\x00"
        for psbt_in in self.inputs:
            result += psbt_in.serialize()
        for psbt_out in self.outputs:
            result += psbt_out.serialize()
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode("ascii")

    @classmethod
    def parse(cls, data: bytes) -> Psbt:
        if not data.startswith(PSBT_MAGIC):
            raise PsbtError("Missing PSBT magic bytes")
        try:
            global_entries, offset = _read_map(data, len(PSBT_MAGIC))
            tx: Transaction | None = None
            unknown: dict[bytes, bytes] = {}
            for key, value in global_entries:
                if key == bytes([PSBT_GLOBAL_UNSIGNED_TX]):
                    tx = Transaction.parse(value)
                else:
                    unknown[key] = value
            if tx is None:
                raise PsbtError("PSBT has no unsigned transaction")

            inputs = []
            for _ in tx.inputs:
                entries, offset = _read_map(data, offset)
                inputs.append(PsbtInput.from_entries(entries))
            outputs = []
            for _ in tx.outputs:
                entries, offset = _read_map(data, offset)
                outputs.append(PsbtOutput(unknown=dict(entries)))
        except (IndexError, struct.error, TransactionParseError) as e:
            raise PsbtError(f"Malformed PSBT: {e}") from e

        if offset != len(data):
            raise PsbtError("Trailing data after PSBT")
        return cls(tx=tx, inputs=inputs, outputs=outputs, unknown=unknown)

    @classmethod
    def from_hex(cls, value: str) -> Psbt:
        try:
            return cls.parse(bytes.fromhex(value))
        except ValueError as e:
            raise PsbtError(f"PSBT is not valid hex: {e}") from e

    @classmethod
    def from_base64(cls, value: str) -> Psbt:
        try:
            return cls.parse(base64.b64decode(value, validate=True))
        except binascii.Error as e:
            raise PsbtError(f"PSBT is not valid base64: {e}") from e

    def finalize(self) -> None:
        for index, psbt_in in enumerate(self.inputs):
            psbt_in.finalize(index)

    def extract_transaction(self) -> Transaction:
        tx = Transaction.parse(self.tx.serialize(include_witness=False))
        for index, (tx_in, psbt_in) in enumerate(zip(tx.inputs, self.inputs, strict=True)):
            if psbt_in.final_script_witness is None:
                raise PsbtError(f"Input {index} is not finalized")
            tx_in.witness = list(psbt_in.final_script_witness)
        return tx
