"""
Raw Bitcoin transaction serialization and parsing.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from runecore.crypto import sha256d


class TransactionParseError(Exception):
    pass


def varint(n: int) -> bytes:
    """CompactSize encoding used for counts and script lengths."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read varint and return (value, new offset)."""
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return struct.unpack("<H", data[offset : offset + 2])[0], offset + 2
    if first == 0xFE:
        return struct.unpack("<I", data[offset : offset + 4])[0], offset + 4
    return struct.unpack("<Q", data[offset : offset + 8])[0], offset + 8


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """36-byte outpoint: little-endian txid followed by the u32 output index."""
    txid_bytes = bytes.fromhex(txid)[::-1]
    return txid_bytes + struct.pack("<I", vout)


@dataclass
class TxInput:
    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: list[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        result = serialize_outpoint(self.txid, self.vout)
        result += varint(len(self.script_sig)) + self.script_sig
        result += struct.pack("<I", self.sequence)
        return result


@dataclass
class TxOutput:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + varint(len(self.script)) + self.script


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """Serialize transaction to bytes. Witness data only when any input has some."""
        with_witness = include_witness and self.has_witness

        result = struct.pack("<I", self.version)
        if with_witness:
            result += bytes([0x00, 0x01])

        result += varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if with_witness:
            for inp in self.inputs:
                result += varint(len(inp.witness))
                for item in inp.witness:
                    result += varint(len(item)) + item

        result += struct.pack("<I", self.locktime)
        return result

    @property
    def txid(self) -> str:
        """Double SHA256 of the non-witness serialization, in RPC byte order."""
        return sha256d(self.serialize(include_witness=False))[::-1].hex()

    @classmethod
    def parse(cls, tx_bytes: bytes) -> Transaction:
        try:
            return _parse_tx(tx_bytes)
        except (IndexError, struct.error, ValueError) as e:
            raise TransactionParseError(f"Failed to parse transaction: {e}") from e


def _parse_tx(tx_bytes: bytes) -> Transaction:
    offset = 0
    version = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
    offset += 4

    has_witness = False
    if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
        has_witness = True
        offset += 2

    input_count, offset = read_varint(tx_bytes, offset)
    inputs: list[TxInput] = []
    for _ in range(input_count):
        txid = tx_bytes[offset : offset + 32][::-1].hex()
        offset += 32
        vout = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4
        script_len, offset = read_varint(tx_bytes, offset)
        script_sig = tx_bytes[offset : offset + script_len]
        offset += script_len
        sequence = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4
        inputs.append(TxInput(txid=txid, vout=vout, script_sig=script_sig, sequence=sequence))

    output_count, offset = read_varint(tx_bytes, offset)
    outputs: list[TxOutput] = []
    for _ in range(output_count):
        value = struct.unpack("<Q", tx_bytes[offset : offset + 8])[0]
        offset += 8
        script_len, offset = read_varint(tx_bytes, offset)
        script = tx_bytes[offset : offset + script_len]
        offset += script_len
        outputs.append(TxOutput(value=value, script=script))

    if has_witness:
        for inp in inputs:
            item_count, offset = read_varint(tx_bytes, offset)
            for _ in range(item_count):
                item_len, offset = read_varint(tx_bytes, offset)
                inp.witness.append(tx_bytes[offset : offset + item_len])
                offset += item_len

    if len(tx_bytes) != offset + 4:
        raise ValueError(f"Unexpected trailing data: {len(tx_bytes) - offset - 4} bytes")
    locktime = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]

    return Transaction(version=version, inputs=inputs, outputs=outputs, locktime=locktime)
