"""
Execution-layer wire format.

Instruction payloads are fixed-order binary structs (Borsh layout):
strings are a u32 LE byte length followed by UTF-8, vectors are a u32 LE
item count followed by the items, integers are fixed-width little endian.
Every payload is prefixed by a one-byte operation discriminant.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any

from runecore.constants import (
    DISCRIMINANT_ASSET_SWAP,
    DISCRIMINANT_BASKET_SWAP,
    DISCRIMINANT_TOKEN_SWAP,
    ENVELOPE_VERSION,
)


class WireFormatError(ValueError):
    pass


class BinaryWriter:
    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, value: int) -> BinaryWriter:
        self._buf += struct.pack("<B", value)
        return self

    def u32(self, value: int) -> BinaryWriter:
        if value < 0 or value > 0xFFFFFFFF:
            raise WireFormatError(f"u32 out of range: {value}")
        self._buf += struct.pack("<I", value)
        return self

    def raw(self, data: bytes) -> BinaryWriter:
        self._buf += data
        return self

    def blob(self, data: bytes) -> BinaryWriter:
        return self.u32(len(data)).raw(data)

    def string(self, value: str) -> BinaryWriter:
        return self.blob(value.encode("utf-8"))

    def string_vec(self, values: list[str]) -> BinaryWriter:
        self.u32(len(values))
        for value in values:
            self.string(value)
        return self

    def u32_vec(self, values: list[int]) -> BinaryWriter:
        self.u32(len(values))
        for value in values:
            self.u32(value)
        return self

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class BinaryReader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def _take(self, size: int) -> bytes:
        if self._pos + size > len(self._data):
            raise WireFormatError("Unexpected end of payload")
        chunk = self._data[self._pos : self._pos + size]
        self._pos += size
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def blob(self) -> bytes:
        return self._take(self.u32())

    def string(self) -> str:
        try:
            return self.blob().decode("utf-8")
        except UnicodeDecodeError as e:
            raise WireFormatError(f"Invalid UTF-8 string: {e}") from e

    def string_vec(self) -> list[str]:
        return [self.string() for _ in range(self.u32())]

    def u32_vec(self) -> list[int]:
        return [self.u32() for _ in range(self.u32())]

    def finish(self) -> None:
        if self._pos != len(self._data):
            raise WireFormatError(f"{len(self._data) - self._pos} trailing bytes in payload")


@dataclass
class AssetSwapPayload:
    """The escrow releases one asset UTXO into the user's transaction."""

    asset_txid: str
    asset_vout: int
    user_tx: bytes
    discriminant: int = DISCRIMINANT_ASSET_SWAP

    def serialize(self) -> bytes:
        return (
            BinaryWriter()
            .u8(self.discriminant)
            .string(self.asset_txid)
            .u32(self.asset_vout)
            .blob(self.user_tx)
            .getvalue()
        )


@dataclass
class TokenSwapPayload:
    """The escrow releases a set of token UTXOs into the user's transaction."""

    token_txids: list[str]
    token_vouts: list[int]
    user_tx: bytes
    discriminant: int = DISCRIMINANT_TOKEN_SWAP

    def __post_init__(self) -> None:
        if len(self.token_txids) != len(self.token_vouts):
            raise WireFormatError("token_txids and token_vouts differ in length")

    def serialize(self) -> bytes:
        return (
            BinaryWriter()
            .u8(self.discriminant)
            .string_vec(self.token_txids)
            .u32_vec(self.token_vouts)
            .blob(self.user_tx)
            .getvalue()
        )


def decode_payload(data: bytes) -> AssetSwapPayload | TokenSwapPayload:
    reader = BinaryReader(data)
    discriminant = reader.u8()
    payload: AssetSwapPayload | TokenSwapPayload
    if discriminant == DISCRIMINANT_ASSET_SWAP:
        payload = AssetSwapPayload(
            asset_txid=reader.string(), asset_vout=reader.u32(), user_tx=reader.blob()
        )
    elif discriminant in (DISCRIMINANT_TOKEN_SWAP, DISCRIMINANT_BASKET_SWAP):
        payload = TokenSwapPayload(
            token_txids=reader.string_vec(),
            token_vouts=reader.u32_vec(),
            user_tx=reader.blob(),
            discriminant=discriminant,
        )
    else:
        raise WireFormatError(f"Unknown instruction discriminant: {discriminant}")
    reader.finish()
    return payload


@dataclass(frozen=True)
class AccountMeta:
    pubkey: bytes
    is_signer: bool = True
    is_writable: bool = True

    def serialize(self) -> bytes:
        return self.pubkey + bytes([int(self.is_signer), int(self.is_writable)])

    def to_json(self) -> dict[str, Any]:
        return {
            "pubkey": list(self.pubkey),
            "is_signer": self.is_signer,
            "is_writable": self.is_writable,
        }


@dataclass
class Instruction:
    program_id: bytes
    accounts: list[AccountMeta]
    data: bytes

    def serialize(self) -> bytes:
        result = self.program_id + bytes([len(self.accounts)])
        for account in self.accounts:
            result += account.serialize()
        return result + struct.pack("<Q", len(self.data)) + self.data

    def to_json(self) -> dict[str, Any]:
        return {
            "program_id": list(self.program_id),
            "accounts": [a.to_json() for a in self.accounts],
            "data": list(self.data),
        }


@dataclass
class Message:
    signers: list[bytes]
    instructions: list[Instruction]

    def serialize(self) -> bytes:
        result = bytes([len(self.signers)]) + b"".join(self.signers)
        result += bytes([len(self.instructions)])
        for instruction in self.instructions:
            result += instruction.serialize()
        return result

    def hash(self) -> bytes:
        """sha256 over the hex digest of sha256(serialized message)."""
        first = hashlib.sha256(self.serialize()).hexdigest()
        return hashlib.sha256(first.encode("ascii")).digest()


@dataclass
class SettlementEnvelope:
    message: Message
    signatures: list[bytes] = field(default_factory=list)
    version: int = ENVELOPE_VERSION

    @property
    def signer_pubkeys(self) -> list[bytes]:
        return self.message.signers

    @property
    def instructions(self) -> list[Instruction]:
        return self.message.instructions

    def to_json(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "signatures": [list(sig) for sig in self.signatures],
            "message": {
                "signers": [list(pk) for pk in self.message.signers],
                "instructions": [i.to_json() for i in self.message.instructions],
            },
        }
