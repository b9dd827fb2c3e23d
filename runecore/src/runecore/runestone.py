"""
Runestone encoding.

A Runestone is an OP_RETURN output carrying rune transfer instructions:

    OP_RETURN OP_13 <payload pushes>

The payload is a sequence of LEB128 integers. Two fields are produced
here. An optional pointer (tag 22) names the output that receives runes
no edict allocates. The body (tag 0) comes last: after the tag, each
edict is four integers (block delta, tx delta, amount, output), sorted
by rune id and delta-encoded against the previous edict.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from runecore.constants import MAX_SCRIPT_ELEMENT_SIZE, OP_13, OP_RETURN
from runecore.models import Edict, RuneId

TAG_BODY = 0
TAG_POINTER = 22
MAX_U128 = (1 << 128) - 1

OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D


class RunestoneError(ValueError):
    pass


def encode_leb128(n: int) -> bytes:
    if n < 0 or n > MAX_U128:
        raise RunestoneError(f"Value out of u128 range: {n}")
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_leb128(data: bytes, offset: int) -> tuple[int, int]:
    """Decode one LEB128 integer. Returns (value, new offset)."""
    n = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise RunestoneError("Truncated LEB128 integer")
        byte = data[offset]
        offset += 1
        n |= (byte & 0x7F) << shift
        if n > MAX_U128:
            raise RunestoneError("LEB128 integer overflows u128")
        if not byte & 0x80:
            return n, offset
        shift += 7


def to_minimal_units(amount: Decimal | int | str, divisibility: int) -> int:
    """Scale a display amount to minimal units, flooring any fraction."""
    if divisibility < 0 or divisibility > 38:
        raise RunestoneError(f"Invalid divisibility: {divisibility}")
    try:
        scaled = Decimal(str(amount)).scaleb(divisibility)
    except InvalidOperation as e:
        raise RunestoneError(f"Invalid amount: {amount!r}") from e
    if scaled < 0:
        raise RunestoneError(f"Negative amount: {amount}")
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def to_display_units(amount: int, divisibility: int) -> Decimal:
    return Decimal(amount).scaleb(-divisibility)


def allocate(amount: Decimal | int | str, weight: Decimal | float | str, divisibility: int) -> int:
    """Weighted share of a display amount, in minimal units, floored."""
    share = Decimal(str(amount)) * Decimal(str(weight))
    return to_minimal_units(share, divisibility)


def _push_data(chunk: bytes) -> bytes:
    if len(chunk) <= 75:
        return bytes([len(chunk)]) + chunk
    if len(chunk) <= 0xFF:
        return bytes([OP_PUSHDATA1, len(chunk)]) + chunk
    return bytes([OP_PUSHDATA2]) + len(chunk).to_bytes(2, "little") + chunk


@dataclass
class Runestone:
    edicts: list[Edict] = field(default_factory=list)
    pointer: int | None = None

    def add_edict(self, token_id: RuneId | str, amount: int, output: int) -> Edict:
        if isinstance(token_id, str):
            token_id = RuneId.parse(token_id)
        # amount 0 means "all remaining" to indexers
        if amount <= 0:
            raise RunestoneError(f"Edict amount must be positive, got {amount}")
        if output < 0:
            raise RunestoneError(f"Invalid edict output: {output}")
        edict = Edict(token_id=token_id, amount=amount, output=output)
        self.edicts.append(edict)
        return edict

    def totals(self) -> dict[RuneId, int]:
        """Sum of edict amounts per rune."""
        totals: dict[RuneId, int] = defaultdict(int)
        for edict in self.edicts:
            totals[edict.token_id] += edict.amount
        return dict(totals)

    def validate(self, num_outputs: int) -> None:
        if self.pointer is not None and not 0 <= self.pointer < num_outputs:
            raise RunestoneError(f"Pointer {self.pointer} out of range for {num_outputs} outputs")
        for edict in self.edicts:
            if edict.amount <= 0:
                raise RunestoneError(f"Edict amount must be positive: {edict}")
            if edict.output >= num_outputs:
                raise RunestoneError(
                    f"Edict output {edict.output} out of range for {num_outputs} outputs"
                )

    def encipher(self) -> bytes:
        payload = bytearray()
        if self.pointer is not None:
            payload += encode_leb128(TAG_POINTER) + encode_leb128(self.pointer)
        payload += encode_leb128(TAG_BODY)
        previous = RuneId(0, 0)
        for edict in sorted(self.edicts, key=lambda e: e.token_id):
            block_delta = edict.token_id.block - previous.block
            tx_delta = (
                edict.token_id.tx - previous.tx if block_delta == 0 else edict.token_id.tx
            )
            for n in (block_delta, tx_delta, edict.amount, edict.output):
                payload += encode_leb128(n)
            previous = edict.token_id
        return bytes(payload)

    def script(self) -> bytes:
        payload = self.encipher()
        script = bytearray([OP_RETURN, OP_13])
        for i in range(0, len(payload), MAX_SCRIPT_ELEMENT_SIZE):
            script += _push_data(payload[i : i + MAX_SCRIPT_ELEMENT_SIZE])
        return bytes(script)

    @classmethod
    def decipher(cls, script: bytes) -> Runestone:
        """Parse a Runestone output script. Fields other than pointer and body are skipped."""
        if len(script) < 2 or script[0] != OP_RETURN or script[1] != OP_13:
            raise RunestoneError("Not a runestone script")

        payload = bytearray()
        offset = 2
        while offset < len(script):
            opcode = script[offset]
            offset += 1
            if opcode <= 75:
                size = opcode
            elif opcode == OP_PUSHDATA1:
                size = script[offset]
                offset += 1
            elif opcode == OP_PUSHDATA2:
                size = int.from_bytes(script[offset : offset + 2], "little")
                offset += 2
            else:
                raise RunestoneError(f"Unexpected opcode in runestone: {opcode:#x}")
            if offset + size > len(script):
                raise RunestoneError("Truncated runestone push")
            payload += script[offset : offset + size]
            offset += size

        integers: list[int] = []
        pos = 0
        while pos < len(payload):
            value, pos = decode_leb128(bytes(payload), pos)
            integers.append(value)

        pointer = None
        i = 0
        while i < len(integers) and integers[i] != TAG_BODY:
            if integers[i] == TAG_POINTER and i + 1 < len(integers):
                pointer = integers[i + 1]
            i += 2
        body = integers[i + 1 :]
        if len(body) % 4:
            raise RunestoneError("Trailing integers in runestone body")

        runestone = cls(pointer=pointer)
        previous = RuneId(0, 0)
        for j in range(0, len(body), 4):
            block_delta, tx_delta, amount, output = body[j : j + 4]
            if block_delta == 0:
                rune_id = RuneId(previous.block, previous.tx + tx_delta)
            else:
                rune_id = RuneId(previous.block + block_delta, tx_delta)
            runestone.edicts.append(Edict(token_id=rune_id, amount=amount, output=output))
            previous = rune_id
        return runestone
