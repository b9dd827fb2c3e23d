"""
Bitcoin address and output script utilities.

Segwit v0 addresses use bech32 (BIP173), taproot and later versions use
bech32m (BIP350). Legacy base58check addresses are decoded for completeness.
"""

from __future__ import annotations

import base58
import bech32

from runecore.crypto import hash160, taproot_tweak_pubkey
from runecore.models import NetworkType

HRP_BY_NETWORK = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

# base58check version byte -> script template
P2PKH_VERSIONS = {0x00, 0x6F}
P2SH_VERSIONS = {0x05, 0xC4}


def hrp_for_network(network: NetworkType | str) -> str:
    return HRP_BY_NETWORK[NetworkType(network)]


def address_hrp(address: str) -> str:
    """Human-readable part of a segwit address, taken from its prefix."""
    lowered = address.lower()
    if lowered.startswith("bcrt1"):
        return "bcrt"
    if lowered.startswith(("bc1", "tb1")):
        return lowered[:2]
    raise ValueError(f"Not a segwit address: {address}")


def encode_segwit_address(hrp: str, witver: int, witprog: bytes) -> str:
    address = bech32.encode(hrp, witver, witprog)
    if address is None:
        raise ValueError(f"Cannot encode witness v{witver} program of {len(witprog)} bytes")
    return address


def decode_segwit_address(address: str, expected_hrp: str | None = None) -> tuple[int, bytes]:
    """
    Decode a segwit address.

    The checksum variant must match the witness version: bech32 for v0,
    bech32m for everything later.

    Returns:
        (witness version, witness program)
    """
    hrp = address_hrp(address)
    if expected_hrp is not None and hrp != expected_hrp:
        raise ValueError(f"Address HRP {hrp!r} does not match network HRP {expected_hrp!r}")
    witver, witprog = bech32.decode(hrp, address)
    if witver is None or witprog is None:
        raise ValueError(f"Invalid segwit address: {address}")
    return witver, bytes(witprog)


def witness_script(witver: int, witprog: bytes) -> bytes:
    """OP_n <program>"""
    opcode = 0x00 if witver == 0 else 0x50 + witver
    return bytes([opcode, len(witprog)]) + witprog


def address_to_scriptpubkey(address: str) -> bytes:
    """
    Convert a Bitcoin address to its scriptPubKey.

    Supports:
    - P2WPKH / P2WSH (bech32)
    - P2TR and later witness versions (bech32m)
    - P2PKH / P2SH (base58check)
    """
    if address.lower().startswith(("bc1", "tb1", "bcrt1")):
        witver, witprog = decode_segwit_address(address)
        return witness_script(witver, witprog)

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid address: {address}") from e
    if len(decoded) != 21:
        raise ValueError(f"Invalid base58 address payload length: {len(decoded)}")
    version, payload = decoded[0], decoded[1:]
    if version in P2PKH_VERSIONS:
        # OP_DUP OP_HASH160 <20> <hash> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version in P2SH_VERSIONS:
        # OP_HASH160 <20> <hash> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])
    raise ValueError(f"Unknown base58 address version: {version}")


def scriptpubkey_to_address(script: bytes, network: NetworkType | str) -> str:
    """Render a segwit scriptPubKey as an address."""
    if len(script) < 4 or script[1] != len(script) - 2:
        raise ValueError(f"Not a witness script: {script.hex()}")
    if script[0] == 0x00:
        witver = 0
    elif 0x51 <= script[0] <= 0x60:
        witver = script[0] - 0x50
    else:
        raise ValueError(f"Not a witness script: {script.hex()}")
    return encode_segwit_address(hrp_for_network(network), witver, script[2:])


def pubkey_to_p2wpkh_script(pubkey: bytes) -> bytes:
    """Create P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    return bytes([0x00, 0x14]) + hash160(pubkey)


def pubkey_to_p2tr_script(internal_key: bytes) -> bytes:
    """Create key-path-only P2TR scriptPubKey (OP_1 <32-byte output key>)"""
    return bytes([0x51, 0x20]) + taproot_tweak_pubkey(internal_key)


def pubkey_to_p2wpkh_address(pubkey: bytes, network: NetworkType | str = "mainnet") -> str:
    return encode_segwit_address(hrp_for_network(network), 0, hash160(pubkey))


def pubkey_to_p2tr_address(internal_key: bytes, network: NetworkType | str = "mainnet") -> str:
    return encode_segwit_address(hrp_for_network(network), 1, taproot_tweak_pubkey(internal_key))


def is_p2tr_script(script: bytes) -> bool:
    return len(script) == 34 and script[0] == 0x51 and script[1] == 0x20


def is_p2wpkh_script(script: bytes) -> bool:
    return len(script) == 22 and script[0] == 0x00 and script[1] == 0x14

