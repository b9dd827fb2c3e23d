"""
Hashing and key primitives: hash160, tagged hashes, BIP-341 key tweaks.
"""

from __future__ import annotations

import hashlib

from coincurve import PrivateKey, PublicKey

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class CryptoError(Exception):
    pass


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP-340 tagged hash: SHA256(SHA256(tag) || SHA256(tag) || data)"""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def parse_pubkey(pubkey: bytes | str) -> bytes:
    """Accept a compressed (33-byte) or x-only (32-byte) public key, hex or raw."""
    if isinstance(pubkey, str):
        try:
            pubkey = bytes.fromhex(pubkey)
        except ValueError as e:
            raise CryptoError(f"Public key is not valid hex: {e}") from e
    if len(pubkey) not in (32, 33):
        raise CryptoError(f"Invalid public key length: {len(pubkey)}")
    try:
        if len(pubkey) == 33:
            PublicKey(pubkey)
        else:
            PublicKey(b"\x02" + pubkey)
    except ValueError as e:
        raise CryptoError(f"Invalid public key: {e}") from e
    return pubkey


def to_xonly(pubkey: bytes) -> bytes:
    if len(pubkey) == 32:
        return pubkey
    if len(pubkey) == 33:
        return pubkey[1:]
    raise CryptoError(f"Invalid public key length: {len(pubkey)}")


def taproot_tweak_pubkey(internal_key: bytes) -> bytes:
    """
    Compute the BIP-341 key-path-only output key.

    Q = lift_x(P) + H_TapTweak(P)*G

    Args:
        internal_key: 32-byte x-only (or 33-byte compressed) internal key

    Returns:
        32-byte x-only output key
    """
    xonly = to_xonly(internal_key)
    tweak = tagged_hash("TapTweak", xonly)
    if int.from_bytes(tweak, "big") >= CURVE_ORDER:
        raise CryptoError("Taproot tweak out of range")
    try:
        output_key = PublicKey(b"\x02" + xonly).add(tweak)
    except ValueError as e:
        raise CryptoError(f"Cannot tweak internal key: {e}") from e
    return output_key.format(compressed=True)[1:]


def taproot_tweak_private_key(private_key: PrivateKey) -> PrivateKey:
    """Tweak a private key so it signs for its own key-path-only output key."""
    secret = private_key.to_int()
    compressed = private_key.public_key.format(compressed=True)
    if compressed[0] == 0x03:
        secret = CURVE_ORDER - secret
    tweak = int.from_bytes(tagged_hash("TapTweak", compressed[1:]), "big")
    tweaked = (secret + tweak) % CURVE_ORDER
    if tweaked == 0:
        raise CryptoError("Tweaked private key is zero")
    return PrivateKey.from_int(tweaked)


def xonly_pubkey(private_key: PrivateKey) -> bytes:
    return private_key.public_key.format(compressed=True)[1:]
