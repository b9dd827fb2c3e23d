"""
Transaction and message signing: BIP-143 (P2WPKH), BIP-341 (P2TR key path)
and BIP-322 simple message signatures.
"""

from __future__ import annotations

import struct

from coincurve import PrivateKey

from runecore.constants import SIGHASH_ALL, SIGHASH_ANYONECANPAY
from runecore.crypto import hash160, sha256, sha256d, taproot_tweak_private_key, tagged_hash
from runecore.psbt import Psbt
from runecore.transaction import Transaction, TxInput, TxOutput, serialize_outpoint, varint

SIGHASH_DEFAULT = 0x00


class TransactionSigningError(Exception):
    pass


def create_p2wpkh_script_code(pubkey_bytes: bytes) -> bytes:
    """OP_DUP OP_HASH160 PUSH20 <pkh> OP_EQUALVERIFY OP_CHECKSIG"""
    return b"\x76\xa9\x14" + hash160(pubkey_bytes) + b"\x88\xac"


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int,
) -> bytes:
    """BIP-143 signature hash for SIGHASH_ALL, optionally with ANYONECANPAY."""
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")
    if sighash_type & 0x1F != SIGHASH_ALL:
        raise TransactionSigningError(f"Unsupported sighash type: {sighash_type:#x}")

    anyonecanpay = bool(sighash_type & SIGHASH_ANYONECANPAY)
    if anyonecanpay:
        hash_prevouts = bytes(32)
        hash_sequence = bytes(32)
    else:
        hash_prevouts = sha256d(b"".join(serialize_outpoint(i.txid, i.vout) for i in tx.inputs))
        hash_sequence = sha256d(b"".join(struct.pack("<I", i.sequence) for i in tx.inputs))
    hash_outputs = sha256d(b"".join(out.serialize() for out in tx.outputs))

    target = tx.inputs[input_index]
    preimage = (
        struct.pack("<I", tx.version)
        + hash_prevouts
        + hash_sequence
        + serialize_outpoint(target.txid, target.vout)
        + varint(len(script_code))
        + script_code
        + struct.pack("<Q", value)
        + struct.pack("<I", target.sequence)
        + hash_outputs
        + struct.pack("<I", tx.locktime)
        + struct.pack("<I", sighash_type)
    )
    return sha256d(preimage)


def compute_sighash_taproot(
    tx: Transaction,
    input_index: int,
    prevouts: list[TxOutput],
    sighash_type: int = SIGHASH_DEFAULT,
) -> bytes:
    """
    BIP-341 key-path signature hash.

    Supports SIGHASH_DEFAULT, SIGHASH_ALL and SIGHASH_ALL|ANYONECANPAY.
    With ANYONECANPAY only the signed input's prevout needs to be known.
    """
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")
    if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL, SIGHASH_ALL | SIGHASH_ANYONECANPAY):
        raise TransactionSigningError(f"Unsupported sighash type: {sighash_type:#x}")
    anyonecanpay = bool(sighash_type & SIGHASH_ANYONECANPAY)
    if not anyonecanpay and len(prevouts) != len(tx.inputs):
        raise TransactionSigningError("Every prevout is required without ANYONECANPAY")

    msg = bytes([0x00, sighash_type])
    msg += struct.pack("<I", tx.version) + struct.pack("<I", tx.locktime)
    if not anyonecanpay:
        msg += sha256(b"".join(serialize_outpoint(i.txid, i.vout) for i in tx.inputs))
        msg += sha256(b"".join(struct.pack("<Q", p.value) for p in prevouts))
        msg += sha256(b"".join(varint(len(p.script)) + p.script for p in prevouts))
        msg += sha256(b"".join(struct.pack("<I", i.sequence) for i in tx.inputs))
    msg += sha256(b"".join(out.serialize() for out in tx.outputs))
    # spend type: key path, no annex
    msg += bytes([0x00])
    if anyonecanpay:
        target = tx.inputs[input_index]
        prevout = prevouts[0] if len(prevouts) == 1 else prevouts[input_index]
        msg += serialize_outpoint(target.txid, target.vout)
        msg += struct.pack("<Q", prevout.value)
        msg += varint(len(prevout.script)) + prevout.script
        msg += struct.pack("<I", target.sequence)
    else:
        msg += struct.pack("<I", input_index)
    return tagged_hash("TapSighash", msg)


def sign_taproot_keypath(
    sighash: bytes, private_key: PrivateKey, sighash_type: int = SIGHASH_DEFAULT
) -> bytes:
    """Schnorr-sign a sighash with the tweaked key. Deterministic nonce."""
    tweaked = taproot_tweak_private_key(private_key)
    signature = tweaked.sign_schnorr(sighash, aux_randomness=None)
    if sighash_type != SIGHASH_DEFAULT:
        signature += bytes([sighash_type])
    return signature


def sign_psbt_input(psbt: Psbt, input_index: int, private_key: PrivateKey) -> None:
    """
    Sign one PSBT input in place, using the sighash type recorded on it.

    P2TR inputs get a key-path signature, P2WPKH inputs a partial signature.
    """
    psbt_in = psbt.inputs[input_index]
    if psbt_in.witness_utxo is None:
        raise TransactionSigningError(f"Input {input_index} has no witness UTXO")
    sighash_type = psbt_in.sighash_type if psbt_in.sighash_type is not None else SIGHASH_ALL
    script = psbt_in.witness_utxo.script

    if script[:2] == b"\x51\x20":
        if sighash_type & SIGHASH_ANYONECANPAY:
            prevouts = [psbt_in.witness_utxo]
        else:
            prevouts = []
            for n, other in enumerate(psbt.inputs):
                if other.witness_utxo is None:
                    raise TransactionSigningError(f"Input {n} has no witness UTXO")
                prevouts.append(other.witness_utxo)
        sighash = compute_sighash_taproot(psbt.tx, input_index, prevouts, sighash_type)
        psbt_in.tap_key_sig = sign_taproot_keypath(sighash, private_key, sighash_type)
    elif script[:2] == b"\x00\x14":
        pubkey = private_key.public_key.format(compressed=True)
        if hash160(pubkey) != script[2:]:
            raise TransactionSigningError(f"Key does not match input {input_index}")
        sighash = compute_sighash_segwit(
            psbt.tx,
            input_index,
            create_p2wpkh_script_code(pubkey),
            psbt_in.witness_utxo.value,
            sighash_type,
        )
        signature = private_key.sign(sighash, hasher=None)
        psbt_in.partial_sigs[pubkey] = signature + bytes([sighash_type])
    else:
        raise TransactionSigningError(f"Unsupported script for input {input_index}")


def bip322_message_hash(message: bytes) -> bytes:
    return tagged_hash("BIP0322-signed-message", message)


def bip322_sighash_taproot(message: bytes, script: bytes) -> bytes:
    """
    Digest a BIP-322 "simple" signature commits to for a P2TR key-path address.

    Builds the virtual to_spend/to_sign pair; input 0 of to_sign is signed
    with SIGHASH_ALL.
    """
    to_spend = Transaction(
        version=0,
        inputs=[
            TxInput(
                txid="00" * 32,
                vout=0xFFFFFFFF,
                script_sig=b"\x00\x20" + bip322_message_hash(message),
                sequence=0,
            )
        ],
        outputs=[TxOutput(value=0, script=script)],
    )
    to_sign = Transaction(
        version=0,
        inputs=[TxInput(txid=to_spend.txid, vout=0, sequence=0)],
        outputs=[TxOutput(value=0, script=b"\x6a")],
    )
    return compute_sighash_taproot(to_sign, 0, [TxOutput(value=0, script=script)], SIGHASH_ALL)


def bip322_sign_taproot(private_key: PrivateKey, message: bytes, script: bytes) -> bytes:
    """Returns the bare 64-byte Schnorr signature, without the sighash byte."""
    sighash = bip322_sighash_taproot(message, script)
    return sign_taproot_keypath(sighash, private_key, SIGHASH_ALL)[:64]
