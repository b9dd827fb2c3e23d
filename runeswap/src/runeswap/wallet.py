"""
Caller wallet description and the scripts derived from it.

UNISAT wallets use one taproot key for payments and assets and exchange
drafts as hex. XVERSE wallets pay from a P2WPKH key, hold assets on a
separate taproot key, and exchange drafts as base64.
"""

from __future__ import annotations

from functools import cached_property

from pydantic import BaseModel, Field, ValidationError, field_validator

from runecore.address import pubkey_to_p2tr_script, pubkey_to_p2wpkh_script
from runecore.crypto import CryptoError, parse_pubkey, to_xonly
from runecore.errors import InputValidationError
from runecore.models import WalletType
from runecore.psbt import Psbt, PsbtError


class WalletInfo(BaseModel):
    model_config = {"frozen": True}

    wallet_type: WalletType
    payment_address: str = Field(..., min_length=1)
    payment_pubkey: str
    ordinals_address: str = Field(..., min_length=1)
    ordinals_pubkey: str

    @field_validator("payment_pubkey", "ordinals_pubkey")
    @classmethod
    def validate_pubkey(cls, v: str) -> str:
        try:
            parse_pubkey(v)
        except CryptoError as e:
            raise ValueError(str(e)) from e
        return v.lower()

    @classmethod
    def parse(cls, **fields: object) -> WalletInfo:
        """Build from caller input, reporting problems as InputValidationError."""
        try:
            return cls.model_validate(fields)
        except ValidationError as e:
            raise InputValidationError(f"Invalid wallet info: {e}") from e

    @cached_property
    def payment_script(self) -> bytes:
        pubkey = bytes.fromhex(self.payment_pubkey)
        if self.wallet_type == WalletType.XVERSE:
            if len(pubkey) != 33:
                raise InputValidationError("Xverse payment pubkey must be compressed (33 bytes)")
            return pubkey_to_p2wpkh_script(pubkey)
        return pubkey_to_p2tr_script(pubkey)

    @cached_property
    def payment_internal_key(self) -> bytes | None:
        """Taproot internal key of payment inputs, None for P2WPKH."""
        if self.wallet_type == WalletType.XVERSE:
            return None
        return to_xonly(bytes.fromhex(self.payment_pubkey))

    @cached_property
    def ordinals_internal_key(self) -> bytes:
        if self.wallet_type == WalletType.UNISAT:
            return to_xonly(bytes.fromhex(self.payment_pubkey))
        return to_xonly(bytes.fromhex(self.ordinals_pubkey))

    @cached_property
    def ordinals_script(self) -> bytes:
        return pubkey_to_p2tr_script(self.ordinals_internal_key)


def decode_draft(signed_draft: str, wallet_type: WalletType) -> Psbt:
    try:
        if wallet_type == WalletType.XVERSE:
            return Psbt.from_base64(signed_draft)
        return Psbt.from_hex(signed_draft)
    except PsbtError as e:
        raise InputValidationError(f"Signed draft is not a valid PSBT: {e}") from e
