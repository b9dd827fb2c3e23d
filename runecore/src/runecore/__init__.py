"""
runecore - Core library for the rune swap bridge

Provides the data model, transaction, PSBT and Runestone codecs, and the
execution-layer wire format.
"""

__version__ = "0.3.0"

from runecore.constants import (
    MIN_ABSOLUTE_FEE,
    MIN_FEE_RATE,
    SIGHASH_ALL_ANYONECANPAY,
    STANDARD_DUST_LIMIT,
)
from runecore.errors import (
    BroadcastRejected,
    ErrorKind,
    ExternalServiceError,
    InputValidationError,
    InsufficientFunds,
    NoAvailableCounterAsset,
    RateLimited,
    SettlementTimeout,
    SwapError,
)
from runecore.fees import calculate_draft_fee, calculate_fee
from runecore.models import (
    AssetUtxo,
    DraftInput,
    DraftOutput,
    Edict,
    NetworkType,
    OutputRole,
    ProcessedResult,
    RuneId,
    SignerRole,
    SwapShape,
    TokenUtxo,
    TransactionDraft,
    UtxoRef,
    ValueUtxo,
    WalletType,
)
from runecore.psbt import Psbt, PsbtError
from runecore.runestone import Runestone, RunestoneError, allocate, to_minimal_units
from runecore.wire import (
    AccountMeta,
    AssetSwapPayload,
    Instruction,
    Message,
    SettlementEnvelope,
    TokenSwapPayload,
)

__all__ = [
    "AccountMeta",
    "AssetSwapPayload",
    "AssetUtxo",
    "BroadcastRejected",
    "DraftInput",
    "DraftOutput",
    "Edict",
    "ErrorKind",
    "ExternalServiceError",
    "InputValidationError",
    "Instruction",
    "InsufficientFunds",
    "MIN_ABSOLUTE_FEE",
    "MIN_FEE_RATE",
    "Message",
    "NetworkType",
    "NoAvailableCounterAsset",
    "OutputRole",
    "ProcessedResult",
    "Psbt",
    "PsbtError",
    "RateLimited",
    "RuneId",
    "Runestone",
    "RunestoneError",
    "SIGHASH_ALL_ANYONECANPAY",
    "STANDARD_DUST_LIMIT",
    "SettlementEnvelope",
    "SettlementTimeout",
    "SignerRole",
    "SwapError",
    "SwapShape",
    "TokenSwapPayload",
    "TokenUtxo",
    "TransactionDraft",
    "UtxoRef",
    "ValueUtxo",
    "WalletType",
    "allocate",
    "calculate_draft_fee",
    "calculate_fee",
    "to_minimal_units",
]
