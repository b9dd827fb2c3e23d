"""
Bitcoin, Runes and swap protocol constants.
"""

from __future__ import annotations

# Standard P2PKH dust limit in Bitcoin Core.
# Every anchor output that carries a token or asset is created at exactly this value.
STANDARD_DUST_LIMIT = 546  # satoshis

# Static vbyte model used for fee estimation:
# fee = round((BASE + inputs*INPUT + outputs*OUTPUT + change*OUTPUT) * rate * MARGIN)
# This is a conservative model, not a precise weight calculation.
TX_BASE_VSIZE = 10
TX_INPUT_VSIZE = 180
TX_OUTPUT_VSIZE = 34
FEE_MARGIN = 1.5

# Fee rate floor in sat/vB, also used when the oracle is unreachable
MIN_FEE_RATE = 5

# Absolute fee floor for any draft transaction
MIN_ABSOLUTE_FEE = 200  # satoshis

# Payment UTXOs at or below this value are not used to fund drafts
MIN_PAYMENT_UTXO_VALUE = 10_000  # satoshis

# Signature scope for every draft input: each input commits to all outputs
# but lets the other party add inputs after signing.
SIGHASH_ALL = 0x01
SIGHASH_ANYONECANPAY = 0x80
SIGHASH_ALL_ANYONECANPAY = SIGHASH_ALL | SIGHASH_ANYONECANPAY

# Runestone output script: OP_RETURN OP_13 <data pushes>
OP_RETURN = 0x6A
OP_13 = 0x5D
MAX_SCRIPT_ELEMENT_SIZE = 520

# Execution layer instruction discriminants
DISCRIMINANT_ASSET_SWAP = 0
DISCRIMINANT_TOKEN_SWAP = 1
DISCRIMINANT_BASKET_SWAP = 2

# Execution layer envelope version
ENVELOPE_VERSION = 2
