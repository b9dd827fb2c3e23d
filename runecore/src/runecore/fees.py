"""
Static fee model for draft transactions.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from runecore.constants import (
    FEE_MARGIN,
    MIN_ABSOLUTE_FEE,
    TX_BASE_VSIZE,
    TX_INPUT_VSIZE,
    TX_OUTPUT_VSIZE,
)


def estimate_vsize(num_inputs: int, num_outputs: int, include_change: bool = True) -> int:
    """Conservative vsize estimate from input/output counts."""
    change_outputs = 1 if include_change else 0
    return (
        TX_BASE_VSIZE
        + num_inputs * TX_INPUT_VSIZE
        + (num_outputs + change_outputs) * TX_OUTPUT_VSIZE
    )


def calculate_fee(
    num_inputs: int,
    num_outputs: int,
    fee_rate: float,
    include_change: bool = True,
) -> int:
    """
    Calculate a transaction fee from input/output counts.

    fee = round(vsize * fee_rate * FEE_MARGIN), rounding halves up.

    Args:
        num_inputs: Number of inputs, including any appended by the escrow
        num_outputs: Number of outputs already planned
        fee_rate: Fee rate in sat/vB
        include_change: Reserve room for one more (change) output

    Returns:
        Fee in satoshis
    """
    if num_inputs < 0 or num_outputs < 0:
        raise ValueError("Input and output counts must be non-negative")
    if fee_rate < 0:
        raise ValueError(f"Invalid fee rate: {fee_rate}")

    vsize = estimate_vsize(num_inputs, num_outputs, include_change)
    fee = Decimal(vsize) * Decimal(str(fee_rate)) * Decimal(str(FEE_MARGIN))
    return int(fee.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_draft_fee(
    num_inputs: int,
    num_outputs: int,
    fee_rate: float,
    min_fee: int = MIN_ABSOLUTE_FEE,
) -> int:
    """Fee for a draft that still needs its change output, floored at min_fee."""
    return max(min_fee, calculate_fee(num_inputs, num_outputs, fee_rate, include_change=True))
