"""
Fee rate lookup and draft fee computation.
"""

from __future__ import annotations

from loguru import logger

from runecore.constants import MIN_ABSOLUTE_FEE, MIN_FEE_RATE
from runecore.errors import ExternalServiceError
from runecore.fees import calculate_draft_fee
from runewallet.backends.base import ChainBackend


class FeeEstimator:
    """
    Reads the oracle's fastest tier, floored at min_fee_rate.

    Oracle failures fall back to the floor instead of failing the draft.
    """

    def __init__(
        self,
        oracle: ChainBackend,
        min_fee_rate: float = MIN_FEE_RATE,
        min_absolute_fee: int = MIN_ABSOLUTE_FEE,
    ):
        self.oracle = oracle
        self.min_fee_rate = min_fee_rate
        self.min_absolute_fee = min_absolute_fee

    async def get_fee_rate(self) -> float:
        try:
            rate = await self.oracle.get_recommended_fee_rate()
        except ExternalServiceError as e:
            logger.warning(f"Fee oracle unavailable, using floor {self.min_fee_rate}: {e}")
            return self.min_fee_rate
        return max(rate, self.min_fee_rate)

    def fee(self, num_inputs: int, num_outputs: int, fee_rate: float) -> int:
        """Fee for a draft with these inputs/outputs plus one change output."""
        return calculate_draft_fee(num_inputs, num_outputs, fee_rate, self.min_absolute_fee)
