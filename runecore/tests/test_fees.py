"""
Tests for the static fee model.
"""

import pytest

from runecore.constants import MIN_ABSOLUTE_FEE
from runecore.fees import calculate_draft_fee, calculate_fee, estimate_vsize


class TestEstimateVsize:
    def test_with_change(self):
        assert estimate_vsize(2, 3) == 10 + 2 * 180 + 3 * 34 + 34

    def test_without_change(self):
        assert estimate_vsize(2, 3, include_change=False) == 10 + 2 * 180 + 3 * 34


class TestCalculateFee:
    def test_two_in_three_out_rate_five(self):
        # (10 + 360 + 102 + 34) * 5 * 1.5
        assert calculate_fee(2, 3, 5, include_change=True) == 3795

    def test_rounds_half_up(self):
        # 10 * 0.3 * 1.5 = 4.5
        assert calculate_fee(0, 0, 0.3, include_change=False) == 5

    def test_fractional_rate(self):
        assert calculate_fee(1, 1, 1.1) == 426

    def test_zero_rate(self):
        assert calculate_fee(3, 3, 0) == 0

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError):
            calculate_fee(-1, 2, 5)

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            calculate_fee(1, 2, -5)

    @pytest.mark.parametrize("rate", [1, 2.5, 5, 20])
    def test_monotonic_in_inputs_and_outputs(self, rate):
        for n in range(0, 8):
            assert calculate_fee(n + 1, 3, rate) >= calculate_fee(n, 3, rate)
            assert calculate_fee(3, n + 1, rate) >= calculate_fee(3, n, rate)

    def test_monotonic_in_rate(self):
        fees = [calculate_fee(2, 4, rate / 2) for rate in range(0, 60)]
        assert fees == sorted(fees)

    def test_change_slot_costs_one_output(self):
        assert calculate_fee(2, 3, 5, include_change=True) == calculate_fee(
            2, 4, 5, include_change=False
        )


class TestCalculateDraftFee:
    def test_floor_applies(self):
        assert calculate_draft_fee(1, 1, 0.1) == MIN_ABSOLUTE_FEE

    def test_above_floor(self):
        assert calculate_draft_fee(2, 3, 5) == 3795

    def test_custom_floor(self):
        assert calculate_draft_fee(1, 1, 0.1, min_fee=1000) == 1000
