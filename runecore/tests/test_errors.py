"""
Tests for the error taxonomy.
"""

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


class TestErrorKinds:
    def test_every_error_has_a_stable_kind(self):
        assert InputValidationError("x").kind == ErrorKind.INPUT_VALIDATION
        assert InsufficientFunds("payment").kind == ErrorKind.INSUFFICIENT_FUNDS
        assert NoAvailableCounterAsset("x").kind == ErrorKind.NO_AVAILABLE_COUNTER_ASSET
        assert RateLimited("x").kind == ErrorKind.RATE_LIMITED
        assert ExternalServiceError("x").kind == ErrorKind.EXTERNAL_SERVICE
        assert BroadcastRejected("x").kind == ErrorKind.BROADCAST_REJECTED
        assert SettlementTimeout("x").kind == ErrorKind.SETTLEMENT_TIMEOUT

    def test_all_are_swap_errors(self):
        for cls in (InputValidationError, RateLimited, SettlementTimeout):
            assert issubclass(cls, SwapError)

    def test_retryable_defaults(self):
        assert RateLimited("x").retryable
        assert NoAvailableCounterAsset("x").retryable
        assert not ExternalServiceError("x").retryable
        assert BroadcastRejected("x", retryable=True).retryable


class TestToDict:
    def test_basic(self):
        assert InputValidationError("bad amount").to_dict() == {
            "kind": "input_validation",
            "message": "bad amount",
            "retryable": False,
        }

    def test_insufficient_funds_names_asset_class(self):
        error = InsufficientFunds("payment")
        assert "payment" in error.message
        assert error.to_dict()["asset_class"] == "payment"

    def test_with_context(self):
        error = ExternalServiceError("boom")
        returned = error.with_context("legs [1] already submitted", submitted_legs=[1])
        assert returned is error
        assert str(error) == "boom (legs [1] already submitted)"
        assert error.to_dict()["details"] == {"submitted_legs": [1]}
