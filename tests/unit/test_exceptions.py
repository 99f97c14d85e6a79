"""Tests for the exceptions module."""

from decimal import Decimal

import pytest

from flashloan_arbitrage.exceptions import (
    BreakerTrippedError,
    ConfigurationError,
    FlashArbitrageError,
    NetworkError,
    QuoteUnavailable,
    SimulationFailedError,
    SubmissionError,
    ValidationError,
)


def test_base_exception():
    """Test the base exception class."""
    error = FlashArbitrageError("Test error")
    assert str(error) == "Test error"
    assert error.details == {}

    error_with_details = FlashArbitrageError("Test error", {"key": "value"})
    assert error_with_details.details == {"key": "value"}


def test_configuration_error():
    error = ConfigurationError("Config error", {"config_file": "test.yaml"})
    assert str(error) == "Config error"
    assert error.details["config_file"] == "test.yaml"
    assert isinstance(error, FlashArbitrageError)


def test_validation_error():
    error = ValidationError("Out of range", field="min_spread_bps", value=-1)
    assert error.field == "min_spread_bps"
    assert error.value == -1
    assert isinstance(error, FlashArbitrageError)


def test_network_error():
    error = NetworkError("Timeout", endpoint="https://rpc", status_code=429)
    assert error.endpoint == "https://rpc"
    assert error.status_code == 429
    assert isinstance(error, FlashArbitrageError)


def test_quote_unavailable():
    error = QuoteUnavailable("No liquidity", venue="uniswap", path=["USDC", "WETH"])
    assert error.venue == "uniswap"
    assert error.path == ("USDC", "WETH")

    assert QuoteUnavailable("No liquidity").path == ()


def test_simulation_and_submission_errors():
    simulation = SimulationFailedError("Reverted", reason="INSUFFICIENT_OUTPUT")
    submission = SubmissionError("Rejected", reason="HTTP 400")
    assert simulation.reason == "INSUFFICIENT_OUTPUT"
    assert submission.reason == "HTTP 400"
    assert isinstance(simulation, FlashArbitrageError)
    assert isinstance(submission, FlashArbitrageError)


def test_breaker_tripped_error():
    error = BreakerTrippedError(
        "Halted", cumulative_loss=Decimal("10.1"), threshold=Decimal("10")
    )
    assert error.cumulative_loss == Decimal("10.1")
    assert error.threshold == Decimal("10")


def test_exception_hierarchy():
    """All pipeline errors can be caught through the base class."""
    for error_cls in (
        ConfigurationError,
        ValidationError,
        NetworkError,
        QuoteUnavailable,
        SimulationFailedError,
        SubmissionError,
        BreakerTrippedError,
    ):
        with pytest.raises(FlashArbitrageError):
            raise error_cls("boom")
