"""
Exception hierarchy for the flash-loan arbitrage pipeline.

Each pipeline failure category has its own type so callers can decide
whether to retry, skip, abandon or halt execution.
"""

from typing import Any, Dict, Optional, Sequence


class FlashArbitrageError(Exception):
    """Base exception for all flash-loan arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(FlashArbitrageError):
    """Raised when configuration cannot be loaded or fails schema validation."""

    pass


class ValidationError(FlashArbitrageError):
    """Raised when a parameter is outside safety bounds and cannot be clamped."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value


class NetworkError(FlashArbitrageError):
    """Raised when an RPC endpoint or relay is unreachable or times out."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class QuoteUnavailable(FlashArbitrageError):
    """Raised when a venue has no liquidity for a path or the quote reverts."""

    def __init__(
        self,
        message: str,
        venue: Optional[str] = None,
        path: Optional[Sequence[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.venue = venue
        self.path = tuple(path) if path else ()


class SimulationFailedError(FlashArbitrageError):
    """Raised when a bundle simulation reports a revert."""

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.reason = reason


class SubmissionError(FlashArbitrageError):
    """Raised when the relay rejects or fails to accept a bundle."""

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.reason = reason


class BreakerTrippedError(FlashArbitrageError):
    """Raised when execution is requested while the circuit breaker is tripped."""

    def __init__(
        self,
        message: str,
        cumulative_loss: Optional[Any] = None,
        threshold: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.cumulative_loss = cumulative_loss
        self.threshold = threshold
