"""
Flash-loan arbitrage pipeline.

Detects price discrepancies across DEX venues (two-venue round trips,
three-hop cycles and cross-chain spreads), filters them against adaptive
thresholds and hard safety bounds, and submits atomic flash-loan bundles
to a private relay under a circuit breaker and cooldown.
"""

PROJECT_NAME = "flashloan-arbitrage"

from flashloan_arbitrage.version import __version__

VERSION = __version__

from flashloan_arbitrage.bundle import BundleBuilder, BundleSubmitter
from flashloan_arbitrage.orchestrator import Orchestrator
from flashloan_arbitrage.parameter_validator import (
    ExecutionParameters,
    ParameterValidator,
)
from flashloan_arbitrage.risk_governor import RiskGovernor
from flashloan_arbitrage.scanner import OpportunityScanner
from flashloan_arbitrage.threshold_optimizer import ThresholdOptimizer
from flashloan_arbitrage.types import Opportunity, OpportunityKind, ThresholdSet

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BundleBuilder",
    "BundleSubmitter",
    "ExecutionParameters",
    "Opportunity",
    "OpportunityKind",
    "Orchestrator",
    "OpportunityScanner",
    "ParameterValidator",
    "RiskGovernor",
    "ThresholdOptimizer",
    "ThresholdSet",
]
