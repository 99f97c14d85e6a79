"""
Constants for the arbitrage pipeline.

Centralizes magic numbers shared between the scanner, the optimizer and
the bundle builder.
"""

from decimal import Decimal
from enum import Enum


class TriggerSource(Enum):
    """Where a scan trigger came from."""

    TIMER = "timer"
    BLOCK = "block"


class Urgency(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


CROSS_CHAIN_KEY = "cross-chain"

# Priority scoring, fixed range [PRIORITY_MIN, PRIORITY_MAX]
PRIORITY_MIN = 0
PRIORITY_MAX = 10
PROFIT_BUCKETS = (
    (Decimal("0.1"), 5),
    (Decimal("0.05"), 3),
    (Decimal("0.01"), 1),
)
SPREAD_BUCKETS_BPS = (
    (100.0, 3),
    (50.0, 2),
    (20.0, 1),
)
PREFERRED_CHAIN_BONUS = 1
TRIANGULAR_BONUS = 1

# Gas
TRIANGULAR_GAS_FACTOR = 2
DEFAULT_GAS_LIMIT = 800_000
FALLBACK_BASE_FEE_GWEI = 1
CONGESTION_MULTIPLIERS = (
    (0.9, 1.5),
    (0.7, 1.3),
    (0.5, 1.1),
)
URGENCY_MULTIPLIERS = {
    Urgency.LOW: 1.1,
    Urgency.MEDIUM: 1.2,
    Urgency.HIGH: 1.5,
}

# Cross-chain
CRITICAL_SPREAD_BPS = 20.0

# Flash loans
BALANCER_VAULT_ADDRESS = "0xBA12222222228d8Ba445958a75a0704d566BF2C8"
AAVE_V3_POOL_ADDRESSES = {
    1: "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2",
    10: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
    137: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
    8453: "0xA238Dd80C259a72e81d7e4664a9801593F98d1c5",
    42161: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
}
BALANCER_FEE_BPS = 0.0
AAVE_V3_FEE_BPS = 5.0

# Price guard: manipulation score per deviation tier exceeded, highest tier first
DEVIATION_TIER_SCORES = (50, 30, 15, 5)
PRICE_GAP_SCORE = 25
VENUE_DIVERGENCE_SCORE = 15
REJECT_SCORE = 70
CAUTION_SCORE = 40
MAX_CAUTION_WARNINGS = 2
