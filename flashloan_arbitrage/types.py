"""
Core data types for the arbitrage pipeline.

Opportunities, thresholds and bundle results are immutable records. Stages
that need to change a value produce a derived copy with dataclasses.replace.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Union


class OpportunityKind(Enum):
    """Opportunity classes produced by the scanner."""

    DUAL_VENUE = "dual_venue"
    TRIANGULAR = "triangular"
    CROSS_CHAIN = "cross_chain"


class BundleState(Enum):
    """Per-attempt bundle lifecycle states."""

    CREATED = "created"
    SIMULATED_OK = "simulated_ok"
    SIMULATED_FAILED = "simulated_failed"
    SUBMITTED = "submitted"
    RESOLVED_INCLUDED = "resolved_included"
    RESOLVED_NOT_INCLUDED = "resolved_not_included"
    RESOLVED_ERROR = "resolved_error"


class GateReason(Enum):
    """Reasons returned by the risk gate."""

    ALLOWED = "allowed"
    BREAKER_TRIPPED = "breaker_tripped"
    IN_FLIGHT = "execution_in_flight"
    COOLDOWN = "cooldown_active"


class PriceRisk(Enum):
    """Deviation tier of a quoted price from its reference."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Recommendation(Enum):
    EXECUTE = "execute"
    CAUTION = "caution"
    REJECT = "reject"


@dataclass(frozen=True)
class BridgeRoute:
    """A bridge path between two chains with its fee and transit estimate."""

    name: str
    from_chain: int
    to_chain: int
    fee: Decimal
    transit_seconds: int


@dataclass(frozen=True)
class Opportunity:
    """A scored arbitrage candidate.

    ``gross_profit``, ``gas_cost``, ``flash_loan_fee`` and ``net_profit`` are
    denominated in the input token. ``net_profit_native`` is the same net
    figure expressed in the chain's native token and drives profit buckets.
    """

    id: str
    kind: OpportunityKind
    chain_ids: Tuple[int, ...]
    path: Tuple[str, ...]
    amount_in: Decimal
    venues: Tuple[str, ...]
    gross_profit: Decimal
    gas_estimate: int
    gas_cost: Decimal
    net_profit: Decimal
    net_profit_native: Decimal
    spread_bps: float
    priority: int
    created_at: float
    flash_loan_fee: Decimal = Decimal("0")
    flash_loan_provider: Optional[str] = None
    reverse_order: bool = False
    bridge: Optional[BridgeRoute] = None
    alert_level: Optional[str] = None
    slippage_bps: float = 0.0

    @property
    def chain_id(self) -> int:
        """Chain the execution transaction is sent to."""
        return self.chain_ids[0]

    @property
    def token_in(self) -> str:
        return self.path[0]

    def sort_key(self) -> Tuple[int, Decimal, float, str]:
        """Ordering key: priority desc, net profit desc, earliest first, then id."""
        return (-self.priority, -self.net_profit_native, self.created_at, self.id)

    def with_adjusted_profit(self, slippage_bps: float) -> "Opportunity":
        """Return a copy with net profit reduced by a slippage buffer on gross profit."""
        factor = Decimal(str(slippage_bps)) / Decimal("10000")
        haircut = self.gross_profit * factor
        native_ratio = (
            self.net_profit_native / self.net_profit
            if self.net_profit != 0
            else Decimal("0")
        )
        adjusted = self.net_profit - haircut
        return replace(
            self,
            net_profit=adjusted,
            net_profit_native=adjusted * native_ratio,
            slippage_bps=slippage_bps,
        )


@dataclass(frozen=True)
class ThresholdSet:
    """Filter thresholds derived from recent market observations."""

    min_profit: Decimal
    min_spread_bps: float
    gas_buffer_multiplier: float
    slippage_buffer_bps: float


@dataclass(frozen=True)
class PriceCheck:
    """Outcome of checking one pair's quotes against its reference price."""

    chain_id: int
    token_in: str
    token_out: str
    venue: str
    price: Decimal
    reference_price: Decimal
    deviation_bps: float
    risk: PriceRisk
    manipulation_score: int
    recommendation: Recommendation
    warnings: Tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.recommendation is not Recommendation.REJECT


@dataclass(frozen=True)
class FeeData:
    """Current fee market in wei."""

    base_fee: int
    suggested_priority: int

    @property
    def fee_per_gas(self) -> int:
        return self.base_fee + self.suggested_priority


@dataclass(frozen=True)
class BlockInfo:
    gas_used: int
    gas_limit: int

    @property
    def utilization(self) -> float:
        if self.gas_limit <= 0:
            return 0.0
        return self.gas_used / self.gas_limit


@dataclass(frozen=True)
class GasSettings:
    """EIP-1559 fee caps and gas limit for an execution transaction."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    gas_limit: int


@dataclass(frozen=True)
class SimulationResult:
    ok: bool
    gas_used: int = 0
    revert_reason: Optional[str] = None


@dataclass(frozen=True)
class BundleRequest:
    """Ordered signed transactions targeting a single block."""

    opportunity_id: str
    chain_id: int
    transactions: Tuple[str, ...]
    target_block: int
    gas: GasSettings


@dataclass(frozen=True)
class SimulationFailed:
    reason: str
    outcome: str = field(default="simulation_failed", init=False)


@dataclass(frozen=True)
class Included:
    block: int
    gas_used: int
    outcome: str = field(default="included", init=False)


@dataclass(frozen=True)
class NotIncluded:
    outcome: str = field(default="not_included", init=False)


@dataclass(frozen=True)
class SubmissionFailed:
    reason: str
    outcome: str = field(default="submission_error", init=False)


@dataclass(frozen=True)
class RelayUnavailable:
    """The relay or node could not be reached; nothing is known to be broadcast."""

    reason: str
    outcome: str = field(default="relay_unavailable", init=False)


BundleResult = Union[
    SimulationFailed, Included, NotIncluded, SubmissionFailed, RelayUnavailable
]


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: GateReason
    detail: str = ""


@dataclass(frozen=True)
class RiskState:
    """Snapshot of the risk governor's state."""

    cumulative_loss: Decimal = Decimal("0")
    total_profit: Decimal = Decimal("0")
    last_execution_timestamp: Optional[float] = None
    breaker_tripped: bool = False
    in_flight: bool = False
    executions: int = 0
