"""
Rolling-window threshold optimizer.

Keeps bounded windows of observed spreads and gas prices and proposes a
ThresholdSet from them. Required spread and gas buffer grow with observed
spread volatility and gas level. Proposals are not bounded here; callers
pass them through ParameterValidator.resolve_thresholds before use.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from .exceptions import ValidationError
from .parameter_validator import PARAMETER_BOUNDS, Bound
from .types import ThresholdSet
from .utils import WEI_PER_GWEI

logger = logging.getLogger(__name__)

BASE_SPREAD_BPS = 30.0
SPREAD_PER_COMPETITION_BPS = 10.0
BASE_GAS_BUFFER = 1.2
GAS_BUFFER_PER_COMPETITION = 0.1
BASE_SLIPPAGE_BPS = 100.0
SLIPPAGE_PER_COMPETITION_BPS = 50.0
MIN_PROFIT_GAS_MULTIPLE = Decimal("3")


@dataclass(frozen=True)
class ObservationStats:
    spread_count: int
    gas_count: int
    mean_spread_bps: Optional[float]
    spread_volatility_bps: float
    mean_gas_gwei: Optional[float]
    competition_level: int


class ThresholdOptimizer:
    """
    Proposes filter thresholds from recent market observations.

    Args:
        window_size: Capacity of each observation window; oldest evicted first
        reference_trade_size: Trade size (native units) used for the gas breakeven spread
        reference_gas_units: Gas units of a reference execution
        sigma_multiplier: Weight of spread volatility in the required spread
        competition_breakpoints_gwei: Ascending gas levels separating competition levels 1-4
        bounds: Bounds table supplying recommended values when no data exists
    """

    def __init__(
        self,
        window_size: int = 100,
        reference_trade_size: Decimal = Decimal("1"),
        reference_gas_units: int = 500_000,
        sigma_multiplier: float = 1.0,
        competition_breakpoints_gwei: Sequence[float] = (20.0, 50.0, 100.0),
        bounds: Optional[Mapping[str, Bound]] = None,
    ):
        self.window_size = window_size
        self.reference_trade_size = Decimal(str(reference_trade_size))
        self.reference_gas_units = reference_gas_units
        self.sigma_multiplier = sigma_multiplier
        self.competition_breakpoints_gwei = tuple(competition_breakpoints_gwei)
        self.bounds = bounds if bounds is not None else PARAMETER_BOUNDS

        self._spreads: deque = deque(maxlen=window_size)
        self._gas_prices: deque = deque(maxlen=window_size)

    def observe_spread(self, spread_bps: float) -> None:
        """Record an observed spread in basis points, keeping its sign."""
        value = float(spread_bps)
        if not math.isfinite(value):
            raise ValidationError(
                f"Spread observation must be finite: {spread_bps}",
                field="spread_bps",
                value=spread_bps,
            )
        self._spreads.append(value)

    def observe_gas_price(self, fee_per_gas_wei: int) -> None:
        """Record an observed fee per gas in wei."""
        if fee_per_gas_wei < 0:
            raise ValidationError(
                f"Gas price observation must be non-negative: {fee_per_gas_wei}",
                field="fee_per_gas",
                value=fee_per_gas_wei,
            )
        self._gas_prices.append(int(fee_per_gas_wei))

    @property
    def has_observations(self) -> bool:
        return bool(self._spreads) or bool(self._gas_prices)

    def competition_level(self, gas_gwei: float) -> int:
        """Map a gas level to competition level 1-4."""
        level = 1
        for breakpoint in self.competition_breakpoints_gwei:
            if gas_gwei >= breakpoint:
                level += 1
        return level

    def stats(self) -> ObservationStats:
        mean_spread = None
        volatility = 0.0
        if self._spreads:
            n = len(self._spreads)
            mean_spread = sum(self._spreads) / n
            if n >= 2:
                variance = sum((x - mean_spread) ** 2 for x in self._spreads) / n
                volatility = variance**0.5

        mean_gas = None
        if self._gas_prices:
            mean_gas = sum(self._gas_prices) / len(self._gas_prices) / WEI_PER_GWEI

        return ObservationStats(
            spread_count=len(self._spreads),
            gas_count=len(self._gas_prices),
            mean_spread_bps=mean_spread,
            spread_volatility_bps=volatility,
            mean_gas_gwei=mean_gas,
            competition_level=self.competition_level(mean_gas or 0.0),
        )

    def _reference_gas_cost(self, gas_gwei: float) -> Decimal:
        """Native-unit cost of the reference execution at the given gas level."""
        return (
            Decimal(self.reference_gas_units)
            * Decimal(str(gas_gwei))
            / Decimal(WEI_PER_GWEI)
        )

    def recommended(self) -> ThresholdSet:
        return ThresholdSet(
            min_profit=self.bounds["min_profit_threshold"].recommended,
            min_spread_bps=float(self.bounds["min_spread_bps"].recommended),
            gas_buffer_multiplier=float(self.bounds["gas_buffer_multiplier"].recommended),
            slippage_buffer_bps=float(self.bounds["slippage_buffer_bps"].recommended),
        )

    def propose(self) -> ThresholdSet:
        """Propose thresholds from the current observation windows."""
        if not self.has_observations:
            return self.recommended()

        stats = self.stats()
        gas_gwei = stats.mean_gas_gwei or 0.0
        level = stats.competition_level
        gas_cost = self._reference_gas_cost(gas_gwei)

        breakeven_bps = float(gas_cost / self.reference_trade_size * Decimal("10000"))
        min_spread_bps = (
            breakeven_bps
            + BASE_SPREAD_BPS
            + SPREAD_PER_COMPETITION_BPS * level
            + self.sigma_multiplier * stats.spread_volatility_bps
        )
        gas_buffer = BASE_GAS_BUFFER * (1 + GAS_BUFFER_PER_COMPETITION * level)
        slippage_buffer = BASE_SLIPPAGE_BPS + SLIPPAGE_PER_COMPETITION_BPS * level
        min_profit = gas_cost * MIN_PROFIT_GAS_MULTIPLE

        proposal = ThresholdSet(
            min_profit=min_profit,
            min_spread_bps=min_spread_bps,
            gas_buffer_multiplier=gas_buffer,
            slippage_buffer_bps=slippage_buffer,
        )
        logger.debug(
            f"THRESHOLDS_PROPOSED: {{'gas_gwei': {gas_gwei:.4f}, 'level': {level}, "
            f"'volatility_bps': {stats.spread_volatility_bps:.2f}, "
            f"'min_spread_bps': {min_spread_bps:.2f}, 'gas_buffer': {gas_buffer:.3f}}}"
        )
        return proposal
