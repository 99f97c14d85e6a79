"""
Quote sanity checks against independent reference prices.

Each quoted price is compared with a reference built from every venue
quoting the same pair plus the rolling mean of recently accepted prices.
The worst deviation is graded into low / medium / high / critical tiers
and scored for manipulation; a critical grade rejects the quotes. The
accepted price history also drives a per-pair slippage estimate.
"""

import logging
import math
from collections import deque
from decimal import Decimal
from typing import Deque, Dict, List, Mapping, Optional, Tuple

from .config_schema import PriceGuardConfig
from .constants import (
    CAUTION_SCORE,
    DEVIATION_TIER_SCORES,
    MAX_CAUTION_WARNINGS,
    PRICE_GAP_SCORE,
    REJECT_SCORE,
    VENUE_DIVERGENCE_SCORE,
)
from .types import PriceCheck, PriceRisk, Recommendation
from .utils import clamp

logger = logging.getLogger(__name__)

BPS = Decimal("10000")

PairKey = Tuple[int, str, str]


def _deviation_bps(price: Decimal, reference: Decimal) -> float:
    return float(abs(price - reference) / reference * BPS)


class PriceGuard:
    """
    Grades quoted prices and estimates slippage from their history.

    Args:
        config: Deviation tiers, source requirements and slippage bounds
    """

    def __init__(self, config: Optional[PriceGuardConfig] = None):
        self.config = config or PriceGuardConfig()
        self._history: Dict[PairKey, Deque[Decimal]] = {}

    def reference_price(self, chain_id: int, token_in: str, token_out: str) -> Optional[Decimal]:
        """Mean of recently accepted prices for the pair, if any."""
        history = self._history.get((chain_id, token_in, token_out))
        if not history:
            return None
        return sum(history, Decimal("0")) / len(history)

    def _risk(self, deviation_bps: float) -> PriceRisk:
        low, medium, high, _ = self.config.deviation_tiers_bps
        if deviation_bps < low:
            return PriceRisk.LOW
        if deviation_bps < medium:
            return PriceRisk.MEDIUM
        if deviation_bps < high:
            return PriceRisk.HIGH
        return PriceRisk.CRITICAL

    def _deviation_score(self, deviation_bps: float) -> int:
        tiers = reversed(self.config.deviation_tiers_bps)
        for tier, points in zip(tiers, DEVIATION_TIER_SCORES):
            if deviation_bps > tier:
                return points
        return 0

    def check(
        self,
        chain_id: int,
        token_in: str,
        token_out: str,
        quotes: Mapping[str, Decimal],
    ) -> PriceCheck:
        """
        Grade the venue quotes for one pair.

        Args:
            chain_id: Chain the quotes were taken on
            token_in: Input token symbol
            token_out: Output token symbol
            quotes: Units of ``token_out`` per ``token_in``, by venue

        Returns:
            PriceCheck for the quote deviating most from the reference
        """
        prices = {venue: price for venue, price in quotes.items() if price > 0}
        if not prices:
            raise ValueError(f"No positive quotes for {token_in}/{token_out} on chain {chain_id}")

        _, medium, high, _ = self.config.deviation_tiers_bps
        key = (chain_id, token_in, token_out)
        warnings: List[str] = []

        recent = self.reference_price(*key)
        sources = list(prices.values())
        if recent is not None:
            sources.append(recent)
        if len(sources) < self.config.min_sources:
            warnings.append("insufficient price sources")
        reference = sum(sources, Decimal("0")) / len(sources)

        venue, price = max(prices.items(), key=lambda item: abs(item[1] - reference))
        deviation = _deviation_bps(price, reference)
        risk = self._risk(deviation)
        if risk is not PriceRisk.LOW:
            warnings.append(f"{risk.value} deviation {deviation:.0f} bps on {venue}")

        score = self._deviation_score(deviation)
        if recent is not None and any(
            _deviation_bps(p, recent) > high for p in prices.values()
        ):
            score += PRICE_GAP_SCORE
            warnings.append("large gap from recent prices")
        if len(prices) >= 2:
            lowest, highest = min(prices.values()), max(prices.values())
            if _deviation_bps(highest, lowest) > medium:
                score += VENUE_DIVERGENCE_SCORE
                warnings.append("cross-venue divergence")
        score = min(score, 100)

        if score > REJECT_SCORE:
            risk = PriceRisk.CRITICAL
        elif score > CAUTION_SCORE and risk is not PriceRisk.CRITICAL:
            risk = PriceRisk.HIGH

        if risk is PriceRisk.CRITICAL:
            recommendation = Recommendation.REJECT
        elif (
            risk is PriceRisk.HIGH
            or score > CAUTION_SCORE
            or len(warnings) > MAX_CAUTION_WARNINGS
        ):
            recommendation = Recommendation.CAUTION
        else:
            recommendation = Recommendation.EXECUTE

        result = PriceCheck(
            chain_id=chain_id,
            token_in=token_in,
            token_out=token_out,
            venue=venue,
            price=price,
            reference_price=reference,
            deviation_bps=deviation,
            risk=risk,
            manipulation_score=score,
            recommendation=recommendation,
            warnings=tuple(warnings),
        )

        if result.accepted:
            history = self._history.setdefault(
                key, deque(maxlen=self.config.history_size)
            )
            history.append(sum(prices.values(), Decimal("0")) / len(prices))

        if recommendation is Recommendation.REJECT:
            logger.warning(
                f"PRICE_REJECTED: {{'chain_id': {chain_id}, 'pair': '{token_in}/{token_out}', "
                f"'venue': '{venue}', 'deviation_bps': {deviation:.1f}, "
                f"'score': {score}, 'warnings': {list(warnings)}}}"
            )
        elif recommendation is Recommendation.CAUTION:
            logger.info(
                f"PRICE_CAUTION: {{'chain_id': {chain_id}, 'pair': '{token_in}/{token_out}', "
                f"'deviation_bps': {deviation:.1f}, 'score': {score}}}"
            )
        return result

    # === SLIPPAGE ===

    def volatility_bps(self, chain_id: int, token_in: str, token_out: str) -> float:
        """Population standard deviation of successive accepted-price returns."""
        history = list(self._history.get((chain_id, token_in, token_out), ()))
        if len(history) < 2:
            return 0.0
        returns = [float((b - a) / a * BPS) for a, b in zip(history, history[1:])]
        mean = sum(returns) / len(returns)
        return math.sqrt(sum((r - mean) ** 2 for r in returns) / len(returns))

    def slippage_bps(self, chain_id: int, token_in: str, token_out: str) -> float:
        """Expected slippage for one swap: base plus scaled volatility, clamped."""
        estimate = (
            self.config.base_slippage_bps
            + self.config.volatility_multiplier
            * self.volatility_bps(chain_id, token_in, token_out)
        )
        return float(
            clamp(estimate, self.config.min_slippage_bps, self.config.max_slippage_bps)
        )
