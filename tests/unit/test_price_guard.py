"""
Unit tests for quote deviation grading and slippage estimation
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from flashloan_arbitrage.config_schema import PriceGuardConfig
from flashloan_arbitrage.price_guard import PriceGuard
from flashloan_arbitrage.types import PriceRisk, Recommendation


def check(guard, **quotes):
    return guard.check(1, "WETH", "USDC", {v: Decimal(str(p)) for v, p in quotes.items()})


class TestPriceCheck:
    def test_agreeing_venues_execute(self):
        result = check(PriceGuard(), uniswap=2000, sushiswap=2010)

        assert result.risk is PriceRisk.LOW
        assert result.recommendation is Recommendation.EXECUTE
        assert result.manipulation_score == 0
        assert result.warnings == ()
        assert result.reference_price == Decimal("2005")

    def test_diverging_venue_rejected(self):
        guard = PriceGuard()
        result = check(guard, uniswap="1.0", sushiswap="1.25")

        assert result.venue in ("uniswap", "sushiswap")
        assert result.deviation_bps == pytest.approx(1111.11, abs=0.01)
        assert result.risk is PriceRisk.CRITICAL
        assert result.recommendation is Recommendation.REJECT
        # deviation past the critical tier plus cross-venue divergence
        assert result.manipulation_score == 65
        assert "cross-venue divergence" in result.warnings
        assert not result.accepted
        assert guard.reference_price(1, "WETH", "USDC") is None

    def test_single_source_warns_but_executes(self):
        guard = PriceGuard()
        result = check(guard, uniswap="1.0")

        assert result.warnings == ("insufficient price sources",)
        assert result.recommendation is Recommendation.EXECUTE
        assert guard.reference_price(1, "WETH", "USDC") == Decimal("1.0")

    def test_jump_from_recent_prices_cautions(self):
        guard = PriceGuard()
        check(guard, uniswap="1.0")

        result = check(guard, uniswap="1.07")

        assert result.risk is PriceRisk.HIGH
        assert result.manipulation_score == 40
        assert "large gap from recent prices" in result.warnings
        assert result.recommendation is Recommendation.CAUTION
        assert result.accepted

    def test_custom_tiers(self):
        guard = PriceGuard(PriceGuardConfig(deviation_tiers_bps=[10, 20, 30, 40]))

        result = check(guard, uniswap=2000, sushiswap=2020)

        assert result.risk is PriceRisk.CRITICAL
        assert result.recommendation is Recommendation.REJECT

    def test_no_positive_quotes(self):
        with pytest.raises(ValueError):
            check(PriceGuard(), uniswap=0)

    def test_history_bounded(self):
        guard = PriceGuard(PriceGuardConfig(history_size=2))
        for _ in range(5):
            check(guard, uniswap="1.0")

        assert len(guard._history[(1, "WETH", "USDC")]) == 2

    def test_pairs_tracked_separately(self):
        guard = PriceGuard()
        check(guard, uniswap="1.0")

        assert guard.reference_price(1, "USDC", "WETH") is None
        assert guard.reference_price(10, "WETH", "USDC") is None


class TestSlippageEstimate:
    def test_base_without_history(self):
        guard = PriceGuard()

        assert guard.volatility_bps(1, "WETH", "USDC") == 0.0
        assert guard.slippage_bps(1, "WETH", "USDC") == 10.0

    def test_volatility_widens_slippage(self):
        guard = PriceGuard()
        for price in ("1.0", "1.01", "1.0"):
            check(guard, uniswap=price)

        assert guard.volatility_bps(1, "WETH", "USDC") == pytest.approx(99.505, abs=0.001)
        assert guard.slippage_bps(1, "WETH", "USDC") == pytest.approx(209.01, abs=0.01)

    def test_clamped_to_maximum(self):
        guard = PriceGuard(PriceGuardConfig(volatility_multiplier=10))
        for price in ("1.0", "1.01", "1.0"):
            check(guard, uniswap=price)

        assert guard.slippage_bps(1, "WETH", "USDC") == 300.0

    @settings(max_examples=50, deadline=None)
    @given(
        st.lists(
            st.decimals(min_value="0.5", max_value="2", places=4),
            min_size=1,
            max_size=20,
        )
    )
    def test_estimate_stays_within_bounds(self, prices):
        config = PriceGuardConfig()
        guard = PriceGuard(config)
        for price in prices:
            check(guard, uniswap=price)

        slippage = guard.slippage_bps(1, "WETH", "USDC")
        assert config.min_slippage_bps <= slippage <= config.max_slippage_bps
