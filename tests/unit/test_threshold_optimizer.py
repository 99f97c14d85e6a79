"""
Unit tests for the rolling-window threshold optimizer
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from flashloan_arbitrage.exceptions import ValidationError
from flashloan_arbitrage.parameter_validator import (
    PARAMETER_BOUNDS,
    THRESHOLD_FIELDS,
    ParameterValidator,
)
from flashloan_arbitrage.threshold_optimizer import ThresholdOptimizer
from flashloan_arbitrage.utils import gwei_to_wei


def optimizer_with(spreads=(), gas_gwei=(), **kwargs) -> ThresholdOptimizer:
    optimizer = ThresholdOptimizer(**kwargs)
    for spread in spreads:
        optimizer.observe_spread(spread)
    for gwei in gas_gwei:
        optimizer.observe_gas_price(gwei_to_wei(gwei))
    return optimizer


class TestThresholdOptimizer:
    def test_no_observations_returns_recommended(self):
        optimizer = ThresholdOptimizer()
        proposal = optimizer.propose()

        assert not optimizer.has_observations
        assert proposal.min_profit == Decimal("0.01")
        assert proposal.min_spread_bps == 30.0
        assert proposal.gas_buffer_multiplier == 1.2
        assert proposal.slippage_buffer_bps == 100.0

    def test_window_evicts_oldest(self):
        optimizer = optimizer_with(spreads=[100, 10, 10, 10], window_size=3)
        stats = optimizer.stats()

        assert stats.spread_count == 3
        assert stats.mean_spread_bps == 10
        assert stats.spread_volatility_bps == 0.0

    def test_spreads_keep_their_sign(self):
        stats = optimizer_with(spreads=[-20, 20]).stats()
        assert stats.mean_spread_bps == 0
        assert stats.spread_volatility_bps == 20.0

    def test_competition_levels(self):
        optimizer = ThresholdOptimizer()
        assert optimizer.competition_level(5) == 1
        assert optimizer.competition_level(20) == 2
        assert optimizer.competition_level(75) == 3
        assert optimizer.competition_level(150) == 4

    def test_higher_gas_raises_spread_and_buffer(self):
        quiet = optimizer_with(spreads=[30, 40], gas_gwei=[5]).propose()
        busy = optimizer_with(spreads=[30, 40], gas_gwei=[120]).propose()

        assert busy.min_spread_bps > quiet.min_spread_bps
        assert busy.gas_buffer_multiplier > quiet.gas_buffer_multiplier
        assert busy.slippage_buffer_bps > quiet.slippage_buffer_bps
        assert busy.min_profit > quiet.min_profit

    def test_volatility_raises_required_spread(self):
        calm = optimizer_with(spreads=[40, 40, 40, 40], gas_gwei=[10]).propose()
        volatile = optimizer_with(spreads=[0, 80, 0, 80], gas_gwei=[10]).propose()

        assert volatile.min_spread_bps == pytest.approx(calm.min_spread_bps + 40.0)

    def test_proposal_formula(self):
        # 10 gwei x 500k gas = 0.005 native on a 1 native reference trade = 50 bps
        proposal = optimizer_with(spreads=[25, 25], gas_gwei=[10]).propose()

        assert proposal.min_spread_bps == pytest.approx(50 + 30 + 10)
        assert proposal.gas_buffer_multiplier == pytest.approx(1.32)
        assert proposal.slippage_buffer_bps == pytest.approx(150)
        assert proposal.min_profit == Decimal("0.015")

    def test_invalid_observations_rejected(self):
        optimizer = ThresholdOptimizer()
        with pytest.raises(ValidationError):
            optimizer.observe_spread(float("nan"))
        with pytest.raises(ValidationError):
            optimizer.observe_gas_price(-1)
        assert not optimizer.has_observations

    @settings(max_examples=100, deadline=None)
    @given(
        spreads=st.lists(
            st.floats(min_value=-1e6, max_value=1e6, allow_nan=False), max_size=50
        ),
        gas_gwei=st.lists(st.integers(min_value=0, max_value=10_000), max_size=50),
        trade_size=st.decimals(min_value="0.001", max_value="1000", places=3),
    )
    def test_validated_proposals_within_bounds(self, spreads, gas_gwei, trade_size):
        optimizer = optimizer_with(
            spreads=spreads, gas_gwei=gas_gwei, reference_trade_size=trade_size
        )
        thresholds = ParameterValidator().resolve_thresholds(optimizer.propose())

        for attr, bound_name in THRESHOLD_FIELDS.items():
            value = Decimal(str(getattr(thresholds, attr)))
            bound = PARAMETER_BOUNDS[bound_name]
            assert bound.min <= value <= bound.max
