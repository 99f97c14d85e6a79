"""
Unit tests for the risk governor: cooldown, circuit breaker and persistence
"""

import json
from decimal import Decimal

import pytest

from flashloan_arbitrage.interfaces import DeterministicTimeProvider
from flashloan_arbitrage.risk_governor import RiskGovernor
from flashloan_arbitrage.types import (
    GateReason,
    Included,
    NotIncluded,
    RelayUnavailable,
    SimulationFailed,
    SubmissionFailed,
)
from flashloan_arbitrage.utils import gwei_to_wei

from fakes import make_opportunity


@pytest.fixture
def clock():
    return DeterministicTimeProvider()


@pytest.fixture
def governor(clock):
    return RiskGovernor(
        loss_threshold=Decimal("10"), cooldown_seconds=15.0, time_provider=clock
    )


class TestCooldown:
    def test_first_execution_allowed_and_stamped(self, governor, clock):
        decision = governor.gate(make_opportunity())

        assert decision.allowed
        assert decision.reason is GateReason.ALLOWED
        state = governor.snapshot()
        assert state.in_flight
        assert state.last_execution_timestamp == clock.current_timestamp()

    def test_denied_inside_cooldown_without_state_change(self, governor, clock):
        opportunity = make_opportunity()
        governor.gate(opportunity)
        governor.record_outcome(opportunity, NotIncluded(), Decimal("0"))

        clock.advance_time(5)
        before = governor.snapshot()
        decision = governor.gate(make_opportunity(id="next"))

        assert not decision.allowed
        assert decision.reason is GateReason.COOLDOWN
        assert governor.snapshot() is before
        assert governor.cooldown_remaining() == pytest.approx(10.0)

    def test_allowed_once_cooldown_elapsed(self, governor, clock):
        opportunity = make_opportunity()
        governor.gate(opportunity)
        governor.record_outcome(opportunity, NotIncluded(), Decimal("0"))

        clock.advance_time(15)

        assert governor.can_execute_now()
        assert governor.gate(opportunity).allowed

    def test_single_execution_in_flight(self, clock):
        governor = RiskGovernor(Decimal("10"), cooldown_seconds=0.0, time_provider=clock)
        assert governor.gate(make_opportunity(id="a")).allowed

        decision = governor.gate(make_opportunity(id="b"))
        assert decision.reason is GateReason.IN_FLIGHT

        governor.release()
        assert governor.gate(make_opportunity(id="b")).allowed


class TestCircuitBreaker:
    def test_cumulative_loss_trips_breaker(self, governor, clock):
        opportunity = make_opportunity()
        governor.gate(opportunity)
        state = governor.record_outcome(
            opportunity, SubmissionFailed("reverted"), Decimal("-9.6")
        )
        assert not state.breaker_tripped

        clock.advance_time(15)
        governor.gate(opportunity)
        state = governor.record_outcome(
            opportunity, SubmissionFailed("reverted"), Decimal("-0.5")
        )

        assert state.breaker_tripped
        assert state.cumulative_loss == Decimal("10.1")
        assert governor.last_outcome == "submission_error"

    def test_every_gate_denied_until_reset(self, governor, clock):
        opportunity = make_opportunity()
        governor.gate(opportunity)
        governor.record_outcome(opportunity, SubmissionFailed("x"), Decimal("-11"))

        for i in range(5):
            clock.advance_time(60)
            best = make_opportunity(
                id=f"best-{i}", priority=10, net_profit_native=Decimal("100")
            )
            decision = governor.gate(best)
            assert not decision.allowed
            assert decision.reason is GateReason.BREAKER_TRIPPED

        governor.reset(operator="ops")

        assert not governor.tripped
        assert governor.snapshot().cumulative_loss == Decimal("0")
        assert governor.gate(opportunity).allowed

    def test_profits_do_not_offset_losses(self, governor):
        opportunity = make_opportunity()
        governor.gate(opportunity)
        governor.record_outcome(opportunity, Included(101, 300_000), Decimal("5"))
        governor.release()

        state = governor.snapshot()
        assert state.total_profit == Decimal("5")
        assert state.cumulative_loss == Decimal("0")
        assert state.executions == 1


class TestRealizedPnl:
    def test_included_pays_actual_gas(self):
        opportunity = make_opportunity()
        pnl = RiskGovernor.realized_pnl(
            opportunity, Included(block=101, gas_used=300_000), gwei_to_wei(10)
        )
        # 20 USDC gross = 0.01 native, less 300k gas at 10 gwei
        assert pnl == Decimal("0.007")

    def test_failed_submission_charged_estimated_gas(self):
        pnl = RiskGovernor.realized_pnl(
            make_opportunity(), SubmissionFailed("reverted"), gwei_to_wei(10)
        )
        assert pnl == Decimal("-0.0025")

    def test_no_broadcast_costs_nothing(self):
        opportunity = make_opportunity()
        assert RiskGovernor.realized_pnl(opportunity, NotIncluded(), 1) == 0
        assert RiskGovernor.realized_pnl(opportunity, SimulationFailed("x"), 1) == 0

    def test_unreachable_relay_costs_nothing(self):
        pnl = RiskGovernor.realized_pnl(
            make_opportunity(), RelayUnavailable("HTTP 503"), gwei_to_wei(10)
        )
        assert pnl == 0


class TestPersistence:
    def test_state_round_trips_through_file(self, governor, clock, tmp_path):
        path = tmp_path / "state" / "risk.json"
        opportunity = make_opportunity()
        governor.gate(opportunity)
        governor.record_outcome(opportunity, SubmissionFailed("x"), Decimal("-12"))
        governor.save_state(path)

        data = json.loads(path.read_text())
        assert data["breaker_tripped"] is True
        assert data["cumulative_loss"] == "12"
        assert "in_flight" not in data

        restored = RiskGovernor(Decimal("10"), 15.0, time_provider=clock)
        assert restored.load_state(path)
        assert restored.tripped
        assert restored.snapshot().cumulative_loss == Decimal("12")
        assert not restored.snapshot().in_flight

    def test_missing_state_file(self, governor, tmp_path):
        assert governor.load_state(tmp_path / "missing.json") is False
        assert not governor.tripped
