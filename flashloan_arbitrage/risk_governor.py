"""
Risk governor: circuit breaker, cooldown and single in-flight execution.

The governor owns the only shared mutable state in the pipeline. State is
held as an immutable RiskState snapshot that writers replace under a lock
(compare-and-set); readers take the current snapshot without locking.
The breaker is a one-way latch: once tripped, only reset() re-arms it.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, replace
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

from .interfaces import SystemTimeProvider, TimeProvider
from .types import (
    BundleResult,
    GateDecision,
    GateReason,
    Included,
    Opportunity,
    RiskState,
    SubmissionFailed,
)
from .utils import wei_to_native

logger = logging.getLogger(__name__)


class RiskGovernor:
    """
    Gates execution attempts for one signer.

    Args:
        loss_threshold: Cumulative realized loss (native units) that trips the breaker
        cooldown_seconds: Minimum gap between execution attempts
        time_provider: Clock used for cooldown checks
        signer: Signer address, for log context
    """

    def __init__(
        self,
        loss_threshold: Decimal,
        cooldown_seconds: float,
        time_provider: Optional[TimeProvider] = None,
        signer: str = "",
    ):
        self.loss_threshold = Decimal(str(loss_threshold))
        self.cooldown_seconds = cooldown_seconds
        self.time_provider = time_provider or SystemTimeProvider()
        self.signer = signer
        self.last_outcome: Optional[str] = None

        self._lock = threading.Lock()
        self._state = RiskState()

    def snapshot(self) -> RiskState:
        """Current state; never blocks."""
        return self._state

    @property
    def tripped(self) -> bool:
        return self._state.breaker_tripped

    def cooldown_remaining(self, now: Optional[float] = None) -> float:
        state = self._state
        if state.last_execution_timestamp is None:
            return 0.0
        if now is None:
            now = self.time_provider.current_timestamp()
        return max(0.0, self.cooldown_seconds - (now - state.last_execution_timestamp))

    def can_execute_now(self) -> bool:
        state = self._state
        return (
            not state.breaker_tripped
            and not state.in_flight
            and self.cooldown_remaining() <= 0
        )

    def gate(self, opportunity: Opportunity) -> GateDecision:
        """
        Decide whether an opportunity may execute now.

        On allow, the in-flight slot is reserved and the execution timestamp
        stamped in the same locked update. Denials change no state.
        """
        with self._lock:
            state = self._state
            now = self.time_provider.current_timestamp()

            if state.breaker_tripped:
                decision = GateDecision(
                    False,
                    GateReason.BREAKER_TRIPPED,
                    f"cumulative loss {state.cumulative_loss} > {self.loss_threshold}",
                )
            elif state.in_flight:
                decision = GateDecision(
                    False, GateReason.IN_FLIGHT, "another execution is in flight"
                )
            elif (
                state.last_execution_timestamp is not None
                and now - state.last_execution_timestamp < self.cooldown_seconds
            ):
                remaining = self.cooldown_seconds - (now - state.last_execution_timestamp)
                decision = GateDecision(
                    False, GateReason.COOLDOWN, f"{remaining:.2f}s remaining"
                )
            else:
                self._state = replace(
                    state, in_flight=True, last_execution_timestamp=now
                )
                decision = GateDecision(True, GateReason.ALLOWED)

        if decision.allowed:
            logger.info(f"Execution allowed for {opportunity.id}")
        else:
            logger.info(
                f"GATE_DENIED: {{'opportunity_id': '{opportunity.id}', "
                f"'reason': '{decision.reason.value}', 'detail': '{decision.detail}'}}"
            )
        return decision

    @staticmethod
    def realized_pnl(opportunity: Opportunity, result: BundleResult, max_fee_per_gas: int) -> Decimal:
        """
        Realized profit (negative for a loss) in native units.

        Included bundles earn gross profit less gas actually used at the fee
        cap. Relay rejections and on-chain reverts are charged their estimated
        gas cost. Bundles that were never included, or whose relay could not
        be reached, cost nothing.
        """
        native_per_token = (
            opportunity.net_profit_native / opportunity.net_profit
            if opportunity.net_profit
            else Decimal("0")
        )
        if isinstance(result, Included):
            gross_native = opportunity.gross_profit * native_per_token
            return gross_native - wei_to_native(result.gas_used * max_fee_per_gas)
        if isinstance(result, SubmissionFailed):
            return -(opportunity.gas_cost * native_per_token)
        return Decimal("0")

    def record_outcome(
        self, opportunity: Opportunity, result: BundleResult, pnl: Decimal
    ) -> RiskState:
        """
        Record an execution outcome, release the in-flight slot and evaluate the breaker.

        Args:
            opportunity: The executed opportunity
            result: Bundle resolution
            pnl: Realized profit (negative for a loss) in native units

        Returns:
            The new state snapshot
        """
        with self._lock:
            state = self._state
            loss = -pnl if pnl < 0 else Decimal("0")
            profit = pnl if pnl > 0 else Decimal("0")
            cumulative = state.cumulative_loss + loss
            tripped = state.breaker_tripped or cumulative > self.loss_threshold

            self._state = replace(
                state,
                cumulative_loss=cumulative,
                total_profit=state.total_profit + profit,
                in_flight=False,
                breaker_tripped=tripped,
                executions=state.executions + 1,
            )
            self.last_outcome = result.outcome
            new_state = self._state

        logger.info(
            f"OUTCOME_RECORDED: {{'opportunity_id': '{opportunity.id}', "
            f"'outcome': '{result.outcome}', 'pnl': '{pnl}', "
            f"'cumulative_loss': '{new_state.cumulative_loss}'}}"
        )
        if tripped and not state.breaker_tripped:
            logger.critical(
                f"CIRCUIT BREAKER TRIPPED: cumulative loss {new_state.cumulative_loss} "
                f"exceeds {self.loss_threshold}; execution halted until reset"
            )
        return new_state

    def release(self) -> None:
        """Release the in-flight slot without recording an outcome."""
        with self._lock:
            self._state = replace(self._state, in_flight=False)

    def reset(self, operator: str) -> RiskState:
        """Explicit operator reset: re-arm the breaker and clear cumulative loss."""
        with self._lock:
            previous = self._state
            self._state = replace(
                previous, breaker_tripped=False, cumulative_loss=Decimal("0")
            )
        logger.warning(
            f"Risk governor reset by {operator} "
            f"(was tripped={previous.breaker_tripped}, loss={previous.cumulative_loss})"
        )
        return self._state

    # === PERSISTENCE ===

    def save_state(self, path: Union[str, Path]) -> None:
        """Atomically write the breaker and loss state as JSON."""
        state = self._state
        data = asdict(state)
        data["cumulative_loss"] = str(state.cumulative_loss)
        data["total_profit"] = str(state.total_profit)
        data.pop("in_flight")

        state_path = Path(path)
        state_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=state_path.parent, prefix=".risk_state_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, state_path)
        except OSError:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            logger.error(f"Failed to save risk state to {path}")
            raise
        logger.info(f"Saved risk state to {path}")

    def load_state(self, path: Union[str, Path]) -> bool:
        """Restore breaker and loss state; returns False if no file exists."""
        state_path = Path(path)
        if not state_path.exists():
            logger.info(f"No risk state file found at {path}")
            return False

        with open(state_path, "r") as f:
            data = json.load(f)

        with self._lock:
            self._state = RiskState(
                cumulative_loss=Decimal(data.get("cumulative_loss", "0")),
                total_profit=Decimal(data.get("total_profit", "0")),
                last_execution_timestamp=data.get("last_execution_timestamp"),
                breaker_tripped=bool(data.get("breaker_tripped", False)),
                executions=int(data.get("executions", 0)),
            )
        logger.info(
            f"Loaded risk state from {path}: tripped={self._state.breaker_tripped}, "
            f"loss={self._state.cumulative_loss}"
        )
        return True
