"""
Scheduling loop tying scanner, optimizer, validator, governor and bundles together.

Timer ticks and new-block notifications are both turned into ScanTrigger
items on a single TriggerQueue, which drops a trigger while a scan for the
same key is pending or running. Each scan runs as its own task. The best
candidate of a scan is offered to the ExecutionSlot, where a newer offer
supersedes the pending one unless the pending one still ranks strictly
higher. A single worker drains the slot, so at most one bundle attempt is
ever in flight.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Set, Union

from .audit import AuditLog
from .bundle import BundleBuilder, BundleSubmitter
from .config_schema import BotConfig
from .constants import CROSS_CHAIN_KEY, TriggerSource
from .exceptions import BreakerTrippedError, NetworkError
from .interfaces import ChainReader, SystemTimeProvider, TimeProvider
from .metrics import ArbitrageMetrics
from .parameter_validator import ExecutionParameters, ParameterValidator
from .risk_governor import RiskGovernor
from .scanner import OpportunityScanner, ScanReport, rank_opportunities
from .threshold_optimizer import ThresholdOptimizer
from .types import BundleResult, GateReason, Opportunity, ThresholdSet

logger = logging.getLogger(__name__)

ScanKey = Union[int, str]


@dataclass(frozen=True)
class ScanTrigger:
    key: ScanKey
    source: TriggerSource
    block_number: Optional[int] = None


class TriggerQueue:
    """Single queue for all scan triggers, deduplicated per key."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._active: Set[ScanKey] = set()
        self.dropped = 0

    def offer(self, trigger: ScanTrigger) -> bool:
        """Enqueue unless a scan for the same key is pending or running."""
        if trigger.key in self._active:
            self.dropped += 1
            logger.debug(
                f"Trigger {trigger.source.value} for {trigger.key} dropped, scan already active"
            )
            return False
        self._active.add(trigger.key)
        self._queue.put_nowait(trigger)
        return True

    async def get(self) -> ScanTrigger:
        return await self._queue.get()

    def done(self, key: ScanKey) -> None:
        self._active.discard(key)

    def is_active(self, key: ScanKey) -> bool:
        return key in self._active

    def qsize(self) -> int:
        return self._queue.qsize()


class ExecutionSlot:
    """Holds at most one pending opportunity; latest highest-priority wins."""

    def __init__(self, max_age_seconds: float, time_provider: TimeProvider):
        self.max_age_seconds = max_age_seconds
        self.time_provider = time_provider
        self._pending: Optional[Opportunity] = None
        self._event = asyncio.Event()

    @property
    def pending(self) -> Optional[Opportunity]:
        return self._pending

    def is_fresh(self, opportunity: Opportunity) -> bool:
        age = self.time_provider.current_timestamp() - opportunity.created_at
        return age <= self.max_age_seconds

    def offer(self, opportunity: Opportunity) -> bool:
        """Offer a candidate; returns True if it is now the pending one."""
        pending = self._pending
        if (
            pending is not None
            and self.is_fresh(pending)
            and (pending.priority, pending.net_profit_native)
            > (opportunity.priority, opportunity.net_profit_native)
        ):
            return False
        if pending is not None:
            logger.debug(f"Pending {pending.id} superseded by {opportunity.id}")
        self._pending = opportunity
        self._event.set()
        return True

    def take(self) -> Optional[Opportunity]:
        opportunity = self._pending
        self._pending = None
        self._event.clear()
        return opportunity

    async def wait(self) -> None:
        await self._event.wait()


class Orchestrator:
    """
    Runs scans on timer and block triggers and serializes execution.

    Args:
        config: Validated configuration
        readers: ChainReader per chain id
        scanner: Opportunity scanner
        optimizer: Threshold optimizer
        validator: Parameter validator
        governor: Risk governor for the execution signer
        builder: Bundle builder
        submitters: Bundle submitter per chain id
        params: Validated execution parameters
        audit: Audit event sink
        metrics: Optional Prometheus metrics
        time_provider: Clock
    """

    def __init__(
        self,
        config: BotConfig,
        readers: Dict[int, ChainReader],
        scanner: OpportunityScanner,
        optimizer: ThresholdOptimizer,
        validator: ParameterValidator,
        governor: RiskGovernor,
        builder: BundleBuilder,
        submitters: Dict[int, BundleSubmitter],
        params: ExecutionParameters,
        audit: Optional[AuditLog] = None,
        metrics: Optional[ArbitrageMetrics] = None,
        time_provider: Optional[TimeProvider] = None,
    ):
        self.config = config
        self.readers = readers
        self.scanner = scanner
        self.optimizer = optimizer
        self.validator = validator
        self.governor = governor
        self.builder = builder
        self.submitters = submitters
        self.params = params
        self.time_provider = time_provider or SystemTimeProvider()
        self.audit = audit or AuditLog(time_provider=self.time_provider)
        self.metrics = metrics

        self.thresholds: ThresholdSet = validator.resolve_thresholds(optimizer.propose())
        self.triggers = TriggerQueue()
        self.slot = ExecutionSlot(
            config.risk.max_opportunity_age_seconds, self.time_provider
        )
        self._scan_tasks: Set[asyncio.Task] = set()
        self._stopping: Optional[asyncio.Event] = None
        self._last_recompute = self.time_provider.current_timestamp()

    # === SCAN KEYS AND THRESHOLDS ===

    def chain_keys(self) -> List[int]:
        keys = {pair.chain_id for pair in self.config.pairs}
        if self.config.features.enable_triangular:
            keys.update(t.chain_id for t in self.config.triangles)
        return sorted(keys)

    def scan_keys(self) -> List[ScanKey]:
        keys: List[ScanKey] = list(self.chain_keys())
        if self.config.features.enable_cross_chain and self.config.cross_chain:
            keys.append(CROSS_CHAIN_KEY)
        return keys

    def recompute_thresholds(self) -> ThresholdSet:
        self.thresholds = self.validator.resolve_thresholds(self.optimizer.propose())
        self._last_recompute = self.time_provider.current_timestamp()
        if self.metrics:
            self.metrics.update_thresholds(self.thresholds)
        logger.info(
            f"THRESHOLDS: {{'min_profit': '{self.thresholds.min_profit}', "
            f"'min_spread_bps': {self.thresholds.min_spread_bps:.2f}, "
            f"'gas_buffer': {self.thresholds.gas_buffer_multiplier:.3f}, "
            f"'slippage_buffer_bps': {self.thresholds.slippage_buffer_bps:.1f}}}"
        )
        return self.thresholds

    # === SCAN STAGE ===

    def filter_candidates(self, opportunities: List[Opportunity]) -> List[Opportunity]:
        """
        Apply the slippage buffer and the minimum profit, returning derived copies.

        The buffer is the larger of the optimizer's and the scanner's per-pair estimate.
        """
        min_profit = max(
            Decimal(str(self.thresholds.min_profit)),
            Decimal(str(self.params.min_profit_threshold)),
        )
        accepted = []
        for opportunity in opportunities:
            adjusted = opportunity.with_adjusted_profit(
                max(self.thresholds.slippage_buffer_bps, opportunity.slippage_bps)
            )
            if adjusted.net_profit_native < min_profit:
                logger.debug(
                    f"Filtered {opportunity.id}: net {adjusted.net_profit_native} "
                    f"< min profit {min_profit}"
                )
                continue
            accepted.append(adjusted)
        return rank_opportunities(accepted)

    def _observe(self, report: ScanReport) -> None:
        for spread in report.spread_observations:
            self.optimizer.observe_spread(spread)
        for gas in report.gas_observations:
            self.optimizer.observe_gas_price(gas)

    async def scan(self, key: ScanKey) -> Optional[Opportunity]:
        """Run one scan for a key and return its best filtered candidate."""
        started = self.time_provider.current_timestamp()
        thresholds = self.thresholds

        if key == CROSS_CHAIN_KEY:
            report = await self.scanner.scan_cross_chain(thresholds)
        else:
            report = await self.scanner.scan_chain(
                key, thresholds, self.params.max_trade_size
            )

        self._observe(report)
        candidates = self.filter_candidates(report.opportunities)
        best = candidates[0] if candidates else None
        duration = self.time_provider.current_timestamp() - started

        for error in report.errors:
            logger.warning(f"Scan {key}: {error}")
        if self.metrics:
            self.metrics.record_scan(str(key), len(candidates), len(report.errors), duration)
            for candidate in candidates:
                self.metrics.record_opportunity(candidate)
            if report.price_rejections:
                self.metrics.record_price_rejections(str(key), report.price_rejections)
        self.audit.scan_cycle(
            str(key),
            len(candidates),
            len(report.errors),
            best,
            duration * 1000,
            price_rejections=report.price_rejections,
        )
        if best is not None:
            logger.info(
                f"OPPORTUNITY: {{'id': '{best.id}', 'kind': '{best.kind.value}', "
                f"'net_profit': '{best.net_profit}', 'spread_bps': {best.spread_bps:.1f}, "
                f"'priority': {best.priority}}}"
            )
        return best

    async def _run_scan(self, trigger: ScanTrigger) -> None:
        try:
            best = await self.scan(trigger.key)
            if best is not None and not self.governor.tripped:
                self.slot.offer(best)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Scan task for {trigger.key} failed: {e}")
            self._record_error(f"scan:{trigger.key}", e)
        finally:
            self.triggers.done(trigger.key)

    # === EXECUTION STAGE ===

    async def execute(self, opportunity: Opportunity) -> Optional[BundleResult]:
        """
        Gate, build, submit and record one opportunity.

        Returns:
            The bundle result, or None if the gate denied execution

        Raises:
            BreakerTrippedError: If the circuit breaker is tripped
        """
        decision = self.governor.gate(opportunity)
        if not decision.allowed:
            self.audit.gate_denied(opportunity, decision.reason.value)
            if self.metrics:
                self.metrics.record_gate_denial(decision.reason.value)
            if decision.reason is GateReason.BREAKER_TRIPPED:
                state = self.governor.snapshot()
                raise BreakerTrippedError(
                    "Execution halted by circuit breaker",
                    cumulative_loss=state.cumulative_loss,
                    threshold=self.governor.loss_threshold,
                )
            return None

        try:
            request = await self.builder.build(opportunity)
            result = await self.submitters[opportunity.chain_id].attempt(request)
        except BaseException:
            self.governor.release()
            raise

        pnl = self.governor.realized_pnl(opportunity, result, request.gas.max_fee_per_gas)
        state = self.governor.record_outcome(opportunity, result, pnl)
        if self.config.risk.state_file:
            self.governor.save_state(self.config.risk.state_file)

        self.audit.execution(
            opportunity,
            result.outcome,
            gas_used=getattr(result, "gas_used", None),
            pnl=pnl,
            target_block=request.target_block,
        )
        if self.metrics:
            self.metrics.record_bundle(result.outcome)
            self.metrics.update_risk_state(state)
        return result

    async def _execution_worker(self) -> None:
        while True:
            await self.slot.wait()
            opportunity = self.slot.take()
            if opportunity is None:
                continue
            if not self.slot.is_fresh(opportunity):
                logger.info(f"Dropped stale opportunity {opportunity.id}")
                continue
            try:
                await self.execute(opportunity)
            except asyncio.CancelledError:
                raise
            except BreakerTrippedError as e:
                logger.warning(f"{e} (loss {e.cumulative_loss} > {e.threshold})")
            except Exception as e:
                logger.exception(f"Execution of {opportunity.id} failed: {e}")
                self._record_error("execution", e)

    # === TRIGGERS ===

    async def _timer_loop(self) -> None:
        interval = self.config.scheduler.scan_interval_seconds
        recompute_every = self.config.optimizer.recompute_interval_seconds
        while True:
            try:
                for key in self.scan_keys():
                    self.triggers.offer(ScanTrigger(key, TriggerSource.TIMER))
                now = self.time_provider.current_timestamp()
                if now - self._last_recompute >= recompute_every:
                    self.recompute_thresholds()
            except Exception as e:
                logger.exception(f"Timer tick failed: {e}")
                self._record_error("timer", e)
            await asyncio.sleep(interval)

    async def _block_watcher(self, chain_id: int) -> None:
        interval = self.config.scheduler.block_poll_interval_seconds
        reader = self.readers[chain_id]
        last_block: Optional[int] = None
        while True:
            try:
                number = await reader.block_number()
                if last_block is None or number > last_block:
                    last_block = number
                    self.triggers.offer(
                        ScanTrigger(chain_id, TriggerSource.BLOCK, block_number=number)
                    )
            except NetworkError as e:
                logger.warning(f"Block poll failed on chain {chain_id}: {e}")
            except Exception as e:
                logger.exception(f"Block watcher for chain {chain_id} failed: {e}")
                self._record_error(f"block:{chain_id}", e)
            await asyncio.sleep(interval)

    async def _dispatcher(self) -> None:
        while True:
            trigger = await self.triggers.get()
            task = asyncio.create_task(self._run_scan(trigger))
            self._scan_tasks.add(task)
            task.add_done_callback(self._scan_tasks.discard)

    def _record_error(self, where: str, error: BaseException) -> None:
        self.audit.error(where, error)
        if self.metrics:
            self.metrics.record_error(where.split(":")[0])

    # === LIFECYCLE ===

    async def run(self) -> None:
        """Run until stop() is called."""
        self._stopping = asyncio.Event()
        self.recompute_thresholds()
        tasks = [
            asyncio.create_task(self._dispatcher()),
            asyncio.create_task(self._execution_worker()),
            asyncio.create_task(self._timer_loop()),
        ]
        tasks.extend(
            asyncio.create_task(self._block_watcher(chain_id))
            for chain_id in self.chain_keys()
        )
        logger.info(
            f"Orchestrator started: scan keys {self.scan_keys()}, "
            f"signer cooldown {self.governor.cooldown_seconds}s"
        )

        try:
            await self._stopping.wait()
        finally:
            pending = tasks + list(self._scan_tasks)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Orchestrator stopped")

    def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()

    async def run_once(self) -> Optional[BundleResult]:
        """Scan every key once and execute the best candidate, if any."""
        keys = self.scan_keys()
        results = await asyncio.gather(
            *(self.scan(key) for key in keys), return_exceptions=True
        )
        candidates = []
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.error(f"Scan {key} failed: {result!r}")
                self._record_error(f"scan:{key}", result)
            elif result is not None:
                candidates.append(result)

        self.recompute_thresholds()
        ranked = rank_opportunities(candidates)
        if not ranked:
            logger.info("No opportunities this cycle")
            return None
        if self.governor.tripped:
            logger.warning("Circuit breaker tripped, not executing")
            return None
        return await self.execute(ranked[0])
