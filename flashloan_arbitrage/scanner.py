"""
Opportunity scanner.

Evaluates configured candidates against live quotes from each chain's
ChainReader and emits scored, immutable Opportunity records:

- dual-venue round trips (both execution orders across two venues)
- fixed three-hop triangular cycles
- cross-chain spreads settled over a bridge route

A failure on one pair or path is recorded on the ScanReport and never
aborts the rest of the scan.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .config_schema import (
    BotConfig,
    BridgeConfig,
    CrossChainConfig,
    PairConfig,
    TriangleConfig,
)
from .constants import (
    CRITICAL_SPREAD_BPS,
    PREFERRED_CHAIN_BONUS,
    PRIORITY_MAX,
    PRIORITY_MIN,
    PROFIT_BUCKETS,
    SPREAD_BUCKETS_BPS,
    TRIANGULAR_BONUS,
    TRIANGULAR_GAS_FACTOR,
)
from .exceptions import NetworkError
from .flash_loans import FlashLoanSelector
from .interfaces import ChainReader, SystemTimeProvider, TimeProvider
from .price_guard import PriceGuard
from .types import BridgeRoute, FeeData, Opportunity, OpportunityKind, ThresholdSet
from .utils import WEI_PER_ETHER, clamp

logger = logging.getLogger(__name__)

BPS = Decimal("10000")


@dataclass
class ScanReport:
    """Result of one scan: candidates plus everything observed on the way."""

    opportunities: List[Opportunity] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    spread_observations: List[float] = field(default_factory=list)
    gas_observations: List[int] = field(default_factory=list)
    discarded: int = 0
    price_rejections: int = 0

    def merge(self, other: "ScanReport") -> None:
        self.opportunities.extend(other.opportunities)
        self.errors.extend(other.errors)
        self.spread_observations.extend(other.spread_observations)
        self.gas_observations.extend(other.gas_observations)
        self.discarded += other.discarded
        self.price_rejections += other.price_rejections

    def ranked(self) -> List[Opportunity]:
        return rank_opportunities(self.opportunities)

    @property
    def best(self) -> Optional[Opportunity]:
        ranked = self.ranked()
        return ranked[0] if ranked else None


def rank_opportunities(opportunities: Sequence[Opportunity]) -> List[Opportunity]:
    """Sort by priority desc, net profit desc, then earliest creation."""
    return sorted(opportunities, key=lambda o: o.sort_key())


def score_priority(
    net_profit_native: Decimal,
    spread_bps: float,
    preferred_chain: bool = False,
    kind: OpportunityKind = OpportunityKind.DUAL_VENUE,
) -> int:
    """
    Priority in [PRIORITY_MIN, PRIORITY_MAX].

    Profit bucket (0/1/3/5) + spread bucket (0/1/2/3) + preferred chain (0/1)
    + triangular bonus (0/1).
    """
    score = 0
    for threshold, points in PROFIT_BUCKETS:
        if net_profit_native > threshold:
            score += points
            break
    for threshold_bps, points in SPREAD_BUCKETS_BPS:
        if spread_bps > threshold_bps:
            score += points
            break
    if preferred_chain:
        score += PREFERRED_CHAIN_BONUS
    if kind is OpportunityKind.TRIANGULAR:
        score += TRIANGULAR_BONUS
    return int(clamp(score, PRIORITY_MIN, PRIORITY_MAX))


class _ChainContext:
    """Per-cycle fee data and cached native-token conversion rates for one chain."""

    def __init__(self, chain_id: int, fee: FeeData, native_token: str, rate_venue: str):
        self.chain_id = chain_id
        self.fee = fee
        self.native_token = native_token
        self.rate_venue = rate_venue
        self.rates: Dict[str, asyncio.Future] = {}


class OpportunityScanner:
    """
    Scores arbitrage candidates from chain quotes.

    Args:
        config: Validated pipeline configuration
        readers: ChainReader per chain id
        flash_loans: Flash-loan provider selector
        time_provider: Clock used to stamp opportunities
        max_concurrent_quotes: Cap on in-flight quote calls
        price_guard: Optional quote deviation check and slippage estimator
    """

    def __init__(
        self,
        config: BotConfig,
        readers: Dict[int, ChainReader],
        flash_loans: FlashLoanSelector,
        time_provider: Optional[TimeProvider] = None,
        max_concurrent_quotes: int = 8,
        price_guard: Optional[PriceGuard] = None,
    ):
        self.config = config
        self.readers = readers
        self.flash_loans = flash_loans
        self.time_provider = time_provider or SystemTimeProvider()
        self._semaphore = asyncio.Semaphore(max_concurrent_quotes)
        self._chains = {c.chain_id: c for c in config.chains}
        self.price_guard = price_guard

    # === QUOTES AND COSTS ===

    async def _quote(
        self,
        chain_id: int,
        venue: str,
        token_in: str,
        token_out: str,
        amount: Decimal,
    ) -> Optional[Decimal]:
        async with self._semaphore:
            return await self.readers[chain_id].quote(venue, token_in, token_out, amount)

    async def _context(self, chain_id: int) -> _ChainContext:
        fee = await self.readers[chain_id].fee_data()
        chain = self._chains[chain_id]
        return _ChainContext(chain_id, fee, chain.native_token, next(iter(chain.venues)))

    async def _native_rate(self, ctx: _ChainContext, token: str) -> Optional[Decimal]:
        """Units of ``token`` per native token on the chain's rate venue, cached per cycle."""
        if token == ctx.native_token:
            return Decimal("1")
        if token not in ctx.rates:
            ctx.rates[token] = asyncio.ensure_future(
                self._quote(
                    ctx.chain_id, ctx.rate_venue, ctx.native_token, token, Decimal("1")
                )
            )
        return await ctx.rates[token]

    @staticmethod
    def gas_cost_native(
        gas_units: int, fee: FeeData, thresholds: ThresholdSet
    ) -> Decimal:
        """Gas units x current fee, scaled by the gas buffer, in native units."""
        return (
            Decimal(gas_units)
            * Decimal(fee.fee_per_gas)
            * Decimal(str(thresholds.gas_buffer_multiplier))
            / Decimal(WEI_PER_ETHER)
        )

    def _is_preferred(self, chain_id: int) -> bool:
        return self._chains[chain_id].preferred

    def _prices_accepted(
        self,
        report: ScanReport,
        chain_id: int,
        token_in: str,
        token_out: str,
        quotes: Dict[str, Decimal],
    ) -> bool:
        if self.price_guard is None or not quotes:
            return True
        check = self.price_guard.check(chain_id, token_in, token_out, quotes)
        if not check.accepted:
            report.price_rejections += 1
        return check.accepted

    def _slippage(self, chain_id: int, token_in: str, token_out: str) -> float:
        if self.price_guard is None:
            return 0.0
        return self.price_guard.slippage_bps(chain_id, token_in, token_out)

    def _make_id(
        self,
        kind: OpportunityKind,
        chain_ids: Sequence[int],
        venues: Sequence[str],
        path: Sequence[str],
        amount: Decimal,
        created_at: float,
    ) -> str:
        return (
            f"{kind.value}:{'-'.join(str(c) for c in chain_ids)}:"
            f"{'-'.join(venues)}:{'-'.join(path)}:{amount}:{int(created_at * 1000)}"
        )

    # === CHAIN SCANS ===

    async def scan_chain(
        self,
        chain_id: int,
        thresholds: ThresholdSet,
        max_trade_size: Optional[Decimal] = None,
    ) -> ScanReport:
        """Run the dual-venue and (when enabled) triangular scans for one chain."""
        report = ScanReport()
        try:
            ctx = await self._context(chain_id)
        except NetworkError as e:
            report.errors.append(f"chain {chain_id}: fee data unavailable: {e}")
            logger.warning(f"Scan of chain {chain_id} skipped: {e}")
            return report
        report.gas_observations.append(ctx.fee.fee_per_gas)

        created_at = self.time_provider.current_timestamp()
        jobs = []
        for pair in self.config.pairs:
            if pair.chain_id != chain_id:
                continue
            for amount in pair.amounts:
                jobs.append(
                    self.scan_dual_venue(
                        pair, amount, thresholds, ctx, created_at, max_trade_size
                    )
                )
        if self.config.features.enable_triangular:
            for triangle in self.config.triangles:
                if triangle.chain_id != chain_id:
                    continue
                for amount in triangle.amounts:
                    jobs.append(
                        self.scan_triangular(
                            triangle, amount, thresholds, ctx, created_at, max_trade_size
                        )
                    )

        results = await asyncio.gather(*jobs, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Scan path failed on chain {chain_id}: {result!r}")
                report.errors.append(f"chain {chain_id}: {result!r}")
            else:
                report.merge(result)

        logger.debug(
            f"SCAN_CHAIN: {{'chain_id': {chain_id}, 'paths': {len(jobs)}, "
            f"'found': {len(report.opportunities)}, 'errors': {len(report.errors)}}}"
        )
        return report

    async def _within_trade_size(
        self,
        ctx: _ChainContext,
        token: str,
        amount: Decimal,
        max_trade_size: Optional[Decimal],
    ) -> Tuple[bool, Optional[Decimal]]:
        rate = await self._native_rate(ctx, token)
        if rate is None or rate <= 0:
            return False, None
        if max_trade_size is not None and amount / rate > max_trade_size:
            return False, rate
        return True, rate

    async def scan_dual_venue(
        self,
        pair: PairConfig,
        amount: Decimal,
        thresholds: ThresholdSet,
        ctx: _ChainContext,
        created_at: float,
        max_trade_size: Optional[Decimal] = None,
    ) -> ScanReport:
        """
        Evaluate both execution orders of a two-venue round trip.

        Gross profit is the round-trip output minus the input; net profit
        further subtracts buffered gas and the flash-loan fee.
        """
        report = ScanReport()
        chain_id = pair.chain_id
        first_venue, second_venue = pair.venues

        try:
            ok, rate = await self._within_trade_size(
                ctx, pair.token_in, amount, max_trade_size
            )
        except NetworkError as e:
            report.errors.append(f"chain {chain_id}: native rate for {pair.token_in}: {e}")
            return report
        if rate is None:
            report.errors.append(
                f"chain {chain_id}: no native rate for {pair.token_in}, skipping pair"
            )
            return report
        if not ok:
            report.discarded += 1
            return report

        legs = []
        prices: Dict[str, Decimal] = {}
        orders = ((first_venue, second_venue, False), (second_venue, first_venue, True))
        for buy_venue, sell_venue, reverse in orders:
            try:
                mid = await self._quote(
                    chain_id, buy_venue, pair.token_in, pair.token_out, amount
                )
                if mid is None:
                    continue
                prices[buy_venue] = mid / amount
                final = await self._quote(
                    chain_id, sell_venue, pair.token_out, pair.token_in, mid
                )
            except NetworkError as e:
                report.errors.append(
                    f"chain {chain_id}: {buy_venue}->{sell_venue} "
                    f"{pair.token_in}/{pair.token_out}: {e}"
                )
                continue
            if final is not None:
                legs.append((buy_venue, sell_venue, reverse, final))

        accepted = self._prices_accepted(
            report, chain_id, pair.token_in, pair.token_out, prices
        )
        if not accepted or not legs:
            return report

        # one observation per round trip: the favourable order, signed
        report.spread_observations.append(
            max(float((final - amount) / amount * BPS) for _, _, _, final in legs)
        )
        slippage = 2 * self._slippage(chain_id, pair.token_in, pair.token_out)
        for buy_venue, sell_venue, reverse, final in legs:
            opportunity = self._score_round_trip(
                kind=OpportunityKind.DUAL_VENUE,
                chain_id=chain_id,
                path=(pair.token_in, pair.token_out, pair.token_in),
                venues=(buy_venue, sell_venue),
                amount=amount,
                final=final,
                gas_units=pair.gas_units,
                rate=rate,
                ctx=ctx,
                thresholds=thresholds,
                created_at=created_at,
                report=report,
                reverse_order=reverse,
                observe=False,
                slippage_bps=slippage,
            )
            if opportunity is not None:
                report.opportunities.append(opportunity)
        return report

    async def scan_triangular(
        self,
        triangle: TriangleConfig,
        amount: Decimal,
        thresholds: ThresholdSet,
        ctx: _ChainContext,
        created_at: float,
        max_trade_size: Optional[Decimal] = None,
    ) -> ScanReport:
        """Evaluate a fixed X -> Y -> Z -> X cycle; any unavailable hop discards it."""
        report = ScanReport()
        chain_id = triangle.chain_id
        x, y, z = triangle.path
        v1, v2, v3 = triangle.venues

        try:
            ok, rate = await self._within_trade_size(ctx, x, amount, max_trade_size)
            if rate is None:
                report.errors.append(f"chain {chain_id}: no native rate for {x}")
                return report
            if not ok:
                report.discarded += 1
                return report

            out_y = await self._quote(chain_id, v1, x, y, amount)
            out_z = await self._quote(chain_id, v2, y, z, out_y) if out_y else None
            final = await self._quote(chain_id, v3, z, x, out_z) if out_z else None
        except NetworkError as e:
            report.errors.append(f"chain {chain_id}: triangle {x}-{y}-{z}: {e}")
            return report

        if final is None:
            logger.debug(f"Triangle {x}-{y}-{z} on chain {chain_id} unavailable")
            return report

        hops = (
            (v1, x, y, amount, out_y),
            (v2, y, z, out_y, out_z),
            (v3, z, x, out_z, final),
        )
        for venue, token_in, token_out, amount_in, amount_out in hops:
            quotes = {venue: amount_out / amount_in}
            if not self._prices_accepted(report, chain_id, token_in, token_out, quotes):
                return report
        slippage = sum(self._slippage(chain_id, a, b) for _, a, b, _, _ in hops)

        opportunity = self._score_round_trip(
            kind=OpportunityKind.TRIANGULAR,
            chain_id=chain_id,
            path=(x, y, z, x),
            venues=(v1, v2, v3),
            amount=amount,
            final=final,
            gas_units=triangle.gas_units * TRIANGULAR_GAS_FACTOR,
            rate=rate,
            ctx=ctx,
            thresholds=thresholds,
            created_at=created_at,
            report=report,
            slippage_bps=slippage,
        )
        if opportunity is not None:
            report.opportunities.append(opportunity)
        return report

    def _score_round_trip(
        self,
        kind: OpportunityKind,
        chain_id: int,
        path: Tuple[str, ...],
        venues: Tuple[str, ...],
        amount: Decimal,
        final: Decimal,
        gas_units: int,
        rate: Decimal,
        ctx: _ChainContext,
        thresholds: ThresholdSet,
        created_at: float,
        report: ScanReport,
        reverse_order: bool = False,
        observe: bool = True,
        slippage_bps: float = 0.0,
    ) -> Optional[Opportunity]:
        gross = final - amount
        spread_bps = float(gross / amount * BPS)
        if observe:
            report.spread_observations.append(spread_bps)

        if gross <= 0:
            return None

        gas_cost = self.gas_cost_native(gas_units, ctx.fee, thresholds) * rate
        loan = self.flash_loans.select(chain_id, path[0], amount)
        if loan is None:
            report.errors.append(
                f"chain {chain_id}: no flash-loan provider for {amount} {path[0]}"
            )
            return None
        provider, loan_fee = loan

        net = gross - gas_cost - loan_fee
        if net <= 0:
            report.discarded += 1
            return None
        if spread_bps <= thresholds.min_spread_bps:
            logger.debug(
                f"Discarded {kind.value} {'-'.join(path)} on chain {chain_id}: "
                f"spread {spread_bps:.1f} bps <= {thresholds.min_spread_bps:.1f} bps"
            )
            report.discarded += 1
            return None

        net_native = net / rate
        priority = score_priority(
            net_native, spread_bps, self._is_preferred(chain_id), kind
        )
        return Opportunity(
            id=self._make_id(kind, (chain_id,), venues, path, amount, created_at),
            kind=kind,
            chain_ids=(chain_id,),
            path=path,
            amount_in=amount,
            venues=venues,
            gross_profit=gross,
            gas_estimate=gas_units,
            gas_cost=gas_cost,
            net_profit=net,
            net_profit_native=net_native,
            spread_bps=spread_bps,
            priority=priority,
            created_at=created_at,
            flash_loan_fee=loan_fee,
            flash_loan_provider=provider.name,
            reverse_order=reverse_order,
            slippage_bps=slippage_bps,
        )

    # === CROSS-CHAIN ===

    def _bridge_route(
        self, from_chain: int, to_chain: int
    ) -> Optional[BridgeConfig]:
        candidates = [
            b
            for b in self.config.bridges
            if b.from_chain == from_chain
            and b.to_chain == to_chain
            and b.transit_seconds < self.config.risk.max_bridge_seconds
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda b: b.fee)

    async def scan_cross_chain(self, thresholds: ThresholdSet) -> ScanReport:
        """Compare each tracked token's price across its two chains."""
        report = ScanReport()
        created_at = self.time_provider.current_timestamp()
        contexts: Dict[int, _ChainContext] = {}

        for entry in self.config.cross_chain:
            try:
                result = await self._scan_cross_chain_entry(
                    entry, thresholds, contexts, created_at
                )
            except NetworkError as e:
                report.errors.append(f"cross-chain {entry.token}: {e}")
                continue
            report.merge(result)

        for ctx in contexts.values():
            report.gas_observations.append(ctx.fee.fee_per_gas)
        return report

    async def _scan_cross_chain_entry(
        self,
        entry: CrossChainConfig,
        thresholds: ThresholdSet,
        contexts: Dict[int, _ChainContext],
        created_at: float,
    ) -> ScanReport:
        report = ScanReport()
        chain_a, chain_b = entry.chains

        prices = await asyncio.gather(
            self._quote(chain_a, entry.venues[chain_a], entry.token, entry.quote_token, entry.amount),
            self._quote(chain_b, entry.venues[chain_b], entry.token, entry.quote_token, entry.amount),
        )
        if prices[0] is None or prices[1] is None:
            logger.debug(f"Cross-chain {entry.token}: reference price unavailable")
            return report

        price = {chain_a: prices[0], chain_b: prices[1]}
        for chain_id in entry.chains:
            quotes = {entry.venues[chain_id]: price[chain_id] / entry.amount}
            if not self._prices_accepted(
                report, chain_id, entry.token, entry.quote_token, quotes
            ):
                return report
        buy_chain, sell_chain = (
            (chain_a, chain_b) if price[chain_a] <= price[chain_b] else (chain_b, chain_a)
        )
        low, high = price[buy_chain], price[sell_chain]
        spread_bps = float((high - low) / low * BPS)
        report.spread_observations.append(spread_bps)

        if spread_bps <= thresholds.min_spread_bps:
            report.discarded += 1
            return report

        bridge = self._bridge_route(buy_chain, sell_chain)
        if bridge is None:
            logger.debug(
                f"Cross-chain {entry.token}: no bridge {buy_chain}->{sell_chain} "
                f"under {self.config.risk.max_bridge_seconds}s"
            )
            report.discarded += 1
            return report

        gas_cost = Decimal("0")
        rates: Dict[int, Decimal] = {}
        for chain_id in (buy_chain, sell_chain):
            if chain_id not in contexts:
                contexts[chain_id] = await self._context(chain_id)
            ctx = contexts[chain_id]
            rate = await self._native_rate(ctx, entry.quote_token)
            if rate is None or rate <= 0:
                report.errors.append(
                    f"cross-chain {entry.token}: no native rate on chain {chain_id}"
                )
                return report
            rates[chain_id] = rate
            gas_cost += self.gas_cost_native(entry.gas_units, ctx.fee, thresholds) * rate

        loan = self.flash_loans.select(buy_chain, entry.quote_token, low)
        if loan is None:
            report.errors.append(
                f"cross-chain {entry.token}: no flash-loan provider for {low} {entry.quote_token}"
            )
            return report
        provider, loan_fee = loan

        gross = high - low
        net = gross - bridge.fee - gas_cost - loan_fee
        if net <= 0:
            report.discarded += 1
            return report

        net_native = net / rates[buy_chain]
        venues = (entry.venues[buy_chain], entry.venues[sell_chain])
        path = (entry.quote_token, entry.token, entry.quote_token)
        chain_ids = (buy_chain, sell_chain)
        report.opportunities.append(
            Opportunity(
                id=self._make_id(
                    OpportunityKind.CROSS_CHAIN, chain_ids, venues, path, low, created_at
                ),
                kind=OpportunityKind.CROSS_CHAIN,
                chain_ids=chain_ids,
                path=path,
                amount_in=low,
                venues=venues,
                gross_profit=gross,
                gas_estimate=entry.gas_units * 2,
                gas_cost=gas_cost,
                net_profit=net,
                net_profit_native=net_native,
                spread_bps=spread_bps,
                priority=score_priority(
                    net_native,
                    spread_bps,
                    self._is_preferred(buy_chain),
                    OpportunityKind.CROSS_CHAIN,
                ),
                created_at=created_at,
                flash_loan_fee=loan_fee,
                flash_loan_provider=provider.name,
                bridge=BridgeRoute(
                    name=bridge.name,
                    from_chain=bridge.from_chain,
                    to_chain=bridge.to_chain,
                    fee=bridge.fee,
                    transit_seconds=bridge.transit_seconds,
                ),
                alert_level="critical" if spread_bps >= CRITICAL_SPREAD_BPS else "warning",
                slippage_bps=sum(
                    self._slippage(chain_id, entry.token, entry.quote_token)
                    for chain_id in chain_ids
                ),
            )
        )
        return report
