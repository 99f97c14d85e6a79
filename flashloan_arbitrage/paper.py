"""
PAPER-MODE SIMULATION HARNESS. Not for live execution.

Seeded random-walk ChainReader and a relay that never broadcasts, used by
``--paper`` runs and tests. Live runs read prices exclusively from
Web3ChainReader; nothing in the live path imports this module.
"""

import logging
import random
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from .config_schema import ChainConfig
from .interfaces import SystemTimeProvider, TimeProvider
from .relay import BundleHandle, transaction_hash
from .types import (
    BlockInfo,
    BundleResult,
    FeeData,
    Included,
    NotIncluded,
    SimulationResult,
)
from .utils import gwei_to_wei

logger = logging.getLogger(__name__)

STABLE_MARKERS = ("USD", "DAI")
DEFAULT_STABLE_PRICE = Decimal("2000")
SWAP_FEE = Decimal("0.003")


def default_reference_prices(chain: ChainConfig) -> Dict[str, Decimal]:
    """Units of each token per native token; stables near 2000, others at parity."""
    prices = {}
    for symbol in chain.tokens:
        if symbol == chain.native_token:
            prices[symbol] = Decimal("1")
        elif any(marker in symbol.upper() for marker in STABLE_MARKERS):
            prices[symbol] = DEFAULT_STABLE_PRICE
        else:
            prices[symbol] = Decimal("1")
    return prices


class PaperChainReader:
    """
    Simulated chain with per-venue random price noise.

    Args:
        chain: Chain configuration (venues and tokens)
        seed: Random seed; identical seeds replay identical quotes
        noise_bps: Maximum per-quote deviation from the reference price
        base_fee_gwei: Mean simulated base fee
        reference_prices: Token units per native token
    """

    def __init__(
        self,
        chain: ChainConfig,
        seed: int = 42,
        noise_bps: float = 40.0,
        base_fee_gwei: float = 10.0,
        reference_prices: Optional[Dict[str, Decimal]] = None,
        time_provider: Optional[TimeProvider] = None,
    ):
        self.chain_id = chain.chain_id
        self.chain = chain
        self.noise_bps = noise_bps
        self.base_fee_gwei = base_fee_gwei
        self.prices = reference_prices or default_reference_prices(chain)
        self.time_provider = time_provider or SystemTimeProvider()
        self._rng = random.Random(seed)
        self._started = self.time_provider.current_timestamp()
        self._genesis_block = 1_000_000

    def _noise(self) -> Decimal:
        deviation = self._rng.uniform(-self.noise_bps, self.noise_bps)
        return Decimal("1") + Decimal(str(deviation)) / Decimal("10000")

    async def quote(
        self, venue: str, token_in: str, token_out: str, amount_in: Decimal
    ) -> Optional[Decimal]:
        if venue not in self.chain.venues:
            return None
        price_in = self.prices.get(token_in)
        price_out = self.prices.get(token_out)
        if not price_in or not price_out or amount_in <= 0:
            return None
        return amount_in * price_out / price_in * (Decimal("1") - SWAP_FEE) * self._noise()

    async def fee_data(self) -> FeeData:
        base = self.base_fee_gwei * self._rng.uniform(0.8, 1.2)
        return FeeData(base_fee=gwei_to_wei(base), suggested_priority=gwei_to_wei(1))

    async def block_number(self) -> int:
        elapsed = self.time_provider.current_timestamp() - self._started
        return self._genesis_block + int(elapsed / self.chain.block_time_seconds)

    async def block(self, number: int) -> BlockInfo:
        gas_limit = 30_000_000
        return BlockInfo(
            gas_used=int(gas_limit * self._rng.uniform(0.4, 0.95)), gas_limit=gas_limit
        )

    async def transaction_count(self, address: str) -> int:
        return 0

    async def transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return None


class PaperRelayClient:
    """Relay stand-in that resolves bundles randomly and never broadcasts."""

    def __init__(self, seed: int = 7, inclusion_rate: float = 0.5, gas_used: int = 350_000):
        self._rng = random.Random(seed)
        self.inclusion_rate = inclusion_rate
        self.gas_used = gas_used
        self.submitted = 0

    async def simulate(self, txs: Sequence[str], target_block: int) -> SimulationResult:
        return SimulationResult(ok=True, gas_used=self.gas_used)

    async def submit(self, txs: Sequence[str], target_block: int) -> BundleHandle:
        self.submitted += 1
        handle = BundleHandle(
            bundle_hash=f"paper-{self.submitted}",
            target_block=target_block,
            tx_hashes=tuple(transaction_hash(tx) for tx in txs),
        )
        logger.info(f"[PAPER] bundle {handle.bundle_hash} for block {target_block} not broadcast")
        return handle

    async def await_resolution(self, handle: BundleHandle, timeout: float) -> BundleResult:
        if self._rng.random() < self.inclusion_rate:
            return Included(block=handle.target_block, gas_used=self.gas_used)
        return NotIncluded()
