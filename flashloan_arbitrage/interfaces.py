"""
Collaborator protocols for the arbitrage pipeline.

The core talks to the chain, the relay, the signer and the clock only
through these protocols, so tests and the paper harness can substitute
their own implementations without any process-wide singletons.
"""

import time
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, Sequence, runtime_checkable

from .types import BlockInfo, BundleResult, FeeData, SimulationResult


@runtime_checkable
class TimeProvider(Protocol):
    """Protocol for time-related operations."""

    def current_timestamp(self) -> float:
        """Get current Unix timestamp."""
        ...


@runtime_checkable
class ChainReader(Protocol):
    """Read-only, side-effect-free view of one chain.

    ``quote`` returns ``None`` when the venue has no liquidity for the path
    or the call reverts. Transport failures raise ``NetworkError``.
    """

    chain_id: int

    async def quote(
        self, venue: str, token_in: str, token_out: str, amount_in: Decimal
    ) -> Optional[Decimal]:
        ...

    async def fee_data(self) -> FeeData:
        ...

    async def block_number(self) -> int:
        ...

    async def block(self, number: int) -> BlockInfo:
        ...

    async def transaction_count(self, address: str) -> int:
        """Pending nonce of an account."""
        ...

    async def transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt of a mined transaction, or None if not mined."""
        ...


@runtime_checkable
class Signer(Protocol):
    """Holds the execution key and signs transactions."""

    def address(self) -> str:
        ...

    def sign(self, tx: Dict[str, Any]) -> str:
        """Sign a transaction dict and return the raw transaction as hex."""
        ...


@runtime_checkable
class RelayClient(Protocol):
    """Private bundle relay."""

    async def simulate(
        self, txs: Sequence[str], target_block: int
    ) -> SimulationResult:
        ...

    async def submit(self, txs: Sequence[str], target_block: int) -> Any:
        """Submit a bundle and return an opaque handle."""
        ...

    async def await_resolution(self, handle: Any, timeout: float) -> BundleResult:
        ...


class SystemTimeProvider:
    """Production time provider using system time."""

    def current_timestamp(self) -> float:
        return time.time()


class DeterministicTimeProvider:
    """Deterministic time provider for tests and replays."""

    def __init__(self, start_time: float = 1640995200.0):  # 2022-01-01
        self._current_time = start_time

    def current_timestamp(self) -> float:
        return self._current_time

    def advance_time(self, seconds: float) -> None:
        """Manually advance time by specified seconds."""
        self._current_time += seconds

    def set_time(self, timestamp: float) -> None:
        """Set current time to specific timestamp."""
        self._current_time = timestamp
