"""
web3.py implementation of the ChainReader protocol.

Quotes come from Uniswap V2 style routers (getAmountsOut). Blocking web3
calls run in the default executor; rate-limit errors are retried with
exponential backoff before surfacing as NetworkError.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from .abi import UNISWAP_V2_ROUTER_ABI
from .config_loader import resolve_secret
from .config_schema import ChainConfig, TokenConfig
from .constants import FALLBACK_BASE_FEE_GWEI
from .exceptions import NetworkError, QuoteUnavailable
from .types import BlockInfo, FeeData
from .utils import from_base_units, gwei_to_wei, to_base_units

logger = logging.getLogger(__name__)

RETRYABLE_MARKERS = ("429", "Too Many Requests", "rate limit", "-32005", "timed out")


def _is_retryable(error: Exception) -> bool:
    message = str(error)
    return any(marker in message for marker in RETRYABLE_MARKERS)


class Web3ChainReader:
    """
    Read-only accessor for one chain.

    Args:
        chain_id: Chain identifier
        web3: Connected Web3 instance
        venues: Venue name to router address
        tokens: Token symbol to address/decimals
        max_retries: Attempts per call for rate-limited requests
        backoff_seconds: Base delay, doubled per attempt
    """

    def __init__(
        self,
        chain_id: int,
        web3: Web3,
        venues: Dict[str, str],
        tokens: Dict[str, TokenConfig],
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        endpoint: str = "",
    ):
        self.chain_id = chain_id
        self.web3 = web3
        self.tokens = tokens
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.endpoint = endpoint
        self._routers = {
            name: web3.eth.contract(
                address=Web3.to_checksum_address(address), abi=UNISWAP_V2_ROUTER_ABI
            )
            for name, address in venues.items()
        }

    @classmethod
    def from_config(cls, chain: ChainConfig, request_timeout: float = 10.0):
        """Connect to the chain's RPC endpoint named by ``rpc_url_env``."""
        rpc_url = resolve_secret(chain.rpc_url_env)
        web3 = Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        return cls(
            chain_id=chain.chain_id,
            web3=web3,
            venues=chain.venues,
            tokens=chain.tokens,
            endpoint=chain.name,
        )

    async def _call(self, fn: Callable[[], Any], description: str) -> Any:
        """Run a blocking web3 call off the event loop with backoff on rate limits."""
        loop = asyncio.get_running_loop()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return await loop.run_in_executor(None, fn)
            except (ContractLogicError, TransactionNotFound):
                raise
            except Exception as e:
                last_error = e
                if _is_retryable(e) and attempt < self.max_retries - 1:
                    wait_time = self.backoff_seconds * (2**attempt)
                    logger.debug(
                        f"Rate limited on {self.endpoint} ({description}), "
                        f"retrying in {wait_time:.1f}s"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                break

        raise NetworkError(
            f"{description} failed on chain {self.chain_id}: {last_error}",
            endpoint=self.endpoint,
            details={"chain_id": self.chain_id},
        ) from last_error

    async def quote(
        self, venue: str, token_in: str, token_out: str, amount_in: Decimal
    ) -> Optional[Decimal]:
        """
        Quote a single hop on a venue.

        Returns:
            Output amount in token units, or None when the venue has no
            liquidity for the pair or the call reverts
        """
        router = self._routers.get(venue)
        src = self.tokens.get(token_in)
        dst = self.tokens.get(token_out)
        if router is None or src is None or dst is None:
            logger.warning(
                f"Quote skipped on chain {self.chain_id}: unknown venue or token "
                f"({venue}, {token_in}, {token_out})"
            )
            return None

        raw_in = to_base_units(amount_in, src.decimals)
        if raw_in <= 0:
            return None

        try:
            raw_out = await self._amount_out(router, venue, (token_in, token_out), raw_in)
        except QuoteUnavailable as e:
            logger.debug(f"No quote on chain {self.chain_id}: {e}")
            return None
        return from_base_units(raw_out, dst.decimals)

    async def _amount_out(self, router, venue: str, symbols, raw_in: int) -> int:
        path = [self.tokens[s].address for s in symbols]
        try:
            amounts = await self._call(
                lambda: router.functions.getAmountsOut(raw_in, path).call(),
                f"getAmountsOut {venue} {'->'.join(symbols)}",
            )
        except ContractLogicError as e:
            raise QuoteUnavailable(
                f"{venue} reverted: {e}", venue=venue, path=symbols
            ) from e

        if not amounts or amounts[-1] <= 0:
            raise QuoteUnavailable(f"{venue} has no liquidity", venue=venue, path=symbols)
        return int(amounts[-1])

    async def fee_data(self) -> FeeData:
        block = await self._call(lambda: self.web3.eth.get_block("latest"), "get_block")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            base_fee = await self._call(lambda: self.web3.eth.gas_price, "gas_price")
        if not base_fee:
            base_fee = gwei_to_wei(FALLBACK_BASE_FEE_GWEI)

        try:
            priority = await self._call(
                lambda: self.web3.eth.max_priority_fee, "max_priority_fee"
            )
        except NetworkError as e:
            logger.debug(f"No priority fee suggestion on chain {self.chain_id}: {e}")
            priority = 0

        return FeeData(base_fee=int(base_fee), suggested_priority=int(priority))

    async def block_number(self) -> int:
        return int(await self._call(lambda: self.web3.eth.block_number, "block_number"))

    async def block(self, number: int) -> BlockInfo:
        block = await self._call(lambda: self.web3.eth.get_block(number), "get_block")
        return BlockInfo(gas_used=int(block["gasUsed"]), gas_limit=int(block["gasLimit"]))

    async def transaction_count(self, address: str) -> int:
        checksum = Web3.to_checksum_address(address)
        return int(
            await self._call(
                lambda: self.web3.eth.get_transaction_count(checksum, "pending"),
                "get_transaction_count",
            )
        )

    async def transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            receipt = await self._call(
                lambda: self.web3.eth.get_transaction_receipt(tx_hash),
                "get_transaction_receipt",
            )
        except TransactionNotFound:
            return None
        return dict(receipt) if receipt else None
