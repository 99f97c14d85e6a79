"""
Bundle construction and submission.

BundleBuilder encodes the execution-contract call for an opportunity,
wraps it in the selected flash-loan provider's call and signs it for the
next block. BundleSubmitter drives one attempt through
Created -> Simulated -> Submitted -> Resolved; a failed simulation ends
the attempt before anything is broadcast.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from eth_abi import encode
from web3 import Web3

from .abi import (
    EXECUTE_ARB_SIGNATURE,
    EXECUTE_ARB_TYPES,
    EXECUTE_CROSS_CHAIN_SIGNATURE,
    EXECUTE_CROSS_CHAIN_TYPES,
    EXECUTE_TRIANGULAR_SIGNATURE,
    EXECUTE_TRIANGULAR_TYPES,
)
from .config_schema import ChainConfig
from .constants import CONGESTION_MULTIPLIERS, DEFAULT_GAS_LIMIT
from .exceptions import (
    ConfigurationError,
    NetworkError,
    SimulationFailedError,
    SubmissionError,
)
from .flash_loans import FlashLoanProvider, FlashLoanSelector
from .interfaces import ChainReader, RelayClient, Signer
from .parameter_validator import ExecutionParameters
from .types import (
    BlockInfo,
    BundleRequest,
    BundleResult,
    BundleState,
    FeeData,
    GasSettings,
    NotIncluded,
    Opportunity,
    OpportunityKind,
    RelayUnavailable,
    SimulationFailed,
    SubmissionFailed,
)
from .utils import basis_points_to_decimal, gwei_to_wei, to_base_units

logger = logging.getLogger(__name__)


def congestion_multiplier(block: BlockInfo) -> float:
    """Base-fee multiplier from the latest block's gas utilization."""
    utilization = block.utilization
    for threshold, multiplier in CONGESTION_MULTIPLIERS:
        if utilization > threshold:
            return multiplier
    return 1.0


def compute_gas_settings(
    fee: FeeData,
    block: BlockInfo,
    params: ExecutionParameters,
    gas_limit: int = DEFAULT_GAS_LIMIT,
) -> GasSettings:
    """
    EIP-1559 fee caps for an execution transaction.

    The base fee is scaled by congestion and the suggested priority fee by
    urgency; both are capped by the validated execution parameters, and the
    priority fee never exceeds the max fee.
    """
    max_fee_cap = gwei_to_wei(params.max_fee_per_gas_gwei)
    priority_cap = gwei_to_wei(params.max_priority_fee_per_gas_gwei)

    priority = min(int(fee.suggested_priority * params.priority_fee_multiplier), priority_cap)
    max_fee = min(int(fee.base_fee * congestion_multiplier(block)) + priority, max_fee_cap)
    priority = min(priority, max_fee)

    return GasSettings(
        max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority, gas_limit=gas_limit
    )


def _selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


class BundleBuilder:
    """
    Turns an opportunity into a signed single-transaction bundle.

    Args:
        chains: Chain configuration per chain id
        readers: ChainReader per chain id
        signer: Execution key
        flash_loans: Provider registry used to resolve the opportunity's provider
        params: Validated execution parameters (gas caps, slippage tolerance)
        gas_limit: Gas limit for execution transactions
    """

    def __init__(
        self,
        chains: Dict[int, ChainConfig],
        readers: Dict[int, ChainReader],
        signer: Signer,
        flash_loans: FlashLoanSelector,
        params: ExecutionParameters,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ):
        self.chains = chains
        self.readers = readers
        self.signer = signer
        self.flash_loans = flash_loans
        self.params = params
        self.gas_limit = gas_limit

    def _provider(self, opportunity: Opportunity) -> FlashLoanProvider:
        for provider in self.flash_loans.providers(opportunity.chain_id):
            if provider.name == opportunity.flash_loan_provider:
                return provider
        raise ConfigurationError(
            f"Flash-loan provider {opportunity.flash_loan_provider} not configured "
            f"on chain {opportunity.chain_id}"
        )

    def _address(self, chain: ChainConfig, symbol: str) -> str:
        return chain.tokens[symbol].address

    def encode_execution(self, opportunity: Opportunity) -> bytes:
        """Encode the execution-contract call for the opportunity's class."""
        chain = self.chains[opportunity.chain_id]
        token_in = chain.tokens[opportunity.token_in]
        amount = to_base_units(opportunity.amount_in, token_in.decimals)

        tolerance = basis_points_to_decimal(
            max(self.params.slippage_tolerance_bps, opportunity.slippage_bps)
        )
        min_profit_tokens = max(
            opportunity.net_profit * (Decimal("1") - tolerance), Decimal("0")
        )
        min_profit = to_base_units(min_profit_tokens, token_in.decimals)

        if opportunity.kind is OpportunityKind.DUAL_VENUE:
            path = [self._address(chain, t) for t in opportunity.path[:2]]
            return _selector(EXECUTE_ARB_SIGNATURE) + encode(
                EXECUTE_ARB_TYPES,
                [token_in.address, amount, path, opportunity.reverse_order, min_profit],
            )
        if opportunity.kind is OpportunityKind.TRIANGULAR:
            path = [self._address(chain, t) for t in opportunity.path[:3]]
            return _selector(EXECUTE_TRIANGULAR_SIGNATURE) + encode(
                EXECUTE_TRIANGULAR_TYPES, [token_in.address, amount, path, min_profit]
            )
        if opportunity.kind is OpportunityKind.CROSS_CHAIN:
            dest_chain = opportunity.chain_ids[1]
            return _selector(EXECUTE_CROSS_CHAIN_SIGNATURE) + encode(
                EXECUTE_CROSS_CHAIN_TYPES,
                [token_in.address, amount, dest_chain, min_profit],
            )
        raise ConfigurationError(f"Unsupported opportunity kind: {opportunity.kind}")

    async def gas_settings(self, chain_id: int) -> Tuple[GasSettings, int]:
        """Gas settings for the next block, and the current block number."""
        reader = self.readers[chain_id]
        fee, current_block = await asyncio.gather(reader.fee_data(), reader.block_number())
        block = await reader.block(current_block)
        return compute_gas_settings(fee, block, self.params, self.gas_limit), current_block

    async def build(self, opportunity: Opportunity) -> BundleRequest:
        chain_id = opportunity.chain_id
        chain = self.chains[chain_id]
        reader = self.readers[chain_id]
        provider = self._provider(opportunity)

        gas, current_block = await self.gas_settings(chain_id)
        token_in = chain.tokens[opportunity.token_in]
        call_data = provider.build_call_data(
            receiver=chain.executor_contract,
            token_address=token_in.address,
            amount=to_base_units(opportunity.amount_in, token_in.decimals),
            user_data=self.encode_execution(opportunity),
        )
        nonce = await reader.transaction_count(self.signer.address())

        tx = {
            "type": 2,
            "chainId": chain_id,
            "nonce": nonce,
            "to": Web3.to_checksum_address(provider.address),
            "value": 0,
            "data": Web3.to_hex(call_data),
            "gas": gas.gas_limit,
            "maxFeePerGas": gas.max_fee_per_gas,
            "maxPriorityFeePerGas": gas.max_priority_fee_per_gas,
        }
        signed = self.signer.sign(tx)

        return BundleRequest(
            opportunity_id=opportunity.id,
            chain_id=chain_id,
            transactions=(signed,),
            target_block=current_block + 1,
            gas=gas,
        )


@dataclass
class BundleAttempt:
    """State history of one submission attempt."""

    request: BundleRequest
    states: List[BundleState] = field(default_factory=lambda: [BundleState.CREATED])

    @property
    def state(self) -> BundleState:
        return self.states[-1]

    def transition(self, state: BundleState, **extra) -> None:
        self.states.append(state)
        log = {
            "opportunity_id": self.request.opportunity_id,
            "target_block": self.request.target_block,
            "state": state.value,
        }
        log.update(extra)
        logger.info(f"BUNDLE_STATE: {log}")


class BundleSubmitter:
    """
    Runs bundle attempts against a relay.

    Args:
        relay: Relay client
        grace_blocks: Blocks after the target still accepted for inclusion
        block_time_seconds: Expected block interval, bounds the resolution wait
        max_submit_retries: Extra submit attempts after a relay error
        retry_delay_seconds: Base delay between submit retries, doubled per attempt
    """

    def __init__(
        self,
        relay: RelayClient,
        grace_blocks: int = 1,
        block_time_seconds: float = 12.0,
        max_submit_retries: int = 2,
        retry_delay_seconds: float = 0.25,
    ):
        self.relay = relay
        self.grace_blocks = grace_blocks
        self.block_time_seconds = block_time_seconds
        self.max_submit_retries = max_submit_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.last_attempt: Optional[BundleAttempt] = None

    @property
    def resolution_timeout(self) -> float:
        return (self.grace_blocks + 1) * self.block_time_seconds

    async def attempt(self, request: BundleRequest) -> BundleResult:
        attempt = BundleAttempt(request)
        self.last_attempt = attempt
        txs = list(request.transactions)

        try:
            simulation = await self.relay.simulate(txs, request.target_block)
        except SimulationFailedError as e:
            reason = e.reason or str(e)
            attempt.transition(BundleState.SIMULATED_FAILED, reason=reason)
            return SimulationFailed(reason=reason)
        except (NetworkError, SubmissionError) as e:
            attempt.transition(BundleState.SIMULATED_FAILED, reason=str(e))
            return SimulationFailed(reason=f"simulation unavailable: {e}")

        if not simulation.ok:
            reason = simulation.revert_reason or "reverted"
            attempt.transition(BundleState.SIMULATED_FAILED, reason=reason)
            return SimulationFailed(reason=reason)
        attempt.transition(BundleState.SIMULATED_OK, gas_used=simulation.gas_used)

        handle = None
        last_error: Optional[Exception] = None
        for retry in range(self.max_submit_retries + 1):
            try:
                handle = await self.relay.submit(txs, request.target_block)
                break
            except (NetworkError, SubmissionError) as e:
                last_error = e
                logger.warning(
                    f"Bundle submit failed for {request.opportunity_id} "
                    f"(attempt {retry + 1}/{self.max_submit_retries + 1}): {e}"
                )
                if retry < self.max_submit_retries:
                    await asyncio.sleep(self.retry_delay_seconds * (2**retry))

        if handle is None:
            attempt.transition(BundleState.RESOLVED_ERROR, reason=str(last_error))
            if isinstance(last_error, NetworkError):
                return RelayUnavailable(reason=str(last_error))
            return SubmissionFailed(reason=str(last_error))
        attempt.transition(BundleState.SUBMITTED)

        timeout = self.resolution_timeout
        try:
            result = await asyncio.wait_for(
                self.relay.await_resolution(handle, timeout), timeout=timeout
            )
        except asyncio.TimeoutError:
            result = NotIncluded()
        except NetworkError as e:
            attempt.transition(BundleState.RESOLVED_ERROR, reason=str(e))
            return RelayUnavailable(reason=str(e))
        except SubmissionError as e:
            attempt.transition(BundleState.RESOLVED_ERROR, reason=str(e))
            return SubmissionFailed(reason=str(e))

        if isinstance(result, SubmissionFailed):
            attempt.transition(BundleState.RESOLVED_ERROR, reason=result.reason)
        elif isinstance(result, NotIncluded):
            attempt.transition(BundleState.RESOLVED_NOT_INCLUDED)
        else:
            attempt.transition(BundleState.RESOLVED_INCLUDED, outcome=result.outcome)
        return result
