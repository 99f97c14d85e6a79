"""
Unit tests for gas settings, bundle construction and the submission lifecycle
"""

from dataclasses import replace
from decimal import Decimal

import pytest
from eth_abi import decode
from web3 import Web3

from flashloan_arbitrage.abi import (
    BALANCER_FLASH_LOAN_SIGNATURE,
    BALANCER_FLASH_LOAN_TYPES,
    EXECUTE_ARB_SIGNATURE,
    EXECUTE_ARB_TYPES,
    EXECUTE_CROSS_CHAIN_TYPES,
    EXECUTE_TRIANGULAR_SIGNATURE,
    EXECUTE_TRIANGULAR_TYPES,
)
from flashloan_arbitrage.bundle import (
    BundleBuilder,
    BundleSubmitter,
    compute_gas_settings,
    congestion_multiplier,
)
from flashloan_arbitrage.constants import BALANCER_VAULT_ADDRESS
from flashloan_arbitrage.exceptions import (
    NetworkError,
    SimulationFailedError,
    SubmissionError,
)
from flashloan_arbitrage.flash_loans import providers_from_config
from flashloan_arbitrage.parameter_validator import ParameterValidator
from flashloan_arbitrage.types import (
    BlockInfo,
    BundleRequest,
    BundleState,
    FeeData,
    GasSettings,
    Included,
    NotIncluded,
    OpportunityKind,
    RelayUnavailable,
    SimulationFailed,
    SimulationResult,
    SubmissionFailed,
)
from flashloan_arbitrage.utils import gwei_to_wei

from fakes import (
    USDC,
    USDT,
    WETH,
    FakeChainReader,
    FakeRelay,
    make_config,
    make_opportunity,
    make_signer,
)


class CapturingSigner:
    def __init__(self):
        self.signed = []

    def address(self) -> str:
        return "0x000000000000000000000000000000000000dEaD"

    def sign(self, tx):
        self.signed.append(tx)
        return "0x02f8"


@pytest.fixture
def params():
    return ParameterValidator().create_safe_parameters()


def make_builder(params, signer=None, reader=None):
    config = make_config()
    return BundleBuilder(
        {c.chain_id: c for c in config.chains},
        {1: reader or FakeChainReader()},
        signer or CapturingSigner(),
        providers_from_config(config.chains),
        params,
    )


def make_request(target_block=101) -> BundleRequest:
    return BundleRequest(
        opportunity_id="opp-1",
        chain_id=1,
        transactions=("0x02f8",),
        target_block=target_block,
        gas=GasSettings(gwei_to_wei(5), gwei_to_wei(2), 800_000),
    )


class TestGasSettings:
    FEE = FeeData(base_fee=gwei_to_wei(3), suggested_priority=gwei_to_wei(2))

    def test_congestion_multiplier(self):
        assert congestion_multiplier(BlockInfo(28_000_000, 30_000_000)) == 1.5
        assert congestion_multiplier(BlockInfo(22_000_000, 30_000_000)) == 1.3
        assert congestion_multiplier(BlockInfo(16_000_000, 30_000_000)) == 1.1
        assert congestion_multiplier(BlockInfo(15_000_000, 30_000_000)) == 1.0
        assert congestion_multiplier(BlockInfo(0, 0)) == 1.0

    def test_priority_fee_capped(self, params):
        gas = compute_gas_settings(self.FEE, BlockInfo(15_000_000, 30_000_000), params)

        # 2 gwei x 1.2 urgency exceeds the 2 gwei cap
        assert gas.max_priority_fee_per_gas == gwei_to_wei(2)
        assert gas.max_fee_per_gas == gwei_to_wei(5)
        assert gas.gas_limit == 800_000

    def test_congested_block_raises_max_fee(self, params):
        gas = compute_gas_settings(self.FEE, BlockInfo(28_000_000, 30_000_000), params)
        assert gas.max_fee_per_gas == gwei_to_wei("6.5")

    def test_max_fee_capped(self, params):
        fee = FeeData(base_fee=gwei_to_wei(300), suggested_priority=gwei_to_wei(1))
        gas = compute_gas_settings(fee, BlockInfo(0, 30_000_000), params)

        assert gas.max_fee_per_gas == gwei_to_wei(20)
        assert gas.max_priority_fee_per_gas <= gas.max_fee_per_gas

    def test_priority_never_exceeds_max_fee(self, params):
        tight = replace(params, max_fee_per_gas_gwei=1.0)
        gas = compute_gas_settings(self.FEE, BlockInfo(0, 30_000_000), tight)

        assert gas.max_fee_per_gas == gwei_to_wei(1)
        assert gas.max_priority_fee_per_gas == gwei_to_wei(1)


class TestBundleBuilder:
    def test_dual_venue_execution_encoding(self, params):
        builder = make_builder(params)
        data = builder.encode_execution(make_opportunity())

        assert data[:4] == Web3.keccak(text=EXECUTE_ARB_SIGNATURE)[:4]
        token, amount, path, reverse, min_profit = decode(EXECUTE_ARB_TYPES, data[4:])
        assert Web3.to_checksum_address(token) == USDC
        assert amount == 2_000_000_000
        assert [Web3.to_checksum_address(p) for p in path] == [USDC, WETH]
        assert reverse is False
        # 15 USDC net less 1% slippage tolerance
        assert min_profit == 14_850_000

    def test_wider_opportunity_slippage_lowers_min_profit(self, params):
        data = make_builder(params).encode_execution(make_opportunity(slippage_bps=300.0))

        *_, min_profit = decode(EXECUTE_ARB_TYPES, data[4:])
        # the pair's 3% estimate outweighs the 1% configured tolerance
        assert min_profit == 14_550_000

    def test_triangular_execution_encoding(self, params):
        opportunity = make_opportunity(
            kind=OpportunityKind.TRIANGULAR,
            path=("WETH", "USDC", "USDT", "WETH"),
            venues=("uniswap", "sushiswap", "uniswap"),
            amount_in=Decimal("1"),
            net_profit=Decimal("0.016"),
        )
        data = make_builder(params).encode_execution(opportunity)

        assert data[:4] == Web3.keccak(text=EXECUTE_TRIANGULAR_SIGNATURE)[:4]
        token, amount, path, _ = decode(EXECUTE_TRIANGULAR_TYPES, data[4:])
        assert Web3.to_checksum_address(token) == WETH
        assert amount == 10**18
        assert [Web3.to_checksum_address(p) for p in path] == [WETH, USDC, USDT]

    def test_cross_chain_execution_encodes_destination(self, params):
        opportunity = make_opportunity(
            kind=OpportunityKind.CROSS_CHAIN, chain_ids=(1, 42161)
        )
        data = make_builder(params).encode_execution(opportunity)
        _, _, dest_chain, _ = decode(EXECUTE_CROSS_CHAIN_TYPES, data[4:])
        assert dest_chain == 42161

    @pytest.mark.asyncio
    async def test_build_targets_next_block(self, params):
        signer = CapturingSigner()
        builder = make_builder(params, signer=signer)

        request = await builder.build(make_opportunity())

        assert request.target_block == 101
        assert request.transactions == ("0x02f8",)
        tx = signer.signed[0]
        assert tx["type"] == 2
        assert tx["chainId"] == 1
        assert tx["nonce"] == 7
        assert tx["to"] == BALANCER_VAULT_ADDRESS
        assert tx["maxFeePerGas"] == request.gas.max_fee_per_gas

        call = Web3.to_bytes(hexstr=tx["data"])
        assert call[:4] == Web3.keccak(text=BALANCER_FLASH_LOAN_SIGNATURE)[:4]
        _, tokens, amounts, user_data = decode(BALANCER_FLASH_LOAN_TYPES, call[4:])
        assert [Web3.to_checksum_address(t) for t in tokens] == [USDC]
        assert list(amounts) == [2_000_000_000]
        assert user_data[:4] == Web3.keccak(text=EXECUTE_ARB_SIGNATURE)[:4]

    @pytest.mark.asyncio
    async def test_build_signs_type_two_transaction(self, params):
        builder = make_builder(params, signer=make_signer())
        request = await builder.build(make_opportunity())

        assert request.transactions[0].startswith("0x02")


class TestBundleSubmitter:
    @pytest.mark.asyncio
    async def test_included(self):
        relay = FakeRelay()
        submitter = BundleSubmitter(relay, retry_delay_seconds=0)

        result = await submitter.attempt(make_request())

        assert result == Included(block=101, gas_used=300_000)
        assert submitter.last_attempt.states == [
            BundleState.CREATED,
            BundleState.SIMULATED_OK,
            BundleState.SUBMITTED,
            BundleState.RESOLVED_INCLUDED,
        ]

    @pytest.mark.asyncio
    async def test_failed_simulation_never_submits(self):
        relay = FakeRelay(simulation=SimulationResult(ok=False, revert_reason="K"))
        submitter = BundleSubmitter(relay)

        result = await submitter.attempt(make_request())

        assert result == SimulationFailed(reason="K")
        assert relay.submit_calls == []
        assert submitter.last_attempt.state is BundleState.SIMULATED_FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            SimulationFailedError("rejected", reason="execution reverted"),
            NetworkError("relay down"),
        ],
    )
    async def test_simulation_errors_never_submit(self, error):
        relay = FakeRelay(simulate_error=error)
        result = await BundleSubmitter(relay).attempt(make_request())

        assert isinstance(result, SimulationFailed)
        assert relay.submit_calls == []

    @pytest.mark.asyncio
    async def test_submit_retried_then_succeeds(self):
        relay = FakeRelay(submit_errors=[NetworkError("HTTP 503")])
        submitter = BundleSubmitter(relay, max_submit_retries=2, retry_delay_seconds=0)

        result = await submitter.attempt(make_request())

        assert isinstance(result, Included)
        assert len(relay.submit_calls) == 2

    @pytest.mark.asyncio
    async def test_submit_retries_bounded(self):
        relay = FakeRelay(
            submit_errors=[SubmissionError("HTTP 400", reason="bad bundle")] * 5
        )
        submitter = BundleSubmitter(relay, max_submit_retries=2, retry_delay_seconds=0)

        result = await submitter.attempt(make_request())

        assert isinstance(result, SubmissionFailed)
        assert len(relay.submit_calls) == 3
        assert relay.resolution_calls == 0
        assert submitter.last_attempt.state is BundleState.RESOLVED_ERROR

    @pytest.mark.asyncio
    async def test_unreachable_relay_on_submit(self):
        relay = FakeRelay(submit_errors=[NetworkError("HTTP 503")] * 5)
        submitter = BundleSubmitter(relay, max_submit_retries=2, retry_delay_seconds=0)

        result = await submitter.attempt(make_request())

        assert isinstance(result, RelayUnavailable)
        assert result.outcome == "relay_unavailable"
        assert len(relay.submit_calls) == 3
        assert relay.resolution_calls == 0

    @pytest.mark.asyncio
    async def test_node_error_while_resolving(self):
        relay = FakeRelay(resolution_error=NetworkError("connection reset"))
        submitter = BundleSubmitter(relay)

        result = await submitter.attempt(make_request())

        assert isinstance(result, RelayUnavailable)
        assert submitter.last_attempt.state is BundleState.RESOLVED_ERROR

    @pytest.mark.asyncio
    async def test_relay_rejection_while_resolving(self):
        relay = FakeRelay(resolution_error=SubmissionError("bundle dropped", reason="dropped"))

        result = await BundleSubmitter(relay).attempt(make_request())

        assert isinstance(result, SubmissionFailed)

    @pytest.mark.asyncio
    async def test_resolution_timeout_is_not_included(self):
        relay = FakeRelay(resolution_delay=1.0)
        submitter = BundleSubmitter(relay, grace_blocks=1, block_time_seconds=0.01)

        result = await submitter.attempt(make_request())

        assert result == NotIncluded()
        assert submitter.last_attempt.state is BundleState.RESOLVED_NOT_INCLUDED

    def test_resolution_timeout_covers_grace_window(self):
        submitter = BundleSubmitter(FakeRelay(), grace_blocks=2, block_time_seconds=12)
        assert submitter.resolution_timeout == 36
