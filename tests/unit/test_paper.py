"""
Tests for the paper-mode chain reader and relay
"""

from decimal import Decimal

import pytest

from flashloan_arbitrage.interfaces import DeterministicTimeProvider
from flashloan_arbitrage.paper import (
    PaperChainReader,
    PaperRelayClient,
    default_reference_prices,
)
from flashloan_arbitrage.types import Included, NotIncluded

from fakes import make_config


@pytest.fixture
def chain():
    return make_config().chains[0]


def test_reference_prices(chain):
    prices = default_reference_prices(chain)
    assert prices == {
        "WETH": Decimal("1"),
        "USDC": Decimal("2000"),
        "USDT": Decimal("2000"),
    }


@pytest.mark.asyncio
async def test_same_seed_replays_same_quotes(chain):
    first = PaperChainReader(chain, seed=3)
    second = PaperChainReader(chain, seed=3)

    a = [await first.quote("uniswap", "WETH", "USDC", Decimal("1")) for _ in range(5)]
    b = [await second.quote("uniswap", "WETH", "USDC", Decimal("1")) for _ in range(5)]

    assert a == b
    # 0.3% swap fee and at most 40 bps of noise around 2000
    assert all(Decimal("1984") < q < Decimal("2002") for q in a)


@pytest.mark.asyncio
async def test_unknown_venue_or_token_has_no_quote(chain):
    reader = PaperChainReader(chain)

    assert await reader.quote("curve", "WETH", "USDC", Decimal("1")) is None
    assert await reader.quote("uniswap", "WETH", "LINK", Decimal("1")) is None
    assert await reader.quote("uniswap", "WETH", "USDC", Decimal("0")) is None


@pytest.mark.asyncio
async def test_block_number_follows_clock(chain):
    clock = DeterministicTimeProvider()
    reader = PaperChainReader(chain, time_provider=clock)
    start = await reader.block_number()

    clock.advance_time(36)

    assert await reader.block_number() == start + 3


@pytest.mark.asyncio
async def test_relay_never_fails_simulation():
    relay = PaperRelayClient(inclusion_rate=1.0, gas_used=250_000)

    simulation = await relay.simulate(["0x02f8"], 101)
    handle = await relay.submit(["0x02f8"], 101)

    assert simulation.ok
    assert handle.bundle_hash == "paper-1"
    assert await relay.await_resolution(handle, timeout=1) == Included(101, 250_000)


@pytest.mark.asyncio
async def test_relay_zero_inclusion_rate():
    relay = PaperRelayClient(inclusion_rate=0.0)
    handle = await relay.submit(["0x02f8"], 5)
    assert await relay.await_resolution(handle, timeout=1) == NotIncluded()
