"""Tests for the collaborator protocols."""

import time

from flashloan_arbitrage.interfaces import (
    ChainReader,
    DeterministicTimeProvider,
    RelayClient,
    Signer,
    SystemTimeProvider,
    TimeProvider,
)
from flashloan_arbitrage.paper import PaperChainReader, PaperRelayClient

from fakes import FakeChainReader, FakeRelay, make_config, make_signer


def test_system_time_provider():
    provider = SystemTimeProvider()
    assert isinstance(provider, TimeProvider)
    assert abs(provider.current_timestamp() - time.time()) < 1.0


def test_deterministic_time_provider():
    provider = DeterministicTimeProvider(start_time=1000.0)
    assert isinstance(provider, TimeProvider)

    provider.advance_time(2.5)

    assert provider.current_timestamp() == 1002.5

    provider.set_time(500.0)
    assert provider.current_timestamp() == 500.0


def test_implementations_satisfy_protocols():
    chain = make_config().chains[0]

    assert isinstance(FakeChainReader(), ChainReader)
    assert isinstance(PaperChainReader(chain), ChainReader)
    assert isinstance(FakeRelay(), RelayClient)
    assert isinstance(PaperRelayClient(), RelayClient)
    assert isinstance(make_signer(), Signer)
