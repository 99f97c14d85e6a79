"""
Unit tests for the private relay client
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import test_utils, web
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from flashloan_arbitrage.exceptions import (
    NetworkError,
    SimulationFailedError,
    SubmissionError,
)
from flashloan_arbitrage.relay import (
    BundleHandle,
    FlashbotsRelayClient,
    transaction_hash,
)
from flashloan_arbitrage.types import Included, NotIncluded, SubmissionFailed

from fakes import TEST_PRIVATE_KEY, FakeChainReader

RAW_TX = "0x02f86b0180843b9aca00850ba43b7400830f424094" + "00" * 20 + "80c0"


def make_client(url="http://relay.invalid", reader=None, **kwargs) -> FlashbotsRelayClient:
    return FlashbotsRelayClient.from_key(
        url, TEST_PRIVATE_KEY, reader or FakeChainReader(), **kwargs
    )


class TestAuthentication:
    def test_signature_header_recovers_auth_address(self):
        client = make_client()
        body = client._payload("eth_sendBundle", [{"txs": [RAW_TX]}])

        header = client._signature_header(body)
        address, signature = header.split(":")

        body_hash = Web3.to_hex(Web3.keccak(text=body))
        recovered = Account.recover_message(
            encode_defunct(text=body_hash), signature=signature
        )
        assert address == Account.from_key(TEST_PRIVATE_KEY).address
        assert recovered == address

    def test_payload_ids_increment(self):
        client = make_client()
        first = json.loads(client._payload("eth_callBundle", []))
        second = json.loads(client._payload("eth_callBundle", []))

        assert first["jsonrpc"] == "2.0"
        assert second["id"] == first["id"] + 1


class TestSimulateAndSubmit:
    @pytest.mark.asyncio
    async def test_simulate_success(self):
        client = make_client()
        result = {"results": [{"gasUsed": 210000}], "totalGasUsed": 210000}
        with patch.object(client, "_rpc", AsyncMock(return_value=result)) as rpc:
            simulation = await client.simulate([RAW_TX], 101)

        assert simulation.ok
        assert simulation.gas_used == 210000
        method, params = rpc.call_args.args
        assert method == "eth_callBundle"
        assert params[0]["blockNumber"] == hex(101)

    @pytest.mark.asyncio
    async def test_simulate_revert(self):
        client = make_client()
        result = {"results": [{"revert": "INSUFFICIENT_PROFIT"}], "totalGasUsed": 90000}
        with patch.object(client, "_rpc", AsyncMock(return_value=result)):
            simulation = await client.simulate([RAW_TX], 101)

        assert not simulation.ok
        assert simulation.revert_reason == "INSUFFICIENT_PROFIT"

    @pytest.mark.asyncio
    async def test_simulate_rejection_raises(self):
        client = make_client()
        error = SubmissionError("rejected", reason="execution reverted")
        with patch.object(client, "_rpc", AsyncMock(side_effect=error)):
            with pytest.raises(SimulationFailedError) as exc_info:
                await client.simulate([RAW_TX], 101)

        assert exc_info.value.reason == "execution reverted"

    @pytest.mark.asyncio
    async def test_submit_returns_handle(self):
        client = make_client()
        with patch.object(client, "_rpc", AsyncMock(return_value={"bundleHash": "0xabc"})):
            handle = await client.submit([RAW_TX], 101)

        assert handle.bundle_hash == "0xabc"
        assert handle.target_block == 101
        assert handle.tx_hashes == (transaction_hash(RAW_TX),)


class TestTransportErrors:
    async def _serve(self, handler):
        app = web.Application()
        app.router.add_post("/", handler)
        server = test_utils.TestServer(app)
        await server.start_server()
        return server

    @pytest.mark.asyncio
    async def test_signed_request_reaches_relay(self):
        seen = {}

        async def handler(request):
            seen["signature"] = request.headers.get("X-Flashbots-Signature")
            seen["body"] = await request.json()
            return web.json_response({"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0x1"}})

        server = await self._serve(handler)
        client = make_client(url=str(server.make_url("/")))
        try:
            handle = await client.submit([RAW_TX], 7)
        finally:
            await client.close()
            await server.close()

        assert handle.bundle_hash == "0x1"
        assert seen["body"]["method"] == "eth_sendBundle"
        assert seen["signature"].startswith(Account.from_key(TEST_PRIVATE_KEY).address)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body,error_cls",
        [
            (503, "unavailable", NetworkError),
            (429, "slow down", NetworkError),
            (400, "bad request", SubmissionError),
            (200, "not json", SubmissionError),
            (200, json.dumps({"error": {"message": "nonce too low"}}), SubmissionError),
        ],
    )
    async def test_error_mapping(self, status, body, error_cls):
        async def handler(request):
            return web.Response(status=status, text=body)

        server = await self._serve(handler)
        client = make_client(url=str(server.make_url("/")))
        try:
            with pytest.raises(error_cls):
                await client.submit([RAW_TX], 7)
        finally:
            await client.close()
            await server.close()


class TestResolution:
    @pytest.mark.asyncio
    async def test_included_when_receipt_found(self):
        reader = FakeChainReader(block_number=101)
        reader.receipts[transaction_hash(RAW_TX)] = {
            "status": 1,
            "blockNumber": 101,
            "gasUsed": 250000,
        }
        client = make_client(reader=reader, poll_interval=0)
        handle = BundleHandle("0xabc", 101, (transaction_hash(RAW_TX),))

        assert await client.await_resolution(handle, timeout=1) == Included(101, 250000)

    @pytest.mark.asyncio
    async def test_reverted_receipt_is_submission_failure(self):
        reader = FakeChainReader(block_number=101)
        reader.receipts[transaction_hash(RAW_TX)] = {
            "status": 0,
            "blockNumber": 101,
            "gasUsed": 250000,
        }
        client = make_client(reader=reader, poll_interval=0)
        handle = BundleHandle("0xabc", 101, (transaction_hash(RAW_TX),))

        result = await client.await_resolution(handle, timeout=1)
        assert isinstance(result, SubmissionFailed)

    @pytest.mark.asyncio
    async def test_not_included_after_grace_window(self):
        reader = FakeChainReader(block_number=103)
        client = make_client(reader=reader, grace_blocks=1, poll_interval=0)
        handle = BundleHandle("0xabc", 101, (transaction_hash(RAW_TX),))

        assert await client.await_resolution(handle, timeout=5) == NotIncluded()

    @pytest.mark.asyncio
    async def test_not_included_at_deadline(self):
        reader = FakeChainReader(block_number=101)
        client = make_client(reader=reader, poll_interval=0.01)
        handle = BundleHandle("0xabc", 101, (transaction_hash(RAW_TX),))

        assert await client.await_resolution(handle, timeout=0.05) == NotIncluded()
