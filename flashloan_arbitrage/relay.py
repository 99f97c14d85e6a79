"""
Flashbots-style private relay client over aiohttp JSON-RPC.

Requests are authenticated with the X-Flashbots-Signature header: the
auth account's EIP-191 signature over the keccak hash of the body.
Inclusion is resolved by polling the chain for the bundle transaction's
receipt until the grace window after the target block has passed.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .exceptions import NetworkError, SimulationFailedError, SubmissionError
from .interfaces import ChainReader
from .types import (
    BundleResult,
    Included,
    NotIncluded,
    SimulationResult,
    SubmissionFailed,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BundleHandle:
    bundle_hash: str
    target_block: int
    tx_hashes: Tuple[str, ...]


def transaction_hash(raw_tx: str) -> str:
    """Hash of a signed raw transaction."""
    return Web3.to_hex(Web3.keccak(hexstr=raw_tx))


class FlashbotsRelayClient:
    """
    Relay client for eth_callBundle / eth_sendBundle.

    Args:
        url: Relay endpoint
        auth_account: Account whose signature identifies the searcher
        reader: ChainReader of the chain the relay serves, used for resolution
        grace_blocks: Blocks after the target still checked for inclusion
        request_timeout: Per-request timeout in seconds
        poll_interval: Delay between resolution polls
    """

    def __init__(
        self,
        url: str,
        auth_account: LocalAccount,
        reader: ChainReader,
        grace_blocks: int = 1,
        request_timeout: float = 10.0,
        poll_interval: float = 1.0,
    ):
        self.url = url
        self.auth_account = auth_account
        self.reader = reader
        self.grace_blocks = grace_blocks
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    @classmethod
    def from_key(cls, url: str, auth_key: str, reader: ChainReader, **kwargs):
        return cls(url, Account.from_key(auth_key), reader, **kwargs)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _signature_header(self, body: str) -> str:
        body_hash = Web3.to_hex(Web3.keccak(text=body))
        signed = self.auth_account.sign_message(encode_defunct(text=body_hash))
        return f"{self.auth_account.address}:{Web3.to_hex(signed.signature)}"

    def _payload(self, method: str, params: List[Any]) -> str:
        return json.dumps(
            {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        )

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        body = self._payload(method, params)
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self._signature_header(body),
        }
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        try:
            async with self._session.post(
                self.url,
                data=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                status = response.status
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"Relay {method} failed: {e!r}", endpoint=self.url
            ) from e

        if status == 429 or status >= 500:
            raise NetworkError(
                f"Relay {method} returned HTTP {status}",
                endpoint=self.url,
                status_code=status,
            )
        if status >= 400:
            raise SubmissionError(
                f"Relay rejected {method}: HTTP {status}",
                reason=text[:200],
                details={"status": status},
            )

        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise SubmissionError(
                f"Relay {method} returned invalid JSON", reason=text[:200]
            ) from e

        if payload.get("error"):
            error = payload["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise SubmissionError(f"Relay {method} error: {message}", reason=message)
        return payload.get("result")

    async def simulate(
        self, txs: Sequence[str], target_block: int
    ) -> SimulationResult:
        try:
            result = await self._rpc(
                "eth_callBundle",
                [
                    {
                        "txs": list(txs),
                        "blockNumber": hex(target_block),
                        "stateBlockNumber": "latest",
                    }
                ],
            )
        except SubmissionError as e:
            raise SimulationFailedError(
                f"Bundle simulation rejected: {e}", reason=e.reason
            ) from e
        result = result or {}
        tx_results: List[Dict[str, Any]] = result.get("results", [])
        gas_used = int(result.get("totalGasUsed", 0))
        for tx_result in tx_results:
            if tx_result.get("error") or tx_result.get("revert"):
                reason = tx_result.get("revert") or tx_result.get("error")
                return SimulationResult(ok=False, gas_used=gas_used, revert_reason=str(reason))
        return SimulationResult(ok=True, gas_used=gas_used)

    async def submit(self, txs: Sequence[str], target_block: int) -> BundleHandle:
        result = await self._rpc(
            "eth_sendBundle", [{"txs": list(txs), "blockNumber": hex(target_block)}]
        )
        bundle_hash = (result or {}).get("bundleHash", "")
        handle = BundleHandle(
            bundle_hash=bundle_hash,
            target_block=target_block,
            tx_hashes=tuple(transaction_hash(tx) for tx in txs),
        )
        logger.info(f"Bundle {bundle_hash} submitted for block {target_block}")
        return handle

    async def await_resolution(self, handle: BundleHandle, timeout: float) -> BundleResult:
        """Poll for inclusion until the grace window passes or ``timeout`` elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_block = handle.target_block + self.grace_blocks

        while True:
            receipt = await self.reader.transaction_receipt(handle.tx_hashes[0])
            if receipt is not None:
                if receipt.get("status", 1) == 1:
                    return Included(
                        block=int(receipt["blockNumber"]), gas_used=int(receipt["gasUsed"])
                    )
                return SubmissionFailed(reason="bundle transaction included but reverted")

            current = await self.reader.block_number()
            if current > last_block:
                logger.info(
                    f"Bundle {handle.bundle_hash} not included by block {last_block}"
                )
                return NotIncluded()
            if loop.time() >= deadline:
                return NotIncluded()
            await asyncio.sleep(self.poll_interval)
