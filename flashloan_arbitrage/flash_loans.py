"""
Flash-loan providers.

Providers are a tagged variant (Balancer or Aave V3) sharing one
capability surface: quote a fee for an amount and build the provider's
flash-loan call. Selection picks the cheapest provider able to lend the
requested amount.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from eth_abi import encode
from web3 import Web3

from .abi import (
    AAVE_FLASH_LOAN_SIMPLE_SIGNATURE,
    AAVE_FLASH_LOAN_SIMPLE_TYPES,
    BALANCER_FLASH_LOAN_SIGNATURE,
    BALANCER_FLASH_LOAN_TYPES,
)
from .constants import (
    AAVE_V3_FEE_BPS,
    AAVE_V3_POOL_ADDRESSES,
    BALANCER_FEE_BPS,
    BALANCER_VAULT_ADDRESS,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class FlashLoanProviderKind(Enum):
    BALANCER = "balancer"
    AAVE_V3 = "aave_v3"


def _selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


@dataclass(frozen=True)
class FlashLoanProvider:
    """One flash-loan source on one chain."""

    kind: FlashLoanProviderKind
    chain_id: int
    address: str
    fee_bps: float
    max_loan: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.kind.value

    def quote(self, token: str, amount: Decimal) -> Optional[Decimal]:
        """Fee for borrowing ``amount`` of ``token``, or None if it cannot lend it."""
        capacity = self.max_loan.get(token)
        if capacity is None or amount > capacity:
            return None
        return amount * Decimal(str(self.fee_bps)) / Decimal("10000")

    def build_call_data(
        self, receiver: str, token_address: str, amount: int, user_data: bytes
    ) -> bytes:
        """Encode the provider's flash-loan entry point for a single asset."""
        receiver = Web3.to_checksum_address(receiver)
        token_address = Web3.to_checksum_address(token_address)

        if self.kind is FlashLoanProviderKind.BALANCER:
            return _selector(BALANCER_FLASH_LOAN_SIGNATURE) + encode(
                BALANCER_FLASH_LOAN_TYPES,
                [receiver, [token_address], [amount], user_data],
            )
        if self.kind is FlashLoanProviderKind.AAVE_V3:
            return _selector(AAVE_FLASH_LOAN_SIMPLE_SIGNATURE) + encode(
                AAVE_FLASH_LOAN_SIMPLE_TYPES,
                [receiver, token_address, amount, user_data, 0],
            )
        raise ConfigurationError(f"Unsupported flash-loan provider: {self.kind}")


def default_address(kind: FlashLoanProviderKind, chain_id: int) -> str:
    """Well-known deployment address for a provider on a chain."""
    if kind is FlashLoanProviderKind.BALANCER:
        return BALANCER_VAULT_ADDRESS
    address = AAVE_V3_POOL_ADDRESSES.get(chain_id)
    if address is None:
        raise ConfigurationError(
            f"No known Aave V3 pool on chain {chain_id}; set address explicitly",
            {"chain_id": chain_id},
        )
    return address


def default_fee_bps(kind: FlashLoanProviderKind) -> float:
    if kind is FlashLoanProviderKind.BALANCER:
        return BALANCER_FEE_BPS
    return AAVE_V3_FEE_BPS


class FlashLoanSelector:
    """Chooses the cheapest provider able to lend an amount."""

    def __init__(self, providers: Sequence[FlashLoanProvider]):
        self._by_chain: Dict[int, List[FlashLoanProvider]] = {}
        for provider in providers:
            self._by_chain.setdefault(provider.chain_id, []).append(provider)

    def providers(self, chain_id: int) -> List[FlashLoanProvider]:
        return list(self._by_chain.get(chain_id, []))

    def select(
        self, chain_id: int, token: str, amount: Decimal
    ) -> Optional[Tuple[FlashLoanProvider, Decimal]]:
        """
        Pick the cheapest provider for a loan.

        Ties keep declaration order.

        Returns:
            (provider, fee) or None if no provider can lend the amount
        """
        best = None
        for provider in self._by_chain.get(chain_id, []):
            fee = provider.quote(token, amount)
            if fee is None:
                continue
            if best is None or fee < best[1]:
                best = (provider, fee)

        if best is None:
            logger.debug(f"No flash-loan provider on chain {chain_id} for {amount} {token}")
        return best


def providers_from_config(chains) -> FlashLoanSelector:
    """Build the selector from each chain's ``flash_loan_providers`` entries."""
    providers = []
    for chain in chains:
        for entry in chain.flash_loan_providers:
            kind = FlashLoanProviderKind(entry.kind)
            providers.append(
                FlashLoanProvider(
                    kind=kind,
                    chain_id=chain.chain_id,
                    address=entry.address or default_address(kind, chain.chain_id),
                    fee_bps=(
                        entry.fee_bps if entry.fee_bps is not None else default_fee_bps(kind)
                    ),
                    max_loan=dict(entry.max_loan),
                )
            )
    return FlashLoanSelector(providers)
