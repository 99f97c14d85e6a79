"""
Local-key transaction signer backed by eth-account.
"""

import logging
from typing import Any, Dict

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .config_loader import resolve_secret
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class LocalAccountSigner:
    """Signs transactions with a private key held in memory."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_env(cls, env_name: str) -> "LocalAccountSigner":
        """Load the key named by ``env_name``; the key itself is never logged."""
        try:
            account = Account.from_key(resolve_secret(env_name))
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid private key in {env_name}", {"env": env_name}
            ) from e
        logger.info(f"Signer loaded: {account.address}")
        return cls(account)

    def address(self) -> str:
        return self._account.address

    def sign(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        return Web3.to_hex(signed.raw_transaction)
