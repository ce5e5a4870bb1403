"""Signer port for the mutating actions, plus a local-key adapter."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from eth_account import Account

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class TransactionSigner(ABC):
    """Abstract interface for transaction signing providers."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address of the signing account."""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """
        Sign a transaction dict and return the raw signed tx hex.

        Raises:
            UserRejectedError: If the signer declines to sign
        """
        pass


class LocalAccountSigner(TransactionSigner):
    """Signs with a private key held in memory (eth-account)."""

    def __init__(self, private_key: str):
        if not private_key:
            raise ConfigurationError("No signer private key configured")
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex()


def signer_from_settings(private_key: Optional[str]) -> Optional[TransactionSigner]:
    """Local signer for a configured key, or None without one."""
    if not private_key:
        return None
    signer = LocalAccountSigner(private_key)
    logger.info(f"Using local signer {signer.address}")
    return signer
