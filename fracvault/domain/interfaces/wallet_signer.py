"""Wallet signer interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from solders.message import MessageV0
from solders.transaction import VersionedTransaction


class WalletSigner(ABC):
    """A connected wallet able to sign transaction messages."""

    @property
    @abstractmethod
    def pubkey(self) -> str:
        """Base58 public key of the signer."""
        pass

    @abstractmethod
    async def sign(self, message: MessageV0) -> VersionedTransaction:
        """Sign a compiled v0 message."""
        pass
