"""Keypair-backed wallet signer."""

from __future__ import annotations

import json
from pathlib import Path

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.transaction import VersionedTransaction

from ....domain.exceptions import ConfigurationError
from ....domain.interfaces.wallet_signer import WalletSigner


class KeypairSigner(WalletSigner):
    """Signs with a local keypair (CLI and tests)."""

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @property
    def pubkey(self) -> str:
        return str(self._keypair.pubkey())

    async def sign(self, message: MessageV0) -> VersionedTransaction:
        return VersionedTransaction(message, [self._keypair])

    @classmethod
    def from_file(cls, path: str | Path) -> "KeypairSigner":
        """Load a Solana CLI keypair file (JSON array of 64 secret key bytes)."""
        path = Path(path).expanduser()
        try:
            secret = json.loads(path.read_text())
            return cls(Keypair.from_bytes(bytes(secret)))
        except (OSError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Cannot load keypair from {path}: {e}")
