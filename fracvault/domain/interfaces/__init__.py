"""Domain interfaces for external collaborators."""

from .ledger_gateway import LedgerGateway, LogSubscription, LogCallback
from .proof_provider import ProofProvider
from .wallet_signer import WalletSigner

__all__ = [
    "LedgerGateway",
    "LogSubscription",
    "LogCallback",
    "ProofProvider",
    "WalletSigner",
]
