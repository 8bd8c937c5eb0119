"""Solana adapters: RPC gateway, program binding, derivations, signer."""

from .binding import (
    CANCEL_RECLAIM,
    FINALIZE_RECLAIM,
    INITIALIZE_RECLAIM,
    INSTRUCTIONS,
    ProgramBinding,
    method_discriminator,
)
from .gateway import SolanaLedgerGateway
from .signer import KeypairSigner

__all__ = [
    "CANCEL_RECLAIM",
    "FINALIZE_RECLAIM",
    "INITIALIZE_RECLAIM",
    "INSTRUCTIONS",
    "ProgramBinding",
    "method_discriminator",
    "SolanaLedgerGateway",
    "KeypairSigner",
]
