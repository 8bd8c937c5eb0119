"""Application layer: orchestration, event listening and service wiring."""

from .transaction_builder import BuiltTransaction, TransactionBuilder, MAX_TRANSACTION_SIZE
from .reclaim_orchestrator import FinalizeAccounts, ReclaimOrchestrator, describe_program_error
from .event_listener import VaultEventListener
from .bootstrap import AppContainer

__all__ = [
    "BuiltTransaction",
    "TransactionBuilder",
    "MAX_TRANSACTION_SIZE",
    "FinalizeAccounts",
    "ReclaimOrchestrator",
    "describe_program_error",
    "VaultEventListener",
    "AppContainer",
]
