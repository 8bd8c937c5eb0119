"""Ledger gateway interface for account reads, submission and log streams."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import Instruction

from ...models.ledger import LogBatch, ProgramAccount, SignatureStatus, TokenBalance

LogCallback = Callable[[LogBatch], Awaitable[None]]


class LogSubscription(ABC):
    """Handle for an active program log subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering batches. Safe to call more than once."""
        pass


class LedgerGateway(ABC):
    """
    Interface to the ledger (Solana RPC in production, in-memory in tests).

    Provides:
    - Account reads and program account scans
    - Parsed token account scans for a wallet
    - Blockhash, submission, confirmation and signature status
    - Address lookup table reads
    - Program log subscription
    - Instruction construction from the program binding

    Read methods raise RateLimitedError on HTTP 429 and ConnectivityError on
    transport failure; callers decide whether to retry.
    """

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_program_accounts(
        self, program_id: str, data_size: Optional[int] = None
    ) -> List[ProgramAccount]:
        """Scan all accounts owned by ``program_id``, optionally filtered by byte length."""
        pass

    @abstractmethod
    async def get_account_info(self, address: str) -> Optional[bytes]:
        """Raw account data, or None when the account does not exist."""
        pass

    @abstractmethod
    async def get_parsed_token_accounts(
        self, owner: str, token_program_id: str
    ) -> List[TokenBalance]:
        """All token accounts held by ``owner`` under the given token program."""
        pass

    @abstractmethod
    async def get_address_lookup_table(self, address: str) -> Optional[AddressLookupTableAccount]:
        """Load an address lookup table, or None if it does not exist."""
        pass

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        """Return (blockhash, last_valid_block_height)."""
        pass

    @abstractmethod
    async def send_transaction(self, raw_transaction: bytes) -> str:
        """
        Submit a signed, serialized transaction.

        Returns:
            Signature string.

        Raises:
            SubmissionFailed: The node refused the transaction. The message
                carries the node's error text and preflight logs.
        """
        pass

    @abstractmethod
    async def confirm_transaction(
        self,
        signature: str,
        blockhash: Hash,
        last_valid_block_height: int,
        timeout: float,
    ) -> Optional[Any]:
        """
        Wait for confirmation.

        Returns:
            The transaction error object, or None when it succeeded.

        Raises:
            ConfirmationTimeout: No confirmation within ``timeout`` seconds.
        """
        pass

    @abstractmethod
    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Status of a signature, or None when the ledger has no record of it."""
        pass

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def on_logs(self, program_id: str, callback: LogCallback) -> LogSubscription:
        """Subscribe to logs mentioning ``program_id``."""
        pass

    # -------------------------------------------------------------------------
    # Program binding
    # -------------------------------------------------------------------------

    @abstractmethod
    def build_instruction(
        self,
        method: str,
        accounts: Dict[str, Optional[str]],
        args: Dict[str, Any],
        remaining_accounts: Sequence[str] = (),
    ) -> Instruction:
        """Build a program instruction from named accounts and typed args."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass
