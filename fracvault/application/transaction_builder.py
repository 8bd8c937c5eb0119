"""
Transaction assembly.

Prepends compute-budget instructions, compiles a v0 message and enforces the
1232-byte packet ceiling. An oversize message is recompiled against the
shared address lookup table; if that is missing or still too large the build
fails with TransactionTooLarge.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey

from ..domain.exceptions import TransactionTooLarge
from ..domain.interfaces.ledger_gateway import LedgerGateway
from ..infrastructure.adapters.retry import RetryPolicy, call_with_retry
from ..utils.logging_setup import get_logger

logger = get_logger(__name__)

MAX_TRANSACTION_SIZE = 1232
SIGNATURE_SIZE = 64


def _compact_u16_len(value: int) -> int:
    size = 1
    while value >= 0x80:
        value >>= 7
        size += 1
    return size


def serialized_size(message: MessageV0) -> int:
    """Wire size of the signed transaction carrying ``message``."""
    num_signatures = message.header.num_required_signatures
    return (
        _compact_u16_len(num_signatures)
        + SIGNATURE_SIZE * num_signatures
        + len(to_bytes_versioned(message))
    )


@dataclass(frozen=True)
class BuiltTransaction:
    """A compiled, unsigned message plus what confirmation needs."""
    message: MessageV0
    blockhash: Hash
    last_valid_block_height: int
    size: int
    used_lookup_table: bool = False


class TransactionBuilder:
    """Compiles instructions into size-checked v0 messages."""

    def __init__(
        self,
        gateway: LedgerGateway,
        shared_lookup_table: Optional[str] = None,
        max_size: int = MAX_TRANSACTION_SIZE,
        compute_unit_price: int = 1,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._gateway = gateway
        self.shared_lookup_table = shared_lookup_table
        self.max_size = max_size
        self.compute_unit_price = compute_unit_price
        self.retry_policy = retry_policy or RetryPolicy()
        self._lookup_table: Optional[AddressLookupTableAccount] = None

    def compute_budget(self, unit_limit: int) -> List[Instruction]:
        return [
            set_compute_unit_limit(unit_limit),
            set_compute_unit_price(self.compute_unit_price),
        ]

    async def build(
        self,
        payer: str,
        instructions: Sequence[Instruction],
        compute_unit_limit: int,
    ) -> BuiltTransaction:
        """
        Raises:
            TransactionTooLarge: Oversize with no usable lookup table.
        """
        blockhash, last_valid_block_height = await call_with_retry(
            "getLatestBlockhash", self._gateway.get_latest_blockhash, self.retry_policy
        )
        payer_key = Pubkey.from_string(payer)
        all_instructions = self.compute_budget(compute_unit_limit) + list(instructions)

        message = MessageV0.try_compile(payer_key, all_instructions, [], blockhash)
        size = serialized_size(message)
        if size <= self.max_size:
            return BuiltTransaction(message, blockhash, last_valid_block_height, size)

        if not self.shared_lookup_table:
            raise TransactionTooLarge(
                f"Transaction is {size} bytes (limit {self.max_size}) and no lookup table is configured"
            )

        table = await self._load_lookup_table()
        message = MessageV0.try_compile(payer_key, all_instructions, [table], blockhash)
        compressed = serialized_size(message)
        logger.info(f"Transaction {size} bytes, {compressed} bytes with lookup table {self.shared_lookup_table}")
        if compressed > self.max_size:
            raise TransactionTooLarge(
                f"Transaction is {compressed} bytes with lookup table (limit {self.max_size})"
            )
        return BuiltTransaction(message, blockhash, last_valid_block_height, compressed, used_lookup_table=True)

    async def _load_lookup_table(self) -> AddressLookupTableAccount:
        if self._lookup_table is None:
            table = await call_with_retry(
                "getAddressLookupTable",
                lambda: self._gateway.get_address_lookup_table(self.shared_lookup_table),
                self.retry_policy,
            )
            if table is None:
                raise TransactionTooLarge(f"Lookup table {self.shared_lookup_table} not found")
            self._lookup_table = table
        return self._lookup_table
