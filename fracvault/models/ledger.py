"""Plain records returned by the ledger gateway."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass(frozen=True)
class ProgramAccount:
    """Raw account owned by the vault program."""
    address: str
    data: bytes


@dataclass(frozen=True)
class TokenBalance:
    """Parsed SPL token account balance (raw units)."""
    mint: str
    amount: int
    account: str = ""


@dataclass(frozen=True)
class SignatureStatus:
    """Ledger-side status of a submitted signature."""
    signature: str
    err: Optional[Any] = None
    confirmation_status: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.err is not None


@dataclass(frozen=True)
class LogBatch:
    """One transaction's worth of program logs from the subscription."""
    signature: str
    logs: List[str] = field(default_factory=list)
    err: Optional[Any] = None


@dataclass(frozen=True)
class AccountMetaSpec:
    """Account passed to an instruction, by address and access flags."""
    pubkey: str
    is_signer: bool = False
    is_writable: bool = False
