"""Vault model decoded from the ledger, plus client-side display annotations."""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import IntEnum
from typing import Optional, Dict

# Fraction tokens and supply are fixed-point with 9 decimals.
TOKEN_DECIMALS = 9
TOKEN_SCALE = 10 ** TOKEN_DECIMALS

# All-zero pubkey; the ledger's way of saying "no initiator".
DEFAULT_PUBKEY = "11111111111111111111111111111111"

PLACEHOLDER_IMAGE = "/placeholder-nft.svg"


class VaultStatus(IntEnum):
    """Vault lifecycle status as stored in the account's status byte."""
    ACTIVE = 0
    RECLAIM_INITIATED = 1
    RECLAIMED_FINALIZED = 2
    CLOSED = 3

    @property
    def label(self) -> str:
        return {
            VaultStatus.ACTIVE: "Active",
            VaultStatus.RECLAIM_INITIATED: "ReclaimInitiated",
            VaultStatus.RECLAIMED_FINALIZED: "ReclaimedFinalized",
            VaultStatus.CLOSED: "Closed",
        }[self]


def to_tokens(raw: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """Convert raw base units to a token amount."""
    return Decimal(raw) / (Decimal(10) ** decimals)


def to_raw(amount: Decimal | int | str, decimals: int = TOKEN_DECIMALS) -> int:
    """Convert a token amount to raw base units (truncating)."""
    return int(Decimal(amount) * (Decimal(10) ** decimals))


@dataclass(frozen=True)
class VaultMetadata:
    """Display metadata for the vault's underlying asset."""
    name: str
    symbol: str = ""
    uri: str = ""
    image: str = PLACEHOLDER_IMAGE
    description: str = ""


@dataclass(frozen=True)
class Vault:
    """
    Immutable vault snapshot.

    Amounts are raw u64 base units (scale 10^9); timestamps are unix seconds.
    Records are replaced wholesale, never mutated.
    """

    address: str
    nft_mint: str
    nft_asset_id: str
    fraction_mint: str
    total_supply: int
    creator: str
    creation_timestamp: int
    status: VaultStatus
    reclaim_timestamp: int = 0
    twap_price_at_reclaim: int = 0
    total_compensation: int = 0
    remaining_compensation: int = 0
    min_lp_age_seconds: int = 0
    min_reclaim_percentage: int = 80
    min_liquidity_percent: int = 0
    min_volume_percent_30d: int = 0
    reclaim_initiator: str = DEFAULT_PUBKEY
    reclaim_initiation_timestamp: int = 0
    tokens_in_escrow: int = 0
    bump: int = 0

    # Client-side annotations
    metadata: Optional[VaultMetadata] = field(default=None, compare=False)
    fetch_seq: int = field(default=0, compare=False)

    @property
    def has_initiator(self) -> bool:
        return self.reclaim_initiator != DEFAULT_PUBKEY

    @property
    def total_supply_tokens(self) -> Decimal:
        return to_tokens(self.total_supply)

    @property
    def tokens_in_escrow_tokens(self) -> Decimal:
        return to_tokens(self.tokens_in_escrow)

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.creation_timestamp, tz=timezone.utc)

    @property
    def reclaim_initiated_at(self) -> Optional[datetime]:
        if not self.reclaim_initiation_timestamp:
            return None
        return datetime.fromtimestamp(self.reclaim_initiation_timestamp, tz=timezone.utc)

    @property
    def display_name(self) -> str:
        if self.metadata is not None:
            return self.metadata.name
        return f"Vault {self.address[:4]}...{self.address[-4:]}"

    def with_metadata(self, metadata: Optional[VaultMetadata]) -> "Vault":
        return replace(self, metadata=metadata)

    def with_fetch_seq(self, fetch_seq: int) -> "Vault":
        return replace(self, fetch_seq=fetch_seq)


@dataclass(frozen=True)
class UserPositions:
    """Fraction balances (raw units) held by one wallet, keyed by fraction mint."""
    owner: str
    balances: Dict[str, int] = field(default_factory=dict)

    def balance_of(self, fraction_mint: str) -> int:
        return self.balances.get(fraction_mint, 0)

    def __len__(self) -> int:
        return len(self.balances)


@dataclass(frozen=True)
class VaultStats:
    """Aggregate figures over the cached collection."""
    total_vaults: int
    active_vaults: int
    total_fractions: Decimal
    user_vaults: int
