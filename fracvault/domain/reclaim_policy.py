"""
Reclaim lifecycle state machine.

States: Active → ReclaimInitiated → ReclaimedFinalized, with Cancel taking a
ReclaimInitiated vault back to Active and an instant path going straight from
Active to ReclaimedFinalized. Closed is terminal and entered by the program
outside the reclaim flow.

All share arithmetic is done on raw base units with integers, so a balance of
exactly 80% of supply is eligible for an 80% threshold and 79.9999999% is not.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from ..models.vault import Vault, VaultStatus
from ..utils.logging_setup import get_logger
from .exceptions import (
    EscrowPeriodActive,
    InsufficientShare,
    InvalidVaultState,
    Unauthorized,
)

logger = get_logger(__name__)

ESCROW_PERIOD = timedelta(days=7)

# 99.99% expressed in basis points of supply.
INSTANT_THRESHOLD_BPS = 9999


class ReclaimAction(Enum):
    INITIATE = "initiate"
    INSTANT = "instant"
    CANCEL = "cancel"
    FINALIZE = "finalize"


class ReclaimPath(Enum):
    """Which branch a successful initiation takes."""
    INSTANT = "instant"
    ESCROW = "escrow"


TRANSITIONS: Dict[Tuple[VaultStatus, ReclaimAction], VaultStatus] = {
    (VaultStatus.ACTIVE, ReclaimAction.INITIATE): VaultStatus.RECLAIM_INITIATED,
    (VaultStatus.ACTIVE, ReclaimAction.INSTANT): VaultStatus.RECLAIMED_FINALIZED,
    (VaultStatus.RECLAIM_INITIATED, ReclaimAction.CANCEL): VaultStatus.ACTIVE,
    (VaultStatus.RECLAIM_INITIATED, ReclaimAction.FINALIZE): VaultStatus.RECLAIMED_FINALIZED,
}


def can_transition(status: VaultStatus, action: ReclaimAction) -> bool:
    return (status, action) in TRANSITIONS


def next_status(status: VaultStatus, action: ReclaimAction) -> VaultStatus:
    """
    Status reached by applying ``action`` to a vault in ``status``.

    Raises:
        InvalidVaultState: The transition is not in the table.
    """
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidVaultState(f"Cannot {action.value} a vault in status {status.label}")


@dataclass(frozen=True)
class ReclaimDecision:
    """Pre-submission eligibility verdict for one holder."""
    vault: str
    balance: int
    total_supply: int
    min_reclaim_percentage: int
    eligible: bool
    path: Optional[ReclaimPath]

    @property
    def share_percent(self) -> Decimal:
        if self.total_supply == 0:
            return Decimal(0)
        return Decimal(self.balance) * 100 / Decimal(self.total_supply)

    @property
    def expected_status(self) -> Optional[VaultStatus]:
        if self.path is ReclaimPath.INSTANT:
            return VaultStatus.RECLAIMED_FINALIZED
        if self.path is ReclaimPath.ESCROW:
            return VaultStatus.RECLAIM_INITIATED
        return None


class ReclaimPolicy:
    """
    Transition guards for reclaim, cancel and finalize.

    Guards only read the vault snapshot, the signer and the clock, so they run
    before anything touches the network.
    """

    def __init__(
        self,
        escrow_period: timedelta = ESCROW_PERIOD,
        instant_threshold_bps: int = INSTANT_THRESHOLD_BPS,
    ):
        self.escrow_period = escrow_period
        self.instant_threshold_bps = instant_threshold_bps

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def is_eligible(self, vault: Vault, balance: int) -> bool:
        if vault.total_supply <= 0 or balance <= 0:
            return False
        return balance * 100 >= vault.min_reclaim_percentage * vault.total_supply

    def is_instant(self, vault: Vault, balance: int) -> bool:
        if vault.total_supply <= 0:
            return False
        return balance * 10_000 >= self.instant_threshold_bps * vault.total_supply

    def evaluate(self, vault: Vault, balance: int) -> ReclaimDecision:
        eligible = self.is_eligible(vault, balance)
        path = None
        if eligible:
            path = ReclaimPath.INSTANT if self.is_instant(vault, balance) else ReclaimPath.ESCROW
        return ReclaimDecision(
            vault=vault.address,
            balance=balance,
            total_supply=vault.total_supply,
            min_reclaim_percentage=vault.min_reclaim_percentage,
            eligible=eligible,
            path=path,
        )

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    def assert_active(self, vault: Vault) -> None:
        if not can_transition(vault.status, ReclaimAction.INITIATE):
            raise InvalidVaultState(
                f"Vault {vault.address} is {vault.status.label}, reclaim needs Active"
            )

    def assert_can_initialize(self, vault: Vault, balance: int) -> ReclaimDecision:
        """
        Raises:
            InvalidVaultState: Vault is not Active.
            InsufficientShare: Balance below the vault's minimum share.
        """
        self.assert_active(vault)
        decision = self.evaluate(vault, balance)
        if not decision.eligible:
            raise InsufficientShare(
                f"Holding {decision.share_percent:.4f}% of vault {vault.address}, "
                f"need {vault.min_reclaim_percentage}%"
            )
        logger.info(
            f"Reclaim on {vault.address}: {decision.share_percent:.4f}% held, "
            f"{decision.path.value} path"
        )
        return decision

    def assert_can_cancel(self, vault: Vault, signer: str) -> None:
        """
        Raises:
            InvalidVaultState: Vault is not ReclaimInitiated.
            Unauthorized: Signer is not the initiator.
        """
        self._assert_initiated_by(vault, signer, ReclaimAction.CANCEL)

    def assert_can_finalize(self, vault: Vault, signer: str, now: datetime) -> None:
        """
        Raises:
            InvalidVaultState: Vault is not ReclaimInitiated.
            Unauthorized: Signer is not the initiator.
            EscrowPeriodActive: Escrow period has not elapsed.
        """
        self._assert_initiated_by(vault, signer, ReclaimAction.FINALIZE)
        remaining = self.escrow_time_remaining(vault, now)
        if remaining > timedelta(0):
            raise EscrowPeriodActive(
                f"Vault {vault.address} escrow ends at {self.escrow_ends_at(vault).isoformat()} "
                f"({remaining} remaining)"
            )

    def _assert_initiated_by(self, vault: Vault, signer: str, action: ReclaimAction) -> None:
        if not can_transition(vault.status, action):
            raise InvalidVaultState(
                f"Cannot {action.value} vault {vault.address} in status {vault.status.label}"
            )
        if vault.reclaim_initiator != signer:
            raise Unauthorized(
                f"Only the reclaim initiator {vault.reclaim_initiator} can {action.value} "
                f"vault {vault.address}"
            )

    # -------------------------------------------------------------------------
    # Escrow timing
    # -------------------------------------------------------------------------

    def escrow_ends_at(self, vault: Vault) -> datetime:
        started = datetime.fromtimestamp(vault.reclaim_initiation_timestamp, tz=timezone.utc)
        return started + self.escrow_period

    def escrow_time_remaining(self, vault: Vault, now: datetime) -> timedelta:
        remaining = self.escrow_ends_at(vault) - now
        return max(remaining, timedelta(0))
