"""Unit tests for the reclaim lifecycle state machine."""

from datetime import datetime, timedelta, timezone

import pytest

from fracvault.domain.exceptions import (
    EscrowPeriodActive,
    InsufficientShare,
    InvalidVaultState,
    Unauthorized,
)
from fracvault.domain.reclaim_policy import (
    ReclaimAction,
    ReclaimPath,
    ReclaimPolicy,
    can_transition,
    next_status,
)
from fracvault.models.vault import VaultStatus

INITIATOR = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
STRANGER = "4Nd1mBQtrMJVYVfKf2PJy9NZUJoVwmzMEmCgTMi7L1eN"
INITIATED_AT = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy() -> ReclaimPolicy:
    return ReclaimPolicy()


@pytest.fixture
def small_vault(make_vault):
    """Supply of 1,000,000 raw units, 80% threshold."""
    return make_vault(total_supply=1_000_000, min_reclaim_percentage=80)


@pytest.fixture
def initiated_vault(make_vault):
    return make_vault(
        status=VaultStatus.RECLAIM_INITIATED,
        reclaim_initiator=INITIATOR,
        reclaim_initiation_timestamp=int(INITIATED_AT.timestamp()),
        tokens_in_escrow=850_000,
    )


class TestTransitionTable:
    """Tests for the transition table helpers."""

    def test_allowed_transitions(self):
        """The four lifecycle edges are present."""
        assert next_status(VaultStatus.ACTIVE, ReclaimAction.INITIATE) is VaultStatus.RECLAIM_INITIATED
        assert next_status(VaultStatus.ACTIVE, ReclaimAction.INSTANT) is VaultStatus.RECLAIMED_FINALIZED
        assert next_status(VaultStatus.RECLAIM_INITIATED, ReclaimAction.CANCEL) is VaultStatus.ACTIVE
        assert next_status(VaultStatus.RECLAIM_INITIATED, ReclaimAction.FINALIZE) is VaultStatus.RECLAIMED_FINALIZED

    def test_terminal_states(self):
        """Nothing leaves ReclaimedFinalized or Closed."""
        for status in (VaultStatus.RECLAIMED_FINALIZED, VaultStatus.CLOSED):
            for action in ReclaimAction:
                assert not can_transition(status, action)

    def test_invalid_transition_raises(self):
        """Cancelling an Active vault is not a transition."""
        with pytest.raises(InvalidVaultState):
            next_status(VaultStatus.ACTIVE, ReclaimAction.CANCEL)


class TestEligibility:
    """Tests for share thresholds in integer arithmetic."""

    def test_just_below_threshold_is_ineligible(self, policy, small_vault):
        """799,999 of 1,000,000 is below 80%."""
        assert not policy.is_eligible(small_vault, 799_999)
        with pytest.raises(InsufficientShare):
            policy.assert_can_initialize(small_vault, 799_999)

    def test_exact_threshold_is_eligible(self, policy, small_vault):
        """800,000 of 1,000,000 is exactly 80%."""
        assert policy.is_eligible(small_vault, 800_000)
        decision = policy.assert_can_initialize(small_vault, 800_000)
        assert decision.eligible
        assert decision.path is ReclaimPath.ESCROW

    def test_full_supply_is_instant(self, policy, small_vault):
        """100% takes the instant path."""
        decision = policy.evaluate(small_vault, 1_000_000)
        assert decision.path is ReclaimPath.INSTANT
        assert decision.expected_status is VaultStatus.RECLAIMED_FINALIZED

    def test_four_nines_is_instant(self, policy, small_vault):
        """99.99% is the instant threshold."""
        assert policy.evaluate(small_vault, 999_900).path is ReclaimPath.INSTANT
        assert policy.evaluate(small_vault, 999_899).path is ReclaimPath.ESCROW

    def test_ninety_nine_percent_is_escrow(self, policy, small_vault):
        """99% goes through escrow."""
        decision = policy.evaluate(small_vault, 990_000)
        assert decision.path is ReclaimPath.ESCROW
        assert decision.expected_status is VaultStatus.RECLAIM_INITIATED
        assert decision.share_percent == 99

    def test_zero_supply_never_eligible(self, policy, make_vault):
        """A vault with no supply cannot be reclaimed."""
        vault = make_vault(total_supply=0)
        decision = policy.evaluate(vault, 0)
        assert not decision.eligible
        assert decision.path is None
        assert decision.share_percent == 0

    def test_initialize_requires_active(self, policy, initiated_vault):
        """Only Active vaults can be reclaimed."""
        with pytest.raises(InvalidVaultState):
            policy.assert_can_initialize(initiated_vault, initiated_vault.total_supply)


class TestCancelGuard:
    """Tests for assert_can_cancel."""

    def test_initiator_can_cancel(self, policy, initiated_vault):
        policy.assert_can_cancel(initiated_vault, INITIATOR)

    def test_cancel_active_vault(self, policy, small_vault):
        """Cancel on Active is an invalid state, not an authorization error."""
        with pytest.raises(InvalidVaultState):
            policy.assert_can_cancel(small_vault, INITIATOR)

    def test_only_initiator_can_cancel(self, policy, initiated_vault):
        with pytest.raises(Unauthorized):
            policy.assert_can_cancel(initiated_vault, STRANGER)


class TestFinalizeGuard:
    """Tests for assert_can_finalize and escrow timing."""

    def test_before_escrow_ends(self, policy, initiated_vault):
        """One second before seven days is still too early."""
        now = INITIATED_AT + timedelta(days=7) - timedelta(seconds=1)
        with pytest.raises(EscrowPeriodActive):
            policy.assert_can_finalize(initiated_vault, INITIATOR, now)
        assert policy.escrow_time_remaining(initiated_vault, now) == timedelta(seconds=1)

    def test_after_escrow_ends(self, policy, initiated_vault):
        """Exactly seven days after initiation finalization is allowed."""
        now = INITIATED_AT + timedelta(days=7)
        policy.assert_can_finalize(initiated_vault, INITIATOR, now)
        assert policy.escrow_time_remaining(initiated_vault, now) == timedelta(0)
        assert policy.escrow_ends_at(initiated_vault) == now

    def test_stranger_cannot_finalize(self, policy, initiated_vault):
        """Authorization is checked before escrow timing."""
        with pytest.raises(Unauthorized):
            policy.assert_can_finalize(initiated_vault, STRANGER, INITIATED_AT)

    def test_finalize_active_vault(self, policy, small_vault):
        with pytest.raises(InvalidVaultState):
            policy.assert_can_finalize(small_vault, INITIATOR, INITIATED_AT)

    def test_custom_escrow_period(self, initiated_vault):
        """The escrow period is configurable."""
        policy = ReclaimPolicy(escrow_period=timedelta(hours=1))
        policy.assert_can_finalize(initiated_vault, INITIATOR, INITIATED_AT + timedelta(hours=1))
