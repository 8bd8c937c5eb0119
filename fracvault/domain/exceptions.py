"""
Domain exceptions for the vault reclaim client.

Implements a hierarchy distinguishing between recoverable runtime errors
(rate limits, unindexed proofs, ambiguous confirmations) and fatal errors
(configuration issues, malformed ledger data). Policy violations sit between
the two: the request is well-formed but the ledger would refuse it, so the
orchestrator fails fast without submitting anything.
"""

from typing import Optional


class ReclaimError(Exception):
    """Base class for all reclaim client exceptions."""
    pass


class RecoverableError(ReclaimError):
    """
    Errors the caller can retry without changing anything.

    Examples:
    - RPC or DAS endpoint unreachable
    - Rate-limited responses after the retry ceiling
    - Proof not yet indexed for a freshly minted asset
    - Confirmation that did not settle within the wait
    """
    pass


class FatalError(ReclaimError):
    """
    Errors requiring operator intervention.

    Examples:
    - Invalid configuration
    - Vault accounts that do not match the expected layout
    """
    pass


# -------------------------------------------------------------------------
# Transient I/O
# -------------------------------------------------------------------------

class ConnectivityError(RecoverableError):
    """Transport failure talking to the ledger RPC or proof provider."""
    pass


class RateLimitedError(RecoverableError):
    """The endpoint answered with a rate-limit response (HTTP 429)."""
    pass


class DataUnavailable(RecoverableError):
    """Requested data is not available yet; retry shortly."""
    pass


class ProofUnavailable(DataUnavailable):
    """Asset record or merkle proof missing, empty, or timed out."""
    pass


# -------------------------------------------------------------------------
# Policy violations (fail fast, nothing submitted)
# -------------------------------------------------------------------------

class PolicyViolation(ReclaimError):
    """The requested transition is not permitted for this vault or signer."""
    pass


class WalletNotConnected(PolicyViolation):
    """An action needing a signer was invoked without one."""
    pass


class Unauthorized(PolicyViolation):
    """The signer is not the reclaim initiator."""
    pass


class InvalidVaultState(PolicyViolation):
    """The vault is unknown or its status does not allow the transition."""
    pass


class InsufficientShare(PolicyViolation):
    """Holder share is below the vault's minimum reclaim percentage."""
    pass


class InsufficientFeeBalance(PolicyViolation):
    """Initiator cannot cover the cancellation fee."""
    pass


class EscrowPeriodActive(PolicyViolation):
    """Finalize requested before the escrow period elapsed."""
    pass


# -------------------------------------------------------------------------
# Transaction pipeline
# -------------------------------------------------------------------------

class TransactionTooLarge(ReclaimError):
    """Serialized transaction exceeds the size ceiling even with a lookup table."""
    pass


SizeConstraintExceeded = TransactionTooLarge


class SubmissionFailed(RecoverableError):
    """The ledger refused to accept the transaction for a non-program reason."""
    pass


class Rejected(ReclaimError):
    """The program rejected the transaction; ``reason`` is the decoded error."""

    def __init__(self, reason: str, signature: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.signature = signature


class ConfirmationTimeout(RecoverableError):
    """Confirmation did not settle within the bounded wait."""

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature


class AmbiguousConfirmation(ConfirmationTimeout):
    """Submitted, but the ledger has no record of the signature yet."""
    pass


# -------------------------------------------------------------------------
# Fatal
# -------------------------------------------------------------------------

class AccountDecodeError(FatalError):
    """Account bytes do not match the vault layout."""
    pass


class ConfigurationError(FatalError):
    """Invalid client configuration."""
    pass
