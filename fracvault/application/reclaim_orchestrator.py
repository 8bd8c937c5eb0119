"""
Reclaim transaction orchestrator.

Turns initialize / cancel / finalize requests into confirmed transactions:

1. Read the vault snapshot from the store and run the lifecycle guards.
2. Fetch the asset and merkle proof (initialize, finalize).
3. Derive program addresses and build the instruction through the binding.
4. Compile (with lookup-table fallback), sign, submit.
5. Confirm within a bounded wait, polling the signature once on timeout.
6. Refresh the vault in the store.

Guards run before any network call. Only rate-limited reads are retried;
submission is never retried.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from solders.instruction import Instruction

from config.models import ReclaimConfig

from ..domain.clock import Clock, SystemClock
from ..domain.exceptions import (
    AmbiguousConfirmation,
    ConfirmationTimeout,
    InsufficientFeeBalance,
    InvalidVaultState,
    ProofUnavailable,
    ReclaimError,
    Rejected,
    SubmissionFailed,
    WalletNotConnected,
)
from ..domain.interfaces.ledger_gateway import LedgerGateway
from ..domain.interfaces.proof_provider import ProofProvider
from ..domain.interfaces.wallet_signer import WalletSigner
from ..domain.reclaim_policy import ReclaimDecision, ReclaimPolicy
from ..infrastructure.adapters.retry import RetryPolicy, call_with_retry
from ..infrastructure.adapters.solana import pda
from ..infrastructure.adapters.solana.binding import (
    CANCEL_RECLAIM,
    FINALIZE_RECLAIM,
    INITIALIZE_RECLAIM,
)
from ..infrastructure.adapters.solana.programs import (
    ACCOUNT_COMPRESSION_PROGRAM_ID,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    BUBBLEGUM_PROGRAM_ID,
    NOOP_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from ..infrastructure.stores.vault_store import VaultCacheStore
from ..models.asset import AssetWithProof
from ..models.vault import Vault
from ..utils.logging_setup import get_logger
from ..utils.perf_logger import log_timing_async
from ..utils.trace_context import new_action
from .transaction_builder import BuiltTransaction, TransactionBuilder

logger = get_logger(__name__)

ALREADY_PROCESSED = ("already been processed", "AlreadyProcessed")

KNOWN_PROGRAM_ERRORS = (
    "VaultNotInReclaimInitiated",
    "UnauthorizedCancellation",
    "InsufficientUsdcForCancellationFee",
)

_ANCHOR_ERROR_CODE = re.compile(r"Error Code: (\w+)")
_CUSTOM_ERROR = re.compile(r"custom program error: (0x[0-9a-fA-F]+)")
_INSTRUCTION_ERROR_CUSTOM = re.compile(r"Custom\((\d+)\)")


def describe_program_error(error: Any) -> Optional[str]:
    """
    Best-effort decode of a program failure into a readable reason.

    Returns None when ``error`` does not look like a program error.
    """
    text = str(error)
    match = _ANCHOR_ERROR_CODE.search(text)
    if match:
        return match.group(1)
    for name in KNOWN_PROGRAM_ERRORS:
        if name in text:
            return name
    match = _CUSTOM_ERROR.search(text)
    if match:
        return f"custom program error {match.group(1)}"
    match = _INSTRUCTION_ERROR_CUSTOM.search(text)
    if match:
        return f"custom program error {hex(int(match.group(1)))}"
    return None


@dataclass(frozen=True)
class FinalizeAccounts:
    """Pool accounts the program reads the TWAP from at finalization."""
    raydium_pool: str
    observation_state: str


class ReclaimOrchestrator:
    """
    Reclaim actions for the connected wallet.

    Each action resolves to the transaction signature or raises a typed
    ReclaimError. The store is refreshed after every confirmed or ambiguous
    submission.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        proof_provider: ProofProvider,
        store: VaultCacheStore,
        config: ReclaimConfig,
        program_id: str,
        builder: TransactionBuilder,
        signer: Optional[WalletSigner] = None,
        clock: Optional[Clock] = None,
        retry_policy: Optional[RetryPolicy] = None,
        confirm_timeout_sec: float = 60.0,
    ):
        self._gateway = gateway
        self._proof_provider = proof_provider
        self._store = store
        self._builder = builder
        self.config = config
        self.program_id = program_id
        self._signer = signer
        self._clock = clock or SystemClock()
        self.retry_policy = retry_policy or RetryPolicy()
        self.confirm_timeout_sec = confirm_timeout_sec
        self.policy = ReclaimPolicy(
            escrow_period=timedelta(seconds=config.escrow_period_sec),
            instant_threshold_bps=config.instant_threshold_bps,
        )

    # -------------------------------------------------------------------------
    # Wallet
    # -------------------------------------------------------------------------

    @property
    def signer(self) -> Optional[WalletSigner]:
        return self._signer

    def connect_wallet(self, signer: WalletSigner) -> None:
        self._signer = signer
        logger.info(f"Wallet connected: {signer.pubkey}")

    def disconnect_wallet(self) -> None:
        self._signer = None
        self._store.clear_user_positions()
        logger.info("Wallet disconnected")

    def _require_signer(self) -> WalletSigner:
        if self._signer is None:
            raise WalletNotConnected("Connect a wallet first")
        return self._signer

    def _require_vault(self, vault_id: str) -> Vault:
        vault = self._store.get_vault(vault_id)
        if vault is None:
            raise InvalidVaultState(f"Vault {vault_id} is not in the cache; refresh vaults first")
        return vault

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def plan_initialize_reclaim(self, vault_id: str) -> ReclaimDecision:
        """
        Decide eligibility and instant/escrow path from a fresh balance read.

        Raises:
            WalletNotConnected, InvalidVaultState, InsufficientShare
        """
        signer = self._require_signer()
        vault = self._require_vault(vault_id)
        self.policy.assert_active(vault)
        balance = await self._token_balance(signer.pubkey, vault.fraction_mint)
        return self.policy.assert_can_initialize(vault, balance)

    async def initialize_reclaim(self, vault_id: str, asset_id: Optional[str] = None) -> str:
        """Start a reclaim (instant or escrowed) on ``vault_id``."""
        with new_action():
            async with log_timing_async("initialize_reclaim", warn_threshold_ms=15000, error_threshold_ms=60000):
                decision = await self.plan_initialize_reclaim(vault_id)
                signer = self._require_signer()
                vault = self._require_vault(vault_id)
                asset_id = asset_id or vault.nft_asset_id
                if asset_id != vault.nft_asset_id:
                    raise InvalidVaultState(f"Asset {asset_id} is not held by vault {vault_id}")

                proof = await self._fetch_proof(asset_id)
                accounts = {
                    "user": signer.pubkey,
                    "vault": vault.address,
                    "fraction_mint": vault.fraction_mint,
                    "user_fractioned_token_account": pda.associated_token_address(signer.pubkey, vault.fraction_mint),
                    "compensation_escrow_authority": pda.compensation_escrow_authority(vault.address, self.program_id),
                    "token_escrow": pda.token_escrow(vault.address, vault.fraction_mint, self.program_id),
                    "leaf_delegate": proof.asset.delegate,
                    **self._compression_accounts(proof),
                    **self._token_programs(),
                }
                instruction = self._gateway.build_instruction(
                    INITIALIZE_RECLAIM, accounts, self._proof_args(asset_id, proof), proof.proof.proof
                )
                signature = await self._submit(
                    signer, [instruction], self.config.compute_budget.initialize_units, vault.address
                )
                logger.info(f"Reclaim on {vault_id} confirmed via {decision.path.value} path: {signature}")
                return signature

    async def cancel_reclaim(self, vault_id: str) -> str:
        """Cancel the signer's pending reclaim; the fee goes to the treasury."""
        with new_action():
            async with log_timing_async("cancel_reclaim", warn_threshold_ms=15000, error_threshold_ms=60000):
                signer = self._require_signer()
                vault = self._require_vault(vault_id)
                self.policy.assert_can_cancel(vault, signer.pubkey)

                stable_mint = self.config.stable_mint
                fee_balance = await self._token_balance(signer.pubkey, stable_mint)
                if fee_balance < self.config.cancel_fee_raw:
                    raise InsufficientFeeBalance(
                        f"Cancelling needs {self.config.cancel_fee} of {stable_mint}, "
                        f"wallet holds {fee_balance / 10 ** self.config.stable_decimals}"
                    )

                accounts = {
                    "user": signer.pubkey,
                    "vault": vault.address,
                    "fraction_mint": vault.fraction_mint,
                    "user_fractioned_token_account": pda.associated_token_address(signer.pubkey, vault.fraction_mint),
                    "compensation_escrow_authority": pda.compensation_escrow_authority(vault.address, self.program_id),
                    "token_escrow": pda.token_escrow(vault.address, vault.fraction_mint, self.program_id),
                    **self._stable_accounts(signer.pubkey),
                    **self._token_programs(),
                }
                instruction = self._gateway.build_instruction(
                    CANCEL_RECLAIM, accounts, {"nft_asset_id": vault.nft_asset_id}
                )
                signature = await self._submit(
                    signer, [instruction], self.config.compute_budget.cancel_units, vault.address
                )
                logger.info(f"Reclaim on {vault_id} cancelled: {signature}")
                return signature

    async def finalize_reclaim(self, vault_id: str, extra: FinalizeAccounts) -> str:
        """Finalize an escrowed reclaim once the escrow period has elapsed."""
        with new_action():
            async with log_timing_async("finalize_reclaim", warn_threshold_ms=15000, error_threshold_ms=60000):
                signer = self._require_signer()
                vault = self._require_vault(vault_id)
                self.policy.assert_can_finalize(vault, signer.pubkey, self._clock.now())

                proof = await self._fetch_proof(vault.nft_asset_id)
                accounts = {
                    "user": signer.pubkey,
                    "vault": vault.address,
                    "fraction_mint": vault.fraction_mint,
                    "compensation_escrow_authority": pda.compensation_escrow_authority(vault.address, self.program_id),
                    "token_escrow": pda.token_escrow(vault.address, vault.fraction_mint, self.program_id),
                    "compensation_escrow": pda.compensation_escrow(vault.address, self.config.stable_mint, self.program_id),
                    "raydium_pool": extra.raydium_pool,
                    "observation_state": extra.observation_state,
                    "leaf_delegate": proof.asset.delegate,
                    **self._stable_accounts(signer.pubkey),
                    **self._compression_accounts(proof),
                    **self._token_programs(),
                }
                instruction = self._gateway.build_instruction(
                    FINALIZE_RECLAIM, accounts, self._proof_args(vault.nft_asset_id, proof), proof.proof.proof
                )
                signature = await self._submit(
                    signer, [instruction], self.config.compute_budget.finalize_units, vault.address
                )
                logger.info(f"Reclaim on {vault_id} finalized: {signature}")
                return signature

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _token_balance(self, owner: str, mint: str) -> int:
        balances = await call_with_retry(
            "getTokenAccountsByOwner",
            lambda: self._gateway.get_parsed_token_accounts(owner, TOKEN_PROGRAM_ID),
            self.retry_policy,
        )
        return sum(balance.amount for balance in balances if balance.mint == mint)

    async def _fetch_proof(self, asset_id: str) -> AssetWithProof:
        async def fetch() -> AssetWithProof:
            try:
                return await asyncio.wait_for(
                    self._proof_provider.get_asset_with_proof(asset_id),
                    timeout=self.config.proof_timeout_sec,
                )
            except asyncio.TimeoutError:
                raise ProofUnavailable(
                    f"Proof for {asset_id} not returned within {self.config.proof_timeout_sec}s"
                )

        async with log_timing_async("proof_fetch", warn_threshold_ms=1000, error_threshold_ms=5000):
            proof = await call_with_retry(f"proof {asset_id}", fetch, self.retry_policy)
        if not proof.proof.proof:
            raise ProofUnavailable(f"Empty merkle proof for {asset_id}; retry shortly")
        return proof

    # -------------------------------------------------------------------------
    # Account and argument assembly
    # -------------------------------------------------------------------------

    def _proof_args(self, asset_id: str, proof: AssetWithProof) -> Dict[str, Any]:
        return {
            "nft_asset_id": asset_id,
            "root": proof.proof.root,
            "data_hash": proof.asset.data_hash,
            "creator_hash": proof.asset.creator_hash,
            "nonce": proof.nonce,
            "index": proof.index,
        }

    def _compression_accounts(self, proof: AssetWithProof) -> Dict[str, str]:
        return {
            "bubblegum_program": BUBBLEGUM_PROGRAM_ID,
            "compression_program": ACCOUNT_COMPRESSION_PROGRAM_ID,
            "merkle_tree": proof.merkle_tree,
            "tree_authority": pda.tree_authority(proof.merkle_tree),
            "log_wrapper": NOOP_PROGRAM_ID,
        }

    def _stable_accounts(self, user: str) -> Dict[str, str]:
        stable_mint = self.config.stable_mint
        return {
            "usdc_mint": stable_mint,
            "user_usdc_account": pda.associated_token_address(user, stable_mint),
            "treasury": self.config.treasury,
            "treasury_usdc_account": pda.associated_token_address(self.config.treasury, stable_mint),
        }

    def _token_programs(self) -> Dict[str, str]:
        return {
            "token_program": TOKEN_PROGRAM_ID,
            "associated_token_program": ASSOCIATED_TOKEN_PROGRAM_ID,
            "system_program": SYSTEM_PROGRAM_ID,
        }

    # -------------------------------------------------------------------------
    # Submission and confirmation
    # -------------------------------------------------------------------------

    async def _submit(
        self,
        signer: WalletSigner,
        instructions: List[Instruction],
        compute_unit_limit: int,
        vault_address: str,
    ) -> str:
        built = await self._builder.build(signer.pubkey, instructions, compute_unit_limit)
        signed = await signer.sign(built.message)
        own_signature = str(signed.signatures[0])
        logger.info(
            f"Submitting {own_signature} ({built.size} bytes"
            f"{', lookup table' if built.used_lookup_table else ''})"
        )

        try:
            signature = await self._gateway.send_transaction(bytes(signed))
        except SubmissionFailed as e:
            message = str(e)
            if any(marker in message for marker in ALREADY_PROCESSED):
                logger.info(f"{own_signature} already processed, treating as submitted")
                signature = own_signature
            else:
                reason = describe_program_error(message)
                if reason is not None:
                    raise Rejected(reason, own_signature) from e
                raise

        await self._confirm(signature, built, vault_address)
        await self._store.fetch_by_id(vault_address)
        return signature

    async def _confirm(self, signature: str, built: BuiltTransaction, vault_address: str) -> None:
        try:
            err = await self._gateway.confirm_transaction(
                signature, built.blockhash, built.last_valid_block_height, self.confirm_timeout_sec
            )
        except ConfirmationTimeout:
            logger.warning(f"{signature} not confirmed in {self.confirm_timeout_sec}s, polling status")
            try:
                status = await self._gateway.get_signature_status(signature)
            except ReclaimError as e:
                logger.warning(f"Status poll for {signature} failed: {e}")
                status = None
            if status is None:
                await self._store.fetch_by_id(vault_address)
                raise AmbiguousConfirmation(
                    f"{signature} submitted but not yet visible on the ledger", signature=signature
                )
            err = status.err

        if err is not None:
            reason = describe_program_error(err) or str(err)
            logger.error(f"{signature} rejected: {reason}")
            raise Rejected(reason, signature)


