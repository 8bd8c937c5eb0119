"""
Pytest configuration and fixtures.

FakeLedger and FakeProofProvider are in-memory stand-ins for the Solana RPC
and the DAS indexer. FakeLedger decodes submitted transactions and applies
the vault program's reclaim instructions to its own account map, so
orchestrator tests observe real ledger-side transitions.
"""

from __future__ import annotations

import asyncio
import secrets
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from config.models import ReclaimConfig
from fracvault.application.reclaim_orchestrator import ReclaimOrchestrator
from fracvault.application.transaction_builder import TransactionBuilder
from fracvault.domain.clock import SimulatedClock
from fracvault.domain.events import VaultEventType, encode_event
from fracvault.domain.exceptions import (
    ConfirmationTimeout,
    ConnectivityError,
    ProofUnavailable,
    RateLimitedError,
    SubmissionFailed,
)
from fracvault.domain.interfaces.ledger_gateway import LedgerGateway, LogCallback, LogSubscription
from fracvault.domain.interfaces.proof_provider import ProofProvider
from fracvault.infrastructure.adapters.retry import RetryPolicy
from fracvault.infrastructure.adapters.solana.binding import (
    CANCEL_RECLAIM,
    FINALIZE_RECLAIM,
    INITIALIZE_RECLAIM,
    INSTRUCTIONS,
    ProgramBinding,
    method_discriminator,
)
from fracvault.infrastructure.adapters.solana.signer import KeypairSigner
from fracvault.infrastructure.codecs.vault_layout import decode_vault, encode_vault
from fracvault.infrastructure.stores.vault_store import VaultCacheStore
from fracvault.models.asset import AssetInfo, AssetProof, AssetWithProof
from fracvault.models.ledger import LogBatch, ProgramAccount, SignatureStatus, TokenBalance
from fracvault.models.vault import DEFAULT_PUBKEY, TOKEN_SCALE, Vault, VaultMetadata, VaultStatus

START_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)
SUPPLY = 1_000_000 * TOKEN_SCALE


def new_address() -> str:
    return str(Pubkey.new_unique())


# =============================================================================
# Fake ledger
# =============================================================================

class FakeSubscription(LogSubscription):
    def __init__(self, ledger: "FakeLedger", callback: LogCallback):
        self._ledger = ledger
        self._callback = callback
        self.active = True

    async def deliver(self, batch: LogBatch) -> None:
        if self.active:
            await self._callback(batch)

    async def unsubscribe(self) -> None:
        self.active = False
        if self in self._ledger.subscriptions:
            self._ledger.subscriptions.remove(self)


class FakeLedger(LedgerGateway):
    """
    In-memory ledger hosting one vault program.

    Knobs:
        send_error: SubmissionFailed message raised by send_transaction.
        confirm_timeout: confirm_transaction raises ConfirmationTimeout.
        statuses: signature -> SignatureStatus overriding the status poll.
        status_visible: the status poll reports executed transactions.
        scan_gate: when set, scans snapshot accounts then wait on the event.
        account_gate: the same for single-account reads.
        scan_error / account_error / positions_error: raised by those reads.
        subscribe_error: raised by on_logs.
    """

    def __init__(self, program_id: str, clock: SimulatedClock, cancel_fee_raw: int = 100 * 10 ** 6):
        self.program_id = program_id
        self.clock = clock
        self.binding = ProgramBinding(program_id)
        self.cancel_fee_raw = cancel_fee_raw

        self.accounts: Dict[str, bytes] = {}
        self.balances: Dict[str, Dict[str, int]] = {}
        self.lookup_tables: Dict[str, AddressLookupTableAccount] = {}
        self.subscriptions: List[FakeSubscription] = []
        self.pending_logs: List[LogBatch] = []

        self.calls: Counter = Counter()
        self.attempted: List[VersionedTransaction] = []
        self.executed: List[Tuple[str, str]] = []
        self.tx_errors: Dict[str, Any] = {}
        self.landed: set = set()

        self.send_error: Optional[str] = None
        self.confirm_timeout = False
        self.statuses: Dict[str, Optional[SignatureStatus]] = {}
        self.status_visible = True
        self.scan_gate: Optional[asyncio.Event] = None
        self.account_gate: Optional[asyncio.Event] = None
        self.positions_gate: Optional[asyncio.Event] = None
        self.scan_error: Optional[Exception] = None
        self.account_error: Optional[Exception] = None
        self.positions_error: Optional[Exception] = None
        self.subscribe_error: Optional[Exception] = None

        self._methods = {method_discriminator(method): method for method in INSTRUCTIONS}

    # -------------------------------------------------------------------------
    # Fixture setup
    # -------------------------------------------------------------------------

    def put_vault(self, vault: Vault) -> Vault:
        self.accounts[vault.address] = encode_vault(vault)
        return vault

    def vault(self, address: str) -> Vault:
        return decode_vault(address, self.accounts[address])

    def set_balance(self, owner: str, mint: str, amount: int) -> None:
        self.balances.setdefault(owner, {})[mint] = amount

    def balance(self, owner: str, mint: str) -> int:
        return self.balances.get(owner, {}).get(mint, 0)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_program_accounts(self, program_id: str, data_size: Optional[int] = None) -> List[ProgramAccount]:
        self.calls["get_program_accounts"] += 1
        if self.scan_error is not None:
            raise self.scan_error
        snapshot = [
            ProgramAccount(address, data)
            for address, data in self.accounts.items()
            if data_size is None or len(data) == data_size
        ]
        if self.scan_gate is not None:
            await self.scan_gate.wait()
        return snapshot

    async def get_account_info(self, address: str) -> Optional[bytes]:
        self.calls["get_account_info"] += 1
        if self.account_error is not None:
            raise self.account_error
        data = self.accounts.get(address)
        if self.account_gate is not None:
            await self.account_gate.wait()
        return data

    async def get_parsed_token_accounts(self, owner: str, token_program_id: str) -> List[TokenBalance]:
        self.calls["get_parsed_token_accounts"] += 1
        if self.positions_error is not None:
            raise self.positions_error
        if self.positions_gate is not None:
            await self.positions_gate.wait()
        return [
            TokenBalance(mint=mint, amount=amount, account=new_address())
            for mint, amount in self.balances.get(owner, {}).items()
        ]

    async def get_address_lookup_table(self, address: str) -> Optional[AddressLookupTableAccount]:
        self.calls["get_address_lookup_table"] += 1
        return self.lookup_tables.get(address)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        self.calls["get_latest_blockhash"] += 1
        return Hash(secrets.token_bytes(32)), 1_000

    async def send_transaction(self, raw_transaction: bytes) -> str:
        self.calls["send_transaction"] += 1
        tx = VersionedTransaction.from_bytes(raw_transaction)
        self.attempted.append(tx)
        if self.send_error is not None:
            raise SubmissionFailed(self.send_error)
        signature = str(tx.signatures[0])
        self._execute(tx, signature)
        return signature

    async def confirm_transaction(self, signature, blockhash, last_valid_block_height, timeout) -> Optional[Any]:
        self.calls["confirm_transaction"] += 1
        if self.confirm_timeout:
            raise ConfirmationTimeout(f"{signature} not confirmed", signature=signature)
        return self.tx_errors.get(signature)

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        self.calls["get_signature_status"] += 1
        if signature in self.statuses:
            return self.statuses[signature]
        if self.status_visible and signature in self.landed:
            return SignatureStatus(signature, self.tx_errors.get(signature), "confirmed")
        return None

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def on_logs(self, program_id: str, callback: LogCallback) -> LogSubscription:
        self.calls["on_logs"] += 1
        if self.subscribe_error is not None:
            raise self.subscribe_error
        subscription = FakeSubscription(self, callback)
        self.subscriptions.append(subscription)
        return subscription

    async def emit(self, batch: LogBatch) -> None:
        for subscription in list(self.subscriptions):
            await subscription.deliver(batch)

    async def flush_logs(self) -> None:
        pending, self.pending_logs = self.pending_logs, []
        for batch in pending:
            await self.emit(batch)

    def build_instruction(self, method, accounts, args, remaining_accounts=()):
        return self.binding.build(method, accounts, args, remaining_accounts)

    async def close(self) -> None:
        self.calls["close"] += 1

    # -------------------------------------------------------------------------
    # Program simulation
    # -------------------------------------------------------------------------

    def _execute(self, tx: VersionedTransaction, signature: str) -> None:
        self.landed.add(signature)
        keys = [str(key) for key in tx.message.account_keys]
        for instruction in tx.message.instructions:
            if keys[instruction.program_id_index] != self.program_id:
                continue
            data = bytes(instruction.data)
            method = self._methods[data[:8]]
            spec = INSTRUCTIONS[method]
            indexes = list(instruction.accounts)

            def account(name: str) -> str:
                return keys[indexes[spec.account_index(name)]]

            user = account("user")
            vault = self.vault(account("vault"))
            error, event = self._apply(method, vault, user)
            if error is not None:
                self.tx_errors[signature] = error
                continue
            self.executed.append((method, vault.address))
            self.pending_logs.append(
                LogBatch(
                    signature=signature,
                    logs=[
                        f"Program {self.program_id} invoke [1]",
                        encode_event(event, vault.address),
                        f"Program {self.program_id} success",
                    ],
                )
            )

    def _apply(self, method: str, vault: Vault, user: str) -> Tuple[Optional[str], Optional[VaultEventType]]:
        now = int(self.clock.timestamp())
        if method == INITIALIZE_RECLAIM:
            if vault.status is not VaultStatus.ACTIVE:
                return "custom program error: 0x1770", None
            held = self.balance(user, vault.fraction_mint)
            if held * 100 < vault.min_reclaim_percentage * vault.total_supply:
                return "custom program error: 0x1771", None
            self.set_balance(user, vault.fraction_mint, 0)
            if held * 10_000 >= 9_999 * vault.total_supply:
                self.put_vault(replace(vault, status=VaultStatus.RECLAIMED_FINALIZED, reclaim_timestamp=now))
                return None, VaultEventType.RECLAIM_FINALIZED
            self.put_vault(
                replace(
                    vault,
                    status=VaultStatus.RECLAIM_INITIATED,
                    reclaim_timestamp=now,
                    reclaim_initiator=user,
                    reclaim_initiation_timestamp=now,
                    tokens_in_escrow=held,
                )
            )
            return None, VaultEventType.RECLAIM_INITIATED

        if method == CANCEL_RECLAIM:
            if vault.status is not VaultStatus.RECLAIM_INITIATED:
                return "Error Code: VaultNotInReclaimInitiated", None
            if vault.reclaim_initiator != user:
                return "Error Code: UnauthorizedCancellation", None
            self.set_balance(user, vault.fraction_mint, self.balance(user, vault.fraction_mint) + vault.tokens_in_escrow)
            self.put_vault(
                replace(
                    vault,
                    status=VaultStatus.ACTIVE,
                    reclaim_initiator=DEFAULT_PUBKEY,
                    reclaim_initiation_timestamp=0,
                    tokens_in_escrow=0,
                )
            )
            return None, VaultEventType.RECLAIM_CANCELLED

        if method == FINALIZE_RECLAIM:
            if vault.status is not VaultStatus.RECLAIM_INITIATED:
                return "Error Code: VaultNotInReclaimInitiated", None
            self.put_vault(replace(vault, status=VaultStatus.RECLAIMED_FINALIZED, tokens_in_escrow=0))
            return None, VaultEventType.RECLAIM_FINALIZED

        return f"unknown method {method}", None


# =============================================================================
# Fake proof provider
# =============================================================================

class FakeProofProvider(ProofProvider):
    """
    In-memory DAS indexer.

    Knobs:
        rate_limited_proofs: number of get_asset_proof calls that raise
            RateLimitedError before succeeding.
        failing_assets: asset ids whose get_asset raises ConnectivityError.
        gate: when set, get_asset waits on the event.
    """

    def __init__(self):
        self.assets: Dict[str, AssetWithProof] = {}
        self.calls: Counter = Counter()
        self.rate_limited_proofs = 0
        self.failing_assets: set = set()
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    def add(self, asset: AssetWithProof) -> AssetWithProof:
        self.assets[asset.asset.asset_id] = asset
        return asset

    async def get_asset(self, asset_id: str) -> AssetInfo:
        self.calls["get_asset"] += 1
        if self.gate is not None:
            await self.gate.wait()
        if asset_id in self.failing_assets:
            raise ConnectivityError(f"getAsset {asset_id} failed")
        if asset_id not in self.assets:
            raise ProofUnavailable(f"Asset {asset_id} not indexed")
        return self.assets[asset_id].asset

    async def get_asset_proof(self, asset_id: str) -> AssetProof:
        self.calls["get_asset_proof"] += 1
        if self.rate_limited_proofs > 0:
            self.rate_limited_proofs -= 1
            raise RateLimitedError("getAssetProof: rate limited")
        if asset_id not in self.assets:
            raise ProofUnavailable(f"Asset {asset_id} not indexed")
        return self.assets[asset_id].proof

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Builders
# =============================================================================

def build_vault(address: Optional[str] = None, **overrides) -> Vault:
    fields = dict(
        address=address or new_address(),
        nft_mint=new_address(),
        nft_asset_id=new_address(),
        fraction_mint=new_address(),
        total_supply=SUPPLY,
        creator=new_address(),
        creation_timestamp=int(START_TIME.timestamp()) - 86_400,
        status=VaultStatus.ACTIVE,
        min_reclaim_percentage=80,
        bump=254,
    )
    fields.update(overrides)
    return Vault(**fields)


def build_asset(vault: Vault, proof_depth: int = 3, name: Optional[str] = None) -> AssetWithProof:
    tree = new_address()
    return AssetWithProof(
        asset=AssetInfo(
            asset_id=vault.nft_asset_id,
            owner=vault.address,
            data_hash=secrets.token_bytes(32),
            creator_hash=secrets.token_bytes(32),
            tree=tree,
            leaf_id=7,
            metadata=VaultMetadata(name=name or f"Asset {vault.nft_asset_id[:4]}", symbol="CNFT"),
        ),
        proof=AssetProof(
            root=secrets.token_bytes(32),
            proof=[new_address() for _ in range(proof_depth)],
            tree_id=tree,
            node_index=16384 + 7,
        ),
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def program_id() -> str:
    return new_address()


@pytest.fixture
def clock() -> SimulatedClock:
    return SimulatedClock(start_time=START_TIME)


@pytest.fixture
def ledger(program_id, clock) -> FakeLedger:
    return FakeLedger(program_id, clock)


@pytest.fixture
def proofs() -> FakeProofProvider:
    return FakeProofProvider()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Three attempts without real sleeping."""
    return RetryPolicy(max_attempts=3, base_delay_sec=0.0, max_delay_sec=0.0)


@pytest.fixture
def store(ledger, proofs, program_id, clock) -> VaultCacheStore:
    return VaultCacheStore(gateway=ledger, proof_provider=proofs, program_id=program_id, clock=clock)


@pytest.fixture
def reclaim_config() -> ReclaimConfig:
    return ReclaimConfig(stable_mint=new_address(), treasury=new_address())


@pytest.fixture
def wallet() -> Keypair:
    return Keypair()


@pytest.fixture
def signer(wallet) -> KeypairSigner:
    return KeypairSigner(wallet)


@pytest.fixture
def builder(ledger, retry_policy) -> TransactionBuilder:
    return TransactionBuilder(gateway=ledger, retry_policy=retry_policy)


@pytest.fixture
def orchestrator(ledger, proofs, store, reclaim_config, program_id, builder, signer, clock, retry_policy) -> ReclaimOrchestrator:
    return ReclaimOrchestrator(
        gateway=ledger,
        proof_provider=proofs,
        store=store,
        config=reclaim_config,
        program_id=program_id,
        builder=builder,
        signer=signer,
        clock=clock,
        retry_policy=retry_policy,
        confirm_timeout_sec=1.0,
    )


@pytest.fixture
def make_vault() -> Callable[..., Vault]:
    """Build a Vault record without registering it anywhere."""
    return build_vault


@pytest.fixture
def make_asset() -> Callable[..., AssetWithProof]:
    return build_asset


@pytest.fixture
def add_vault(ledger, proofs) -> Callable[..., Vault]:
    """Register a vault (and its compressed asset) on the fake ledger."""

    def add(address: Optional[str] = None, proof_depth: int = 3, **overrides) -> Vault:
        vault = ledger.put_vault(build_vault(address, **overrides))
        proofs.add(build_asset(vault, proof_depth=proof_depth))
        return vault

    return add


@pytest.fixture
def raw_config(program_id) -> Dict[str, Any]:
    """In-memory config dict accepted by ConfigManager.load_dict."""
    return {
        "ledger": {"rpc_url": "https://api.devnet.solana.com", "program_id": program_id},
        "proof_provider": {"url": "https://devnet.helius-rpc.com/", "api_key": "test-key"},
        "retry": {"max_attempts": 3, "base_delay_sec": 0.0, "max_delay_sec": 0.0},
        "reclaim": {"stable_mint": new_address(), "treasury": new_address()},
        "event_listener": {"enabled": True},
        "logging": {"log_dir": None, "console": False},
    }
