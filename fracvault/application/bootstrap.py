"""
Application Bootstrap - Composition Root for Service Wiring.

AppContainer builds the gateway, proof provider, vault store, transaction
builder, orchestrator and event listener from configuration, in dependency
order, and tears them down in reverse.

Usage:
    container = AppContainer(config)
    await container.initialize()
    await container.store.fetch_if_stale()
    signature = await container.orchestrator.initialize_reclaim(vault_id)
    await container.cleanup()

Tests pass their own gateway, proof provider and clock; anything left as
None is built from configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from config.models import AppConfig

from ..domain.clock import Clock, SystemClock
from ..domain.interfaces.ledger_gateway import LedgerGateway
from ..domain.interfaces.proof_provider import ProofProvider
from ..domain.interfaces.wallet_signer import WalletSigner
from ..infrastructure.adapters.das import DasProofProvider
from ..infrastructure.adapters.retry import RetryPolicy
from ..infrastructure.adapters.solana import SolanaLedgerGateway
from ..infrastructure.adapters.solana.programs import WELL_KNOWN_PROGRAMS
from ..infrastructure.stores.vault_store import VaultCacheStore
from ..utils.logging_setup import get_logger
from .event_listener import VaultEventListener
from .reclaim_orchestrator import ReclaimOrchestrator
from .transaction_builder import TransactionBuilder

logger = get_logger(__name__)


@dataclass
class AppContainer:
    """
    Composition root for all client services.

    Attributes:
        config: Application configuration.
        gateway: Ledger gateway override (built from config when None).
        proof_provider: Proof provider override (built from config when None).
        clock: Clock override (system clock when None).
        signer: Wallet to connect at startup, if any.
    """

    config: AppConfig
    gateway: Optional[LedgerGateway] = None
    proof_provider: Optional[ProofProvider] = None
    clock: Optional[Clock] = None
    signer: Optional[WalletSigner] = None

    retry_policy: Optional[RetryPolicy] = field(default=None, init=False)
    store: Optional[VaultCacheStore] = field(default=None, init=False)
    builder: Optional[TransactionBuilder] = field(default=None, init=False)
    orchestrator: Optional[ReclaimOrchestrator] = field(default=None, init=False)
    event_listener: Optional[VaultEventListener] = field(default=None, init=False)

    _initialized: bool = field(default=False, init=False)

    async def initialize(self, start_listener: Optional[bool] = None) -> None:
        """
        Build and wire every service.

        Args:
            start_listener: Override ``event_listener.enabled`` from config.
        """
        if self._initialized:
            return

        config = self.config
        program_id = config.ledger.program_id

        self.clock = self.clock or SystemClock()
        self.retry_policy = RetryPolicy(
            max_attempts=config.retry.max_attempts,
            base_delay_sec=config.retry.base_delay_sec,
            max_delay_sec=config.retry.max_delay_sec,
        )

        if self.gateway is None:
            self.gateway = SolanaLedgerGateway(
                rpc_url=config.ledger.rpc_url,
                program_id=program_id,
                ws_url=config.ledger.ws_url,
                commitment=config.ledger.commitment,
            )
            logger.info(f"Ledger gateway: {config.ledger.rpc_url}")

        if self.proof_provider is None:
            self.proof_provider = DasProofProvider(
                url=config.proof_provider.endpoint,
                timeout_sec=config.proof_provider.timeout_sec,
                retry_policy=self.retry_policy,
            )
            logger.info(f"Proof provider: {config.proof_provider.url}")

        self.store = VaultCacheStore(
            gateway=self.gateway,
            proof_provider=self.proof_provider,
            program_id=program_id,
            clock=self.clock,
            cache_lifetime=timedelta(seconds=config.cache.lifetime_sec),
            metadata_batch_size=config.cache.metadata_batch_size,
            metadata_batch_delay_sec=config.cache.metadata_batch_delay_sec,
        )

        self.builder = TransactionBuilder(
            gateway=self.gateway,
            shared_lookup_table=config.reclaim.shared_lookup_table,
            max_size=config.reclaim.max_transaction_size,
            compute_unit_price=config.reclaim.compute_budget.unit_price_micro_lamports,
            retry_policy=self.retry_policy,
        )

        self.orchestrator = ReclaimOrchestrator(
            gateway=self.gateway,
            proof_provider=self.proof_provider,
            store=self.store,
            config=config.reclaim,
            program_id=program_id,
            builder=self.builder,
            signer=self.signer,
            clock=self.clock,
            retry_policy=self.retry_policy,
            confirm_timeout_sec=config.ledger.confirm_timeout_sec,
        )

        self.event_listener = VaultEventListener(
            gateway=self.gateway,
            store=self.store,
            program_id=program_id,
            ignore_addresses=WELL_KNOWN_PROGRAMS,
        )

        listen = config.event_listener.enabled if start_listener is None else start_listener
        if listen:
            await self.event_listener.start()
        else:
            logger.info("Vault event listener disabled")

        self._initialized = True
        logger.info(f"Reclaim client initialized ({config.env})")

    async def cleanup(self) -> None:
        """Tear down in reverse order."""
        if self.event_listener:
            await self.event_listener.stop()

        if self.store:
            await self.store.close()

        if self.proof_provider:
            await self.proof_provider.close()

        if self.gateway:
            await self.gateway.close()

        self._initialized = False
        logger.info("Cleanup complete")
