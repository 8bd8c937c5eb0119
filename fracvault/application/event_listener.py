"""
Vault event listener.

Subscribes to the vault program's logs and turns each relevant batch into a
targeted store refresh. Batches that name a vault refresh just that vault
(falling back to a full scan if the targeted read comes back empty);
batches with an event marker but no recognizable address trigger a full
scan. Subscription failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from ..domain.events import EventDecoder
from ..domain.interfaces.ledger_gateway import LedgerGateway, LogSubscription
from ..infrastructure.stores.vault_store import VaultCacheStore
from ..models.ledger import LogBatch
from ..utils.logging_setup import get_logger
from ..utils.trace_context import new_action

logger = get_logger(__name__)


class VaultEventListener:
    """Keeps the vault store in step with ledger-side changes."""

    def __init__(
        self,
        gateway: LedgerGateway,
        store: VaultCacheStore,
        program_id: str,
        ignore_addresses: Iterable[str] = (),
    ):
        self._gateway = gateway
        self._store = store
        self.program_id = program_id
        self.decoder = EventDecoder(ignore_addresses={program_id, *ignore_addresses})
        self._subscription: Optional[LogSubscription] = None
        self._lock = asyncio.Lock()
        self.batches_handled = 0

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    async def start(self) -> bool:
        """
        Subscribe to program logs. Idempotent.

        Returns:
            True if subscribed (now or already), False if the subscription failed.
        """
        async with self._lock:
            if self._subscription is not None:
                return True
            try:
                self._subscription = await self._gateway.on_logs(self.program_id, self.handle_batch)
            except Exception as e:
                logger.warning(f"Vault event subscription failed, continuing without live updates: {e}")
                return False
            logger.info(f"Listening for vault events from {self.program_id}")
            return True

    async def stop(self) -> None:
        """Unsubscribe. Safe to call when not running."""
        async with self._lock:
            subscription, self._subscription = self._subscription, None
            if subscription is None:
                return
            try:
                await subscription.unsubscribe()
            except Exception as e:
                logger.warning(f"Error while unsubscribing from vault events: {e}")
            logger.info("Vault event listener stopped")

    async def handle_batch(self, batch: LogBatch) -> None:
        """Decode one transaction's logs and refresh whatever it touched."""
        if batch.err is not None:
            return
        events = self.decoder.decode(batch.logs)
        if not events:
            return

        self.batches_handled += 1
        with new_action():
            names = ", ".join(event.event_type.value for event in events)
            addresses = []
            for event in events:
                if event.vault is not None and event.vault not in addresses:
                    addresses.append(event.vault)

            if not addresses:
                logger.info(f"{names} in {batch.signature} without a vault address, rescanning")
                await self._store.fetch_all()
                return

            for address in addresses:
                logger.info(f"{names} in {batch.signature}, refreshing vault {address}")
                refreshed = await self._store.fetch_by_id(address)
                if refreshed is None:
                    logger.info(f"Targeted refresh of {address} found nothing, rescanning")
                    await self._store.fetch_all()
                    return
